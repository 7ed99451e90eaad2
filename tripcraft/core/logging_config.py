"""
Logging setup for the itinerary service

All modules log through loguru via `get_logger(__name__)`. Records emitted
by libraries on the standard `logging` module (uvicorn, SQLAlchemy, aiohttp,
the model SDKs) are forwarded into the same sinks.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from tripcraft.core.config import settings

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} | {message}"
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
)

# (file name, minimum level, retention)
FILE_SINKS = [
    ("tripcraft_{time:YYYY-MM-DD}.log", "INFO", "7 days"),
    ("errors_{time:YYYY-MM-DD}.log", "ERROR", "30 days"),
]
DEBUG_SINK = ("debug_{time:YYYY-MM-DD}.log", "DEBUG", "3 days")

LIBRARY_LEVELS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "aiohttp": logging.WARNING,
    "httpx": logging.WARNING,
    "openai": logging.INFO,
    "anthropic": logging.INFO,
}

_configured = False


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru, keeping the caller's location"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> None:
    """Install console and rotating file sinks once per process"""
    global _configured
    if _configured:
        return

    logs_dir = Path(log_dir or settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.configure(extra={"name": "tripcraft"})
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level or settings.LOG_LEVEL,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    sinks = FILE_SINKS + ([DEBUG_SINK] if settings.DEBUG else [])
    for file_name, sink_level, retention in sinks:
        logger.add(
            str(logs_dir / file_name),
            format=FILE_FORMAT,
            level=sink_level,
            rotation="1 day",
            retention=retention,
            compression="zip",
            enqueue=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    _configured = True
    logger.info(
        f"Logging to {logs_dir.absolute()} (debug sink {'on' if settings.DEBUG else 'off'})"
    )


def get_logger(name: Optional[str] = None):
    """Module logger; the name shows up in every record it writes"""
    return logger.bind(name=name or "tripcraft")
