"""
Provider tools and their registry

Every external data provider is a tool. A tool runs each remote operation
under its own timeout and keeps counters that the system status endpoint
reports through the registry.
"""

import asyncio
import time
from abc import ABC
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from tripcraft.core.datetime_utils import utc_now
from tripcraft.core.exceptions import UpstreamProviderError
from tripcraft.core.logging_config import get_logger

logger = get_logger(__name__)


class ToolStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ToolMetadata(BaseModel):
    name: str
    description: str
    category: str
    version: str = "1.0.0"
    tags: List[str] = Field(default_factory=list)
    requires_auth: bool = False
    timeout: int = 30  # seconds per operation


class ToolStats(BaseModel):
    """Running counters for one tool"""

    status: ToolStatus = ToolStatus.IDLE
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    per_operation: Dict[str, int] = Field(default_factory=dict)

    @property
    def error_rate(self) -> float:
        errors = self.failed + self.timed_out
        return errors / max(self.succeeded + errors, 1)


class BaseTool(ABC):
    def __init__(self, metadata: ToolMetadata):
        self.metadata = metadata
        self.stats = ToolStats()
        self._operations: Counter = Counter()

    async def run(
        self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs
    ) -> Any:
        """
        Await `func(*args, **kwargs)` within the tool's timeout.

        A timeout becomes a transient UpstreamProviderError; any other
        failure is counted and re-raised unchanged.
        """
        label = f"{self.metadata.name}.{operation}"
        self._operations[operation] += 1
        self.stats.status = ToolStatus.RUNNING
        started = time.perf_counter()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.metadata.timeout)
        except asyncio.TimeoutError as e:
            self.stats.status = ToolStatus.TIMEOUT
            self.stats.timed_out += 1
            self.stats.last_error = f"{operation} timed out"
            logger.warning(f"{label} timed out after {self.metadata.timeout}s")
            raise UpstreamProviderError(
                self.metadata.name,
                f"{operation} timed out after {self.metadata.timeout}s",
                transient=True,
            ) from e
        except Exception as e:
            self.stats.status = ToolStatus.FAILED
            self.stats.failed += 1
            self.stats.last_error = str(e)
            logger.error(f"{label} failed after {time.perf_counter() - started:.2f}s: {e}")
            raise

        self.stats.status = ToolStatus.SUCCESS
        self.stats.succeeded += 1
        self.stats.last_success_at = utc_now()
        logger.debug(f"{label} took {time.perf_counter() - started:.2f}s")
        return result

    def get_status(self) -> Dict[str, Any]:
        self.stats.per_operation = dict(self._operations)
        return {
            "name": self.metadata.name,
            "category": self.metadata.category,
            **self.stats.model_dump(),
            "error_rate": round(self.stats.error_rate, 3),
        }


class ToolRegistry:
    """Tools by name; registering a name again replaces the earlier tool"""

    def __init__(self):
        self._tools: Dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        replaced = tool.metadata.name in self._tools
        self._tools[tool.metadata.name] = tool
        logger.info(
            f"{'Replaced' if replaced else 'Registered'} tool {tool.metadata.name} "
            f"({tool.metadata.category})"
        )

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def get_registry_status(self) -> Dict[str, Any]:
        categories = Counter(tool.metadata.category for tool in self._tools.values())
        return {
            "total_tools": len(self._tools),
            "categories": dict(categories),
            "tools": {name: tool.get_status() for name, tool in self._tools.items()},
        }


tool_registry = ToolRegistry()
