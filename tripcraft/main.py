"""
TripCraft Itinerary API - Main Entry File

Wires the pipeline components behind a FastAPI application:
- Persistent store (trip aggregate and caches)
- Place provider and language model services
- Intake, planning, validation, presentation and edit endpoints
"""

from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables before settings-dependent imports
load_dotenv()

from tripcraft.api.endpoints import intake_router, system_router, trips_router  # noqa: E402
from tripcraft.core.config import settings  # noqa: E402
from tripcraft.core.database import init_db  # noqa: E402
from tripcraft.core.logging_config import get_logger, setup_logging  # noqa: E402
from tripcraft.tools.base_tool import tool_registry  # noqa: E402

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    setup_logging()
    logger.info(f"Starting {settings.PROJECT_NAME}")

    try:
        logger.info("Initializing database...")
        await init_db()
        logger.info("Database initialized")

        registry_status = tool_registry.get_registry_status()
        logger.info(f"Tool system ready with {registry_status['total_tools']} tools registered")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.PROJECT_NAME}")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Generates, validates, presents and edits day-by-day travel itineraries",
    version=settings.VERSION,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router, tags=["system"])
app.include_router(intake_router, prefix=settings.API_PREFIX, tags=["intake"])
app.include_router(trips_router, prefix=settings.API_PREFIX, tags=["trips"])

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
