"""
System Endpoints - Health checks and system status
"""

from fastapi import APIRouter, Depends

from tripcraft.api.deps import get_cache
from tripcraft.core.cache import CacheLayer
from tripcraft.core.config import settings
from tripcraft.core.datetime_utils import utc_now
from tripcraft.tools.base_tool import tool_registry

router = APIRouter()


@router.get("/")
async def root():
    """Root path - system status overview"""
    tool_status = tool_registry.get_registry_status()
    return {
        "message": f"Welcome to {settings.PROJECT_NAME} v{settings.VERSION}",
        "status": "Running",
        "components": {
            "tools": {"total": tool_status["total_tools"]},
            "pipeline": [
                "intake",
                "planner",
                "logistics",
                "hotel_ranker",
                "validator",
                "presenter",
                "edit_resolver",
            ],
        },
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat() + "Z",
        "version": settings.VERSION,
    }


@router.get("/system/status")
async def system_status(cache: CacheLayer = Depends(get_cache)):
    """Detailed system status"""
    return {
        "tools": tool_registry.get_registry_status(),
        "cache": cache.stats(),
        "system_info": {
            "version": settings.VERSION,
            "planner_fanout": settings.PLANNER_FANOUT,
            "validation_locale": settings.VALIDATION_LOCALE,
        },
    }
