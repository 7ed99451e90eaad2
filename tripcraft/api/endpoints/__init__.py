"""
API Endpoints Package

This package contains all API endpoint modules organized by functionality:
- system.py: System health checks and status
- intake.py: Conversational trip intake
- trips.py: Itinerary generation, validation, presentation and edits
"""

# Import all routers for easy access
from .system import router as system_router
from .intake import router as intake_router
from .trips import router as trips_router

__all__ = [
    "system_router",
    "intake_router",
    "trips_router",
]
