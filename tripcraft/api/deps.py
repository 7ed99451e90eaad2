"""
FastAPI dependencies that build pipeline components.

Components share the application's session factory and a single cache
layer. Model and place services are resolved lazily through their global
getters, so they can be swapped with set_llm_service / set_place_provider.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from tripcraft.core.cache import CacheLayer
from tripcraft.core.database import async_session
from tripcraft.core.trip_store import TripStore
from tripcraft.services.duration_estimator import DurationEstimator
from tripcraft.services.edit_resolver import EditResolver
from tripcraft.services.hotel_ranker import HotelRanker
from tripcraft.services.intake import IntakeClassifier
from tripcraft.services.itinerary_planner import ItineraryPlanner
from tripcraft.services.logistics import LogisticsCalculator
from tripcraft.services.presenter import Presenter
from tripcraft.services.validator import Validator

_cache = CacheLayer(async_session)


def get_session_factory() -> async_sessionmaker:
    return async_session


def get_cache() -> CacheLayer:
    return _cache


def get_trip_store(session_factory=Depends(get_session_factory)) -> TripStore:
    return TripStore(session_factory)


def get_intake(session_factory=Depends(get_session_factory)) -> IntakeClassifier:
    return IntakeClassifier(session_factory)


def get_planner(
    session_factory=Depends(get_session_factory), cache=Depends(get_cache)
) -> ItineraryPlanner:
    return ItineraryPlanner(session_factory, cache)


def get_validator(session_factory=Depends(get_session_factory)) -> Validator:
    return Validator(session_factory)


def get_presenter(session_factory=Depends(get_session_factory)) -> Presenter:
    return Presenter(session_factory)


def get_edit_resolver(
    session_factory=Depends(get_session_factory), cache=Depends(get_cache)
) -> EditResolver:
    return EditResolver(session_factory, cache)


def get_logistics(
    session_factory=Depends(get_session_factory), cache=Depends(get_cache)
) -> LogisticsCalculator:
    return LogisticsCalculator(session_factory, cache)


def get_hotel_ranker(
    session_factory=Depends(get_session_factory), cache=Depends(get_cache)
) -> HotelRanker:
    return HotelRanker(session_factory, cache)


def get_duration_estimator(cache=Depends(get_cache)) -> DurationEstimator:
    return DurationEstimator(cache)
