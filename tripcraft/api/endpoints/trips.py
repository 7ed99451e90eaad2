"""
Trip Endpoints - Generation, refinement and inspection of itineraries

Generation only ever requests the draft -> active transition; the planner
owns it and rejects a second concurrent request with 409.
"""

from fastapi import APIRouter, Depends

from tripcraft.api.deps import (
    get_duration_estimator,
    get_edit_resolver,
    get_hotel_ranker,
    get_logistics,
    get_planner,
    get_presenter,
    get_trip_store,
    get_validator,
)
from tripcraft.api.errors import to_http_exception
from tripcraft.api.schemas import (
    DurationEstimateBody,
    EditRequest,
    LogisticsResponse,
    RankHotelsRequest,
    RankHotelsResponse,
)
from tripcraft.core.exceptions import NotFoundError, TripCraftError
from tripcraft.core.logging_config import get_logger
from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import (
    DurationEstimate,
    DurationEstimateRequest,
    EditResult,
    GenerationResult,
    PresentationResult,
    TripView,
    ValidationReport,
)
from tripcraft.services.duration_estimator import DurationEstimator
from tripcraft.services.edit_resolver import EditResolver
from tripcraft.services.hotel_ranker import HotelRanker
from tripcraft.services.itinerary_planner import ItineraryPlanner
from tripcraft.services.logistics import LogisticsCalculator
from tripcraft.services.presenter import Presenter
from tripcraft.services.validator import Validator

logger = get_logger(__name__)

router = APIRouter()


@router.get("/trips/{trip_id}", response_model=TripView)
async def get_trip(trip_id: str, store: TripStore = Depends(get_trip_store)):
    """Fully expanded trip"""
    try:
        return await store.load_trip_view(trip_id)
    except TripCraftError as e:
        raise to_http_exception(e)


@router.post("/trips/{trip_id}/generate", response_model=GenerationResult)
async def generate_trip(trip_id: str, planner: ItineraryPlanner = Depends(get_planner)):
    """Generate the itinerary of a draft trip"""
    logger.info(f"Generation requested for trip {trip_id}")
    try:
        return await planner.generate(trip_id)
    except TripCraftError as e:
        raise to_http_exception(e)


@router.post("/trips/{trip_id}/validate", response_model=ValidationReport)
async def validate_trip(trip_id: str, validator: Validator = Depends(get_validator)):
    try:
        return await validator.validate_trip(trip_id)
    except TripCraftError as e:
        raise to_http_exception(e)


@router.post("/trips/{trip_id}/present", response_model=PresentationResult)
async def present_trip(trip_id: str, presenter: Presenter = Depends(get_presenter)):
    """Backfill missing day summaries and item copy"""
    try:
        return await presenter.present(trip_id)
    except TripCraftError as e:
        raise to_http_exception(e)


@router.post("/trips/{trip_id}/edit", response_model=EditResult)
async def edit_trip(
    trip_id: str,
    request: EditRequest,
    resolver: EditResolver = Depends(get_edit_resolver),
):
    """Apply a free-text edit such as "swap the museum on day 2 for a park" """
    try:
        return await resolver.apply(trip_id, request.edit_request)
    except TripCraftError as e:
        raise to_http_exception(e)


@router.post("/trips/{trip_id}/days/{day_number}/logistics", response_model=LogisticsResponse)
async def calculate_logistics(
    trip_id: str,
    day_number: int,
    store: TripStore = Depends(get_trip_store),
    logistics: LogisticsCalculator = Depends(get_logistics),
):
    """Recompute the transfers of one day"""
    try:
        trip = await store.load_trip_view(trip_id)
        day = next((d for d in trip.days if d.day_number == day_number), None)
        if day is None:
            raise NotFoundError("TripDay", f"{trip_id}/day {day_number}")
        transfers = await logistics.calculate_day(day.id)
    except TripCraftError as e:
        raise to_http_exception(e)
    return LogisticsResponse(day_id=day.id, day_number=day_number, transfers=transfers)


@router.post("/trips/{trip_id}/hotels/rank", response_model=RankHotelsResponse)
async def rank_hotels(
    trip_id: str,
    request: RankHotelsRequest,
    ranker: HotelRanker = Depends(get_hotel_ranker),
):
    try:
        budget_band = request.budget_band.value if request.budget_band else None
        hotels = await ranker.rank(trip_id, budget_band)
    except TripCraftError as e:
        raise to_http_exception(e)
    selected = next((hotel for hotel in hotels if hotel.is_selected), None)
    return RankHotelsResponse(trip_id=trip_id, hotels=hotels, selected=selected)


@router.post("/durations/estimate", response_model=DurationEstimate)
async def estimate_duration(
    request: DurationEstimateBody,
    estimator: DurationEstimator = Depends(get_duration_estimator),
):
    """Visit duration for one place and traveler profile"""
    try:
        return await estimator.estimate(
            DurationEstimateRequest(
                place_id=request.place_id,
                place_name=request.place_name,
                place_type=request.place_type,
                pace=request.pace,
                interests=request.interests,
                target_date=request.date,
                reference_url=request.website_url,
            )
        )
    except TripCraftError as e:
        raise to_http_exception(e)
