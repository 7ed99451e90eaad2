"""
Itinerary Planner - Orchestrates generation of a draft trip

Generation runs as a fixed sequence of steps, each depending on what the
previous one persisted:

1. Trip length from the intent dates (inclusive)
2. Activity, restaurant and hotel candidates from the place provider
3. Hotel details, persisted unscored
4. Duration estimates for the leading activity candidates
5. One model call producing the day-by-day schedule
6. Days, timeline items and alternatives
7. Transfers for every day
8. Hotel ranking
9. Validation
10. Presentation copy
11. draft -> active with run telemetry

Steps 3 to 10 isolate per-item failures. A schedule that cannot be parsed in
step 5 aborts the run; the trip stays draft and can be generated again.
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from tripcraft.core.cache import CacheLayer
from tripcraft.core.config import settings
from tripcraft.core.exceptions import (
    ItineraryParseError,
    LLMStructuredOutputError,
    NotFoundError,
    UpstreamProviderError,
)
from tripcraft.core.llm_service import BaseLLMService, get_llm_service
from tripcraft.core.logging_config import get_logger
from tripcraft.core.prompt_manager import PromptManager, PromptType, prompt_manager
from tripcraft.core.trip_store import TripStore
from tripcraft.models.db_models import Alternative, TimelineItem, TripDay, TripHotel
from tripcraft.models.schemas import (
    DEFAULT_DURATION_RANGE,
    DurationEstimate,
    DurationEstimateRequest,
    DurationSource,
    EstimateSource,
    GenerationResult,
    ItemKind,
    PlaceData,
    PlaceDetails,
    PlaceSummary,
    RunStats,
    ScheduleDay,
    ScheduleItem,
    TripIntentData,
    TripStatus,
)
from tripcraft.services.duration_estimator import DurationEstimator
from tripcraft.services.hotel_ranker import HotelRanker
from tripcraft.services.logistics import LogisticsCalculator
from tripcraft.services.presenter import Presenter
from tripcraft.services.validator import Validator
from tripcraft.tools.place_provider import PlaceProvider, get_place_provider

logger = get_logger(__name__)

HOTEL_DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "geometry",
    "rating",
    "user_ratings_total",
    "price_level",
    "formatted_phone_number",
    "website",
    "photos",
]
MAX_ALTERNATIVES = 3
TELEMETRY_VERSION = 1

# Logged and skipped during steps 3 to 10; anything else aborts the run
RECOVERABLE_ERRORS = (UpstreamProviderError, LLMStructuredOutputError, NotFoundError)

_ESTIMATE_SOURCES = {
    EstimateSource.CACHE: DurationSource.CACHE.value,
    EstimateSource.MODEL: DurationSource.GPT_ESTIMATE.value,
    EstimateSource.DEFAULT: DurationSource.DEFAULT.value,
}


class CandidatePool:
    """Places the schedule may draw from, with lookups by id and exact name"""

    def __init__(self, activities: List[PlaceSummary], restaurants: List[PlaceSummary]):
        self.activities = activities
        self.restaurants = restaurants
        self._by_id: Dict[str, PlaceSummary] = {}
        self._by_name: Dict[str, PlaceSummary] = {}
        for place in activities + restaurants:
            self._by_id.setdefault(place.place_id, place)
            self._by_name.setdefault(place.name, place)

    def by_id(self, place_id: Optional[str]) -> Optional[PlaceSummary]:
        return self._by_id.get(place_id) if place_id else None

    def by_name(self, name: Optional[str]) -> Optional[PlaceSummary]:
        return self._by_name.get(name) if name else None

    def alternatives_for(self, kind: str, chosen_place_id: Optional[str]) -> List[PlaceSummary]:
        pool = self.restaurants if kind == ItemKind.MEAL.value else self.activities
        return [p for p in pool if p.place_id != chosen_place_id][:MAX_ALTERNATIVES]


def summary_place_data(place: PlaceSummary) -> PlaceData:
    return PlaceData(
        rating=place.rating,
        user_ratings_total=place.user_ratings_total,
        address=place.address,
        geo=place.geo,
    )


def alternative_place_data(place: PlaceSummary) -> PlaceData:
    return PlaceData(
        rating=place.rating,
        user_ratings_total=place.user_ratings_total,
        address=place.address,
    )


def parse_schedule(raw: Any, num_days: int) -> List[ScheduleDay]:
    """
    Validate the model's schedule.

    Days outside 1..num_days and repeated day numbers are dropped, and day
    numbers the model skipped come back as empty days without a summary, so
    the result always covers 1..num_days. Raises ItineraryParseError when the
    model gave no usable day at all.
    """
    if isinstance(raw, dict) and isinstance(raw.get("days"), list):
        raw = raw["days"]
    if not isinstance(raw, list):
        raise ItineraryParseError("Schedule must be a JSON array of days")

    try:
        days = [ScheduleDay.model_validate(day) for day in raw]
    except ValidationError as e:
        raise ItineraryParseError(f"Schedule did not validate: {e}") from e

    schedule: Dict[int, ScheduleDay] = {}
    for day in days:
        if day.day_number > num_days:
            logger.warning(f"Dropping day {day.day_number}: trip has {num_days} days")
            continue
        if day.day_number in schedule:
            logger.warning(f"Dropping repeated day {day.day_number}")
            continue
        schedule[day.day_number] = day

    if not schedule:
        raise ItineraryParseError("Schedule contained no usable days")

    missing = [number for number in range(1, num_days + 1) if number not in schedule]
    if missing:
        logger.warning(f"Schedule skipped days {missing}; adding them empty")
    return [schedule.get(number) or ScheduleDay(day_number=number) for number in range(1, num_days + 1)]


class ItineraryPlanner:
    """Generates days, items, transfers and hotel picks for a draft trip"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheLayer,
        llm_service: Optional[BaseLLMService] = None,
        provider: Optional[PlaceProvider] = None,
        prompts: Optional[PromptManager] = None,
        fanout: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.store = TripStore(session_factory)
        self._llm_service = llm_service
        self._provider = provider
        self.prompts = prompts or prompt_manager
        self.fanout = max(1, fanout or settings.PLANNER_FANOUT)

        self.estimator = DurationEstimator(cache, llm_service=llm_service, prompts=self.prompts)
        self.logistics = LogisticsCalculator(session_factory, cache, provider=provider)
        self.hotel_ranker = HotelRanker(session_factory, cache, provider=provider)
        self.validator = Validator(session_factory)
        self.presenter = Presenter(session_factory, llm_service=llm_service, prompts=self.prompts)

    @property
    def llm_service(self) -> BaseLLMService:
        return self._llm_service or get_llm_service()

    @property
    def provider(self) -> PlaceProvider:
        return self._provider or get_place_provider()

    async def generate(self, trip_id: str) -> GenerationResult:
        """Run every generation step for a draft trip and activate it"""
        token = await self.store.claim_generation(trip_id)
        stats = RunStats()

        try:
            result = await self._run(trip_id, stats)
            await self.store.complete_generation(
                trip_id, token, stats.sources(), stats.debug(TELEMETRY_VERSION)
            )
        except Exception:
            logger.error(f"Generation failed for trip {trip_id}; trip stays draft")
            await self.store.release_generation(trip_id, token)
            raise

        result.status = TripStatus.ACTIVE
        result.sources = stats.sources()
        result.debug = stats.debug(TELEMETRY_VERSION)
        logger.info(
            f"Generated trip {trip_id}: {result.day_count} days, {result.hotel_count} hotels, "
            f"sources={result.sources} debug={result.debug}"
        )
        return result

    async def _run(self, trip_id: str, stats: RunStats) -> GenerationResult:
        # 1. Trip length
        intent = await self.store.get_intent(trip_id)
        num_days = intent.trip_length_days
        city = intent.main_destination.city
        logger.info(f"Generating {num_days}-day itinerary for {city} (trip {trip_id})")

        # 2. Candidates
        activities = await self._search(
            f"tourist attractions in {city}", settings.ACTIVITY_CANDIDATES, stats
        )
        restaurants = await self._search(
            f"best restaurants in {city}", settings.RESTAURANT_CANDIDATES, stats
        )
        hotel_candidates = await self._search(f"hotels in {city}", settings.HOTEL_CANDIDATES, stats)
        logger.info(
            f"Candidates for {city}: {len(activities)} activities, "
            f"{len(restaurants)} restaurants, {len(hotel_candidates)} hotels"
        )

        # 3. Hotel details
        hotel_details = await self._fan_out(
            "hotel details",
            hotel_candidates,
            lambda hotel: self.cache.get_place_details(
                self.provider, hotel.place_id, HOTEL_DETAIL_FIELDS, stats=stats
            ),
        )
        hotels = [details for details in hotel_details if details is not None]
        await self._persist_hotels(trip_id, hotels)

        # 4. Duration estimates
        estimates = await self._estimate_durations(
            intent, activities[: settings.DURATION_ESTIMATE_LIMIT], stats
        )

        # 5. Schedule
        schedule = await self._request_schedule(intent, activities, restaurants, estimates, stats)

        # 6. Days and items
        pool = CandidatePool(activities, restaurants)
        day_ids = await self._persist_days(trip_id, intent, schedule, pool, estimates)

        # 7. Transfers
        for day_id in day_ids:
            try:
                await self.logistics.calculate_day(day_id, stats=stats)
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"Logistics failed for day {day_id}: {e}")

        # 8. Hotels
        try:
            await self.hotel_ranker.rank(trip_id, intent.budget_band.value, stats=stats)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Hotel ranking failed for trip {trip_id}: {e}")

        # 9. Validation
        report = await self.validator.validate_trip(trip_id)

        # 10. Presentation
        try:
            await self.presenter.present(trip_id, stats=stats)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Presentation failed for trip {trip_id}: {e}")

        return GenerationResult(
            trip_id=trip_id,
            status=TripStatus.DRAFT,
            day_count=len(day_ids),
            hotel_count=len(hotels),
            notices=report.notices,
        )

    async def _search(self, query: str, limit: int, stats: RunStats) -> List[PlaceSummary]:
        stats.maps_calls += 1
        results = await self.provider.text_search(query, limit=limit)
        return results[:limit]

    async def _fan_out(
        self,
        label: str,
        items: Sequence[Any],
        func: Callable[[Any], Awaitable[Any]],
    ) -> List[Any]:
        """
        Run func over items with at most `fanout` calls in flight.

        A recoverable error for one item is logged and yields None in its
        position; anything else propagates.
        """
        semaphore = asyncio.Semaphore(self.fanout)

        async def guarded(item):
            async with semaphore:
                return await func(item)

        results = await asyncio.gather(*(guarded(item) for item in items), return_exceptions=True)

        collected = []
        for item, result in zip(items, results):
            if isinstance(result, RECOVERABLE_ERRORS):
                logger.warning(f"Skipping {label} for {getattr(item, 'name', item)}: {result}")
                collected.append(None)
            elif isinstance(result, BaseException):
                raise result
            else:
                collected.append(result)
        return collected

    async def _persist_hotels(self, trip_id: str, hotels: List[PlaceDetails]) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                # Hotels left over from an earlier failed run are replaced
                await session.execute(delete(TripHotel).where(TripHotel.trip_id == trip_id))
                session.add_all(
                    TripHotel(
                        trip_id=trip_id,
                        place_id=hotel.place_id,
                        name=hotel.name,
                        address=hotel.address,
                        geo=hotel.geo.model_dump() if hotel.geo else None,
                        rating=hotel.rating,
                        user_ratings_total=hotel.user_ratings_total,
                        price_level=hotel.price_level,
                        phone=hotel.phone,
                        website=hotel.website,
                        photos=[photo.model_dump() for photo in hotel.photos],
                        order_index=index,
                        is_selected=False,
                    )
                    for index, hotel in enumerate(hotels)
                )
        logger.info(f"Saved {len(hotels)} hotels for trip {trip_id}")

    async def _estimate_durations(
        self,
        intent: TripIntentData,
        activities: List[PlaceSummary],
        stats: RunStats,
    ) -> Dict[str, DurationEstimate]:
        estimates = await self._fan_out(
            "duration estimate",
            activities,
            lambda activity: self.estimator.estimate(
                DurationEstimateRequest(
                    place_id=activity.place_id,
                    place_name=activity.name,
                    place_type=activity.types[0] if activity.types else "tourist_attraction",
                    pace=intent.pace,
                    interests=intent.interests,
                    target_date=intent.start_date,
                ),
                stats=stats,
            ),
        )
        return {
            activity.place_id: estimate
            for activity, estimate in zip(activities, estimates)
            if estimate is not None
        }

    async def _request_schedule(
        self,
        intent: TripIntentData,
        activities: List[PlaceSummary],
        restaurants: List[PlaceSummary],
        estimates: Dict[str, DurationEstimate],
        stats: RunStats,
    ) -> List[ScheduleDay]:
        activity_lines = []
        for activity in activities:
            low, high = (
                estimates[activity.place_id].duration_min
                if activity.place_id in estimates
                else DEFAULT_DURATION_RANGE
            )
            activity_lines.append(f"- {activity.place_id}: {activity.name} ({low}-{high} min)")
        restaurant_lines = [f"- {r.place_id}: {r.name}" for r in restaurants]

        prompt = self.prompts.get_prompt(
            PromptType.ITINERARY_SCHEDULE,
            num_days=intent.trip_length_days,
            city=intent.main_destination.city,
            start_date=intent.start_date.isoformat(),
            travelers=intent.travelers,
            budget_band=intent.budget_band.value,
            interests=intent.interests or ["general tourism"],
            pace=intent.pace.value,
            activities="\n".join(activity_lines) or "(none found)",
            restaurants="\n".join(restaurant_lines) or "(none found)",
        )
        messages = [
            {"role": "system", "content": prompt},
            {"role": "user", "content": "Create the itinerary."},
        ]

        stats.gpt_calls += 1
        try:
            raw = await self.llm_service.structured_completion(
                messages,
                self.prompts.get_schema(PromptType.ITINERARY_SCHEDULE),
                max_tokens=4000,
            )
        except (LLMStructuredOutputError, UpstreamProviderError) as e:
            raise ItineraryParseError(f"Failed to generate valid itinerary: {e}") from e

        return parse_schedule(raw, intent.trip_length_days)

    def _resolve_duration(
        self,
        item: ScheduleItem,
        place_id: Optional[str],
        estimates: Dict[str, DurationEstimate],
    ):
        if item.estimated_duration_min:
            return list(item.estimated_duration_min), DurationSource.GPT_ESTIMATE.value, None

        estimate = estimates.get(place_id) if place_id else None
        if estimate is None:
            return list(DEFAULT_DURATION_RANGE), DurationSource.DEFAULT.value, None

        return list(estimate.duration_min), _ESTIMATE_SOURCES[estimate.source], estimate

    def _build_item(
        self,
        item: ScheduleItem,
        order_index: int,
        pool: CandidatePool,
        estimates: Dict[str, DurationEstimate],
    ) -> TimelineItem:
        place = pool.by_id(item.place_id)
        resolved_at_request = place is not None
        if place is None:
            place = pool.by_name(item.place_name)
            if place is None:
                logger.info(f"'{item.place_name}' is not among the candidates; leaving it unresolved")

        place_id = place.place_id if place else None
        duration, duration_source, estimate = self._resolve_duration(item, place_id, estimates)

        row = TimelineItem(
            slot=item.slot.value,
            kind=item.kind.value,
            meal_type=item.meal_type,
            place_id=place_id,
            place_name=item.place_name,
            estimated_duration_min=duration,
            duration_source=duration_source,
            place_data=summary_place_data(place) if place else PlaceData(),
            order_index=order_index,
            confidence=estimate.confidence if estimate else None,
            assumptions=estimate.assumptions if estimate else [],
            risks=estimate.risks if estimate else [],
        )

        if not resolved_at_request:
            row.alternatives = [
                Alternative(
                    place_id=alternative.place_id,
                    place_name=alternative.name,
                    order_index=index,
                    place_data=alternative_place_data(alternative),
                )
                for index, alternative in enumerate(pool.alternatives_for(item.kind.value, place_id))
            ]
        return row

    async def _persist_days(
        self,
        trip_id: str,
        intent: TripIntentData,
        schedule: List[ScheduleDay],
        pool: CandidatePool,
        estimates: Dict[str, DurationEstimate],
    ) -> List[str]:
        destination = intent.main_destination
        async with self.session_factory() as session:
            async with session.begin():
                # Days left over from an earlier failed run are replaced
                previous = await session.execute(
                    select(TripDay)
                    .where(TripDay.trip_id == trip_id)
                    .options(
                        selectinload(TripDay.items).selectinload(TimelineItem.alternatives),
                        selectinload(TripDay.transfers),
                    )
                )
                for day in previous.scalars():
                    await session.delete(day)
                await session.flush()

                days = []
                for scheduled in schedule:
                    day = TripDay(
                        trip_id=trip_id,
                        day_number=scheduled.day_number,
                        date=intent.start_date + timedelta(days=scheduled.day_number - 1),
                        city=destination.city,
                        tzid=destination.tzid or "UTC",
                        summary=scheduled.summary or None,
                        items=[
                            self._build_item(item, index, pool, estimates)
                            for index, item in enumerate(scheduled.timeline)
                        ],
                    )
                    session.add(day)
                    days.append(day)
                await session.flush()
                day_ids = [day.id for day in days]

        logger.info(f"Saved {len(day_ids)} days for trip {trip_id}")
        return day_ids
