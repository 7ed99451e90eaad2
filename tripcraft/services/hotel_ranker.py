"""
Hotel Ranker - Scores candidate hotels against the planned days

Each hotel is scored on average driving time to the day centroids (mean
position of a day's activities, with coordinates looked up through place
details for activities stored without them), closeness to the budget's price
level, and guest rating. The single best hotel is selected.
"""

from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from tripcraft.core.cache import CacheLayer, RouteKey
from tripcraft.core.exceptions import UpstreamProviderError
from tripcraft.core.logging_config import get_logger
from tripcraft.core.trip_store import TripStore
from tripcraft.models.db_models import TripHotel
from tripcraft.models.schemas import GeoPoint, HotelView, ItemKind, RunStats, TripDayView
from tripcraft.tools.place_provider import PlaceProvider, get_place_provider

logger = get_logger(__name__)

DISTANCE_WEIGHT = 0.4
PRICE_WEIGHT = 0.3
RATING_WEIGHT = 0.3

BUDGET_PRICE_LEVELS = {"low": 1, "medium": 2, "high": 3, "luxury": 4}
DEFAULT_PRICE_LEVEL = 2
DEFAULT_RATING = 3.0
# Used when no day centroid could be reached
DEFAULT_AVG_MINUTES = 30.0

HOTEL_ROUTE_BUCKET = "08-12"
HOTEL_ROUTE_MODE = "driving"


def target_price_level(budget_band: Optional[str]) -> int:
    band = getattr(budget_band, "value", budget_band)
    return BUDGET_PRICE_LEVELS.get(band or "", DEFAULT_PRICE_LEVEL)


def day_centroids(days: List[TripDayView]) -> Dict[str, GeoPoint]:
    """Mean lat/lng of each day's geocoded activities; days without any are left out"""
    centroids = {}
    for day in days:
        points = [
            item.place_data.geo
            for item in day.items
            if item.kind == ItemKind.ACTIVITY.value and item.place_data.geo is not None
        ]
        if not points:
            continue
        centroids[f"day{day.day_number}"] = GeoPoint(
            lat=sum(point.lat for point in points) / len(points),
            lng=sum(point.lng for point in points) / len(points),
        )
    return centroids


def score_hotel(
    avg_minutes: float,
    price_level: Optional[int],
    rating: Optional[float],
    budget_band: Optional[str],
) -> float:
    distance_score = max(0.0, 1 - avg_minutes / 60)
    price_diff = abs(target_price_level(budget_band) - (price_level if price_level is not None else DEFAULT_PRICE_LEVEL))
    price_score = max(0.0, 1 - price_diff / 3)
    rating_score = (rating or DEFAULT_RATING) / 5
    return DISTANCE_WEIGHT * distance_score + PRICE_WEIGHT * price_score + RATING_WEIGHT * rating_score


def build_reason(
    avg_minutes: float,
    price_level: Optional[int],
    rating: Optional[float],
    budget_band: Optional[str],
) -> str:
    reasons = []
    if avg_minutes < 15:
        reasons.append("Very close to planned activities")
    elif avg_minutes < 25:
        reasons.append("Good proximity to activities")

    price_diff = abs(target_price_level(budget_band) - (price_level if price_level is not None else DEFAULT_PRICE_LEVEL))
    if price_diff == 0:
        reasons.append("Perfect match for your budget")
    elif price_diff == 1:
        reasons.append("Within budget range")

    if rating and rating >= 4.5:
        reasons.append("Excellent guest ratings")
    elif rating and rating >= 4.0:
        reasons.append("Great guest reviews")

    return "; ".join(reasons) if reasons else "Good option for your trip"


def _round_minutes(seconds: float) -> int:
    # Half-up, so 90 seconds is 2 minutes
    return int(seconds / 60 + 0.5)


class HotelRanker:
    """Scores, explains and selects hotels for a trip"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheLayer,
        provider: Optional[PlaceProvider] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self._provider = provider
        self.store = TripStore(session_factory)

    @property
    def provider(self) -> PlaceProvider:
        return self._provider or get_place_provider()

    async def rank(
        self,
        trip_id: str,
        budget_band: Optional[str] = None,
        stats: Optional[RunStats] = None,
    ) -> List[HotelView]:
        trip = await self.store.load_trip_view(trip_id)
        if not trip.hotels:
            logger.info(f"No hotels to rank for trip {trip_id}")
            return []

        if budget_band is None and trip.intent is not None:
            budget_band = trip.intent.budget_band

        days = await self._locate_activities(trip.days, stats)
        centroids = day_centroids(days)
        logger.info(
            f"Ranking {len(trip.hotels)} hotels against {len(centroids)} day centroids for trip {trip_id}"
        )

        ranked: List[HotelView] = []
        for hotel in trip.hotels:
            distances = await self._distances(hotel, centroids, stats)
            avg_minutes = (
                sum(distances.values()) / len(distances) if distances else DEFAULT_AVG_MINUTES
            )
            ranked.append(
                hotel.model_copy(
                    update={
                        "score": score_hotel(avg_minutes, hotel.price_level, hotel.rating, budget_band),
                        "reason": build_reason(avg_minutes, hotel.price_level, hotel.rating, budget_band),
                        "distance_to_day_centroid": distances,
                        "is_selected": False,
                    }
                )
            )

        # Strictly greater keeps the first-seen hotel on ties
        best_index = 0
        for index, hotel in enumerate(ranked):
            if hotel.score > ranked[best_index].score:
                best_index = index
        ranked[best_index] = ranked[best_index].model_copy(update={"is_selected": True})

        await self._persist(trip_id, ranked)
        logger.info(
            f"Selected hotel {ranked[best_index].name} (score {ranked[best_index].score:.2f}) for trip {trip_id}"
        )
        return ranked

    async def _locate_activities(
        self, days: List[TripDayView], stats: Optional[RunStats]
    ) -> List[TripDayView]:
        """Fill in coordinates from place details for activities that have a place_id but no geo"""
        located = []
        for day in days:
            items = []
            for item in day.items:
                if item.kind == ItemKind.ACTIVITY.value and item.place_id and item.place_data.geo is None:
                    try:
                        details = await self.cache.get_place_details(self.provider, item.place_id, stats=stats)
                    except UpstreamProviderError as e:
                        logger.warning(f"No location for {item.place_name or item.place_id}: {e}")
                    else:
                        if details.geo is not None:
                            item = item.model_copy(update={"place_data": item.place_data.merged_with(geo=details.geo)})
                items.append(item)
            located.append(day.model_copy(update={"items": items}))
        return located

    async def _distances(
        self,
        hotel: HotelView,
        centroids: Dict[str, GeoPoint],
        stats: Optional[RunStats],
    ) -> Dict[str, int]:
        distances: Dict[str, int] = {}
        if hotel.geo is None:
            return distances

        for day_key, centroid in centroids.items():
            key = RouteKey(
                origin_place_id=hotel.place_id,
                destination_place_id=f"geo:{centroid.lat:.5f},{centroid.lng:.5f}",
                mode=HOTEL_ROUTE_MODE,
                time_bucket=HOTEL_ROUTE_BUCKET,
            )
            try:
                route = await self.cache.get_route(
                    self.provider, key, hotel.geo, centroid, include_path=False, stats=stats
                )
            except UpstreamProviderError as e:
                logger.warning(f"No route from {hotel.name} to {day_key}: {e}")
                continue

            seconds = route.get("duration_seconds")
            if seconds is None:
                seconds = (route.get("eta_min") or 0) * 60
            distances[day_key] = _round_minutes(seconds)
        return distances

    async def _persist(self, trip_id: str, ranked: List[HotelView]) -> None:
        by_id = {hotel.id: hotel for hotel in ranked}
        async with self.session_factory() as session:
            result = await session.execute(select(TripHotel).where(TripHotel.trip_id == trip_id))
            for row in result.scalars():
                hotel = by_id.get(row.id)
                if hotel is None:
                    row.is_selected = False
                    continue
                row.score = hotel.score
                row.reason = hotel.reason
                row.distance_to_day_centroid = hotel.distance_to_day_centroid
                row.is_selected = hotel.is_selected
            await session.commit()
