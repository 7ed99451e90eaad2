"""
Logistics Calculator - Transfers between consecutive stops of a day

For each consecutive pair of items that both have a place_id and coordinates,
a driving transfer is looked up in the route cache or fetched from the
provider. A day's transfer set is always replaced as a whole.
"""

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from tripcraft.core.cache import CacheLayer, RouteKey
from tripcraft.core.exceptions import NotFoundError, UpstreamProviderError
from tripcraft.core.logging_config import get_logger
from tripcraft.models.db_models import TimelineItem, Transfer, TripDay
from tripcraft.models.schemas import RunStats, TimelineItemView, TransferView
from tripcraft.tools.place_provider import PlaceProvider, get_place_provider

logger = get_logger(__name__)

TRAVEL_MODE = "driving"

_TIME_BUCKETS = {
    "morning": "08-12",
    "afternoon": "12-16",
    "evening": "16-20",
}


def time_bucket_for(slot: Optional[str]) -> str:
    """Departure time bucket derived from the slot of the stop being left"""
    return _TIME_BUCKETS.get(slot or "", "20-08")


class LogisticsCalculator:
    """Computes and persists a day's transfers"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheLayer,
        provider: Optional[PlaceProvider] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self._provider = provider

    @property
    def provider(self) -> PlaceProvider:
        return self._provider or get_place_provider()

    async def compute_transfers(
        self, items: List[TimelineItemView], stats: Optional[RunStats] = None
    ) -> List[TransferView]:
        """Transfers for consecutive routable pairs, in item order"""
        ordered = sorted(items, key=lambda item: item.order_index)
        transfers: List[TransferView] = []
        seen_pairs = set()

        for origin, destination in zip(ordered, ordered[1:]):
            if not self._is_routable(origin) or not self._is_routable(destination):
                logger.debug(
                    f"Skipping transfer {origin.place_name} -> {destination.place_name}: missing place_id or geo"
                )
                continue

            pair = (origin.place_id, destination.place_id)
            if pair in seen_pairs:
                continue

            key = RouteKey(
                origin_place_id=origin.place_id,
                destination_place_id=destination.place_id,
                mode=TRAVEL_MODE,
                time_bucket=time_bucket_for(origin.slot),
            )
            try:
                route = await self.cache.get_route(
                    self.provider,
                    key,
                    origin.place_data.geo,
                    destination.place_data.geo,
                    include_path=True,
                    stats=stats,
                )
            except UpstreamProviderError as e:
                logger.warning(
                    f"Route {origin.place_name} -> {destination.place_name} unavailable, skipping: {e}"
                )
                continue

            seen_pairs.add(pair)
            transfers.append(
                TransferView(
                    from_place_id=origin.place_id,
                    to_place_id=destination.place_id,
                    mode=TRAVEL_MODE,
                    eta_min=route.get("eta_min"),
                    polyline=route.get("polyline"),
                )
            )

        return transfers

    async def calculate_day(
        self, day_id: str, stats: Optional[RunStats] = None
    ) -> List[TransferView]:
        """Recompute a day's transfers and replace the stored set in one transaction"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(TripDay)
                .where(TripDay.id == day_id)
                .options(selectinload(TripDay.items).selectinload(TimelineItem.alternatives))
            )
            day = result.scalar_one_or_none()
            if day is None:
                raise NotFoundError("TripDay", day_id)
            items = [TimelineItemView.model_validate(item) for item in day.items]

        transfers = await self.compute_transfers(items, stats=stats)

        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(Transfer).where(Transfer.day_id == day_id))
                session.add_all(
                    Transfer(day_id=day_id, order_index=index, **transfer.model_dump())
                    for index, transfer in enumerate(transfers)
                )

        logger.info(f"Stored {len(transfers)} transfers for day {day_id}")
        return transfers

    @staticmethod
    def _is_routable(item: TimelineItemView) -> bool:
        return bool(item.place_id) and item.place_data.geo is not None
