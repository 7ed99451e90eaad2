"""
Logistics calculator: transfer pairs, caching and per-day replacement
"""

import pytest
from sqlalchemy import select

from tripcraft.core.trip_store import TripStore
from tripcraft.models.db_models import Transfer
from tripcraft.models.schemas import RunStats
from tripcraft.services.logistics import LogisticsCalculator, time_bucket_for

from builders import item, seed_trip
from fakes import FakePlaceProvider

GEO_A = {"lat": 38.69, "lng": -9.21}
GEO_B = {"lat": 38.71, "lng": -9.13}
GEO_C = {"lat": 38.72, "lng": -9.15}


async def seed_day(session_factory, items):
    trip_id = await seed_trip(session_factory, days=[{"day_number": 1, "items": items}])
    trip = await TripStore(session_factory).load_trip_view(trip_id)
    return trip.days[0]


@pytest.mark.parametrize(
    "slot,bucket",
    [("morning", "08-12"), ("afternoon", "12-16"), ("evening", "16-20"), ("night", "20-08"), (None, "20-08")],
)
def test_time_bucket_for(slot, bucket):
    assert time_bucket_for(slot) == bucket


class TestLogisticsCalculator:
    @pytest.mark.asyncio
    async def test_consecutive_pairs_become_transfers(self, session_factory, cache):
        day = await seed_day(
            session_factory,
            [
                item("morning", "activity", "Belem Tower", "p-a", geo=GEO_A),
                item("afternoon", "meal", "Time Out Market", "p-b", meal_type="lunch", geo=GEO_B),
                item("evening", "activity", "Miradouro", "p-c", geo=GEO_C),
            ],
        )
        provider = FakePlaceProvider(default_route_seconds=1250)
        calculator = LogisticsCalculator(session_factory, cache, provider=provider)

        transfers = await calculator.calculate_day(day.id)

        assert [(t.from_place_id, t.to_place_id) for t in transfers] == [("p-a", "p-b"), ("p-b", "p-c")]
        assert all(t.eta_min == 21 for t in transfers)
        assert all(t.mode == "driving" for t in transfers)

        async with session_factory() as session:
            stored = (await session.execute(select(Transfer).where(Transfer.day_id == day.id))).scalars().all()
        assert len(stored) == 2

    @pytest.mark.asyncio
    async def test_second_run_is_served_from_cache(self, session_factory, cache):
        day = await seed_day(
            session_factory,
            [
                item("morning", "activity", "Belem Tower", "p-a", geo=GEO_A),
                item("afternoon", "activity", "Jeronimos", "p-b", geo=GEO_B),
            ],
        )
        provider = FakePlaceProvider()
        calculator = LogisticsCalculator(session_factory, cache, provider=provider)

        first = await calculator.calculate_day(day.id)
        calls_after_first = provider.calls["get_route"]
        stats = RunStats()
        second = await calculator.calculate_day(day.id, stats=stats)

        assert provider.calls["get_route"] == calls_after_first
        assert [(t.eta_min, t.polyline) for t in second] == [(t.eta_min, t.polyline) for t in first]
        assert stats.cache_hits == 1
        assert stats.matrix_calls == 0

    @pytest.mark.asyncio
    async def test_items_without_place_or_geo_are_skipped(self, session_factory, cache):
        day = await seed_day(
            session_factory,
            [
                item("morning", "activity", "Belem Tower", "p-a", geo=GEO_A),
                item("afternoon", "activity", "Unknown cafe", None),
                item("evening", "activity", "No coordinates", "p-c"),
                item("night", "activity", "Fado house", "p-d", geo=GEO_C),
            ],
        )
        provider = FakePlaceProvider()
        calculator = LogisticsCalculator(session_factory, cache, provider=provider)

        transfers = await calculator.calculate_day(day.id)

        assert transfers == []
        assert provider.calls["get_route"] == 0

    @pytest.mark.asyncio
    async def test_repeated_pair_yields_one_transfer(self, session_factory, cache):
        day = await seed_day(
            session_factory,
            [
                item("morning", "activity", "Belem Tower", "p-a", geo=GEO_A),
                item("afternoon", "activity", "Jeronimos", "p-b", geo=GEO_B),
                item("evening", "activity", "Belem Tower", "p-a", geo=GEO_A),
                item("night", "activity", "Jeronimos", "p-b", geo=GEO_B),
            ],
        )
        calculator = LogisticsCalculator(session_factory, cache, provider=FakePlaceProvider())

        transfers = await calculator.calculate_day(day.id)

        pairs = [(t.from_place_id, t.to_place_id) for t in transfers]
        assert pairs == [("p-a", "p-b"), ("p-b", "p-a")]
        item_ids = {i.place_id for i in day.items}
        assert all(t.from_place_id in item_ids and t.to_place_id in item_ids for t in transfers)

    @pytest.mark.asyncio
    async def test_provider_failure_skips_pair_and_replaces_old_set(self, session_factory, cache):
        trip_id = await seed_trip(
            session_factory,
            days=[
                {
                    "day_number": 1,
                    "items": [
                        item("morning", "activity", "Belem Tower", "p-a", geo=GEO_A),
                        item("afternoon", "activity", "Jeronimos", "p-b", geo=GEO_B),
                    ],
                    "transfers": [
                        {"from_place_id": "p-old", "to_place_id": "p-older", "eta_min": 5},
                    ],
                }
            ],
        )
        day = (await TripStore(session_factory).load_trip_view(trip_id)).days[0]
        provider = FakePlaceProvider()
        provider.failing_routes = True
        calculator = LogisticsCalculator(session_factory, cache, provider=provider)

        transfers = await calculator.calculate_day(day.id)

        assert transfers == []
        reloaded = (await TripStore(session_factory).load_trip_view(trip_id)).days[0]
        assert reloaded.transfers == []
