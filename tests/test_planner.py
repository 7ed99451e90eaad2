"""
Itinerary planner: schedule parsing and full generation runs against fakes
"""

from datetime import date

import pytest

from tripcraft.core.exceptions import (
    GenerationInProgressError,
    InvalidTripStateError,
    ItineraryParseError,
)
from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import TripStatus
from tripcraft.services.itinerary_planner import ItineraryPlanner, parse_schedule

from builders import seed_trip
from fakes import FakeLLM, FakePlaceProvider, place

DURATION_REPLY = {
    "duration_min": [60, 90],
    "confidence": 0.7,
    "assumptions": ["Regular opening hours"],
    "risks": [],
    "evidence_snippets": [],
    "reasoning": "Typical visit",
}

COPY_REPLY = {"description": "A Lisbon favourite.", "micro_copy": "Worth the trip", "tip": "Go early"}

SCHEDULE = [
    {
        "day_number": 1,
        "summary": "Riverside monuments",
        "timeline": [
            {"slot": "morning", "kind": "activity", "place_name": "Belem Tower", "place_id": "a1",
             "estimated_duration_min": [90, 150]},
            {"slot": "afternoon", "kind": "meal", "meal_type": "lunch", "place_name": "Time Out Market"},
            {"slot": "evening", "kind": "activity", "place_name": "Invented Viewpoint", "place_id": "made-up"},
        ],
    },
    {
        "day_number": 2,
        "summary": "Castle hill",
        "timeline": [
            {"slot": "morning", "kind": "activity", "place_name": "Sao Jorge Castle", "place_id": "a2"},
            {"slot": "afternoon", "kind": "meal", "meal_type": "lunch", "place_name": "Cervejaria Ramiro",
             "place_id": "r2"},
            {"slot": "evening", "kind": "meal", "meal_type": "dinner", "place_name": "Taberna da Rua",
             "place_id": "r3"},
        ],
    },
    {
        "day_number": 3,
        "summary": "Tiles and tarts",
        "timeline": [
            {"slot": "morning", "kind": "activity", "place_name": "Tile Museum", "place_id": "a3"},
            {"slot": "afternoon", "kind": "meal", "meal_type": "lunch", "place_name": "Time Out Market",
             "place_id": "r1"},
        ],
    },
    {"day_number": 4, "timeline": [{"slot": "morning", "kind": "activity", "place_name": "Extra"}]},
]


def lisbon_provider():
    provider = FakePlaceProvider(
        searches={
            "tourist attractions": [
                place("a1", "Belem Tower", 38.69, -9.21),
                place("a2", "Sao Jorge Castle", 38.71, -9.13),
                place("a3", "Tile Museum", 38.72, -9.11),
                place("a4", "Oceanarium", 38.76, -9.09),
            ],
            "best restaurants": [
                place("r1", "Time Out Market", 38.70, -9.14, types=["restaurant"]),
                place("r2", "Cervejaria Ramiro", 38.72, -9.13, types=["restaurant"]),
                place("r3", "Taberna da Rua", 38.71, -9.14, types=["restaurant"]),
            ],
            "hotels in": [
                place("h1", "Hotel Avenida", 38.71, -9.14, rating=4.4, price_level=2),
                place("h2", "Palace Lisboa", 38.73, -9.15, rating=4.8, price_level=4),
                place("h3", "Ghost Inn", 38.70, -9.13),
            ],
        }
    )
    provider.failing_details.add("h3")
    return provider


def fake_llm(schedule=SCHEDULE):
    return FakeLLM(
        {
            "duration": DURATION_REPLY,
            "schedule": schedule,
            "summary": "A day in Lisbon.",
            "copy": COPY_REPLY,
        }
    )


def planner(session_factory, cache, llm=None, provider=None):
    return ItineraryPlanner(
        session_factory,
        cache,
        llm_service=llm or fake_llm(),
        provider=provider or lisbon_provider(),
        fanout=1,
    )


class TestParseSchedule:
    def test_drops_days_beyond_trip_and_repeats(self):
        raw = [
            {"day_number": 2, "timeline": []},
            {"day_number": 1, "timeline": []},
            {"day_number": 2, "summary": "again", "timeline": []},
            {"day_number": 5, "timeline": []},
        ]
        days = parse_schedule(raw, num_days=2)
        assert [d.day_number for d in days] == [1, 2]
        assert days[1].summary is None

    def test_skipped_days_are_filled_empty(self):
        raw = [
            {"day_number": 1, "summary": "Arrival", "timeline": [
                {"slot": "morning", "kind": "activity", "place_name": "Belem Tower"}]},
            {"day_number": 3, "summary": "Departure", "timeline": []},
        ]
        days = parse_schedule(raw, num_days=3)

        assert [d.day_number for d in days] == [1, 2, 3]
        assert days[1].summary is None
        assert days[1].timeline == []
        assert days[2].summary == "Departure"

    def test_accepts_wrapped_days(self):
        days = parse_schedule({"days": [{"day_number": 1, "timeline": []}]}, num_days=1)
        assert len(days) == 1

    @pytest.mark.parametrize(
        "raw",
        [
            "not a schedule",
            [{"day_number": "first"}],
            [{"day_number": 9, "timeline": []}],
        ],
    )
    def test_unusable_schedules_raise(self, raw):
        with pytest.raises(ItineraryParseError):
            parse_schedule(raw, num_days=3)


class TestGeneration:
    @pytest.mark.asyncio
    async def test_three_day_trip_is_generated_and_activated(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")

        result = await planner(session_factory, cache).generate(trip_id)

        assert result.status == TripStatus.ACTIVE
        assert result.day_count == 3
        assert result.hotel_count == 2

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert trip.status == TripStatus.ACTIVE
        assert [d.day_number for d in trip.days] == [1, 2, 3]
        assert [d.date for d in trip.days] == [date(2025, 6, 1), date(2025, 6, 2), date(2025, 6, 3)]
        assert trip.days[0].tzid == "Europe/Lisbon"
        assert trip.generated_at is not None

    @pytest.mark.asyncio
    async def test_schedule_with_a_gap_still_yields_every_day(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        gapped = [day for day in SCHEDULE if day["day_number"] in (1, 3)]

        result = await planner(session_factory, cache, llm=fake_llm(gapped)).generate(trip_id)

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert result.day_count == 3
        assert [d.day_number for d in trip.days] == [1, 2, 3]
        assert [d.date for d in trip.days] == [date(2025, 6, 1), date(2025, 6, 2), date(2025, 6, 3)]
        assert trip.days[1].items == []
        # the presenter writes the summary the model left out
        assert trip.days[1].summary == "A day in Lisbon."

    @pytest.mark.asyncio
    async def test_items_are_resolved_against_candidates(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        await planner(session_factory, cache).generate(trip_id)

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        tower, market, invented = trip.days[0].items

        assert tower.place_id == "a1"
        assert tower.estimated_duration_min == [90, 150]
        assert tower.duration_source == "gpt_estimate"
        assert tower.alternatives == []

        # matched by exact name, so alternatives are offered
        assert market.place_id == "r1"
        assert [a.place_id for a in market.alternatives] == ["r2", "r3"]

        assert invented.place_id is None
        assert invented.place_name == "Invented Viewpoint"
        assert invented.estimated_duration_min == [120, 180]
        assert invented.duration_source == "default"
        assert [a.place_id for a in invented.alternatives] == ["a1", "a2", "a3"]

        castle = trip.days[1].items[0]
        assert castle.estimated_duration_min == [60, 90]
        assert castle.place_data.geo.lat == 38.71

    @pytest.mark.asyncio
    async def test_transfers_hotels_and_copy(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        await planner(session_factory, cache).generate(trip_id)

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        # the unresolved evening item has no coordinates
        assert len(trip.days[0].transfers) == 1
        assert len(trip.days[1].transfers) == 2
        assert sum(hotel.is_selected for hotel in trip.hotels) == 1
        assert {hotel.place_id for hotel in trip.hotels} == {"h1", "h2"}
        assert trip.days[0].summary == "Riverside monuments"
        assert trip.days[0].items[0].place_data.micro_copy == "Worth the trip"

    @pytest.mark.asyncio
    async def test_run_telemetry_is_stored(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        llm = fake_llm()

        result = await planner(session_factory, cache, llm=llm).generate(trip_id)

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert trip.sources == result.sources
        assert trip.debug == result.debug
        assert trip.sources["maps_calls"] >= 3
        assert trip.sources["gpt_calls"] >= 5
        assert trip.debug["version"] == 1
        assert llm.calls["schedule"] == 1
        assert llm.calls["duration"] == 4

    @pytest.mark.asyncio
    async def test_second_trip_reuses_cached_durations(self, session_factory, cache):
        llm = fake_llm()
        generator = planner(session_factory, cache, llm=llm)
        await generator.generate(await seed_trip(session_factory, status="draft"))

        second = await seed_trip(session_factory, status="draft")
        await generator.generate(second)

        castle = (await TripStore(session_factory).load_trip_view(second)).days[1].items[0]
        assert castle.duration_source == "cache"
        assert llm.calls["duration"] == 4


class TestGenerationFailures:
    @pytest.mark.asyncio
    async def test_unparseable_schedule_leaves_trip_draft(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        broken = fake_llm(schedule="Here is a lovely plan for you!")

        with pytest.raises(ItineraryParseError):
            await planner(session_factory, cache, llm=broken).generate(trip_id)

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert trip.status == TripStatus.DRAFT
        assert trip.days == []

        # the claim was released, so a retry goes through
        result = await planner(session_factory, cache).generate(trip_id)
        assert result.day_count == 3
        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert len(trip.hotels) == 2

    @pytest.mark.asyncio
    async def test_active_trip_cannot_be_regenerated(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="active")
        llm = fake_llm()

        with pytest.raises(InvalidTripStateError):
            await planner(session_factory, cache, llm=llm).generate(trip_id)
        assert sum(llm.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_concurrent_generation_is_rejected(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        await TripStore(session_factory).claim_generation(trip_id)

        with pytest.raises(GenerationInProgressError):
            await planner(session_factory, cache).generate(trip_id)

    @pytest.mark.asyncio
    async def test_missing_candidates_still_produce_days(self, session_factory, cache):
        trip_id = await seed_trip(session_factory, status="draft")
        empty = FakePlaceProvider()
        schedule = [
            {"day_number": n, "timeline": [{"slot": "morning", "kind": "activity", "place_name": "Old Town"}]}
            for n in (1, 2, 3)
        ]

        result = await planner(session_factory, cache, llm=fake_llm(schedule), provider=empty).generate(trip_id)

        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert result.hotel_count == 0
        assert trip.status == TripStatus.ACTIVE
        assert all(day.items[0].place_id is None for day in trip.days)
        assert all(day.summary == "A day in Lisbon." for day in trip.days)
