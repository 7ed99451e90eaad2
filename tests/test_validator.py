"""
Validator rules over stored and in-memory trips
"""

from datetime import date

import pytest

from tripcraft.core.config import settings
from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import (
    HotelView,
    TimelineItemView,
    TransferView,
    TripDayView,
    TripView,
)
from tripcraft.services.validator import Validator, validate_day, validate_itinerary

from builders import item, seed_trip


def timeline(*specs):
    """(kind, minutes, place_id) tuples in order"""
    return [
        TimelineItemView(
            id=f"i{index}",
            slot="morning",
            kind=kind,
            meal_type="lunch" if kind == "meal" else None,
            place_id=place_id,
            place_name=f"Place {index}",
            estimated_duration_min=[minutes // 2, minutes] if minutes is not None else None,
            order_index=index,
        )
        for index, (kind, minutes, place_id) in enumerate(specs)
    ]


def chain_transfers(items, eta_min=10):
    return [
        TransferView(from_place_id=a.place_id, to_place_id=b.place_id, eta_min=eta_min)
        for a, b in zip(items, items[1:])
    ]


def day(items, transfers=None, day_number=1):
    return TripDayView(
        id=f"d{day_number}",
        day_number=day_number,
        date=date(2025, 6, day_number),
        city="Lisbon",
        items=items,
        transfers=chain_transfers(items) if transfers is None else transfers,
    )


def codes(notices):
    return [notice.code for notice in notices]


class TestValidateDay:
    def test_clean_day_has_no_notices(self):
        items = timeline(("activity", 180, "a"), ("meal", 90, "b"), ("activity", 120, "c"), ("meal", 120, "d"))
        assert validate_day(day(items)) == []

    def test_thousand_minute_day_is_too_long(self):
        items = timeline(
            ("activity", 400, "a"), ("meal", 100, "b"), ("activity", 400, "c"), ("meal", 100, "d")
        )
        notices = validate_day(day(items))
        assert codes(notices) == ["day_too_long"]

    def test_single_item_over_eight_hours(self):
        items = timeline(("activity", 500, "a"), ("meal", 60, "b"), ("meal", 60, "c"))
        assert codes(validate_day(day(items))) == ["item_too_long"]

    @pytest.mark.parametrize("meals,expected", [(0, True), (1, True), (2, False), (3, False)])
    def test_few_meals(self, meals, expected):
        specs = [("activity", 60, "a")] + [("meal", 60, f"m{n}") for n in range(meals)]
        notices = validate_day(day(timeline(*specs)))
        assert ("few_meals" in codes(notices)) is expected

    def test_few_meals_message_in_portuguese(self):
        notices = validate_day(day(timeline(("activity", 60, "a"), ("meal", 60, "b"))), "pt-BR")
        assert notices[0].message == "Dia 1: poucas refeições planejadas (1)"

    def test_missing_and_long_transfers(self):
        items = timeline(("meal", 60, "a"), ("activity", 60, "b"), ("meal", 60, "c"))
        transfers = [TransferView(from_place_id="a", to_place_id="b", eta_min=75)]
        notices = validate_day(day(items, transfers), "en-US")
        assert codes(notices) == ["long_transfer", "missing_transfer"]
        assert notices[1].message == "Day 1: Missing travel time between Place 1 and Place 2"

    def test_activity_without_place_id(self):
        items = timeline(("activity", 60, None), ("meal", 60, None), ("meal", 60, None))
        notices = validate_day(day(items, transfers=[]))
        assert codes(notices).count("missing_place_id") == 1

    def test_items_without_duration_count_as_two_hours(self):
        # 9 items x 120 = 1080 minutes
        specs = [("meal", None, f"m{n}") for n in range(9)]
        assert "day_too_long" in codes(validate_day(day(timeline(*specs))))

    def test_rule_order_within_a_day(self):
        items = timeline(("activity", 600, None), ("activity", 600, "b"))
        notices = validate_day(day(items, transfers=[]))
        assert codes(notices) == [
            "item_too_long",
            "missing_transfer",
            "item_too_long",
            "day_too_long",
            "few_meals",
            "missing_place_id",
        ]


class TestValidateItinerary:
    def trip(self, days, hotels=(), locale="en-US"):
        return TripView(
            id="t1", user_id="u1", title="Trip", status="active", locale=locale,
            days=days, hotels=list(hotels),
        )

    def test_no_selected_hotel_is_a_hint(self):
        items = timeline(("meal", 60, "a"), ("meal", 60, "b"))
        hotels = [HotelView(id="h1", place_id="ph", name="Hotel", is_selected=False)]
        report = validate_itinerary(self.trip([day(items)], hotels), "en-US")

        assert report.valid
        assert report.notices == []
        assert codes(report.hints) == ["no_hotel_selected"]
        assert report.summary == "Itinerary validated successfully"

    def test_days_are_checked_in_order(self):
        bad = timeline(("activity", 60, "a"))
        report = validate_itinerary(self.trip([day(bad, day_number=2), day(bad, day_number=1)]), "pt-BR")

        assert not report.valid
        assert [n.day_number for n in report.notices] == [1, 2]
        assert report.summary == "2 avisos encontrados"

    def test_trip_locale_is_used_when_none_given(self):
        report = validate_itinerary(self.trip([day(timeline(("activity", 60, "a")))], locale="en-US"))
        assert report.notices[0].message == "Day 1: few meals planned (1)"

    def test_trip_without_locale_falls_back_to_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "VALIDATION_LOCALE", "pt-BR")
        report = validate_itinerary(self.trip([day(timeline(("activity", 60, "a")))], locale=None))
        assert report.notices[0].message == "Dia 1: poucas refeições planejadas (1)"


class TestValidator:
    @pytest.mark.asyncio
    async def test_report_is_stored_on_trip(self, session_factory):
        trip_id = await seed_trip(
            session_factory,
            days=[{"day_number": 1, "items": [item("morning", "activity", "Castle", "p-a", duration=[60, 90])]}],
        )

        report = await Validator(session_factory, locale="en-US").validate_trip(trip_id)

        stored = await TripStore(session_factory).load_trip_view(trip_id)
        assert codes(stored.notices) == codes(report.notices) == ["few_meals"]
        assert codes(stored.hints) == ["no_hotel_selected"]

    @pytest.mark.asyncio
    async def test_messages_follow_the_stored_trip_locale(self, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "VALIDATION_LOCALE", "pt-BR")
        trip_id = await seed_trip(
            session_factory,
            days=[{"day_number": 1, "items": [item("morning", "activity", "Castle", "p-a", duration=[60, 90])]}],
        )

        report = await Validator(session_factory).validate_trip(trip_id)

        assert report.notices[0].message == "Day 1: few meals planned (0)"
        assert report.summary == "1 notices found"


class TestItemUpperBound:
    @pytest.mark.parametrize("duration,expected", [([60, 90], 90), ([0, 0], 120), (None, 120)])
    def test_upper_bound_or_fallback(self, duration, expected):
        view = TimelineItemView(
            id="i1", slot="morning", kind="activity", estimated_duration_min=duration, order_index=0
        )
        assert view.upper_bound_minutes(120) == expected
