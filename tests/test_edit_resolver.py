"""
Edit resolver: loose matching, swap, remove and clarification paths
"""

import pytest

from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import EditIntent
from tripcraft.services.edit_resolver import CLARIFY_MESSAGE, EditResolver, find_matching_items

from builders import item, seed_trip
from fakes import FakeLLM, FakePlaceProvider, place


async def seed(session_factory):
    return await seed_trip(
        session_factory,
        days=[
            {
                "day_number": 1,
                "items": [
                    item("morning", "activity", "Belem Tower", "p-tower"),
                    item("afternoon", "meal", "Time Out Market", "p-market", meal_type="lunch"),
                ],
            },
            {
                "day_number": 2,
                "items": [
                    item("morning", "activity", "City Museum", "p-museum"),
                    item("afternoon", "activity", "City Museum Annex", "p-annex"),
                    item("evening", "meal", "Cervejaria Ramiro", "p-ramiro", meal_type="dinner"),
                ],
            },
        ],
    )


def resolver(session_factory, cache, reply, provider=None):
    llm = FakeLLM({"edit": reply})
    return EditResolver(session_factory, cache, llm_service=llm, provider=provider or FakePlaceProvider()), llm


class TestFindMatchingItems:
    @pytest.mark.asyncio
    async def test_name_or_slot_within_target_day(self, session_factory):
        trip = await TripStore(session_factory).load_trip_view(await seed(session_factory))

        by_name = find_matching_items(trip, EditIntent(action="remove", target_day=2, item_to_change="MUSEUM"))
        by_slot = find_matching_items(trip, EditIntent(action="remove", target_slot="morning"))
        nothing = find_matching_items(trip, EditIntent(action="remove", target_day=1, item_to_change="museum"))

        assert [i.place_name for i in by_name] == ["City Museum", "City Museum Annex"]
        assert [i.place_name for i in by_slot] == ["Belem Tower", "City Museum"]
        assert nothing == []

    @pytest.mark.asyncio
    async def test_empty_intent_matches_nothing(self, session_factory):
        trip = await TripStore(session_factory).load_trip_view(await seed(session_factory))
        assert find_matching_items(trip, EditIntent(action="remove")) == []


class TestEditResolver:
    @pytest.mark.asyncio
    async def test_remove_the_museum_on_day_two_removes_both(self, session_factory, cache):
        trip_id = await seed(session_factory)
        edit, llm = resolver(
            session_factory,
            cache,
            {"action": "remove", "target_day": 2, "item_to_change": "museum", "reasoning": "Too many museums"},
        )

        result = await edit.apply(trip_id, "remove the museum on day 2")

        assert result.success
        assert result.action == "remove"
        assert result.matched_count == 2
        assert llm.calls["edit"] == 1
        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert [i.place_name for i in trip.days[1].items] == ["Cervejaria Ramiro"]
        assert len(trip.days[0].items) == 2

    @pytest.mark.asyncio
    async def test_swap_overwrites_every_match(self, session_factory, cache):
        trip_id = await seed(session_factory)
        provider = FakePlaceProvider(searches={"botanical": [place("p-garden", "Estrela Garden", rating=4.7)]})
        edit, _ = resolver(
            session_factory,
            cache,
            {"action": "swap", "target_day": 1, "target_slot": "morning", "item_to_change": "Belem Tower",
             "search_query": "botanical garden in Lisbon"},
            provider=provider,
        )

        result = await edit.apply(trip_id, "swap Belem Tower for a garden")

        assert result.success
        assert result.matched_count == 1
        assert "Estrela Garden" in result.message
        swapped = (await TripStore(session_factory).load_trip_view(trip_id)).days[0].items[0]
        assert swapped.place_id == "p-garden"
        assert swapped.place_name == "Estrela Garden"
        assert swapped.place_data.rating == 4.7
        assert swapped.order_index == 0

    @pytest.mark.asyncio
    async def test_swap_without_results(self, session_factory, cache):
        trip_id = await seed(session_factory)
        edit, _ = resolver(
            session_factory,
            cache,
            {"action": "swap", "item_to_change": "Belem Tower", "search_query": "underwater castle"},
        )

        result = await edit.apply(trip_id, "swap Belem Tower for an underwater castle")

        assert not result.success
        trip = await TripStore(session_factory).load_trip_view(trip_id)
        assert trip.days[0].items[0].place_id == "p-tower"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["add", "extend_duration", "move_to_different_time"])
    async def test_unsupported_actions_ask_for_clarification(self, session_factory, cache, action):
        trip_id = await seed(session_factory)
        edit, _ = resolver(session_factory, cache, {"action": action, "target_day": 1})

        result = await edit.apply(trip_id, "do something")

        assert not result.success
        assert result.message == CLARIFY_MESSAGE

    @pytest.mark.asyncio
    async def test_unparseable_classification(self, session_factory, cache):
        trip_id = await seed(session_factory)
        edit, _ = resolver(session_factory, cache, "I'm not sure what you mean")

        result = await edit.apply(trip_id, "hmm")

        assert not result.success
        assert result.action is None
        assert result.message == CLARIFY_MESSAGE

    @pytest.mark.asyncio
    async def test_no_match_is_not_a_success(self, session_factory, cache):
        trip_id = await seed(session_factory)
        edit, _ = resolver(session_factory, cache, {"action": "remove", "item_to_change": "aquarium"})

        result = await edit.apply(trip_id, "remove the aquarium")

        assert not result.success
        assert result.matched_count == 0
        assert "aquarium" in result.message
