"""
Intake classifier: continuation, trip creation and parse failures
"""

from datetime import date

import pytest

from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import ConversationMessage, TripStatus
from tripcraft.services.intake import CREATING_MESSAGE, IntakeClassifier, build_intent

from fakes import FakeLLM

CONVERSATION = [
    ConversationMessage(role="assistant", content="Where would you like to go?"),
    ConversationMessage(role="user", content="Lisbon, June 1st to 3rd, just me"),
]

READY_REPLY = {
    "message": "Lisbon sounds lovely!",
    "ready_to_create": True,
    "extracted_data": {
        "destinations": [{"city": "Lisbon", "country": "Portugal"}],
        "start_date": "2025-06-01",
        "end_date": "2025-06-03",
        "interests": ["food"],
    },
}


class TestBuildIntent:
    def test_defaults_fill_optional_fields(self):
        intent = build_intent(READY_REPLY["extracted_data"])

        assert intent.travelers == 1
        assert intent.budget_band.value == "medium"
        assert intent.pace.value == "moderate"
        assert intent.trip_length_days == 3

    def test_unknown_budget_and_pace_fall_back(self):
        intent = build_intent({**READY_REPLY["extracted_data"], "budget_band": "mid-range", "pace": "Active"})

        assert intent.budget_band.value == "medium"
        assert intent.pace.value == "active"

    @pytest.mark.parametrize(
        "extracted",
        [
            {"start_date": "2025-06-01", "end_date": "2025-06-03"},
            {"destinations": [{"city": "  "}], "start_date": "2025-06-01", "end_date": "2025-06-03"},
            {"destinations": [{"city": "Lisbon"}], "start_date": "2025-06-01"},
            {"destinations": [{"city": "Lisbon"}], "start_date": "2025-06-05", "end_date": "2025-06-03"},
        ],
    )
    def test_incomplete_data_is_not_an_intent(self, extracted):
        assert build_intent(extracted) is None


class TestIntakeClassifier:
    @pytest.mark.asyncio
    async def test_ready_conversation_creates_draft_trip(self, session_factory):
        llm = FakeLLM({"intake": READY_REPLY})

        result = await IntakeClassifier(session_factory, llm_service=llm).handle_turn(CONVERSATION, "user-42")

        assert result.ready_to_create
        assert result.message == CREATING_MESSAGE
        trip = await TripStore(session_factory).load_trip_view(result.trip_id)
        assert trip.status == TripStatus.DRAFT
        assert trip.title == "Trip to Lisbon"
        assert trip.user_id == "user-42"
        assert trip.intent.start_date == date(2025, 6, 1)
        assert trip.intent.interests == ["food"]

    @pytest.mark.asyncio
    async def test_not_ready_returns_continuation(self, session_factory):
        llm = FakeLLM({"intake": {"message": "When are you travelling?", "ready_to_create": False}})

        result = await IntakeClassifier(session_factory, llm_service=llm).handle_turn(CONVERSATION, "user-42")

        assert result.trip_id is None
        assert result.message == "When are you travelling?"

    @pytest.mark.asyncio
    async def test_ready_flag_without_dates_keeps_talking(self, session_factory):
        reply = {
            "message": "Which dates work for you?",
            "ready_to_create": True,
            "extracted_data": {"destinations": [{"city": "Lisbon"}]},
        }
        llm = FakeLLM({"intake": reply})

        result = await IntakeClassifier(session_factory, llm_service=llm).handle_turn(CONVERSATION, "user-42")

        assert result.trip_id is None
        assert not result.ready_to_create
        assert result.message == "Which dates work for you?"

    @pytest.mark.asyncio
    async def test_parse_failure_asks_to_rephrase(self, session_factory):
        llm = FakeLLM({"intake": "Absolutely, let's plan!"})

        result = await IntakeClassifier(session_factory, llm_service=llm).handle_turn(CONVERSATION, "user-42")

        assert result.trip_id is None
        assert "rephrase" in result.message

    @pytest.mark.asyncio
    async def test_missing_user_is_rejected(self, session_factory):
        llm = FakeLLM({"intake": READY_REPLY})

        with pytest.raises(ValueError):
            await IntakeClassifier(session_factory, llm_service=llm).handle_turn(CONVERSATION, "")
        assert llm.calls["intake"] == 0
