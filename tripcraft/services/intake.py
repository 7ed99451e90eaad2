"""
Intake Classifier - Conversational trip intake

Each turn is one model call that replies to the traveler and extracts what
is known so far. Once the destination and dates are known and the model
signals readiness, a draft trip and its intent are created.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker

from tripcraft.core.exceptions import LLMStructuredOutputError, UpstreamProviderError
from tripcraft.core.llm_service import BaseLLMService, get_llm_service
from tripcraft.core.logging_config import get_logger
from tripcraft.core.prompt_manager import PromptManager, PromptType, prompt_manager
from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import (
    BudgetBand,
    ConversationMessage,
    IntakeResult,
    Pace,
    TripIntentData,
)

logger = get_logger(__name__)

CREATING_MESSAGE = "Great! I'm creating your itinerary now. This will take a moment..."
REPHRASE_MESSAGE = (
    "Sorry, I didn't quite catch that. Could you rephrase where and when you'd like to travel?"
)


def _choice(value: Any, allowed: List[str], default: str) -> str:
    value = (value or "").strip().lower() if isinstance(value, str) else ""
    return value if value in allowed else default


def build_intent(extracted: Dict[str, Any]) -> Optional[TripIntentData]:
    """A valid intent from extracted fields, or None while required fields are missing"""
    destinations = [
        {"city": d["city"].strip(), "country": d.get("country") or None}
        for d in extracted.get("destinations") or []
        if isinstance(d, dict) and isinstance(d.get("city"), str) and d["city"].strip()
    ]
    if not destinations or not extracted.get("start_date") or not extracted.get("end_date"):
        return None

    try:
        return TripIntentData.model_validate(
            {
                "destinations": destinations,
                "start_date": extracted["start_date"],
                "end_date": extracted["end_date"],
                "travelers": extracted.get("travelers") or 1,
                "budget_band": _choice(
                    extracted.get("budget_band"), [b.value for b in BudgetBand], BudgetBand.MEDIUM.value
                ),
                "interests": extracted.get("interests") or [],
                "dietary_restrictions": extracted.get("dietary_restrictions") or [],
                "accessibility_needs": extracted.get("accessibility_needs") or [],
                "pace": _choice(extracted.get("pace"), [p.value for p in Pace], Pace.MODERATE.value),
            }
        )
    except ValidationError as e:
        logger.info(f"Extracted trip data not usable yet: {e.error_count()} errors")
        return None


class IntakeClassifier:
    """Turns a conversation into a draft trip"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        llm_service: Optional[BaseLLMService] = None,
        prompts: Optional[PromptManager] = None,
    ):
        self.store = TripStore(session_factory)
        self._llm_service = llm_service
        self.prompts = prompts or prompt_manager

    @property
    def llm_service(self) -> BaseLLMService:
        return self._llm_service or get_llm_service()

    async def handle_turn(
        self, messages: List[ConversationMessage], user_id: str
    ) -> IntakeResult:
        if not user_id:
            raise ValueError("User ID is required")

        conversation = "\n".join(f"{m.role}: {m.content}" for m in messages)
        last_user_message = next(
            (m.content for m in reversed(messages) if m.role == "user"), ""
        )
        system_prompt = self.prompts.get_prompt(
            PromptType.TRIP_INTAKE, conversation=conversation or "(none)"
        )

        try:
            raw = await self.llm_service.structured_completion(
                [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": last_user_message},
                ],
                self.prompts.get_schema(PromptType.TRIP_INTAKE),
                max_tokens=1000,
            )
        except (LLMStructuredOutputError, UpstreamProviderError) as e:
            logger.warning(f"Intake turn for user {user_id} could not be parsed: {e}")
            return IntakeResult(message=REPHRASE_MESSAGE)

        reply = raw.get("message") or REPHRASE_MESSAGE
        if not raw.get("ready_to_create"):
            return IntakeResult(message=reply)

        intent = build_intent(raw.get("extracted_data") or {})
        if intent is None:
            logger.info(f"Model signalled readiness for user {user_id} but required fields are missing")
            return IntakeResult(message=reply)

        trip_id = await self.store.create_trip(user_id, intent)
        return IntakeResult(message=CREATING_MESSAGE, trip_id=trip_id, ready_to_create=True)
