"""
Edit Resolver - Applies free-text edits to an existing itinerary

One model call classifies the request. Target items are then located with a
deliberately loose policy: within the target day (or every day), an item
matches when its name contains `item_to_change` case-insensitively, or when
its slot equals `target_slot`. Every match is mutated and the number of
matches is reported back, so callers can confirm broad edits with the
traveler. Transfers and validation are not recomputed after an edit.
"""

from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from tripcraft.core.cache import CacheLayer
from tripcraft.core.exceptions import LLMStructuredOutputError, UpstreamProviderError
from tripcraft.core.llm_service import BaseLLMService, get_llm_service
from tripcraft.core.logging_config import get_logger
from tripcraft.core.prompt_manager import PromptManager, PromptType, prompt_manager
from tripcraft.core.trip_store import TripStore
from tripcraft.models.db_models import TimelineItem
from tripcraft.models.schemas import (
    EditAction,
    EditIntent,
    EditResult,
    TimelineItemView,
    TripView,
)
from tripcraft.tools.place_provider import PlaceProvider, get_place_provider

logger = get_logger(__name__)

CLARIFY_MESSAGE = (
    "I understand you want to make changes, but I need more details. Can you be more specific?"
)
SWAP_DETAIL_FIELDS = ["place_id", "name", "formatted_address", "geometry", "rating", "user_ratings_total"]


def find_matching_items(trip: TripView, intent: EditIntent) -> List[TimelineItemView]:
    """Items selected by the loose name-or-slot policy, in day then order_index order"""
    name_fragment = (intent.item_to_change or "").strip().lower()
    target_slot = (intent.target_slot or "").strip().lower()

    matches = []
    for day in sorted(trip.days, key=lambda d: d.day_number):
        if intent.target_day and day.day_number != intent.target_day:
            continue
        for item in sorted(day.items, key=lambda i: i.order_index):
            name_match = bool(name_fragment) and name_fragment in (item.place_name or "").lower()
            slot_match = bool(target_slot) and item.slot == target_slot
            if name_match or slot_match:
                matches.append(item)
    return matches


def outline_trip(trip: TripView) -> str:
    lines = []
    for day in sorted(trip.days, key=lambda d: d.day_number):
        lines.append(f"Day {day.day_number} ({day.date.isoformat()}):")
        for item in sorted(day.items, key=lambda i: i.order_index):
            lines.append(f"  - {item.slot}: {item.place_name}")
    return "\n".join(lines)


class EditResolver:
    """Classifies and applies edit requests"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheLayer,
        llm_service: Optional[BaseLLMService] = None,
        provider: Optional[PlaceProvider] = None,
        prompts: Optional[PromptManager] = None,
    ):
        self.session_factory = session_factory
        self.store = TripStore(session_factory)
        self.cache = cache
        self._llm_service = llm_service
        self._provider = provider
        self.prompts = prompts or prompt_manager

    @property
    def llm_service(self) -> BaseLLMService:
        return self._llm_service or get_llm_service()

    @property
    def provider(self) -> PlaceProvider:
        return self._provider or get_place_provider()

    async def apply(self, trip_id: str, edit_request: str) -> EditResult:
        trip = await self.store.load_trip_view(trip_id)

        try:
            intent = await self.classify(trip, edit_request)
        except (LLMStructuredOutputError, UpstreamProviderError, ValidationError) as e:
            logger.warning(f"Could not classify edit request for trip {trip_id}: {e}")
            return EditResult(success=False, message=CLARIFY_MESSAGE)

        logger.info(
            f"Edit intent for trip {trip_id}: action={intent.action} day={intent.target_day} "
            f"slot={intent.target_slot} item={intent.item_to_change}"
        )

        if intent.action == EditAction.SWAP.value:
            return await self._swap(trip, intent)
        if intent.action == EditAction.REMOVE.value:
            return await self._remove(trip, intent)

        # add, extend_duration and move are not supported yet
        return EditResult(success=False, message=CLARIFY_MESSAGE, action=intent.action)

    async def classify(self, trip: TripView, edit_request: str) -> EditIntent:
        prompt = self.prompts.get_prompt(
            PromptType.EDIT_INTENT,
            trip_outline=outline_trip(trip),
            edit_request=edit_request,
        )
        raw = await self.llm_service.structured_completion(
            [{"role": "system", "content": prompt}, {"role": "user", "content": edit_request}],
            self.prompts.get_schema(PromptType.EDIT_INTENT),
            max_tokens=500,
        )
        return EditIntent.model_validate(raw)

    async def _swap(self, trip: TripView, intent: EditIntent) -> EditResult:
        query = intent.search_query or intent.new_item
        if not query:
            return EditResult(success=False, message=CLARIFY_MESSAGE, action=intent.action)

        matches = find_matching_items(trip, intent)
        if not matches:
            return self._nothing_matched(intent)

        try:
            results = await self.provider.text_search(query, limit=1)
            if not results:
                return EditResult(
                    success=False,
                    message=f"I couldn't find any places for \"{query}\". Could you describe the replacement differently?",
                    action=intent.action,
                )
            replacement = await self.cache.get_place_details(
                self.provider, results[0].place_id, SWAP_DETAIL_FIELDS
            )
        except UpstreamProviderError as e:
            logger.warning(f"Replacement lookup for '{query}' failed: {e}")
            return EditResult(
                success=False,
                message="I couldn't look up a replacement right now. Please try again in a moment.",
                action=intent.action,
            )

        place_data = replacement.to_place_data()
        match_ids = [item.id for item in matches]
        async with self.session_factory() as session:
            rows = await session.execute(select(TimelineItem).where(TimelineItem.id.in_(match_ids)))
            for row in rows.scalars():
                logger.info(f"Replacing {row.place_name} with {replacement.name}")
                row.place_id = replacement.place_id
                row.place_name = replacement.name
                row.place_data = place_data
            await session.commit()

        replaced = intent.item_to_change or ", ".join(item.place_name or item.slot for item in matches)
        message = f"I've replaced {replaced} with {replacement.name}."
        if intent.reasoning:
            message = f"{message} {intent.reasoning}"
        return EditResult(success=True, message=message, action=intent.action, matched_count=len(matches))

    async def _remove(self, trip: TripView, intent: EditIntent) -> EditResult:
        matches = find_matching_items(trip, intent)
        if not matches:
            return self._nothing_matched(intent)

        async with self.session_factory() as session:
            async with session.begin():
                rows = await session.execute(
                    select(TimelineItem)
                    .where(TimelineItem.id.in_([item.id for item in matches]))
                    .options(selectinload(TimelineItem.alternatives))
                )
                for row in rows.scalars():
                    logger.info(f"Removing {row.place_name} (slot {row.slot})")
                    await session.delete(row)

        removed = intent.item_to_change or ", ".join(item.place_name or item.slot for item in matches)
        return EditResult(
            success=True,
            message=f"I've removed {removed} from your itinerary.",
            action=intent.action,
            matched_count=len(matches),
        )

    @staticmethod
    def _nothing_matched(intent: EditIntent) -> EditResult:
        target = intent.item_to_change or intent.target_slot or "that item"
        return EditResult(
            success=False,
            message=f"I couldn't find {target} in your itinerary. Can you be more specific?",
            action=intent.action,
        )
