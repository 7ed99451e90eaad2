"""
Presenter - Human-readable copy for a generated itinerary

Fills day summaries and item descriptions, taglines and tips. Items that
already have both a description and a tagline are skipped, so running the
presenter twice changes nothing the second time.
"""

from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from tripcraft.core.exceptions import LLMStructuredOutputError, UpstreamProviderError
from tripcraft.core.llm_service import BaseLLMService, get_llm_service
from tripcraft.core.logging_config import get_logger
from tripcraft.core.prompt_manager import PromptManager, PromptType, prompt_manager
from tripcraft.core.trip_store import TripStore
from tripcraft.models.db_models import TimelineItem, TripDay
from tripcraft.models.schemas import (
    ItemKind,
    PlaceData,
    PresentationResult,
    RunStats,
    TimelineItemView,
    TripDayView,
    TripView,
)

logger = get_logger(__name__)

DESCRIPTION_LIMIT = 200
MICRO_COPY_LIMIT = 60
TIP_LIMIT = 100


class ItemCopy(BaseModel):
    description: str
    micro_copy: str
    tip: Optional[str] = None

    def truncated(self) -> "ItemCopy":
        return ItemCopy(
            description=self.description[:DESCRIPTION_LIMIT],
            micro_copy=self.micro_copy[:MICRO_COPY_LIMIT],
            tip=self.tip[:TIP_LIMIT] if self.tip else None,
        )


def fallback_copy(item: TimelineItemView) -> ItemCopy:
    tagline = "Must-see attraction" if item.kind == ItemKind.ACTIVITY.value else "Great dining spot"
    return ItemCopy(description=f"Experience {item.place_name}", micro_copy=tagline)


class Presenter:
    """Backfills summaries and micro-copy through the language model"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        llm_service: Optional[BaseLLMService] = None,
        prompts: Optional[PromptManager] = None,
    ):
        self.session_factory = session_factory
        self.store = TripStore(session_factory)
        self._llm_service = llm_service
        self.prompts = prompts or prompt_manager

    @property
    def llm_service(self) -> BaseLLMService:
        return self._llm_service or get_llm_service()

    async def present(self, trip_id: str, stats: Optional[RunStats] = None) -> PresentationResult:
        trip = await self.store.load_trip_view(trip_id)
        result = PresentationResult()
        summaries: Dict[str, str] = {}
        copies: Dict[str, PlaceData] = {}

        for day in trip.days:
            if not day.summary:
                summary = await self._day_summary(day, stats)
                if summary:
                    summaries[day.id] = summary
                    result.days_summarized += 1

            for item in day.items:
                if item.place_data.has_copy:
                    result.items_skipped += 1
                    continue

                copy, used_fallback = await self._item_copy(trip, day, item, stats)
                if used_fallback:
                    result.fallbacks_used += 1
                copies[item.id] = item.place_data.merged_with(**copy.model_dump())
                result.items_enriched += 1

        await self._persist(summaries, copies)
        logger.info(
            f"Presented trip {trip_id}: {result.days_summarized} summaries, "
            f"{result.items_enriched} items enriched, {result.items_skipped} skipped"
        )
        return result

    async def _day_summary(self, day: TripDayView, stats: Optional[RunStats]) -> Optional[str]:
        prompt = self.prompts.get_prompt(
            PromptType.DAY_SUMMARY,
            day_number=day.day_number,
            city=day.city,
            places=[item.place_name for item in day.items if item.place_name],
        )
        messages = [
            {"role": "system", "content": "You are a travel content writer. Write concise, engaging copy."},
            {"role": "user", "content": prompt},
        ]
        if stats is not None:
            stats.gpt_calls += 1
        try:
            response = await self.llm_service.chat_completion(messages)
        except UpstreamProviderError as e:
            logger.warning(f"Day {day.day_number} summary unavailable: {e}")
            return None
        return response.content.strip() or None

    async def _item_copy(
        self,
        trip: TripView,
        day: TripDayView,
        item: TimelineItemView,
        stats: Optional[RunStats],
    ) -> Tuple[ItemCopy, bool]:
        """Copy for one item and whether the templated fallback was used"""
        country = None
        interests = []
        if trip.intent is not None:
            country = trip.intent.main_destination.country
            interests = trip.intent.interests

        prompt = self.prompts.get_prompt(
            PromptType.ITEM_COPY,
            kind=item.kind,
            kind_label=f"{item.kind} ({item.meal_type})" if item.meal_type else item.kind,
            place_name=item.place_name,
            slot=item.slot,
            day_number=day.day_number,
            city=day.city,
            country=country or "destination",
            interests=interests or ["general tourism"],
        )
        messages = [
            {"role": "system", "content": "You are a travel copywriter. Return only valid JSON, no markdown."},
            {"role": "user", "content": prompt},
        ]
        if stats is not None:
            stats.gpt_calls += 1
        try:
            raw = await self.llm_service.structured_completion(
                messages, self.prompts.get_schema(PromptType.ITEM_COPY)
            )
            return ItemCopy.model_validate(raw).truncated(), False
        except (LLMStructuredOutputError, UpstreamProviderError, ValidationError) as e:
            logger.warning(f"Copy for {item.place_name} fell back to template: {e}")
            return fallback_copy(item), True

    async def _persist(self, summaries: Dict[str, str], copies: Dict[str, PlaceData]) -> None:
        if not summaries and not copies:
            return
        async with self.session_factory() as session:
            if summaries:
                days = await session.execute(select(TripDay).where(TripDay.id.in_(list(summaries))))
                for day in days.scalars():
                    day.summary = summaries[day.id]
            if copies:
                items = await session.execute(
                    select(TimelineItem).where(TimelineItem.id.in_(list(copies)))
                )
                for item in items.scalars():
                    item.place_data = copies[item.id]
            await session.commit()
