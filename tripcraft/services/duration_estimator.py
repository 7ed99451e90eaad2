"""
Duration Estimator - How long travelers spend at a place

Estimates are keyed by place, traveler profile and season. A cached estimate
is served without a model call; otherwise one structured completion is made
and the result cached. When the model output is unusable the fixed default
range is returned instead, tagged source=default and never cached.
"""

from datetime import date, timedelta
from typing import Iterable, Optional

from pydantic import ValidationError

from tripcraft.core.cache import CacheKind, CacheLayer, DurationKey
from tripcraft.core.config import settings
from tripcraft.core.exceptions import LLMStructuredOutputError, UpstreamProviderError
from tripcraft.core.llm_service import BaseLLMService, get_llm_service
from tripcraft.core.logging_config import get_logger
from tripcraft.core.prompt_manager import PromptManager, PromptType, prompt_manager
from tripcraft.models.schemas import (
    DEFAULT_DURATION_RANGE,
    DurationEstimate,
    DurationEstimateRequest,
    EstimateSource,
    RunStats,
)

logger = get_logger(__name__)

_SEASONS = {
    12: "winter", 1: "winter", 2: "winter",
    3: "spring", 4: "spring", 5: "spring",
    6: "summer", 7: "summer", 8: "summer",
    9: "fall", 10: "fall", 11: "fall",
}


def season_for(target_date: date) -> str:
    return _SEASONS[target_date.month]


def build_profile_key(pace: str, interests: Iterable[str]) -> str:
    """Deterministic traveler profile key, e.g. 'moderate_art_food'"""
    pace_value = getattr(pace, "value", pace)
    return f"{pace_value}_{'_'.join(sorted(interests))}"


def default_estimate() -> DurationEstimate:
    return DurationEstimate(
        duration_min=list(DEFAULT_DURATION_RANGE),
        confidence=0.0,
        assumptions=["Default estimate used"],
        risks=[],
        source=EstimateSource.DEFAULT,
    )


class DurationEstimator:
    """Cache-backed, model-derived visit duration ranges"""

    def __init__(
        self,
        cache: CacheLayer,
        llm_service: Optional[BaseLLMService] = None,
        prompts: Optional[PromptManager] = None,
        ttl: Optional[timedelta] = None,
    ):
        self.cache = cache
        self._llm_service = llm_service
        self.prompts = prompts or prompt_manager
        self.ttl = ttl or timedelta(days=settings.DURATION_CACHE_TTL_DAYS)

    @property
    def llm_service(self) -> BaseLLMService:
        return self._llm_service or get_llm_service()

    async def estimate(
        self, request: DurationEstimateRequest, stats: Optional[RunStats] = None
    ) -> DurationEstimate:
        season = season_for(request.target_date)
        key = DurationKey(
            place_id=request.place_id,
            profile_key=build_profile_key(request.pace, request.interests),
            season=season,
        )

        entry = await self.cache.get(CacheKind.DURATION, key, stats=stats)
        if entry is not None:
            try:
                return DurationEstimate.model_validate(
                    {**entry.data, "source": EstimateSource.CACHE}
                )
            except ValidationError as e:
                # Unreadable cached payload is treated like a miss
                logger.warning(f"Discarding malformed cached estimate for {request.place_name}: {e}")

        logger.info(
            f"Estimating duration for {request.place_name} "
            f"({request.place_type}, {season}, {getattr(request.pace, 'value', request.pace)})"
        )

        try:
            estimate = await self._ask_model(request, season, stats)
        except (LLMStructuredOutputError, UpstreamProviderError, ValidationError) as e:
            logger.warning(f"Duration estimate for {request.place_name} fell back to default: {e}")
            return default_estimate()

        await self.cache.put(
            CacheKind.DURATION,
            key,
            estimate.model_dump(mode="json", exclude={"source"}),
            self.ttl,
        )
        return estimate

    async def _ask_model(
        self, request: DurationEstimateRequest, season: str, stats: Optional[RunStats]
    ) -> DurationEstimate:
        reference_line = (
            f"- Official website: {request.reference_url}" if request.reference_url else ""
        )
        system_prompt = self.prompts.get_prompt(
            PromptType.DURATION_ESTIMATE,
            place_name=request.place_name,
            place_type=request.place_type or "tourist attraction",
            pace=getattr(request.pace, "value", request.pace),
            season=season,
            interests=request.interests or ["general tourism"],
            reference_line=reference_line,
        )
        messages = [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": f"Estimate duration for: {request.place_name} ({request.place_type})",
            },
        ]

        if stats is not None:
            stats.gpt_calls += 1
        raw = await self.llm_service.structured_completion(
            messages, self.prompts.get_schema(PromptType.DURATION_ESTIMATE), max_tokens=500
        )
        return DurationEstimate.model_validate({**raw, "source": EstimateSource.MODEL})

