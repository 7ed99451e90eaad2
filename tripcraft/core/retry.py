"""
Uniform bounded retry with exponential backoff for external calls.

Every place, route and model call goes through `call_with_retry` so the
attempt budget is configured per provider in one place. Only transient
failures are retried; everything else propagates on the first attempt so
the per-step failure isolation of the pipeline stays unchanged.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tripcraft.core.config import settings
from tripcraft.core.exceptions import UpstreamProviderError
from tripcraft.core.logging_config import get_logger

logger = get_logger(__name__)


class RetryPolicy(BaseModel):
    """Retry budget for one provider"""

    attempts: int = 3
    min_wait: float = 1.0
    max_wait: float = 10.0
    multiplier: float = 1.0


def is_transient_error(exc: BaseException) -> bool:
    """Network hiccups, timeouts and upstream errors flagged as transient"""
    if isinstance(exc, UpstreamProviderError):
        return exc.transient
    return isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError))


def maps_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=settings.MAPS_RETRY_ATTEMPTS,
        min_wait=settings.MAPS_RETRY_MIN_WAIT,
        max_wait=settings.MAPS_RETRY_MAX_WAIT,
    )


def llm_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=settings.LLM_RETRY_ATTEMPTS,
        min_wait=settings.LLM_RETRY_MIN_WAIT,
        max_wait=settings.LLM_RETRY_MAX_WAIT,
    )


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    policy: Optional[RetryPolicy] = None,
    retry_on: Callable[[BaseException], bool] = is_transient_error,
    operation: str = "external call",
    **kwargs,
) -> Any:
    """Await `func(*args, **kwargs)`, retrying transient failures per `policy`"""
    policy = policy or RetryPolicy()

    def _log_retry(retry_state):
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{operation} failed (attempt {retry_state.attempt_number}/{policy.attempts}): {exc}"
        )

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(policy.attempts, 1)),
        wait=wait_exponential(
            multiplier=policy.multiplier, min=policy.min_wait, max=policy.max_wait
        ),
        retry=retry_if_exception(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)
