from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import Any, Awaitable, Callable, Mapping, Protocol, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import get_settings

logger = logging.getLogger(__name__)

# 429 = rate limited, 529 = provider overloaded
RETRYABLE_STATUS_CODES = frozenset({429, 529})


class ResponseLike(Protocol):
    status_code: int
    headers: Mapping[str, str]


R = TypeVar("R", bound=ResponseLike)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """
    Interpret a Retry-After header as a delay in seconds.

    Accepts an integer second count or an HTTP date; returns None when neither
    parses. Dates in the past yield 0.
    """
    if not value:
        return None
    value = value.strip()

    try:
        return float(max(0, int(value)))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def _is_retryable(response: ResponseLike) -> bool:
    return response.status_code in RETRYABLE_STATUS_CODES


def _return_last_response(retry_state: RetryCallState) -> Any:
    # Retries exhausted: hand the failing response back instead of raising
    return retry_state.outcome.result()


class RateLimitedGateway:
    """
    Serialises and paces outbound calls to the generative-text provider.

    - Calls never overlap: each waits for the previous call (retries included)
      to finish.
    - Successive call start times are at least `min_delay` seconds apart,
      measured from when the previous call actually began.
    - 429/529 responses are retried, honouring Retry-After, otherwise with
      exponential backoff (1s, 2s, 4s, ... capped at `backoff_max`).
    - After `max_retries` retries the last failing response is returned;
      the gateway never raises for exhausted retries. Exceptions raised by
      the request function itself propagate and are not retried.

    `clock` and `sleep` are injectable so pacing can be tested without
    real waiting.
    """

    def __init__(
        self,
        min_delay: float = 1.2,
        max_retries: int = 3,
        backoff_max: float = 10.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_delay = min_delay
        self.max_retries = max_retries
        self.backoff_max = backoff_max
        self._clock = clock
        self._sleep = sleep
        self._backoff = wait_exponential(multiplier=1, exp_base=2, max=backoff_max)

        self._last_start: float | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    def _get_lock(self) -> asyncio.Lock:
        # One lock per event loop; Celery workers run a fresh loop per task.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def _wait_for_slot(self) -> None:
        if self._last_start is None:
            return
        remaining = self.min_delay - (self._clock() - self._last_start)
        if remaining > 0:
            await self._sleep(remaining)

    def _wait_strategy(self, retry_state: RetryCallState) -> float:
        response = retry_state.outcome.result()
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        if retry_after is not None:
            return retry_after
        return self._backoff(retry_state)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        response = retry_state.outcome.result()
        logger.warning(
            "LLM provider returned %s; retrying in %.1fs (attempt %d/%d)",
            response.status_code,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            retry_state.attempt_number,
            self.max_retries + 1,
            extra={"step": "llm_gateway"},
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait_strategy,
            retry=retry_if_result(_is_retryable),
            retry_error_callback=_return_last_response,
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def call(self, request_fn: Callable[[], Awaitable[R]]) -> R:
        async with self._get_lock():
            await self._wait_for_slot()
            self._last_start = self._clock()
            return await self._retrying()(request_fn)


@lru_cache(maxsize=1)
def get_llm_gateway() -> RateLimitedGateway:
    """
    Process-wide gateway shared by every LLM caller, so the provider budget
    is enforced across sentiment batches and synthesis alike.
    """
    settings = get_settings()
    return RateLimitedGateway(
        min_delay=settings.LLM_MIN_DELAY_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
        backoff_max=settings.LLM_BACKOFF_MAX_SECONDS,
    )
