"""Retry-with-exponential-backoff executor for outbound calls."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from call_recap.orchestrator.errors import PermanentExternalError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryObserver = Callable[["RetryEvent"], None]
RetryPredicate = Callable[[BaseException], bool]
Sleeper = Callable[[float], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often and how patiently one call site retries."""

    max_retries: int = 2
    base_delay_ms: int = 50
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0.")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0.")
        if self.backoff_factor < 0:
            raise ValueError("backoff_factor must be >= 0.")

    def delay_ms(self, attempt: int) -> int:
        """Backoff before the retry that follows failed `attempt` (0-based)."""

        return max(0, math.floor(self.base_delay_ms * self.backoff_factor**attempt))


@dataclass(frozen=True, slots=True)
class RetryEvent:
    """Emitted once per failed attempt that will be retried."""

    attempt: int
    delay_ms: int
    error: BaseException


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: permanent and validation failures are final."""

    return not isinstance(error, PermanentExternalError | ValidationError)


async def execute_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_retry: RetryObserver | None = None,
    should_retry: RetryPredicate = is_retryable,
    label: str = "operation",
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """Run `operation` up to `policy.max_retries + 1` times.

    The last failure is re-raised unchanged. `on_retry` is invoked before each
    backoff sleep; an observer failure is logged and never aborts the retry loop.
    """

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as error:
            if attempt >= policy.max_retries or not should_retry(error):
                raise
            delay_ms = policy.delay_ms(attempt)
            logger.info(
                "Retrying %s after attempt %d failed (%s); waiting %d ms",
                label,
                attempt,
                error,
                delay_ms,
            )
            if on_retry is not None:
                try:
                    on_retry(RetryEvent(attempt=attempt, delay_ms=delay_ms, error=error))
                except Exception:  # noqa: BLE001
                    logger.warning("Retry observer for %s failed", label, exc_info=True)
            await sleep(delay_ms / 1000)
            attempt += 1
