from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from myrad.core.config import Settings
from myrad.db.errors import classify_store_error, is_retryable

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    attempts: int = 3
    backoff_min_seconds: float = 0.05
    backoff_max_seconds: float = 0.15

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            attempts=max(1, int(settings.store_retry_attempts)),
            backoff_min_seconds=max(0, settings.store_retry_backoff_min_ms) / 1000,
            backoff_max_seconds=max(0, settings.store_retry_backoff_max_ms) / 1000,
        )

    def backoff_seconds(self) -> float:
        low = min(self.backoff_min_seconds, self.backoff_max_seconds)
        high = max(self.backoff_min_seconds, self.backoff_max_seconds)
        return random.uniform(low, high)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Runs a whole store transaction, re-running it on transient store failures.

    Only serialization conflicts, deadlocks and connectivity faults are retried.
    Anything else, and the last transient failure once attempts run out, is
    raised to the caller unchanged.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            kind = classify_store_error(exc)
            if not is_retryable(kind) or attempt >= policy.attempts:
                if is_retryable(kind):
                    logger.error(
                        "store_operation_retries_exhausted",
                        operation=operation_name,
                        attempts=attempt,
                        error_kind=kind.value,
                    )
                raise

            delay_seconds = policy.backoff_seconds()
            logger.warning(
                "store_operation_retry_scheduled",
                operation=operation_name,
                attempt=attempt,
                max_attempts=policy.attempts,
                error_kind=kind.value,
                delay_ms=round(delay_seconds * 1000),
            )
            await sleep(delay_seconds)
            attempt += 1
