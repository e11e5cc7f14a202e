"""Bounded exponential backoff for transient collaborator failures.

One retry loop shared by storage downloads, embedding calls and generation
calls. Non-transient errors are raised immediately; transient ones are retried
until attempts run out, then the last error is re-raised.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from backend.app.config import Settings
from backend.app.errors import is_transient_error
from backend.app.utils.metrics import retry_attempts_total

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters (delays in milliseconds)."""

    max_attempts: int = 3
    base_delay_ms: int = 500
    max_delay_ms: int = 8000
    jitter_min_ms: int = 0
    jitter_max_ms: int = 250
    timeout_s: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings, timeout_s: float | None = None) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            jitter_min_ms=settings.retry_jitter_min_ms,
            jitter_max_ms=settings.retry_jitter_max_ms,
            timeout_s=timeout_s,
        )

    def delay_ms(self, attempt: int) -> float:
        """Backoff before retrying after the given 1-based attempt."""
        backoff = min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
        return backoff + random.uniform(self.jitter_min_ms, self.jitter_max_ms)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    sleep_fn: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Call fn, retrying transient failures with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        policy: Attempt count, delays and optional per-attempt timeout
        operation: Label for logs and metrics (e.g. "download", "embed")
        is_transient: Classifier deciding whether an error is retryable
        sleep_fn: Injectable sleep function (default: asyncio.sleep)

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted, or the first
        non-transient error.
    """
    sleep = sleep_fn or asyncio.sleep
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        attempt_start = time.monotonic()
        try:
            if policy.timeout_s is not None:
                return await asyncio.wait_for(fn(), timeout=policy.timeout_s)
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            elapsed_ms = (time.monotonic() - attempt_start) * 1000
            transient = is_transient(e)
            outcome = "retry" if transient and attempt < attempts else "failed"
            retry_attempts_total.labels(operation=operation, outcome=outcome).inc()

            logger.warning(
                f"{operation} attempt {attempt}/{attempts} failed: {type(e).__name__}",
                extra={
                    "structured": {
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "transient": transient,
                        "latency_ms": round(elapsed_ms, 2),
                        "error": str(e),
                    }
                },
            )

            if outcome == "failed":
                raise

            await sleep(policy.delay_ms(attempt) / 1000)

    # Unreachable: the final attempt either returns or raises
    raise RuntimeError(f"{operation}: retry loop exited without result")
