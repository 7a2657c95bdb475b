"""Caller-side retry for upstream operations.

Neither the config cache nor the request executor retries on its own; the
operation surface wraps each upstream execution in :func:`retry_async` using
``Config.retry``. The default policy makes a single attempt, so retrying is
opt-in.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from tunebridge._http import RETRYABLE_STATUS_CODES
from tunebridge.errors import UpstreamError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to call upstream, and how long to wait in between.

    Waits grow geometrically from ``base_delay_s`` by ``multiplier`` and are
    capped at ``max_delay_s``. With ``jitter`` each wait is drawn uniformly
    from ``[0, wait]``. No retry starts once ``deadline_s`` has elapsed since
    the first attempt.
    """

    max_attempts: int = 1
    base_delay_s: float = 0.5
    multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    deadline_s: float | None = 15.0

    def __post_init__(self) -> None:
        checks = (
            (self.max_attempts >= 1, "max_attempts must be >= 1"),
            (self.base_delay_s >= 0, "base_delay_s must be >= 0"),
            (self.multiplier > 0, "multiplier must be > 0"),
            (self.max_delay_s >= 0, "max_delay_s must be >= 0"),
            (self.deadline_s is None or self.deadline_s >= 0, "deadline_s must be >= 0 or None"),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(f"RetryPolicy.{message}")

    def backoff(self, retry_index: int) -> float:
        """Wait before retry number *retry_index* (1 for the first retry)."""
        wait = min(self.max_delay_s, self.base_delay_s * self.multiplier ** (retry_index - 1))
        if wait <= 0:
            return 0.0
        return random.uniform(0, wait) if self.jitter else wait  # noqa: S311


def is_retryable(exc: BaseException) -> bool:
    """True for upstream failures flagged retryable or carrying a retryable status."""
    if not isinstance(exc, UpstreamError):
        return False
    if exc.retryable:
        return True
    return exc.status_code in RETRYABLE_STATUS_CODES


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Await ``factory()`` until it succeeds or *policy* says stop.

    A ``Retry-After`` hint on the failure lengthens the wait; the deadline
    shortens it.
    """
    started = time.monotonic()
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if attempt == policy.max_attempts or not should_retry(exc):
                raise

            wait = policy.backoff(attempt)
            hinted = exc.retry_after_s if isinstance(exc, UpstreamError) else None
            if hinted is not None and hinted >= 0:
                wait = max(wait, hinted)
            if policy.deadline_s is not None:
                left = policy.deadline_s - (time.monotonic() - started)
                if left <= 0:
                    raise
                wait = min(wait, left)

            logger.info(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                wait,
            )
            if wait > 0:
                await asyncio.sleep(wait)
    raise AssertionError("unreachable: the final attempt returns or raises")
