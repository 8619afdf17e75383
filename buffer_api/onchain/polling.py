"""Bounded polling for eventually-consistent on-chain effects."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Total number of lookups allowed and the spacing between them."""

    max_attempts: int
    interval_seconds: float
    backoff_factor: float = 1.0
    max_interval_seconds: Optional[float] = None

    def delay(self, retry: int) -> float:
        delay = self.interval_seconds * (self.backoff_factor**retry)
        if self.max_interval_seconds is not None:
            delay = min(delay, self.max_interval_seconds)
        return delay


async def poll_until(
    lookup: Callable[[], Awaitable[T]],
    is_pending: Callable[[T], bool],
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    label: str = "poll",
) -> T:
    """Call ``lookup`` until ``is_pending`` is false or the attempts run out.

    Returns the last result either way; callers decide what a still-pending
    result means. Exceptions from ``lookup`` propagate unchanged.
    """
    result = await lookup()
    attempts = 1
    while is_pending(result) and attempts < policy.max_attempts:
        delay = policy.delay(attempts - 1)
        logger.debug("%s pending, attempt %d/%d in %.2fs", label, attempts + 1, policy.max_attempts, delay)
        await sleep(delay)
        result = await lookup()
        attempts += 1
    if is_pending(result):
        logger.warning("%s still pending after %d attempts", label, attempts)
    return result
