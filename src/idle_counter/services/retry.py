"""Backoff between optimistic-concurrency retries."""

from __future__ import annotations

import asyncio
import random

_MAX_BACKOFF_SECONDS = 1.0


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Return a linear backoff with full jitter for the given 1-based attempt."""
    if base_seconds <= 0:
        return 0.0
    ceiling = min(base_seconds * attempt, _MAX_BACKOFF_SECONDS)
    return random.uniform(0, ceiling)


async def sleep_before_retry(attempt: int, base_seconds: float) -> None:
    delay = backoff_delay(attempt, base_seconds)
    # sleep(0) still yields so competing writers get a turn
    await asyncio.sleep(delay)
