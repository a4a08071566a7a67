from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass

from worktime.core.errors import RateLimitedError


@dataclass
class WindowCounter:
    start: float
    count: int


_lock = asyncio.Lock()
_counters: dict[str, WindowCounter] = {}
# Keys are per client host; a single-user deployment never gets near this.
_MAX_KEYS = 1_000


async def consume(*, key: str, limit: int, window_seconds: int) -> None:
    """Count one call for `key` in a fixed window; raise RateLimitedError past `limit`.

    Windows live in process memory, so each worker limits on its own.
    """
    if limit <= 0:
        return

    now = time.monotonic()
    async with _lock:
        if len(_counters) > _MAX_KEYS:
            _counters.clear()

        counter = _counters.get(key)
        if counter is None or (now - counter.start) >= window_seconds:
            _counters[key] = WindowCounter(start=now, count=1)
            return

        if counter.count >= limit:
            retry_after = max(1, math.ceil(window_seconds - (now - counter.start)))
            raise RateLimitedError(
                limit=limit, window_seconds=window_seconds, retry_after=retry_after
            )

        counter.count += 1
