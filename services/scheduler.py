from __future__ import annotations

import asyncio
import time


def next_tick(now: int, interval_seconds: int) -> int:
    if interval_seconds <= 0:
        raise ValueError(f"Unsupported interval: {interval_seconds}")
    return ((now // interval_seconds) + 1) * interval_seconds


async def wait_next_tick(interval_seconds: int) -> None:
    now = int(time.time())
    await asyncio.sleep(max(0, next_tick(now, interval_seconds) - now))
