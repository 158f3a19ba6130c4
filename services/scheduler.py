from __future__ import annotations

import asyncio
import time


_TIMEFRAME_SECONDS = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "4h": 14400,
}


def timeframe_seconds(tf: str) -> int:
    if tf not in _TIMEFRAME_SECONDS:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return _TIMEFRAME_SECONDS[tf]


def seconds_until_next_tick(tf: str, now: float | None = None) -> float:
    seconds = timeframe_seconds(tf)
    now = time.time() if now is None else now
    next_tick = ((int(now) // seconds) + 1) * seconds
    return max(0.0, next_tick - now)


async def wait_next_tick(tf: str) -> None:
    await asyncio.sleep(seconds_until_next_tick(tf))
