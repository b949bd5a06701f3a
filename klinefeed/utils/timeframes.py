"""Interval token resolution for candle sizing."""
from __future__ import annotations

import math
from typing import Dict

DEFAULT_INTERVAL_MS = 60_000

INTERVAL_MS: Dict[str, int] = {
    "1m": 60_000,
    "5m": 300_000,
    "15m": 900_000,
    "1h": 3_600_000,
    "4h": 14_400_000,
    "1d": 86_400_000,
}


def resolve_interval_ms(interval: str | None) -> int:
    """Return the candle duration for ``interval``; unknown tokens map to one minute."""
    return INTERVAL_MS.get((interval or "").strip(), DEFAULT_INTERVAL_MS)


def candles_needed(start_ms: int, end_ms: int, interval: str | None, cap: int) -> int:
    """Number of candles covering ``[start_ms, end_ms)`` for ``interval``, clamped to ``cap``."""
    span = int(end_ms) - int(start_ms)
    if span <= 0:
        return 0
    return max(0, min(int(cap), math.ceil(span / resolve_interval_ms(interval))))
