"""Candle data model shared by the fetcher, generator and engine."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Sequence

KLINE_FIELDS = 7


class MalformedKlineError(ValueError):
    """Raised when a raw kline record cannot be parsed into a candle."""


def _as_float(value: object, name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise MalformedKlineError(f"Non-numeric {name}: {value!r}") from exc
    if not math.isfinite(number):
        raise MalformedKlineError(f"Non-finite {name}: {value!r}")
    return number


def _as_ms(value: object, name: str) -> int:
    if isinstance(value, bool):
        raise MalformedKlineError(f"Invalid {name}: {value!r}")
    return int(_as_float(value, name))


@dataclass(slots=True, frozen=True)
class Candle:
    """One OHLCV bar; timestamps are milliseconds since epoch."""

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int

    @classmethod
    def from_kline(cls, row: Sequence[object]) -> "Candle":
        """Parse a Binance kline array ``[openTime, o, h, l, c, v, closeTime, ...]``."""

        if isinstance(row, (str, bytes)) or not isinstance(row, Sequence):
            raise MalformedKlineError(f"Kline record must be an array, got {type(row).__name__}")
        if len(row) < KLINE_FIELDS:
            raise MalformedKlineError(f"Kline record has {len(row)} fields, expected at least {KLINE_FIELDS}")
        open_time = _as_ms(row[0], "openTime")
        close_time = _as_ms(row[6], "closeTime")
        if close_time <= open_time:
            raise MalformedKlineError(f"closeTime {close_time} not after openTime {open_time}")
        candle = cls(
            open_time=open_time,
            open=_as_float(row[1], "open"),
            high=_as_float(row[2], "high"),
            low=_as_float(row[3], "low"),
            close=_as_float(row[4], "close"),
            volume=_as_float(row[5], "volume"),
            close_time=close_time,
        )
        if min(candle.open, candle.high, candle.low, candle.close, candle.volume) < 0:
            raise MalformedKlineError(f"Negative price or volume in kline at {open_time}")
        return candle

    def as_dict(self) -> Dict[str, float | int]:
        return {
            "openTime": self.open_time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "closeTime": self.close_time,
        }
