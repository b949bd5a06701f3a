"""Moving-average crossover backtest over a candle sequence."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from ..models import Candle
from ..utils.logging import get_logger
from .metrics import summary

LOGGER = get_logger(__name__)


@dataclass
class BacktestConfig:
    start_date: int
    end_date: int
    initial_capital: float
    trading_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Trade:
    entry_time: int
    exit_time: int
    side: str
    size: float
    entry_price: float
    exit_price: float
    pnl: float
    holding_period: int

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "entryTime": data["entry_time"],
            "exitTime": data["exit_time"],
            "side": data["side"],
            "size": data["size"],
            "entryPrice": data["entry_price"],
            "exitPrice": data["exit_price"],
            "pnl": data["pnl"],
            "holdingPeriod": data["holding_period"],
        }


def _int_param(config: Mapping[str, Any], key: str, default: int) -> int:
    try:
        value = int(config.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"tradingConfig.{key} must be an integer") from exc
    if value < 1:
        raise ValueError(f"tradingConfig.{key} must be at least 1")
    return value


def _float_param(config: Mapping[str, Any], key: str, default: float) -> float:
    try:
        return float(config.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"tradingConfig.{key} must be a number") from exc


class BacktestEngine:
    """Long-only crossover strategy: enter when the fast SMA is above the slow SMA."""

    def __init__(self, config: BacktestConfig) -> None:
        self.config = config
        params = config.trading_config or {}
        self.fast_period = _int_param(params, "fastPeriod", 10)
        self.slow_period = _int_param(params, "slowPeriod", 30)
        if self.fast_period >= self.slow_period:
            raise ValueError("tradingConfig.fastPeriod must be smaller than slowPeriod")
        self.fee_bps = max(0.0, _float_param(params, "feeBps", 4.0))
        self.position_size = min(1.0, max(0.0, _float_param(params, "positionSize", 1.0)))

    def run(self, candles: Sequence[Candle]) -> Dict[str, Any]:
        if not candles:
            raise ValueError("Cannot run a backtest without candles")

        frame = pd.DataFrame(
            {"open_time": [c.open_time for c in candles], "close": [c.close for c in candles]}
        )
        fast = frame["close"].rolling(self.fast_period, min_periods=self.fast_period).mean()
        slow = frame["close"].rolling(self.slow_period, min_periods=self.slow_period).mean()
        signal = (fast > slow).tolist()

        fee_rate = self.fee_bps / 10_000.0
        cash = float(self.config.initial_capital)
        units = 0.0
        entry_price = 0.0
        entry_cost = 0.0
        entry_index: Optional[int] = None
        trades: List[Trade] = []
        equity: List[float] = []

        def _close_position(index: int, price: float) -> None:
            nonlocal cash, units, entry_index
            proceeds = units * price * (1.0 - fee_rate)
            cash += proceeds
            trades.append(
                Trade(
                    entry_time=int(frame["open_time"].iat[entry_index]),
                    exit_time=int(frame["open_time"].iat[index]),
                    side="long",
                    size=units,
                    entry_price=entry_price,
                    exit_price=price,
                    pnl=proceeds - entry_cost,
                    holding_period=index - entry_index,
                )
            )
            units = 0.0
            entry_index = None

        for index, (price, long_signal) in enumerate(zip(frame["close"].tolist(), signal)):
            if long_signal and entry_index is None and self.position_size > 0:
                entry_cost = cash * self.position_size
                units = entry_cost * (1.0 - fee_rate) / price
                cash -= entry_cost
                entry_price = price
                entry_index = index
            elif not long_signal and entry_index is not None:
                _close_position(index, price)
            equity.append(cash + units * price)

        if entry_index is not None:
            last = len(frame) - 1
            _close_position(last, float(frame["close"].iat[last]))
            equity[-1] = cash

        equity_series = pd.Series(equity, index=frame["open_time"])
        trades_df = pd.DataFrame([asdict(trade) for trade in trades])
        final_equity = float(equity_series.iloc[-1])
        initial = float(self.config.initial_capital)
        LOGGER.info(
            "Backtest finished: %s candles, %s trades, final equity %.2f",
            len(candles),
            len(trades),
            final_equity,
        )
        return {
            "initialCapital": initial,
            "finalEquity": final_equity,
            "totalReturn": (final_equity / initial - 1.0) if initial else 0.0,
            "numTrades": len(trades),
            "trades": [trade.as_dict() for trade in trades],
            "equityCurve": [
                {"time": int(ts), "equity": float(value)} for ts, value in equity_series.items()
            ],
            "metrics": summary(equity_series, trades_df),
        }
