"""Performance metric helpers for backtests."""
from __future__ import annotations

import math

import numpy as np
import pandas as pd


def _finite(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0


def compute_returns(equity: pd.Series) -> pd.Series:
    return equity.pct_change().fillna(0.0)


def sharpe_ratio(returns: pd.Series, risk_free: float = 0.0) -> float:
    if len(returns) < 2:
        return 0.0
    excess = returns - risk_free / max(len(returns), 1)
    std = excess.std()
    if not std:
        return 0.0
    return float(np.sqrt(len(returns)) * excess.mean() / std)


def sortino_ratio(returns: pd.Series, risk_free: float = 0.0) -> float:
    downside = returns[returns < 0]
    if len(downside) < 2:
        return 0.0
    downside_std = downside.std()
    if not downside_std:
        return 0.0
    avg_excess = returns.mean() - risk_free / max(len(returns), 1)
    return float(avg_excess / downside_std)


def max_drawdown(equity: pd.Series) -> float:
    if equity.empty:
        return 0.0
    running_max = equity.cummax()
    drawdowns = (equity - running_max) / running_max
    return float(drawdowns.min())


def hit_rate(trades: pd.DataFrame) -> float:
    if trades.empty or "pnl" not in trades:
        return 0.0
    wins = (trades["pnl"] > 0).sum()
    return float(wins / len(trades))


def average_return(trades: pd.DataFrame) -> float:
    if trades.empty or "pnl" not in trades:
        return 0.0
    return float(trades["pnl"].mean())


def summary(equity: pd.Series, trades: pd.DataFrame) -> dict[str, float]:
    returns = compute_returns(equity)
    stats = {
        "sharpe": sharpe_ratio(returns),
        "sortino": sortino_ratio(returns),
        "max_drawdown": max_drawdown(equity),
        "volatility": float(returns.std()) if len(returns) > 1 else 0.0,
        "hit_rate": hit_rate(trades),
        "average_trade": average_return(trades),
    }
    return {key: _finite(value) for key, value in stats.items()}
