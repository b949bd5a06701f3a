"""Backtest engine consuming candle sequences."""

from .engine import BacktestConfig, BacktestEngine

__all__ = ["BacktestConfig", "BacktestEngine"]
