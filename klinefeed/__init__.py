"""Resilient historical kline acquisition feeding a backtest engine."""

__version__ = "0.1.0"
