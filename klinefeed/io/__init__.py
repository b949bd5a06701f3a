"""Remote and synthetic candle sources."""

from .binance_rest import BinanceKlinesFetcher, EndpointsExhaustedError
from .synthetic import SyntheticCandleGenerator

__all__ = ["BinanceKlinesFetcher", "EndpointsExhaustedError", "SyntheticCandleGenerator"]
