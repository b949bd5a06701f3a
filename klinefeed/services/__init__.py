from .backtest import (
    DATA_SOURCE_GENERATED,
    DATA_SOURCE_REMOTE,
    BacktestService,
    MissingFieldsError,
    NoCandlesError,
    validate_request,
)

__all__ = [
    "BacktestService",
    "DATA_SOURCE_GENERATED",
    "DATA_SOURCE_REMOTE",
    "MissingFieldsError",
    "NoCandlesError",
    "validate_request",
]
