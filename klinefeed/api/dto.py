"""DTOs for FastAPI endpoints."""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class TradingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    symbol: str = Field(min_length=1)
    interval: str = Field(min_length=1)


class BacktestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: int = Field(alias="startDate", ge=0)
    end_date: int = Field(alias="endDate", ge=0)
    initial_capital: float = Field(alias="initialCapital", gt=0)
    trading_config: TradingConfig = Field(alias="tradingConfig")

    @property
    def symbol(self) -> str:
        return self.trading_config.symbol

    @property
    def interval(self) -> str:
        return self.trading_config.interval

    def trading_config_dict(self) -> Dict[str, Any]:
        return self.trading_config.model_dump()


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    endpoints: List[str] = Field(default_factory=list)
