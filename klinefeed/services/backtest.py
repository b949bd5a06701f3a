"""Source selection and backtest orchestration for a single request."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, Tuple

from pydantic import ValidationError

from ..api.dto import BacktestRequest
from ..backtest.engine import BacktestConfig, BacktestEngine
from ..config import Settings
from ..io.binance_rest import BinanceKlinesFetcher
from ..io.resilience import describe_error, with_fallback
from ..io.synthetic import SyntheticCandleGenerator
from ..models import Candle
from ..utils.logging import get_logger
from ..utils.timeframes import candles_needed

LOGGER = get_logger(__name__)

REQUIRED_FIELDS = ("startDate", "endDate", "initialCapital", "tradingConfig")
REQUIRED_TRADING_FIELDS = ("symbol", "interval")

DATA_SOURCE_REMOTE = "binance-public"
DATA_SOURCE_GENERATED = "generated"

MAX_CANDLES = 20_000
DISPLAY_CANDLES = 500


class MissingFieldsError(ValueError):
    """The request is missing required fields or carries invalid values."""

    def __init__(self, message: str, fields: Sequence[str] = ()) -> None:
        self.fields = list(fields)
        super().__init__(message)


class NoCandlesError(LookupError):
    """Neither the exchange nor the generator produced candles for the range."""


class CandleFetcher(Protocol):
    async def fetch_candles(self, symbol: str, interval: str, start_time: int, end_time: int) -> List[Candle]:
        ...


class CandleGenerator(Protocol):
    def generate(self, symbol: str, interval: str, count: int, start_date: int, end_date: int) -> List[Candle]:
        ...


class Engine(Protocol):
    def run(self, candles: Sequence[Candle]) -> Dict[str, Any]:
        ...


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def validate_request(payload: Any) -> BacktestRequest:
    """Check required fields first, then value types and ranges."""

    if not isinstance(payload, Mapping):
        raise MissingFieldsError("Request body must be a JSON object")
    missing = [name for name in REQUIRED_FIELDS if payload.get(name) is None]
    trading_config = payload.get("tradingConfig")
    if trading_config is not None:
        if not isinstance(trading_config, Mapping):
            raise MissingFieldsError("tradingConfig must be an object", ["tradingConfig"])
        missing.extend(
            f"tradingConfig.{name}" for name in REQUIRED_TRADING_FIELDS if not trading_config.get(name)
        )
    if missing:
        raise MissingFieldsError(f"Missing required fields: {', '.join(missing)}", missing)

    try:
        return BacktestRequest.model_validate(payload)
    except ValidationError as exc:
        problems = []
        fields = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "body"
            fields.append(location)
            problems.append(f"{location}: {error.get('msg')}")
        raise MissingFieldsError(f"Invalid request: {'; '.join(problems)}", fields) from exc


class BacktestService:
    """Fetch candles (remote first, synthetic second) and run the engine on them."""

    def __init__(
        self,
        fetcher: CandleFetcher,
        generator: CandleGenerator | None = None,
        engine_factory: Callable[[BacktestConfig], Engine] = BacktestEngine,
        *,
        max_candles: int = MAX_CANDLES,
        display_candles: int = DISPLAY_CANDLES,
    ) -> None:
        self.fetcher = fetcher
        self.generator = generator or SyntheticCandleGenerator()
        self.engine_factory = engine_factory
        self.max_candles = max(1, int(max_candles))
        self.display_candles = max(0, int(display_candles))

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "BacktestService":
        kwargs.setdefault("fetcher", BinanceKlinesFetcher.from_settings(settings.fetch))
        return cls(
            max_candles=settings.fetch.max_candles,
            display_candles=settings.backtest.display_candles,
            **kwargs,
        )

    async def acquire(self, request: BacktestRequest) -> Tuple[List[Candle], str]:
        """Return the candle sequence for ``request`` and the tag of its source."""

        symbol, interval = request.symbol, request.interval
        LOGGER.info(
            "Fetching historical data for %s %s from %s to %s",
            symbol,
            interval,
            _iso(request.start_date),
            _iso(request.end_date),
        )

        async def remote() -> List[Candle]:
            return await self.fetcher.fetch_candles(symbol, interval, request.start_date, request.end_date)

        async def synthetic() -> List[Candle]:
            count = candles_needed(request.start_date, request.end_date, interval, self.max_candles)
            LOGGER.info("Using synthetic data for %s %s (%s candles requested)", symbol, interval, count)
            return self.generator.generate(symbol, interval, count, request.start_date, request.end_date)

        def log_remote_failure(exc: BaseException) -> None:
            LOGGER.warning(
                "Remote fetch failed for %s %s [%s, %s], falling back to synthetic data: %s",
                symbol,
                interval,
                request.start_date,
                request.end_date,
                describe_error(exc),
            )

        outcome = await with_fallback(remote, synthetic, on_error=log_remote_failure)
        candles: List[Candle] = list(outcome.value or [])
        source = DATA_SOURCE_GENERATED if outcome.used_fallback else DATA_SOURCE_REMOTE
        if candles and not outcome.used_fallback:
            LOGGER.info(
                "Fetched %s candles from exchange (%s .. %s)",
                len(candles),
                _iso(candles[0].open_time),
                _iso(candles[-1].close_time),
            )
        return candles, source

    async def run(self, payload: Any) -> Dict[str, Any]:
        request = validate_request(payload)
        candles, source = await self.acquire(request)
        if not candles:
            raise NoCandlesError("No candles found for specified date range")

        engine = self.engine_factory(
            BacktestConfig(
                start_date=request.start_date,
                end_date=request.end_date,
                initial_capital=request.initial_capital,
                trading_config=request.trading_config_dict(),
            )
        )
        LOGGER.info("Running backtest on %s %s candles", len(candles), source)
        result = dict(engine.run(candles))

        display = candles[-self.display_candles :] if self.display_candles else []
        result.update(
            {
                "candles": [candle.as_dict() for candle in display],
                "dataSource": source,
                "totalCandles": len(candles),
            }
        )
        return result
