"""Paginated Binance futures kline retrieval with endpoint failover."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..config import DEFAULT_ENDPOINTS, DEFAULT_USER_AGENT, FetchSettings
from ..models import Candle, MalformedKlineError
from ..utils.events import EventSink, FetchEvent, LoggingEventSink
from ..utils.logging import get_logger
from .http import build_client, fetch_with_retry
from .resilience import AllCandidatesFailed, RetryPolicy, Sleep, describe_error, with_failover

LOGGER = get_logger(__name__)

BATCH_LIMIT = 1500
MAX_CANDLES = 20_000
COOLDOWN_MS = 200


class FetchError(RuntimeError):
    """Base class for remote kline retrieval failures."""


class UpstreamStatusError(FetchError):
    def __init__(self, endpoint: str, status_code: int, reason: str = "") -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}")


class MalformedPayloadError(FetchError):
    """The endpoint answered, but not with an array of kline records."""


class EndpointsExhaustedError(FetchError):
    def __init__(
        self,
        symbol: str,
        interval: str,
        cursor: int,
        attempted: Sequence[str],
        last_error: BaseException | None,
    ) -> None:
        self.symbol = symbol
        self.interval = interval
        self.cursor = cursor
        self.attempted = list(attempted)
        self.last_error = last_error
        super().__init__(
            f"Failed to fetch {symbol} {interval} from all {len(self.attempted)} endpoints "
            f"at cursor {cursor}. Last error: {describe_error(last_error)}"
        )


class PageKind(str, Enum):
    EMPTY = "empty"
    PARTIAL = "partial"
    FULL = "full"
    FAILED = "failed"


@dataclass(frozen=True)
class PageResult:
    """Outcome of requesting one page from one endpoint."""

    kind: PageKind
    endpoint: str
    candles: Tuple[Candle, ...] = ()
    error: Optional[BaseException] = None

    @property
    def terminal(self) -> bool:
        return self.kind in (PageKind.EMPTY, PageKind.PARTIAL)

    def unwrap(self) -> "PageResult":
        if self.kind is PageKind.FAILED:
            raise self.error or FetchError(f"Page request to {self.endpoint} failed")
        return self


@dataclass
class FetchWindow:
    current_start: int
    end_time: int
    max_candles: int

    def has_more(self, accumulated: int) -> bool:
        return self.current_start < self.end_time and accumulated < self.max_candles

    def advance(self, last: Candle) -> bool:
        """Move past ``last``; returns False when the cursor would not progress."""
        next_start = last.close_time + 1
        if next_start <= self.current_start:
            return False
        self.current_start = next_start
        return True


def _append_ordered(target: List[Candle], incoming: Sequence[Candle]) -> int:
    added = 0
    last_open = target[-1].open_time if target else None
    for candle in incoming:
        if last_open is not None and candle.open_time <= last_open:
            continue
        target.append(candle)
        last_open = candle.open_time
        added += 1
    return added


class BinanceKlinesFetcher:
    """Fetch klines across a date range, trying endpoints in priority order per page."""

    def __init__(
        self,
        endpoints: Sequence[str] | None = None,
        *,
        batch_limit: int = BATCH_LIMIT,
        max_candles: int = MAX_CANDLES,
        retry_policy: RetryPolicy | None = None,
        cooldown_ms: int = COOLDOWN_MS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        sink: EventSink | None = None,
    ) -> None:
        self.endpoints = [endpoint.rstrip("/") for endpoint in (endpoints or DEFAULT_ENDPOINTS)]
        if not self.endpoints:
            raise ValueError("at least one endpoint is required")
        self.batch_limit = max(1, int(batch_limit))
        self.max_candles = max(1, int(max_candles))
        self.retry_policy = retry_policy or RetryPolicy()
        self.cooldown_ms = max(0, int(cooldown_ms))
        self.user_agent = user_agent
        self.transport = transport
        self.sleep = sleep
        self.sink: EventSink = sink or LoggingEventSink(LOGGER)

    @classmethod
    def from_settings(cls, settings: FetchSettings, **kwargs: Any) -> "BinanceKlinesFetcher":
        return cls(
            settings.endpoints,
            batch_limit=settings.batch_limit,
            max_candles=settings.max_candles,
            retry_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                timeout_ms=settings.timeout_ms,
                backoff_ms=settings.backoff_ms,
            ),
            cooldown_ms=settings.cooldown_ms,
            user_agent=settings.user_agent,
            **kwargs,
        )

    def _params(self, symbol: str, interval: str, start_ms: int, end_ms: int) -> Dict[str, Any]:
        return {
            "symbol": symbol.upper(),
            "interval": interval,
            "startTime": int(start_ms),
            "endTime": int(end_ms),
            "limit": self.batch_limit,
        }

    @staticmethod
    def _parse(response: httpx.Response) -> List[Candle]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"Response is not JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise MalformedPayloadError(f"Expected a kline array, got {type(payload).__name__}")
        try:
            return [Candle.from_kline(row) for row in payload]
        except MalformedKlineError as exc:
            raise MalformedPayloadError(str(exc)) from exc

    async def fetch_page(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
    ) -> PageResult:
        """Request one page from ``endpoint`` and classify the outcome."""

        try:
            response = await fetch_with_retry(
                client,
                f"{endpoint}/klines",
                self._params(symbol, interval, start_ms, end_ms),
                policy=self.retry_policy,
                sleep=self.sleep,
                sink=self.sink,
            )
            if not response.is_success:
                raise UpstreamStatusError(endpoint, response.status_code, response.reason_phrase)
            candles = self._parse(response)
        except Exception as exc:
            return PageResult(PageKind.FAILED, endpoint, error=exc)

        if not candles:
            return PageResult(PageKind.EMPTY, endpoint)
        kind = PageKind.PARTIAL if len(candles) < self.batch_limit else PageKind.FULL
        return PageResult(kind, endpoint, candles=tuple(candles))

    async def _attempt_page(
        self,
        client: httpx.AsyncClient,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        endpoint: str,
    ) -> PageResult:
        page = await self.fetch_page(client, endpoint, symbol, interval, start_ms, end_ms)
        return page.unwrap()

    async def fetch_candles(self, symbol: str, interval: str, start_time: int, end_time: int) -> List[Candle]:
        """Return candles in ``[start_time, end_time]`` ordered by open time, capped at ``max_candles``.

        Raises :class:`EndpointsExhaustedError` as soon as one page cannot be
        served by any endpoint; candles from earlier pages are discarded.
        """

        window = FetchWindow(int(start_time), int(end_time), self.max_candles)
        candles: List[Candle] = []

        async with build_client(self.user_agent, self.transport) as client:
            while window.has_more(len(candles)):
                cursor = window.current_start
                attempt = partial(self._attempt_page, client, symbol, interval, cursor, window.end_time)
                try:
                    page = await with_failover(self.endpoints, attempt, sink=self.sink, stage="page", cursor=cursor)
                except AllCandidatesFailed as exc:
                    self.sink(
                        FetchEvent(
                            "fetch",
                            "exhausted",
                            cursor=cursor,
                            count=len(candles),
                            error=describe_error(exc.last_error),
                        )
                    )
                    raise EndpointsExhaustedError(symbol, interval, cursor, exc.attempted, exc.last_error) from exc

                self.sink(
                    FetchEvent("page", page.kind.value, endpoint=page.endpoint, cursor=cursor, count=len(page.candles))
                )
                _append_ordered(candles, page.candles)

                if page.terminal or len(candles) >= self.max_candles:
                    break
                if not window.advance(page.candles[-1]):
                    LOGGER.warning(
                        "Cursor for %s %s did not advance past %s; stopping pagination",
                        symbol,
                        interval,
                        cursor,
                    )
                    break
                if self.cooldown_ms:
                    await self.sleep(self.cooldown_ms / 1000.0)

        if len(candles) >= self.max_candles:
            self.sink(FetchEvent("fetch", "cap_reached", count=self.max_candles))
            del candles[self.max_candles :]
        self.sink(FetchEvent("fetch", "complete", count=len(candles)))
        return candles
