import asyncio

import httpx
import pytest

from klinefeed.config import DEFAULT_ENDPOINTS
from klinefeed.io.binance_rest import (
    BinanceKlinesFetcher,
    EndpointsExhaustedError,
    MalformedPayloadError,
    PageKind,
    UpstreamStatusError,
)
from klinefeed.io.http import build_client
from klinefeed.io.resilience import RetryPolicy
from klinefeed.utils.events import RecordingEventSink

MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000
BASE_MS = 1_700_000_040_000


def _fetcher(server, sleeper, **kwargs) -> BinanceKlinesFetcher:
    kwargs.setdefault("sink", RecordingEventSink())
    return BinanceKlinesFetcher(transport=server.transport(), sleep=sleeper, **kwargs)


def _assert_strictly_ordered(candles) -> None:
    open_times = [candle.open_time for candle in candles]
    assert open_times == sorted(set(open_times))


def test_single_short_page_stops_pagination(make_server, sleeper) -> None:
    server = make_server(BASE_MS, HOUR_MS, count=48)
    fetcher = _fetcher(server, sleeper)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1h", BASE_MS, BASE_MS + 2 * DAY_MS))

    assert len(candles) == 48
    assert len(server.requests) == 1
    request = server.requests[0]
    assert request.url.path == "/fapi/v1/klines"
    assert request.url.params["symbol"] == "BTCUSDT"
    assert request.url.params["interval"] == "1h"
    assert request.url.params["limit"] == "1500"
    assert request.url.params["endTime"] == str(BASE_MS + 2 * DAY_MS)
    assert sleeper.calls == []
    _assert_strictly_ordered(candles)


def test_full_pages_advance_cursor_past_last_close_time(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=12)
    sink = RecordingEventSink()
    fetcher = _fetcher(server, sleeper, batch_limit=5, sink=sink)

    candles = asyncio.run(fetcher.fetch_candles("btcusdt", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 12
    assert server.start_times() == [
        BASE_MS,
        BASE_MS + 5 * MINUTE_MS,
        BASE_MS + 10 * MINUTE_MS,
    ]
    assert server.requests[0].url.params["symbol"] == "BTCUSDT"
    assert sleeper.calls == [0.2, 0.2]
    assert sink.outcomes("page") == ["full", "full", "partial"]
    _assert_strictly_ordered(candles)


def test_empty_page_after_full_page_finishes_cleanly(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=10)
    sink = RecordingEventSink()
    fetcher = _fetcher(server, sleeper, batch_limit=5, sink=sink)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 10
    assert len(server.requests) == 3
    assert sink.outcomes("page") == ["full", "full", "empty"]


def test_pagination_stops_when_cursor_reaches_end(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS)
    fetcher = _fetcher(server, sleeper, batch_limit=5)

    end = BASE_MS + 5 * MINUTE_MS - 1
    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, end))

    assert len(candles) == 5
    assert len(server.requests) == 1


def test_cap_terminates_long_range_at_exactly_max_candles(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS)
    sink = RecordingEventSink()
    fetcher = _fetcher(server, sleeper, sink=sink)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + 200 * DAY_MS))

    assert len(candles) == 20_000
    assert len(server.requests) == 14
    assert candles[-1].open_time == BASE_MS + 19_999 * MINUTE_MS
    assert "cap_reached" in sink.outcomes("fetch")
    _assert_strictly_ordered(candles)


def test_small_cap_never_exceeded_mid_page(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS)
    fetcher = _fetcher(server, sleeper, batch_limit=5, max_candles=12)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 12
    assert len(server.requests) == 3


def test_failing_primary_endpoints_are_skipped_in_priority_order(make_server, sleeper) -> None:
    down = {"fapi.binance.com", "fapi1.binance.com"}
    server = make_server(BASE_MS, MINUTE_MS, count=7, down_hosts=down)
    fetcher = _fetcher(server, sleeper, batch_limit=5)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    reference_server = make_server(BASE_MS, MINUTE_MS, count=7)
    reference = _fetcher(reference_server, type(sleeper)(), endpoints=[DEFAULT_ENDPOINTS[2]], batch_limit=5)
    expected = asyncio.run(reference.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert candles == expected
    page_hosts = ["fapi.binance.com"] * 3 + ["fapi1.binance.com"] * 3 + ["fapi2.binance.com"]
    assert server.hosts == page_hosts * 2
    assert sleeper.calls == [1.0, 2.0, 1.0, 2.0, 0.2, 1.0, 2.0, 1.0, 2.0]


def test_http_error_status_fails_over_without_retrying(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=3, status_hosts={"fapi.binance.com": 503})
    sink = RecordingEventSink()
    fetcher = _fetcher(server, sleeper, sink=sink)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 3
    assert server.hosts == ["fapi.binance.com", "fapi1.binance.com"]
    failed = [event for event in sink.events if event.outcome == "failed"]
    assert failed[0].endpoint == DEFAULT_ENDPOINTS[0]
    assert "HTTP 503" in failed[0].error


def test_malformed_payload_fails_over(make_server, sleeper) -> None:
    server = make_server(
        BASE_MS,
        MINUTE_MS,
        count=3,
        payload_hosts={"fapi.binance.com": {"code": -1121, "msg": "Invalid symbol."}},
    )
    fetcher = _fetcher(server, sleeper)

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 3
    assert server.hosts == ["fapi.binance.com", "fapi1.binance.com"]


def test_all_endpoints_failing_raises_with_last_error(make_server, sleeper) -> None:
    statuses = {
        "fapi.binance.com": 500,
        "fapi1.binance.com": 502,
        "fapi2.binance.com": 503,
        "fapi3.binance.com": 504,
    }
    server = make_server(BASE_MS, MINUTE_MS, count=3, status_hosts=statuses)
    fetcher = _fetcher(server, sleeper)

    with pytest.raises(EndpointsExhaustedError) as info:
        asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    error = info.value
    assert isinstance(error.last_error, UpstreamStatusError)
    assert error.last_error.status_code == 504
    assert error.cursor == BASE_MS
    assert error.attempted == list(DEFAULT_ENDPOINTS)
    assert "HTTP 504" in str(error)


def test_failure_on_later_page_discards_earlier_pages(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=10)

    def handler(request: httpx.Request) -> httpx.Response:
        if server.requests:
            server.requests.append(request)
            return httpx.Response(500)
        return server(request)

    fetcher = BinanceKlinesFetcher(
        ["https://fapi.binance.com/fapi/v1"],
        batch_limit=5,
        transport=httpx.MockTransport(handler),
        sleep=sleeper,
        sink=RecordingEventSink(),
    )

    with pytest.raises(EndpointsExhaustedError) as info:
        asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))
    assert info.value.cursor == BASE_MS + 5 * MINUTE_MS
    assert len(server.requests) == 2


def test_fetch_page_classifies_outcomes(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=7, status_hosts={"fapi3.binance.com": 500})
    fetcher = _fetcher(server, sleeper, batch_limit=5, retry_policy=RetryPolicy(max_attempts=1))

    async def runner():
        async with build_client(transport=server.transport()) as client:
            full = await fetcher.fetch_page(client, DEFAULT_ENDPOINTS[0], "BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS)
            partial = await fetcher.fetch_page(
                client, DEFAULT_ENDPOINTS[0], "BTCUSDT", "1m", BASE_MS + 5 * MINUTE_MS, BASE_MS + DAY_MS
            )
            empty = await fetcher.fetch_page(
                client, DEFAULT_ENDPOINTS[0], "BTCUSDT", "1m", BASE_MS + 50 * MINUTE_MS, BASE_MS + DAY_MS
            )
            failed = await fetcher.fetch_page(client, DEFAULT_ENDPOINTS[3], "BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS)
            return full, partial, empty, failed

    full, partial, empty, failed = asyncio.run(runner())
    assert full.kind is PageKind.FULL and len(full.candles) == 5
    assert partial.kind is PageKind.PARTIAL and len(partial.candles) == 2 and partial.terminal
    assert empty.kind is PageKind.EMPTY and empty.candles == () and empty.terminal
    assert failed.kind is PageKind.FAILED and isinstance(failed.error, UpstreamStatusError)
    with pytest.raises(UpstreamStatusError):
        failed.unwrap()


def test_malformed_row_rejects_whole_page(make_server, sleeper) -> None:
    good = make_server(BASE_MS, MINUTE_MS, count=3)
    rows = good.rows_between(BASE_MS, BASE_MS + DAY_MS, 10)
    rows[1] = rows[1][:4]
    server = make_server(BASE_MS, MINUTE_MS, count=3, payload_hosts={"fapi.binance.com": rows})
    fetcher = _fetcher(server, sleeper, retry_policy=RetryPolicy(max_attempts=1))

    async def runner():
        async with build_client(transport=server.transport()) as client:
            return await fetcher.fetch_page(client, DEFAULT_ENDPOINTS[0], "BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS)

    page = asyncio.run(runner())
    assert page.kind is PageKind.FAILED
    assert isinstance(page.error, MalformedPayloadError)


def test_server_ignoring_start_time_does_not_loop(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=5)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=server.rows_between(BASE_MS, BASE_MS + DAY_MS, 5))

    fetcher = BinanceKlinesFetcher(
        ["https://fapi.binance.com/fapi/v1"],
        batch_limit=5,
        transport=httpx.MockTransport(handler),
        sleep=sleeper,
        sink=RecordingEventSink(),
    )

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 5
    assert len(requests) == 2
    assert sleeper.calls == [0.2]
    _assert_strictly_ordered(candles)


def test_page_repeating_previous_last_open_time_is_deduplicated(make_server, sleeper) -> None:
    server = make_server(BASE_MS, MINUTE_MS, count=12)
    start_times = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        start = int(params["startTime"])
        start_times.append(start)
        if start > BASE_MS:
            start -= MINUTE_MS
        rows = server.rows_between(start, int(params["endTime"]), int(params["limit"]))
        return httpx.Response(200, json=rows)

    fetcher = BinanceKlinesFetcher(
        ["https://fapi.binance.com/fapi/v1"],
        batch_limit=5,
        transport=httpx.MockTransport(handler),
        sleep=sleeper,
        sink=RecordingEventSink(),
    )

    candles = asyncio.run(fetcher.fetch_candles("BTCUSDT", "1m", BASE_MS, BASE_MS + DAY_MS))

    assert len(candles) == 12
    assert [candle.open_time for candle in candles] == [BASE_MS + i * MINUTE_MS for i in range(12)]
    assert start_times == [BASE_MS, BASE_MS + 5 * MINUTE_MS, BASE_MS + 9 * MINUTE_MS]
