from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import httpx
import pytest


class KlineServer:
    """In-memory stand-in for the futures ``/klines`` endpoint.

    Serves a contiguous 1-interval series starting at ``base_ms``; hosts in
    ``down_hosts`` raise a connection error and hosts in ``status_hosts``
    answer with the given HTTP status.
    """

    def __init__(
        self,
        base_ms: int,
        interval_ms: int,
        count: Optional[int] = None,
        *,
        down_hosts: Iterable[str] = (),
        status_hosts: Optional[Dict[str, int]] = None,
        payload_hosts: Optional[Dict[str, object]] = None,
    ) -> None:
        self.base_ms = base_ms
        self.interval_ms = interval_ms
        self.count = count
        self.down_hosts = set(down_hosts)
        self.status_hosts = dict(status_hosts or {})
        self.payload_hosts = dict(payload_hosts or {})
        self.requests: List[httpx.Request] = []

    def row(self, idx: int) -> list:
        open_time = self.base_ms + idx * self.interval_ms
        price = 100.0 + idx * 0.01
        return [
            open_time,
            f"{price:.2f}",
            f"{price + 1:.2f}",
            f"{price - 0.5:.2f}",
            f"{price + 0.2:.2f}",
            "12.500",
            open_time + self.interval_ms - 1,
            "1250.0",
            10,
            "6.0",
            "600.0",
            "0",
        ]

    def rows_between(self, start_ms: int, end_ms: int, limit: int) -> list:
        idx = max(0, -(-(start_ms - self.base_ms) // self.interval_ms))
        rows = []
        while len(rows) < limit and (self.count is None or idx < self.count):
            if self.base_ms + idx * self.interval_ms > end_ms:
                break
            rows.append(self.row(idx))
            idx += 1
        return rows

    @property
    def hosts(self) -> List[str]:
        return [request.url.host for request in self.requests]

    def start_times(self) -> List[int]:
        return [int(request.url.params["startTime"]) for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.down_hosts:
            raise httpx.ConnectError("connection refused", request=request)
        if host in self.status_hosts:
            return httpx.Response(self.status_hosts[host], json={"code": -1, "msg": "unavailable"})
        if host in self.payload_hosts:
            return httpx.Response(200, json=self.payload_hosts[host])
        params = request.url.params
        rows = self.rows_between(int(params["startTime"]), int(params["endTime"]), int(params["limit"]))
        return httpx.Response(200, json=rows)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def make_server():
    return KlineServer


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
