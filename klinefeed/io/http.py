"""Single-URL HTTP fetch with per-attempt timeout and linear backoff."""
from __future__ import annotations

import asyncio
from typing import Any, Mapping

import httpx

from ..config import DEFAULT_USER_AGENT
from ..utils.events import EventSink, null_sink
from .resilience import RetryPolicy, Sleep, with_retry

DEFAULT_RETRY_POLICY = RetryPolicy()


def build_client(
    user_agent: str = DEFAULT_USER_AGENT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    # Attempt timeouts are enforced by with_retry, not by httpx.
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent, "Accept": "application/json"},
        timeout=None,
        follow_redirects=True,
        transport=transport,
    )


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    params: Mapping[str, Any] | None = None,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
    sink: EventSink = null_sink,
) -> httpx.Response:
    """GET ``url`` with up to ``policy.max_attempts`` attempts.

    Network errors and timeouts are retried after ``backoff_ms * attempt``;
    once attempts are exhausted the last error is re-raised. Any HTTP
    response, whatever its status, is returned to the caller.
    """

    async def _get() -> httpx.Response:
        return await client.get(url, params=dict(params) if params else None)

    return await with_retry(_get, policy, sleep=sleep, sink=sink, stage="http", label=url)()
