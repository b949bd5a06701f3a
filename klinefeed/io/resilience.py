"""Composable retry, failover and fallback layers.

The acquisition pipeline is built from three independent layers:

* :func:`with_retry` repeats one call with a per-attempt timeout and a
  linear backoff between attempts;
* :func:`with_failover` walks an ordered list of equivalent candidates and
  returns the first one that succeeds;
* :func:`with_fallback` swaps in a secondary source when the primary one
  fails or comes back empty.

Timers are parameters (``sleep`` and the :class:`RetryPolicy`) so tests can
run the whole chain without real delays.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, Type, TypeVar

import httpx

from ..utils.events import EventSink, FetchEvent, null_sink

T = TypeVar("T")
C = TypeVar("C")

Sleep = Callable[[float], Awaitable[None]]

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (httpx.TransportError, asyncio.TimeoutError)


def describe_error(exc: BaseException | None) -> str:
    if exc is None:
        return "unknown error"
    message = str(exc)
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    timeout_ms: int = 30_000
    backoff_ms: int = 1_000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        return max(0, self.backoff_ms) * attempt / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


def with_retry(
    call: Callable[..., Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Sleep = asyncio.sleep,
    sink: EventSink = null_sink,
    stage: str = "http",
    label: str | None = None,
) -> Callable[..., Awaitable[T]]:
    """Wrap ``call`` so each attempt is time-boxed and failures are retried."""

    async def wrapper(*args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(call(*args, **kwargs), timeout=policy.timeout_seconds)
            except retry_on as exc:
                if attempt >= policy.max_attempts:
                    sink(FetchEvent(stage, "exhausted", attempt=attempt, endpoint=label, error=describe_error(exc)))
                    raise
                sink(FetchEvent(stage, "retry", attempt=attempt, endpoint=label, error=describe_error(exc)))
                await sleep(policy.delay_for(attempt))

    return wrapper


class AllCandidatesFailed(RuntimeError):
    """Raised by :func:`with_failover` when no candidate succeeded."""

    def __init__(self, attempted: Sequence[object], last_error: BaseException | None) -> None:
        self.attempted = list(attempted)
        self.last_error = last_error
        super().__init__(
            f"All {len(self.attempted)} candidates failed. Last error: {describe_error(last_error)}"
        )


async def with_failover(
    candidates: Sequence[C],
    attempt: Callable[[C], Awaitable[T]],
    *,
    sink: EventSink = null_sink,
    stage: str = "failover",
    cursor: int | None = None,
) -> T:
    """Return the result of the first candidate, in order, whose ``attempt`` does not raise."""

    last_error: BaseException | None = None
    attempted: List[C] = []
    for candidate in candidates:
        attempted.append(candidate)
        try:
            return await attempt(candidate)
        except Exception as exc:
            last_error = exc
            sink(FetchEvent(stage, "failed", endpoint=str(candidate), cursor=cursor, error=describe_error(exc)))
    raise AllCandidatesFailed(attempted, last_error)


@dataclass
class FallbackOutcome:
    value: Any
    used_fallback: bool
    primary_error: Optional[BaseException] = field(default=None)


async def with_fallback(
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Awaitable[T]],
    *,
    is_empty: Callable[[T], bool] = lambda value: not value,
    on_error: Callable[[BaseException], None] | None = None,
) -> FallbackOutcome:
    """Run ``primary``; use ``fallback`` when it raises or returns an empty value."""

    primary_error: BaseException | None = None
    try:
        value = await primary()
    except Exception as exc:
        primary_error = exc
        if on_error is not None:
            on_error(exc)
    else:
        if not is_empty(value):
            return FallbackOutcome(value=value, used_fallback=False)
    return FallbackOutcome(value=await fallback(), used_fallback=True, primary_error=primary_error)
