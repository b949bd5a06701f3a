"""Structured diagnostic events emitted by the acquisition pipeline.

Fetch stages report what happened (stage, attempt, endpoint, outcome) to an
``EventSink`` instead of logging inline. The default sink forwards events
to the standard logger; tests use :class:`RecordingEventSink` to assert on
the exact sequence of outcomes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .logging import get_logger

LOGGER = get_logger("klinefeed.events")

FAILURE_OUTCOMES = frozenset({"retry", "failed", "exhausted"})


@dataclass(frozen=True)
class FetchEvent:
    stage: str
    outcome: str
    attempt: Optional[int] = None
    endpoint: Optional[str] = None
    cursor: Optional[int] = None
    count: Optional[int] = None
    error: Optional[str] = None

    def describe(self) -> str:
        parts = [f"stage={self.stage}", f"outcome={self.outcome}"]
        for name in ("attempt", "endpoint", "cursor", "count", "error"):
            value = getattr(self, name)
            if value is not None:
                parts.append(f"{name}={value}")
        return " ".join(parts)


class EventSink(Protocol):
    def __call__(self, event: FetchEvent) -> None:
        ...


class LoggingEventSink:
    """Forward events to a logger, failures at WARNING."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or LOGGER

    def __call__(self, event: FetchEvent) -> None:
        level = logging.WARNING if event.outcome in FAILURE_OUTCOMES else logging.DEBUG
        if event.stage == "fetch" and level == logging.DEBUG:
            level = logging.INFO
        self.logger.log(level, "%s", event.describe())


@dataclass
class RecordingEventSink:
    events: List[FetchEvent] = field(default_factory=list)

    def __call__(self, event: FetchEvent) -> None:
        self.events.append(event)

    def outcomes(self, stage: str | None = None) -> List[str]:
        return [event.outcome for event in self.events if stage is None or event.stage == stage]


def null_sink(event: FetchEvent) -> None:
    """Discard events."""
