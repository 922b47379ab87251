"""Structured telemetry for recomputation passes.

Every pass reports its lifecycle as :class:`RecomputeEvent` kinds, always
tagged with the account.  Sinks decide where those go; the logging sink
raises failures and stale accounts to WARNING so they surface without a
metrics backend.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class RecomputeEvent(str, Enum):
    START = "score.recompute.start"
    COMPLETE = "score.recompute.complete"
    RETRY = "score.recompute.retry"
    FAILED = "score.recompute.failed"
    STALE = "score.recompute.stale"
    SUPERSEDED = "score.recompute.superseded"
    COALESCED = "score.recompute.coalesced"

    @property
    def log_level(self) -> int:
        if self in (RecomputeEvent.FAILED, RecomputeEvent.STALE):
            return logging.WARNING
        return logging.INFO


@dataclass
class TelemetryEvent:
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    timestamp_ms: float = field(default_factory=lambda: time.time() * 1000)

    @classmethod
    def recompute(
        cls, kind: RecomputeEvent, account_id: str, **attributes: Any,
    ) -> TelemetryEvent:
        """Build a ``score.recompute.*`` event for *account_id*."""
        return cls(name=kind.value, attributes={"account_id": account_id, **attributes})

    @property
    def account_id(self) -> str | None:
        return self.attributes.get("account_id")

    @property
    def log_level(self) -> int:
        try:
            return RecomputeEvent(self.name).log_level
        except ValueError:
            return logging.INFO


@runtime_checkable
class TelemetrySink(Protocol):
    def emit(self, event: TelemetryEvent) -> None: ...


class NoOpTelemetrySink:
    def emit(self, event: TelemetryEvent) -> None:
        _ = event


class InMemoryTelemetrySink:
    """Keeps every event; tests query it by kind or account."""

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def emit(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e.name == name]

    def for_account(self, account_id: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e.account_id == account_id]


class LoggerTelemetrySink:
    """Writes events through :mod:`logging`, one record per event."""

    def __init__(self, logger_name: str = "pqa_engine.telemetry") -> None:
        self.logger = logging.getLogger(logger_name)

    def emit(self, event: TelemetryEvent) -> None:
        self.logger.log(
            event.log_level,
            "account=%s %s",
            event.account_id or "-",
            event.name,
            extra={
                "event_name": event.name,
                "event_timestamp_ms": event.timestamp_ms,
                "event_attributes": event.attributes,
            },
        )
