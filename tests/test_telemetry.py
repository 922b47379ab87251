"""Tests for pqa_engine.telemetry and recompute lifecycle events."""

from __future__ import annotations

import logging

import pytest

from pqa_engine.telemetry import (
    InMemoryTelemetrySink,
    LoggerTelemetrySink,
    NoOpTelemetrySink,
    RecomputeEvent,
    TelemetryEvent,
    TelemetrySink,
)


class TestEvents:
    def test_recompute_constructor_tags_account(self):
        event = TelemetryEvent.recompute(RecomputeEvent.RETRY, "acme", attempt=2)
        assert event.name == "score.recompute.retry"
        assert event.account_id == "acme"
        assert event.attributes == {"account_id": "acme", "attempt": 2}

    @pytest.mark.parametrize(
        ("kind", "level"),
        [
            (RecomputeEvent.STALE, logging.WARNING),
            (RecomputeEvent.FAILED, logging.WARNING),
            (RecomputeEvent.RETRY, logging.INFO),
            (RecomputeEvent.COMPLETE, logging.INFO),
        ],
    )
    def test_log_levels(self, kind, level):
        assert TelemetryEvent.recompute(kind, "acme").log_level == level

    def test_unknown_event_logs_at_info(self):
        assert TelemetryEvent("cache.warm").log_level == logging.INFO
        assert TelemetryEvent("cache.warm").account_id is None


class TestSinks:
    def test_sinks_satisfy_protocol(self):
        for sink in (NoOpTelemetrySink(), InMemoryTelemetrySink(), LoggerTelemetrySink()):
            assert isinstance(sink, TelemetrySink)

    def test_in_memory_queries(self):
        sink = InMemoryTelemetrySink()
        sink.emit(TelemetryEvent.recompute(RecomputeEvent.START, "a"))
        sink.emit(TelemetryEvent.recompute(RecomputeEvent.COMPLETE, "a"))
        sink.emit(TelemetryEvent.recompute(RecomputeEvent.START, "b"))
        assert [e.account_id for e in sink.named(RecomputeEvent.START)] == ["a", "b"]
        assert [e.name for e in sink.for_account("a")] == [
            "score.recompute.start",
            "score.recompute.complete",
        ]

    def test_logger_levels(self, caplog):
        caplog.set_level(logging.INFO, logger="pqa_engine.telemetry")
        sink = LoggerTelemetrySink()
        sink.emit(TelemetryEvent.recompute(RecomputeEvent.COMPLETE, "a"))
        sink.emit(TelemetryEvent.recompute(RecomputeEvent.STALE, "a", attempts=3))
        assert [(r.message, r.levelno) for r in caplog.records] == [
            ("account=a score.recompute.complete", logging.INFO),
            ("account=a score.recompute.stale", logging.WARNING),
        ]
        assert caplog.records[1].event_attributes == {"account_id": "a", "attempts": 3}


class TestLifecycleEvents:
    @pytest.mark.asyncio
    async def test_successful_pass_emits_start_and_complete(self, coordinator, sink):
        await coordinator.compute_now("acme")
        names = [e.name for e in sink.events]
        assert names == ["score.recompute.start", "score.recompute.complete"]
        complete = sink.events[-1].attributes
        assert complete["account_id"] == "acme"
        assert complete["tier"] == "INACTIVE"
        assert complete["duration_ms"] >= 0
