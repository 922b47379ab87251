"""Test fixtures for PQA engine tests."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from pqa_engine.config import RecomputeSettings, ScoringConfig
from pqa_engine.coordinator import RecomputationCoordinator
from pqa_engine.models import (
    AccountAttributes,
    ContactAttributes,
    Factor,
    ScoreSnapshot,
    Signal,
    Trend,
)
from pqa_engine.scoring import classify_tier
from pqa_engine.sources import MemorySignalSource
from pqa_engine.store import SnapshotStore
from pqa_engine.telemetry import InMemoryTelemetrySink

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock.  Every read advances by *step*; ``step=timedelta(0)`` stalls it."""

    def __init__(self, start: datetime = NOW, step: timedelta = timedelta(milliseconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeSignalSource(MemorySignalSource):
    """Memory source with gating, injected failures and concurrency tracking."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.gate: asyncio.Event | None = None
        self.entered: asyncio.Event | None = None
        self.delay = 0.0
        self.failures: list[BaseException] = []
        self.fail_always: BaseException | None = None
        self.fetch_calls: dict[str, int] = defaultdict(int)
        self.active: dict[str, int] = defaultdict(int)
        self.max_active: dict[str, int] = defaultdict(int)
        self.total_active = 0
        self.max_total_active = 0

    def hold(self) -> None:
        """Block every fetch until :meth:`release` is called."""
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    def release(self) -> None:
        assert self.gate is not None
        self.gate.set()

    async def fetch_signals(self, account_id, since, until):
        self.fetch_calls[account_id] += 1
        self.active[account_id] += 1
        self.total_active += 1
        self.max_active[account_id] = max(self.max_active[account_id], self.active[account_id])
        self.max_total_active = max(self.max_total_active, self.total_active)
        try:
            if self.entered is not None:
                self.entered.set()
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_always is not None:
                raise self.fail_always
            if self.failures:
                raise self.failures.pop(0)
            return await super().fetch_signals(account_id, since, until)
        finally:
            self.active[account_id] -= 1
            self.total_active -= 1


def make_signal(
    account_id: str = "acme",
    signal_type: str = "page_view",
    *,
    days_ago: float = 0.0,
    actor_id: str | None = "u1",
    anonymous_id: str | None = None,
    now: datetime = NOW,
) -> Signal:
    return Signal(
        account_id=account_id,
        type=signal_type,
        timestamp=now - timedelta(days=days_ago),
        actor_id=actor_id,
        anonymous_id=anonymous_id,
    )


def make_activity(
    account_id: str = "acme",
    *,
    count: int = 50,
    types: int = 4,
    actors: int = 10,
    spacing_days: float = 0.6,
    now: datetime = NOW,
) -> list[Signal]:
    """*count* signals spread evenly back from *now*, cycling types and actors."""
    return [
        make_signal(
            account_id,
            f"type_{i % types}",
            days_ago=i * spacing_days,
            actor_id=f"{account_id}-user-{i % actors}",
            now=now,
        )
        for i in range(count)
    ]


def make_factors(value: float = 50.0, config: ScoringConfig | None = None) -> tuple[Factor, ...]:
    config = config or ScoringConfig()
    return tuple(
        Factor(name=name, value=value, weight=weight) for name, weight in config.weights.items()
    )


def make_snapshot(
    account_id: str = "acme",
    score: int = 50,
    *,
    captured_at: datetime = NOW,
    as_of: datetime | None = None,
    trend: Trend = Trend.STABLE,
    signal_count: int = 10,
) -> ScoreSnapshot:
    return ScoreSnapshot(
        account_id=account_id,
        score=score,
        tier=classify_tier(score),
        trend=trend,
        factors=make_factors(float(score)),
        signal_count=signal_count,
        user_count=3,
        last_signal_at=captured_at - timedelta(hours=1),
        as_of=as_of or captured_at,
        captured_at=captured_at,
    )


def make_test_config(**recompute_overrides) -> ScoringConfig:
    """Default scoring config with fast retries for coordinator tests."""
    recompute = {
        "retry_base_delay_seconds": 0.0,
        "pass_timeout_seconds": 2.0,
        "max_attempts": 3,
    }
    recompute.update(recompute_overrides)
    return ScoringConfig(recompute=RecomputeSettings(**recompute))


ACME_ACCOUNT = AccountAttributes(account_id="acme", size="MEDIUM", industry="Software")
ACME_CONTACTS = (
    ContactAttributes(actor_id="acme-user-0", title="VP Engineering"),
    ContactAttributes(actor_id="acme-user-1", title="Software Engineer"),
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    s = SnapshotStore.open(":memory:")
    yield s
    s.close()


@pytest.fixture
def source() -> FakeSignalSource:
    return FakeSignalSource()


@pytest.fixture
def sink() -> InMemoryTelemetrySink:
    return InMemoryTelemetrySink()


@pytest.fixture
def coordinator(store, source, sink, clock) -> RecomputationCoordinator:
    return RecomputationCoordinator(
        store, source, make_test_config(), telemetry_sink=sink, clock=clock,
    )
