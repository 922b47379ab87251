"""Engine facade: single entry point wiring store, coordinator and queries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from pathlib import Path

from pqa_engine.config import ScoringConfig, load_config
from pqa_engine.coordinator import PassState, RecomputationCoordinator, gather_inputs
from pqa_engine.models import (
    AccountScore,
    ScoreOverviewPoint,
    ScorePreview,
    ScoreSnapshot,
    Signal,
    Tier,
    utcnow,
)
from pqa_engine.scoring import aggregate_factors, classify_tier, compute_score
from pqa_engine.service import ScoreQueryService
from pqa_engine.sources import SignalSource
from pqa_engine.store import SnapshotStore
from pqa_engine.telemetry import NoOpTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)


class ScoringEngine:
    """Wires config, source, store, coordinator and query service together."""

    def __init__(
        self,
        config: ScoringConfig,
        source: SignalSource,
        store: SnapshotStore,
        *,
        telemetry_sink: TelemetrySink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.source = source
        self.store = store
        self._clock = clock
        self.telemetry_sink = telemetry_sink or NoOpTelemetrySink()
        self.coordinator = RecomputationCoordinator(
            store, source, config,
            telemetry_sink=self.telemetry_sink,
            clock=clock,
        )
        self.queries = ScoreQueryService(store)

    @classmethod
    def from_config(
        cls,
        config_path: str | Path | None,
        source: SignalSource,
        database: str | Path = ":memory:",
        *,
        telemetry_sink: TelemetrySink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> ScoringEngine:
        """Build an engine from a YAML config path (``None`` for defaults)."""
        config = load_config(config_path)
        store = SnapshotStore.open(database)
        return cls(config, source, store, telemetry_sink=telemetry_sink, clock=clock)

    def close(self) -> None:
        self.store.close()

    # -- recomputation ----------------------------------------------------

    def trigger(self, account_id: str, reason: str = "manual") -> asyncio.Future:
        return self.coordinator.trigger(account_id, reason)

    async def compute_now(self, account_id: str) -> AccountScore:
        return await self.coordinator.compute_now(account_id)

    def on_signal(self, signal: Signal) -> None:
        self.coordinator.on_signal(signal)

    def on_signals(self, signals: Iterable[Signal]) -> None:
        self.coordinator.on_signals(signals)

    async def sweep_stale(self, now: datetime | None = None) -> list[str]:
        return await self.coordinator.sweep_stale(now)

    async def drain(self) -> None:
        await self.coordinator.drain()

    def pass_state(self, account_id: str) -> PassState:
        return self.coordinator.state(account_id)

    # -- queries ----------------------------------------------------------

    async def current_score(self, account_id: str) -> AccountScore:
        return await self.queries.current_score(account_id)

    async def history(
        self, account_id: str, days: int = 30, now: datetime | None = None,
    ) -> list[ScoreSnapshot]:
        return await self.queries.history(account_id, days, now or self._clock())

    async def top(self, n: int = 20, tier: Tier | None = None) -> list[AccountScore]:
        return await self.queries.top(n, tier)

    async def overview(self, days: int = 30) -> list[ScoreOverviewPoint]:
        return await self.queries.overview(days, self._clock())

    # -- maintenance ------------------------------------------------------

    async def preview(
        self, config: ScoringConfig, account_ids: Iterable[str],
    ) -> list[ScorePreview]:
        """Project scores under *config* without persisting anything.

        Useful for checking what a weight or threshold change would do to
        existing accounts before rolling it out.
        """
        as_of = self._clock()
        previews: list[ScorePreview] = []
        for account_id in account_ids:
            inputs = await gather_inputs(self.source, account_id, as_of, config)
            aggregate = aggregate_factors(
                account_id, inputs.signals, as_of, config,
                contacts=inputs.contacts, account=inputs.account,
                last_signal_at=inputs.last_signal_at,
            )
            projected = compute_score(aggregate.factors)
            current = await asyncio.to_thread(self.store.latest, account_id)
            previews.append(
                ScorePreview(
                    account_id=account_id,
                    current_score=current.score if current else None,
                    current_tier=current.tier if current else None,
                    projected_score=projected,
                    projected_tier=classify_tier(projected, config.tiers),
                )
            )
        return previews

    async def prune_history(self, now: datetime | None = None) -> int:
        """Apply ``retention_days``; each account's latest snapshot always survives."""
        if self.config.retention_days is None:
            return 0
        cutoff = (now or self._clock()) - timedelta(days=self.config.retention_days)
        return await asyncio.to_thread(self.store.prune, cutoff)
