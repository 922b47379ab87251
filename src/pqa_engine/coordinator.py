"""Recomputation coordinator: one scoring pass at a time per account.

Each account has a small state machine::

    IDLE --trigger--> COMPUTING --trigger--> COMPUTING_WITH_RERUN
      ^                   |                          |
      +----pass done------+<-----pass done, rerun----+

Triggers that arrive while a pass runs collapse into a single follow-up
pass, so a burst of N signals costs at most two passes.  Different accounts
run in parallel, bounded by ``max_concurrent_passes``.

A pass has two suspension points: fetching inputs from the
:class:`~pqa_engine.sources.SignalSource` and the store write (baseline
read, trend and append happen together in one worker-thread call).
``pass_timeout_seconds`` bounds the fetch only.  The store write is not
under the budget: a sqlite transaction running in a worker thread cannot be
interrupted, and abandoning it would let the snapshot land after the pass
was reported as timed out.

Each account slot keeps a watermark so ``as_of`` strictly increases across
its passes even when the clock stalls or steps back; an idle slot is only
dropped once the clock has passed it.  A serialized pass is therefore never
mistaken for a superseded one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pqa_engine.config import ScoringConfig
from pqa_engine.errors import (
    RETRYABLE_ERRORS,
    AggregationFailure,
    PassTimeout,
    SupersededSnapshotError,
    log_pass_failure,
)
from pqa_engine.models import (
    AccountAttributes,
    AccountScore,
    ContactAttributes,
    ScoreSnapshot,
    Signal,
    Tier,
    utcnow,
)
from pqa_engine.scoring import aggregate_factors, analyze_trend, classify_tier, compute_score
from pqa_engine.scoring.features import AggregateResult, window_start
from pqa_engine.sources import SignalSource
from pqa_engine.store import SnapshotStore
from pqa_engine.telemetry import (
    NoOpTelemetrySink,
    RecomputeEvent,
    TelemetryEvent,
    TelemetrySink,
)

logger = logging.getLogger(__name__)


class PassState(str, Enum):
    IDLE = "idle"
    COMPUTING = "computing"
    COMPUTING_WITH_RERUN = "computing_with_rerun"


@dataclass(frozen=True)
class PassInputs:
    """Everything a pass reads from the source, fetched in one go."""

    signals: list[Signal]
    contacts: dict[str, ContactAttributes]
    account: AccountAttributes | None
    last_signal_at: datetime | None = None


async def gather_inputs(
    source: SignalSource,
    account_id: str,
    as_of: datetime,
    config: ScoringConfig,
) -> PassInputs:
    """Fetch the lookback window, contact titles and firmographics for an account.

    The last-seen time is looked up separately, without the window, so an
    account idle for longer than ``lookback_days`` keeps it.  Any failure
    from the source surfaces as :class:`AggregationFailure`.
    """
    since = window_start(as_of, config.factors)
    try:
        signals = list(await source.fetch_signals(account_id, since, as_of))
        actor_ids = sorted({s.actor_id for s in signals if s.actor_id})
        contacts = dict(await source.fetch_contacts(account_id, actor_ids)) if actor_ids else {}
        account = await source.fetch_account(account_id)
        if signals:
            last_signal_at = max(s.timestamp for s in signals)
        else:
            last_signal_at = await source.fetch_last_signal_at(account_id, as_of)
    except AggregationFailure:
        raise
    except Exception as exc:
        raise AggregationFailure(f"Signal source failed for {account_id}: {exc}") from exc
    return PassInputs(
        signals=signals, contacts=contacts, account=account, last_signal_at=last_signal_at,
    )


_AS_OF_STEP = timedelta(microseconds=1)


@dataclass
class _AccountSlot:
    state: PassState = PassState.IDLE
    current: asyncio.Future | None = None
    rerun: asyncio.Future | None = None
    reasons: list[str] = field(default_factory=list)
    # Latest as_of or captured_at written by this coordinator for the account.
    watermark: datetime | None = None

    def next_as_of(self, now: datetime) -> datetime:
        """*now*, pushed just past the watermark when the clock has not moved on."""
        if self.watermark is not None and now <= self.watermark:
            now = self.watermark + _AS_OF_STEP
        self.watermark = now
        return now

    def advance(self, captured_at: datetime) -> None:
        if self.watermark is None or captured_at > self.watermark:
            self.watermark = captured_at


def _consume_result(future: asyncio.Future) -> None:
    # Fire-and-forget futures: outcome is logged by the pass itself.
    if not future.cancelled():
        future.exception()


class RecomputationCoordinator:
    """Serializes scoring passes per account and writes their snapshots.

    Parameters
    ----------
    store:
        The snapshot store; the only shared mutable resource.
    source:
        Signal, contact and firmographic provider.
    config:
        Validated scoring configuration.
    telemetry_sink:
        Receives ``score.recompute.*`` lifecycle events.
    clock:
        Returns the current UTC time.  Used for ``as_of`` and
        ``captured_at``; injectable for tests.
    """

    def __init__(
        self,
        store: SnapshotStore,
        source: SignalSource,
        config: ScoringConfig | None = None,
        *,
        telemetry_sink: TelemetrySink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.source = source
        self.config = config or ScoringConfig()
        self.telemetry_sink = telemetry_sink or NoOpTelemetrySink()
        self._clock = clock
        self._semaphore = asyncio.Semaphore(self.config.recompute.max_concurrent_passes)
        self._slots: dict[str, _AccountSlot] = {}
        self._tasks: set[asyncio.Task] = set()
        self._stale: set[str] = set()

    # -- state ------------------------------------------------------------

    def state(self, account_id: str) -> PassState:
        slot = self._slots.get(account_id)
        return slot.state if slot is not None else PassState.IDLE

    @property
    def stale_accounts(self) -> frozenset[str]:
        """Accounts whose last pass exhausted its retries."""
        return frozenset(self._stale)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _emit(self, kind: RecomputeEvent, account_id: str, **attributes: Any) -> None:
        self.telemetry_sink.emit(TelemetryEvent.recompute(kind, account_id, **attributes))

    # -- triggers ---------------------------------------------------------

    def trigger(self, account_id: str, reason: str = "manual") -> asyncio.Future:
        """Request a pass for *account_id*; returns a future of its :class:`AccountScore`.

        Must be called from a running event loop.  While a pass is in
        flight, all further triggers share one follow-up pass.
        """
        loop = asyncio.get_running_loop()
        slot = self._slots.setdefault(account_id, _AccountSlot())
        slot.reasons.append(reason)

        if slot.state is PassState.IDLE:
            slot.current = loop.create_future()
            slot.state = PassState.COMPUTING
            task = loop.create_task(self._run(account_id, slot))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return slot.current

        if slot.state is PassState.COMPUTING:
            slot.rerun = loop.create_future()
            slot.state = PassState.COMPUTING_WITH_RERUN
            self._emit(RecomputeEvent.COALESCED, account_id, reason=reason)
            return slot.rerun

        self._emit(RecomputeEvent.COALESCED, account_id, reason=reason, duplicate=True)
        assert slot.rerun is not None
        return slot.rerun

    async def compute_now(self, account_id: str) -> AccountScore:
        """Run (or join) a pass and wait for its result."""
        return await self.trigger(account_id, reason="on_demand")

    def on_signal(self, signal: Signal) -> None:
        """Signal-created notification.  Never blocks and never raises for pass failures."""
        self.trigger(signal.account_id, reason="signal").add_done_callback(_consume_result)

    def on_signals(self, signals: Iterable[Signal]) -> None:
        for account_id in dict.fromkeys(s.account_id for s in signals):
            self.trigger(account_id, reason="signal").add_done_callback(_consume_result)

    async def sweep_stale(self, now: datetime | None = None) -> list[str]:
        """Trigger passes for accounts with old snapshots or exhausted retries."""
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.config.recompute.max_snapshot_age_seconds)
        aged = await asyncio.to_thread(self.store.stale_accounts, cutoff)
        targets = sorted(set(aged) | self._stale)
        for account_id in targets:
            self.trigger(account_id, reason="sweep").add_done_callback(_consume_result)
        if targets:
            logger.info("Sweep triggered %d stale account(s)", len(targets))
        return targets

    async def run_sweeper(
        self,
        interval: float | None = None,
        stop: asyncio.Event | None = None,
    ) -> None:
        """Call :meth:`sweep_stale` every *interval* seconds until *stop* is set."""
        interval = interval or self.config.recompute.sweep_interval_seconds
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.sweep_stale()
            except Exception:
                logger.exception("Stale-score sweep failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def drain(self) -> None:
        """Wait until no pass is in flight, including follow-up passes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- pass execution ---------------------------------------------------

    async def _run(self, account_id: str, slot: _AccountSlot) -> None:
        try:
            while True:
                future = slot.current
                assert future is not None
                try:
                    result = await self._run_with_retries(account_id, slot)
                except Exception as exc:
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)

                if slot.state is PassState.COMPUTING_WITH_RERUN:
                    slot.current, slot.rerun = slot.rerun, None
                    slot.state = PassState.COMPUTING
                    continue
                break
        finally:
            for pending in (slot.current, slot.rerun):
                if pending is not None and not pending.done():
                    pending.cancel()
            slot.current = slot.rerun = None
            slot.state = PassState.IDLE
            slot.reasons.clear()
            # Idle slots are dropped unless the clock has yet to pass their watermark.
            if slot.watermark is None or self._clock() > slot.watermark:
                if self._slots.get(account_id) is slot:
                    del self._slots[account_id]

    async def _run_with_retries(self, account_id: str, slot: _AccountSlot) -> AccountScore:
        settings = self.config.recompute
        last_exc: Exception | None = None
        for attempt in range(1, settings.max_attempts + 1):
            try:
                async with self._semaphore:
                    result = await self._execute_pass(account_id, slot, attempt)
            except RETRYABLE_ERRORS as exc:
                last_exc = exc
                log_pass_failure(account_id=account_id, exc=exc, attempt=attempt)
                if attempt < settings.max_attempts:
                    delay = settings.backoff_delay(attempt)
                    self._emit(
                        RecomputeEvent.RETRY,
                        account_id,
                        attempt=attempt,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    await asyncio.sleep(delay)
                continue
            except Exception as exc:
                log_pass_failure(account_id=account_id, exc=exc, attempt=attempt)
                self._emit(RecomputeEvent.FAILED, account_id, attempt=attempt, error=repr(exc))
                raise
            self._stale.discard(account_id)
            return result

        assert last_exc is not None
        self._stale.add(account_id)
        logger.warning(
            "Account %s marked stale after %d failed attempt(s): %s",
            account_id,
            settings.max_attempts,
            last_exc,
        )
        self._emit(
            RecomputeEvent.STALE,
            account_id,
            attempts=settings.max_attempts,
            error=str(last_exc),
        )
        raise last_exc

    async def _execute_pass(
        self, account_id: str, slot: _AccountSlot, attempt: int,
    ) -> AccountScore:
        started = time.monotonic()
        config = self.config
        as_of = slot.next_as_of(self._clock())
        self._emit(RecomputeEvent.START, account_id, attempt=attempt)

        try:
            inputs = await asyncio.wait_for(
                gather_inputs(self.source, account_id, as_of, config),
                timeout=config.recompute.pass_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise PassTimeout(
                f"Pass for {account_id} exceeded {config.recompute.pass_timeout_seconds}s"
            ) from None

        aggregate = aggregate_factors(
            account_id,
            inputs.signals,
            as_of,
            config,
            contacts=inputs.contacts,
            account=inputs.account,
            last_signal_at=inputs.last_signal_at,
        )
        score = compute_score(aggregate.factors)
        tier = classify_tier(score, config.tiers)

        try:
            snapshot = await asyncio.to_thread(
                self._persist, account_id, aggregate, score, tier, as_of, config,
            )
        except SupersededSnapshotError as exc:
            logger.info("Discarding superseded pass for %s: %s", account_id, exc)
            self._emit(RecomputeEvent.SUPERSEDED, account_id, score=score)
            latest = await asyncio.to_thread(self.store.latest, account_id)
            if latest is None:
                raise
            return AccountScore.from_snapshot(latest)
        slot.advance(snapshot.captured_at)

        duration_ms = round((time.monotonic() - started) * 1000, 2)
        logger.info(
            "Scored %s: %d %s %s (%d signals, %.1fms)",
            account_id,
            snapshot.score,
            snapshot.tier.value,
            snapshot.trend.value,
            snapshot.signal_count,
            duration_ms,
        )
        self._emit(
            RecomputeEvent.COMPLETE,
            account_id,
            attempt=attempt,
            score=snapshot.score,
            tier=snapshot.tier.value,
            trend=snapshot.trend.value,
            signal_count=snapshot.signal_count,
            duration_ms=duration_ms,
        )
        return AccountScore.from_snapshot(snapshot)

    def _persist(
        self,
        account_id: str,
        aggregate: AggregateResult,
        score: int,
        tier: Tier,
        as_of: datetime,
        config: ScoringConfig,
    ) -> ScoreSnapshot:
        history = self.store.recent_scores(
            account_id, max(config.trend.window, config.trend.min_history),
        )
        trend = analyze_trend(score, history, config.trend)
        captured_at = max(self._clock(), as_of)
        snapshot = ScoreSnapshot(
            account_id=account_id,
            score=score,
            tier=tier,
            trend=trend,
            factors=aggregate.factors,
            signal_count=aggregate.signal_count,
            user_count=aggregate.user_count,
            last_signal_at=aggregate.last_signal_at,
            as_of=as_of,
            captured_at=captured_at,
        )
        return self.store.append(snapshot)
