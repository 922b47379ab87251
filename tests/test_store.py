"""Tests for pqa_engine.store."""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from conftest import NOW, make_snapshot
from pqa_engine.errors import StoreWriteFailure, SupersededSnapshotError
from pqa_engine.models import Tier
from pqa_engine.store import SnapshotStore


def _at(hours: float):
    return NOW + timedelta(hours=hours)


class TestAppend:
    def test_append_and_latest(self, store):
        store.append(make_snapshot(score=10, captured_at=_at(0)))
        store.append(make_snapshot(score=20, captured_at=_at(1)))
        latest = store.latest("acme")
        assert latest is not None
        assert latest.score == 20
        assert latest.tier is Tier.COLD

    def test_latest_unknown_account(self, store):
        assert store.latest("ghost") is None

    def test_round_trips_fields(self, store):
        snap = make_snapshot(score=72, captured_at=_at(0))
        store.append(snap)
        loaded = store.latest("acme")
        assert loaded == snap

    def test_rejects_older_watermark(self, store):
        store.append(make_snapshot(score=10, captured_at=_at(2)))
        with pytest.raises(SupersededSnapshotError):
            store.append(make_snapshot(score=99, captured_at=_at(3), as_of=_at(1)))
        assert store.latest("acme").score == 10
        assert store.count("acme") == 1

    def test_rejects_equal_watermark(self, store):
        store.append(make_snapshot(score=10, captured_at=_at(2)))
        with pytest.raises(SupersededSnapshotError):
            store.append(make_snapshot(score=11, captured_at=_at(3), as_of=_at(2)))

    def test_rejects_earlier_capture(self, store):
        store.append(make_snapshot(score=10, captured_at=_at(2), as_of=_at(1)))
        with pytest.raises(SupersededSnapshotError):
            store.append(make_snapshot(score=11, captured_at=_at(1.5), as_of=_at(1.2)))

    def test_accounts_are_independent(self, store):
        store.append(make_snapshot("acme", 10, captured_at=_at(5)))
        store.append(make_snapshot("beta", 20, captured_at=_at(1)))
        assert store.account_ids() == ["acme", "beta"]

    def test_write_failure_is_wrapped(self):
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        store = SnapshotStore(conn)
        snap = make_snapshot(captured_at=_at(0))
        store.append(snap)
        # Same id on a later snapshot violates the primary key.
        clash = make_snapshot(captured_at=_at(1))
        object.__setattr__(clash, "id", snap.id)
        with pytest.raises(StoreWriteFailure):
            store.append(clash)
        assert store.count() == 1


class TestReads:
    def test_range_is_ascending_and_inclusive(self, store):
        for h in range(5):
            store.append(make_snapshot(score=h * 10, captured_at=_at(h)))
        snaps = store.range("acme", _at(1), _at(3))
        assert [s.score for s in snaps] == [10, 20, 30]

    def test_range_unknown_account_is_empty(self, store):
        assert store.range("ghost", _at(-100), _at(100)) == []

    def test_recent_scores_oldest_first(self, store):
        for h, score in enumerate([5, 15, 25, 35]):
            store.append(make_snapshot(score=score, captured_at=_at(h)))
        assert store.recent_scores("acme", 3) == [15, 25, 35]
        assert store.recent_scores("acme", 0) == []

    def test_top_n_uses_latest_snapshot_only(self, store):
        store.append(make_snapshot("acme", 95, captured_at=_at(0)))
        store.append(make_snapshot("acme", 30, captured_at=_at(1)))
        store.append(make_snapshot("beta", 60, captured_at=_at(0)))
        top = store.top_n(10)
        assert [(s.account_id, s.score) for s in top] == [("beta", 60), ("acme", 30)]

    def test_top_n_tie_breaks_on_recency_then_id(self, store):
        store.append(make_snapshot("c", 50, captured_at=_at(0)))
        store.append(make_snapshot("b", 50, captured_at=_at(1)))
        store.append(make_snapshot("a", 50, captured_at=_at(0)))
        assert [s.account_id for s in store.top_n(3)] == ["b", "a", "c"]

    def test_top_n_tier_filter(self, store):
        store.append(make_snapshot("hot", 80, captured_at=_at(0)))
        store.append(make_snapshot("warm", 50, captured_at=_at(0)))
        store.append(make_snapshot("was-hot", 90, captured_at=_at(0)))
        store.append(make_snapshot("was-hot", 45, captured_at=_at(1)))
        assert [s.account_id for s in store.top_n(10, Tier.HOT)] == ["hot"]
        assert [s.account_id for s in store.top_n(10, Tier.WARM)] == ["warm", "was-hot"]

    def test_top_n_limit(self, store):
        for i in range(5):
            store.append(make_snapshot(f"acct-{i}", i * 10, captured_at=_at(0)))
        assert len(store.top_n(2)) == 2
        assert store.top_n(0) == []

    def test_stale_accounts(self, store):
        store.append(make_snapshot("old", 10, captured_at=_at(-48)))
        store.append(make_snapshot("fresh", 10, captured_at=_at(0)))
        assert store.stale_accounts(_at(-24)) == ["old"]

    def test_daily_overview(self, store):
        store.append(make_snapshot("a", 10, captured_at=NOW - timedelta(days=1)))
        store.append(make_snapshot("b", 30, captured_at=NOW - timedelta(days=1)))
        store.append(make_snapshot("a", 50, captured_at=NOW))
        points = store.daily_overview(NOW - timedelta(days=7))
        assert [(p.day, p.avg, p.min, p.max, p.count) for p in points] == [
            ("2026-09-30", 20.0, 10, 30, 2),
            ("2026-10-01", 50.0, 50, 50, 1),
        ]


class TestPrune:
    def test_prune_keeps_latest_per_account(self, store):
        store.append(make_snapshot("acme", 10, captured_at=_at(-100)))
        store.append(make_snapshot("acme", 20, captured_at=_at(-50)))
        store.append(make_snapshot("acme", 30, captured_at=_at(0)))
        store.append(make_snapshot("dormant", 5, captured_at=_at(-200)))
        removed = store.prune(_at(-10))
        assert removed == 2
        assert store.latest("acme").score == 30
        assert store.latest("dormant").score == 5
        assert store.count() == 2

    def test_reset(self, store):
        store.append(make_snapshot(captured_at=_at(0)))
        store.reset()
        assert store.count() == 0
