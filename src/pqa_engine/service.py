"""Read-only score queries.  Never triggers recomputation."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from pqa_engine.errors import UnknownAccount
from pqa_engine.models import (
    AccountScore,
    ScoreOverviewPoint,
    ScoreSnapshot,
    Tier,
    utcnow,
)
from pqa_engine.store import SnapshotStore

logger = logging.getLogger(__name__)

MAX_TOP_N = 500


class ScoreQueryService:
    """Current score, history and ranking views over the snapshot store.

    Every answer is read from the store at call time; there is no cache.
    """

    def __init__(self, store: SnapshotStore) -> None:
        self.store = store

    async def current_score(self, account_id: str) -> AccountScore:
        snapshot = await asyncio.to_thread(self.store.latest, account_id)
        if snapshot is None:
            raise UnknownAccount(account_id)
        return AccountScore.from_snapshot(snapshot)

    async def history(
        self,
        account_id: str,
        days: int = 30,
        now: datetime | None = None,
    ) -> list[ScoreSnapshot]:
        """Snapshots captured in the last *days* days, oldest first.

        An account with no snapshots at all yields an empty list.
        """
        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        end = now or utcnow()
        start = end - timedelta(days=days)
        return await asyncio.to_thread(self.store.range, account_id, start, end)

    async def top(self, n: int = 20, tier: Tier | None = None) -> list[AccountScore]:
        """Highest current scores, optionally restricted to one tier."""
        n = max(0, min(n, MAX_TOP_N))
        snapshots = await asyncio.to_thread(self.store.top_n, n, tier)
        return [AccountScore.from_snapshot(s) for s in snapshots]

    async def overview(
        self, days: int = 30, now: datetime | None = None,
    ) -> list[ScoreOverviewPoint]:
        """Daily avg/min/max/count of snapshot scores over the last *days* days."""
        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        since = (now or utcnow()) - timedelta(days=days)
        return await asyncio.to_thread(self.store.daily_overview, since)
