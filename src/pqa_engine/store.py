"""Append-only score snapshot persistence backed by SQLite.

Every completed scoring pass becomes one immutable row in ``score_snapshots``.
The row with the greatest ``captured_at`` for an account is its current
score; nothing else is authoritative.  Rows are only ever removed by the
retention :meth:`SnapshotStore.prune`, which always keeps each account's
latest snapshot.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from pqa_engine.errors import StoreWriteFailure, SupersededSnapshotError
from pqa_engine.models import (
    Factor,
    ScoreOverviewPoint,
    ScoreSnapshot,
    Tier,
    Trend,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

_CREATE_SQL = """\
CREATE TABLE IF NOT EXISTS score_snapshots (
    id              TEXT PRIMARY KEY,
    account_id      TEXT NOT NULL,
    score           INTEGER NOT NULL,
    tier            TEXT NOT NULL,
    trend           TEXT NOT NULL,
    factors         TEXT NOT NULL,
    signal_count    INTEGER NOT NULL DEFAULT 0,
    user_count      INTEGER NOT NULL DEFAULT 0,
    last_signal_at  TEXT,
    as_of           TEXT NOT NULL,
    captured_at     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_score_snapshots_account_captured
    ON score_snapshots(account_id, captured_at);
CREATE INDEX IF NOT EXISTS idx_score_snapshots_tier_score
    ON score_snapshots(tier, score);
"""

# rowid of each account's current snapshot; ties on captured_at go to the
# later insert.
_LATEST_ROWID_SQL = """\
SELECT s2.rowid FROM score_snapshots s2
WHERE s2.account_id = s.account_id
ORDER BY s2.captured_at DESC, s2.rowid DESC
LIMIT 1"""


def _row_to_snapshot(row: sqlite3.Row) -> ScoreSnapshot:
    return ScoreSnapshot(
        id=row["id"],
        account_id=row["account_id"],
        score=int(row["score"]),
        tier=Tier(row["tier"]),
        trend=Trend(row["trend"]),
        factors=tuple(Factor.from_dict(f) for f in json.loads(row["factors"])),
        signal_count=int(row["signal_count"]),
        user_count=int(row["user_count"]),
        last_signal_at=(
            parse_timestamp(row["last_signal_at"]) if row["last_signal_at"] else None
        ),
        as_of=parse_timestamp(row["as_of"]),
        captured_at=parse_timestamp(row["captured_at"]),
    )


class SnapshotStore:
    """Thread-safe snapshot persistence sharing an existing SQLite connection.

    Parameters
    ----------
    conn:
        An open ``sqlite3.Connection``.  Its ``row_factory`` is set to
        ``sqlite3.Row``.  Callers on an event loop reach the store through
        ``asyncio.to_thread``, so the connection should be opened with
        ``check_same_thread=False`` (see :meth:`open`).
    lock:
        Optional ``threading.RLock``.  One is created automatically if not
        supplied.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        lock: threading.RLock | None = None,
    ) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._lock = lock if lock is not None else threading.RLock()
        with self._lock:
            self._conn.executescript(_CREATE_SQL)

    @classmethod
    def open(cls, database: str | Path = ":memory:") -> SnapshotStore:
        """Open (or create) a database file and wrap it in a store."""
        conn = sqlite3.connect(str(database), check_same_thread=False)
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- writes -----------------------------------------------------------

    def append(self, snapshot: ScoreSnapshot) -> ScoreSnapshot:
        """Persist *snapshot* as the account's new current score.

        Raises :class:`SupersededSnapshotError` when the snapshot was
        computed against data no newer than the current one, or completed
        before it.  Raises :class:`StoreWriteFailure` on any database error;
        nothing is committed in that case.
        """
        with self._lock:
            current = self._latest_row(snapshot.account_id)
            if current is not None:
                current_as_of = parse_timestamp(current["as_of"])
                current_captured = parse_timestamp(current["captured_at"])
                if snapshot.as_of <= current_as_of:
                    raise SupersededSnapshotError(
                        f"snapshot for {snapshot.account_id} as of "
                        f"{format_timestamp(snapshot.as_of)} is not newer than "
                        f"{format_timestamp(current_as_of)}"
                    )
                if snapshot.captured_at < current_captured:
                    raise SupersededSnapshotError(
                        f"snapshot for {snapshot.account_id} captured at "
                        f"{format_timestamp(snapshot.captured_at)} precedes "
                        f"{format_timestamp(current_captured)}"
                    )
            try:
                self._conn.execute(
                    """INSERT INTO score_snapshots
                       (id, account_id, score, tier, trend, factors,
                        signal_count, user_count, last_signal_at, as_of,
                        captured_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        snapshot.id,
                        snapshot.account_id,
                        snapshot.score,
                        snapshot.tier.value,
                        snapshot.trend.value,
                        json.dumps([f.to_dict() for f in snapshot.factors]),
                        snapshot.signal_count,
                        snapshot.user_count,
                        format_timestamp(snapshot.last_signal_at)
                        if snapshot.last_signal_at
                        else None,
                        format_timestamp(snapshot.as_of),
                        format_timestamp(snapshot.captured_at),
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreWriteFailure(
                    f"Failed to append snapshot for {snapshot.account_id}: {exc}"
                ) from exc
        return snapshot

    def prune(self, before: datetime) -> int:
        """Delete snapshots captured before *before*, keeping each account's latest."""
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"""DELETE FROM score_snapshots
                        WHERE captured_at < ?
                          AND rowid NOT IN (
                              SELECT ({_LATEST_ROWID_SQL})
                              FROM (SELECT DISTINCT account_id FROM score_snapshots) s
                          )""",
                    (format_timestamp(before),),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreWriteFailure(f"Failed to prune snapshots: {exc}") from exc
            removed = cursor.rowcount
        if removed:
            logger.info("Pruned %d snapshot(s) captured before %s", removed, before)
        return removed

    def reset(self) -> None:
        """Clear all snapshots.  Intended for tests."""
        with self._lock:
            self._conn.execute("DELETE FROM score_snapshots")
            self._conn.commit()

    # -- reads ------------------------------------------------------------

    def _latest_row(self, account_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """SELECT * FROM score_snapshots
               WHERE account_id = ?
               ORDER BY captured_at DESC, rowid DESC
               LIMIT 1""",
            (account_id,),
        ).fetchone()

    def latest(self, account_id: str) -> ScoreSnapshot | None:
        with self._lock:
            row = self._latest_row(account_id)
        return _row_to_snapshot(row) if row is not None else None

    def range(
        self, account_id: str, start: datetime, end: datetime,
    ) -> list[ScoreSnapshot]:
        """Snapshots captured in ``[start, end]``, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT * FROM score_snapshots
                   WHERE account_id = ? AND captured_at >= ? AND captured_at <= ?
                   ORDER BY captured_at ASC, rowid ASC""",
                (account_id, format_timestamp(start), format_timestamp(end)),
            ).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def recent_scores(self, account_id: str, limit: int) -> list[int]:
        """The last *limit* scores for an account, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                """SELECT score FROM score_snapshots
                   WHERE account_id = ?
                   ORDER BY captured_at DESC, rowid DESC
                   LIMIT ?""",
                (account_id, limit),
            ).fetchall()
        return [int(r["score"]) for r in reversed(rows)]

    def top_n(self, n: int, tier: Tier | None = None) -> list[ScoreSnapshot]:
        """Current snapshots ranked by score, then recency, then account id."""
        if n <= 0:
            return []
        tier_value = tier.value if tier is not None else None
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT s.* FROM score_snapshots s
                    WHERE s.rowid = ({_LATEST_ROWID_SQL})
                      AND (? IS NULL OR s.tier = ?)
                    ORDER BY s.score DESC, s.captured_at DESC, s.account_id ASC
                    LIMIT ?""",
                (tier_value, tier_value, n),
            ).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def stale_accounts(self, before: datetime) -> list[str]:
        """Accounts whose current snapshot was captured before *before*."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT account_id, MAX(captured_at) AS latest
                   FROM score_snapshots
                   GROUP BY account_id
                   HAVING latest < ?
                   ORDER BY latest ASC, account_id ASC""",
                (format_timestamp(before),),
            ).fetchall()
        return [r["account_id"] for r in rows]

    def daily_overview(self, since: datetime) -> list[ScoreOverviewPoint]:
        """Per-day score aggregates across all snapshots captured since *since*."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT substr(captured_at, 1, 10) AS day,
                          AVG(score) AS avg_score,
                          MIN(score) AS min_score,
                          MAX(score) AS max_score,
                          COUNT(*) AS n
                   FROM score_snapshots
                   WHERE captured_at >= ?
                   GROUP BY day
                   ORDER BY day ASC""",
                (format_timestamp(since),),
            ).fetchall()
        return [
            ScoreOverviewPoint(
                day=r["day"],
                avg=round(float(r["avg_score"]), 2),
                min=int(r["min_score"]),
                max=int(r["max_score"]),
                count=int(r["n"]),
            )
            for r in rows
        ]

    def account_ids(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT account_id FROM score_snapshots ORDER BY account_id"
            ).fetchall()
        return [r["account_id"] for r in rows]

    def count(self, account_id: str | None = None) -> int:
        with self._lock:
            if account_id is None:
                row = self._conn.execute("SELECT COUNT(*) FROM score_snapshots").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM score_snapshots WHERE account_id = ?",
                    (account_id,),
                ).fetchone()
        return int(row[0])
