"""Output formatters for CLI score listings: aligned table and JSON."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from pqa_engine.models import AccountScore, ScorePreview, ScoreSnapshot


def _row(cols: list[str], widths: list[int]) -> str:
    return "  ".join(c.ljust(w) for c, w in zip(cols, widths)).rstrip()


def format_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=False)


def format_scores_table(scores: Sequence[AccountScore], title: str = "Account Scores") -> str:
    lines: list[str] = [title, "=" * 72]
    hdr = ["Account", "Score", "Tier", "Trend", "Signals", "Users", "Computed"]
    widths = [24, 5, 8, 7, 7, 5, 20]
    lines.append(_row(hdr, widths))
    lines.append("-" * 72)
    for s in scores:
        lines.append(
            _row(
                [
                    s.account_id[:24],
                    str(s.score),
                    s.tier.value,
                    s.trend.value,
                    str(s.signal_count),
                    str(s.user_count),
                    s.computed_at.strftime("%Y-%m-%d %H:%M:%S"),
                ],
                widths,
            )
        )
    if not scores:
        lines.append("(no scored accounts)")
    return "\n".join(lines)


def format_factors(score: AccountScore) -> str:
    lines = [f"{score.account_id}: {score.score} {score.tier.value} ({score.trend.value})"]
    for f in score.factors:
        lines.append(f"  {f.name:<16} {f.value:6.1f}  x{f.weight:.2f}  {f.description}")
    return "\n".join(lines)


def format_history_table(snapshots: Sequence[ScoreSnapshot]) -> str:
    lines: list[str] = []
    widths = [20, 5, 8, 7, 7]
    lines.append(_row(["Captured", "Score", "Tier", "Trend", "Signals"], widths))
    lines.append("-" * 56)
    for snap in snapshots:
        lines.append(
            _row(
                [
                    snap.captured_at.strftime("%Y-%m-%d %H:%M:%S"),
                    str(snap.score),
                    snap.tier.value,
                    snap.trend.value,
                    str(snap.signal_count),
                ],
                widths,
            )
        )
    if not snapshots:
        lines.append("(no snapshots in range)")
    return "\n".join(lines)


def format_preview_table(previews: Sequence[ScorePreview]) -> str:
    widths = [24, 8, 8, 9, 8, 6]
    lines = [_row(["Account", "Current", "Tier", "Projected", "Tier", "Delta"], widths)]
    lines.append("-" * 72)
    for p in previews:
        lines.append(
            _row(
                [
                    p.account_id[:24],
                    "-" if p.current_score is None else str(p.current_score),
                    p.current_tier.value if p.current_tier else "-",
                    str(p.projected_score),
                    p.projected_tier.value,
                    f"{p.delta:+d}",
                ],
                widths,
            )
        )
    return "\n".join(lines)
