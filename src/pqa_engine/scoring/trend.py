"""Trend classification against a short rolling baseline with a dead band."""

from __future__ import annotations

from collections.abc import Sequence

from pqa_engine.config import TrendSettings
from pqa_engine.models import Trend

_DEFAULT_SETTINGS = TrendSettings()


def trend_baseline(history: Sequence[int], window: int) -> float | None:
    """Mean of the last *window* prior scores (*history* is oldest first)."""
    recent = list(history)[-window:]
    if not recent:
        return None
    return sum(recent) / len(recent)


def analyze_trend(
    new_score: int,
    history: Sequence[int],
    settings: TrendSettings | None = None,
) -> Trend:
    """Classify *new_score* against prior snapshot scores.

    Too little history is not an error: it is reported as ``STABLE``.
    """
    s = settings or _DEFAULT_SETTINGS
    if len(history) < s.min_history:
        return Trend.STABLE
    baseline = trend_baseline(history, s.window)
    if baseline is None:
        return Trend.STABLE
    delta = new_score - baseline
    if delta > s.dead_band:
        return Trend.RISING
    if delta < -s.dead_band:
        return Trend.FALLING
    return Trend.STABLE
