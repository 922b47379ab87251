"""Weighted-sum scoring and tier lookup.

All functions are pure.  A malformed factor set is a programming or
configuration defect, so it raises :class:`FactorSetError` instead of being
coerced into a score.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from pqa_engine.config import WEIGHT_EPSILON, TierThresholds
from pqa_engine.errors import FactorSetError
from pqa_engine.models import FACTOR_NAMES, Factor, Tier

_DEFAULT_THRESHOLDS = TierThresholds()


@dataclass(frozen=True)
class FactorContribution:
    """Per-factor share of the final score."""

    name: str
    value: float
    weight: float
    contribution: float  # value * weight


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (44.5 -> 45)."""
    return int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_factor_set(factors: Sequence[Factor]) -> None:
    if not factors:
        raise FactorSetError("factor set is empty")
    seen: set[str] = set()
    for f in factors:
        if f.name not in FACTOR_NAMES:
            raise FactorSetError(f"unknown factor {f.name!r}")
        if f.name in seen:
            raise FactorSetError(f"duplicate factor {f.name!r}")
        seen.add(f.name)
        if not (0.0 <= f.value <= 100.0):
            raise FactorSetError(f"factor {f.name} value {f.value} outside [0, 100]")
        if not (0.0 <= f.weight <= 1.0):
            raise FactorSetError(f"factor {f.name} weight {f.weight} outside [0, 1]")
    total = sum(f.weight for f in factors)
    if abs(total - 1.0) > WEIGHT_EPSILON:
        raise FactorSetError(f"factor weights sum to {total:.6f}, expected 1.0")


def compute_score(factors: Sequence[Factor]) -> int:
    """``round_half_up(sum(value * weight))`` clamped to [0, 100]."""
    validate_factor_set(factors)
    total = sum(f.value * f.weight for f in factors)
    return max(0, min(100, round_half_up(total)))


def explain_score(factors: Sequence[Factor]) -> list[FactorContribution]:
    """Contributions sorted by size, largest first."""
    validate_factor_set(factors)
    contributions = [
        FactorContribution(
            name=f.name,
            value=f.value,
            weight=f.weight,
            contribution=round(f.value * f.weight, 4),
        )
        for f in factors
    ]
    return sorted(contributions, key=lambda c: (-c.contribution, FACTOR_NAMES.index(c.name)))


def classify_tier(score: int, thresholds: TierThresholds | None = None) -> Tier:
    """Map a score to its tier.  Lower bounds are inclusive."""
    if not (0 <= score <= 100):
        raise FactorSetError(f"score {score} outside [0, 100]")
    t = thresholds or _DEFAULT_THRESHOLDS
    if score >= t.hot:
        return Tier.HOT
    if score >= t.warm:
        return Tier.WARM
    if score >= t.cold:
        return Tier.COLD
    return Tier.INACTIVE
