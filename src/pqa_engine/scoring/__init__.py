"""Pure scoring stages: feature aggregation, score, tier, trend.  No I/O."""

from pqa_engine.scoring.calculator import (
    FactorContribution,
    classify_tier,
    compute_score,
    explain_score,
    round_half_up,
    validate_factor_set,
)
from pqa_engine.scoring.features import AggregateResult, aggregate_factors
from pqa_engine.scoring.trend import analyze_trend, trend_baseline

__all__ = [
    "AggregateResult",
    "FactorContribution",
    "aggregate_factors",
    "analyze_trend",
    "classify_tier",
    "compute_score",
    "explain_score",
    "round_half_up",
    "trend_baseline",
    "validate_factor_set",
]
