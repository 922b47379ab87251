"""Scoring configuration: weights, factor tuning, tiers, trend, recompute policy.

The configuration is loaded once at startup and validated eagerly.  A bad
weight set or inverted tier thresholds raises :class:`ConfigurationError`
at load time, never per score.

Example YAML::

    weights:
      userCount: 0.25
      velocity: 0.20
      featureBreadth: 0.20
      engagement: 0.15
      seniority: 0.10
      firmographic: 0.10
    factors:
      lookback_days: 90
      user_saturation: 20
    tiers: {hot: 70, warm: 40, cold: 20}
    trend: {window: 3, dead_band: 3.0}
    recompute:
      pass_timeout_seconds: 30
      max_attempts: 3
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from pqa_engine.errors import ConfigurationError
from pqa_engine.models import FACTOR_NAMES

logger = logging.getLogger(__name__)

WEIGHT_EPSILON = 1e-6

DEFAULT_WEIGHTS: dict[str, float] = {
    "userCount": 0.25,
    "velocity": 0.20,
    "featureBreadth": 0.20,
    "engagement": 0.15,
    "seniority": 0.10,
    "firmographic": 0.10,
}

DEFAULT_SENIOR_TITLES = (
    "vp", "director", "head", "cto", "ceo", "founder", "chief", "president",
)

DEFAULT_SIZE_SCORES: dict[str, float] = {
    "STARTUP": 80.0,
    "SMALL": 100.0,
    "MEDIUM": 80.0,
    "LARGE": 60.0,
    "ENTERPRISE": 40.0,
}


class _StrictModel(BaseModel):
    """Shared strict model settings for configuration contracts."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class FactorSettings(_StrictModel):
    """Saturation ceilings, decay rates and window lengths for the aggregator."""

    lookback_days: int = Field(default=90, gt=0)
    user_saturation: int = Field(default=20, gt=0)
    count_anonymous_actors: bool = False
    velocity_recent_days: int = Field(default=7, gt=0)
    velocity_ratio_ceiling: float = Field(default=2.0, gt=0)
    breadth_saturation: int = Field(default=8, gt=0)
    engagement_half_life_days: float = Field(default=14.0, gt=0)
    engagement_saturation: float = Field(default=50.0, gt=0)
    engagement_active_days_target: int = Field(default=20, gt=0)
    engagement_consistency_weight: float = Field(default=0.5, ge=0, le=1)
    senior_title_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SENIOR_TITLES)
    )
    seniority_saturation: int = Field(default=2, gt=0)
    size_scores: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SIZE_SCORES))
    industry_bonus: dict[str, float] = Field(default_factory=dict)

    @field_validator("senior_title_keywords")
    @classmethod
    def normalize_keywords(cls, values: list[str]) -> list[str]:
        cleaned: list[str] = []
        for value in values:
            norm = value.strip().lower()
            if norm and norm not in cleaned:
                cleaned.append(norm)
        return cleaned

    @field_validator("size_scores", "industry_bonus")
    @classmethod
    def normalize_keys(cls, mapping: dict[str, float]) -> dict[str, float]:
        return {k.strip().upper(): float(v) for k, v in mapping.items() if k.strip()}

    @model_validator(mode="after")
    def check_windows(self) -> FactorSettings:
        if self.velocity_recent_days >= self.lookback_days:
            raise ValueError(
                "velocity_recent_days must be shorter than lookback_days "
                f"({self.velocity_recent_days} >= {self.lookback_days})"
            )
        return self


class TierThresholds(_StrictModel):
    """Lower bounds (inclusive) of the HOT, WARM and COLD tiers."""

    hot: int = 70
    warm: int = 40
    cold: int = 20

    @model_validator(mode="after")
    def check_order(self) -> TierThresholds:
        if not (100 >= self.hot > self.warm > self.cold > 0):
            raise ValueError(
                "tier thresholds must satisfy 100 >= hot > warm > cold > 0, "
                f"got hot={self.hot} warm={self.warm} cold={self.cold}"
            )
        return self


class TrendSettings(_StrictModel):
    window: int = Field(default=3, ge=1)
    dead_band: float = Field(default=3.0, ge=0)
    min_history: int = Field(default=2, ge=1)


class RecomputeSettings(_StrictModel):
    """Execution budget, retry policy and sweep cadence for the coordinator.

    ``pass_timeout_seconds`` bounds the source fetch of each attempt; the
    store write that follows runs to completion.
    """

    pass_timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    max_concurrent_passes: int = Field(default=8, ge=1)
    max_snapshot_age_seconds: float = Field(default=86_400.0, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        delay = self.retry_base_delay_seconds * (2 ** max(0, attempt - 1))
        return min(delay, self.retry_max_delay_seconds)


class ScoringConfig(_StrictModel):
    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    factors: FactorSettings = Field(default_factory=FactorSettings)
    tiers: TierThresholds = Field(default_factory=TierThresholds)
    trend: TrendSettings = Field(default_factory=TrendSettings)
    recompute: RecomputeSettings = Field(default_factory=RecomputeSettings)
    retention_days: int | None = Field(default=365, gt=0)

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, weights: dict[str, float]) -> dict[str, float]:
        if not weights:
            raise ValueError("at least one factor weight is required")
        unknown = sorted(set(weights) - set(FACTOR_NAMES))
        if unknown:
            raise ValueError(
                f"unknown factor(s) {', '.join(unknown)}; "
                f"use one of: {', '.join(FACTOR_NAMES)}"
            )
        for name, weight in weights.items():
            if not (0.0 <= weight <= 1.0):
                raise ValueError(f"weight for {name} must be in [0, 1], got {weight}")
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_EPSILON:
            raise ValueError(f"factor weights must sum to 1.0, got {total:.6f}")
        return {name: float(weights[name]) for name in FACTOR_NAMES if name in weights}

    @property
    def active_factors(self) -> tuple[str, ...]:
        return tuple(self.weights)


def build_config(data: dict[str, Any] | None) -> ScoringConfig:
    """Validate a raw mapping into a :class:`ScoringConfig`."""
    try:
        return ScoringConfig.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid scoring configuration: {exc}") from exc


def load_config(path: str | Path | None = None) -> ScoringConfig:
    """Load and validate a YAML configuration file.  ``None`` means defaults."""
    if path is None:
        return ScoringConfig()

    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read scoring config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed scoring config YAML {path}: {exc}") from exc

    if raw_data is None:
        logger.warning("Scoring config %s is empty, using defaults", path)
        return ScoringConfig()
    if not isinstance(raw_data, dict):
        raise ConfigurationError(f"Scoring config root must be a mapping: {path}")

    config = build_config(raw_data)
    logger.info(
        "Loaded scoring config from %s (factors=%s)", path, ",".join(config.active_factors),
    )
    return config
