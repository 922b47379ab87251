"""Core value types: signals, factors, snapshots, and the current-score view."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

FACTOR_NAMES: tuple[str, ...] = (
    "userCount",
    "velocity",
    "featureBreadth",
    "engagement",
    "seniority",
    "firmographic",
)


class Tier(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    INACTIVE = "INACTIVE"


class Trend(str, Enum):
    RISING = "RISING"
    STABLE = "STABLE"
    FALLING = "FALLING"


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime.  Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 UTC string; lexical order matches time order."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Signal:
    """A single behavioral event attributed to an account.  Never mutated."""

    account_id: str
    type: str
    timestamp: datetime
    actor_id: str | None = None
    anonymous_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))


@dataclass(frozen=True)
class ContactAttributes:
    """Identity-resolved attributes of a signal-producing contact."""

    actor_id: str
    title: str | None = None


@dataclass(frozen=True)
class AccountAttributes:
    """Firmographic attributes of an account, supplied externally."""

    account_id: str
    size: str | None = None
    industry: str | None = None
    employee_count: int | None = None


@dataclass(frozen=True)
class Factor:
    """A named, normalized [0, 100] sub-score and its weight."""

    name: str
    value: float
    weight: float
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "weight": self.weight,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Factor:
        return cls(
            name=data["name"],
            value=float(data.get("value", 0.0)),
            weight=float(data.get("weight", 0.0)),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class ScoreSnapshot:
    """Immutable record of one completed scoring pass.

    ``as_of`` is the data watermark the pass computed against and
    ``captured_at`` is when the pass completed.  The snapshot with the
    greatest ``captured_at`` is the account's current score.
    """

    account_id: str
    score: int
    tier: Tier
    trend: Trend
    factors: tuple[Factor, ...]
    signal_count: int
    user_count: int
    last_signal_at: datetime | None
    as_of: datetime
    captured_at: datetime
    id: str = field(default_factory=lambda: f"snap-{uuid.uuid4().hex[:16]}")

    def factor_map(self) -> dict[str, float]:
        return {f.name: f.value for f in self.factors}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "score": self.score,
            "tier": self.tier.value,
            "trend": self.trend.value,
            "factors": [f.to_dict() for f in self.factors],
            "signal_count": self.signal_count,
            "user_count": self.user_count,
            "last_signal_at": (
                format_timestamp(self.last_signal_at) if self.last_signal_at else None
            ),
            "as_of": format_timestamp(self.as_of),
            "captured_at": format_timestamp(self.captured_at),
        }


@dataclass(frozen=True)
class AccountScore:
    """Current-state view of an account, always derived from its latest snapshot."""

    account_id: str
    score: int
    tier: Tier
    trend: Trend
    signal_count: int
    user_count: int
    last_signal_at: datetime | None
    factors: tuple[Factor, ...]
    computed_at: datetime

    @classmethod
    def from_snapshot(cls, snapshot: ScoreSnapshot) -> AccountScore:
        return cls(
            account_id=snapshot.account_id,
            score=snapshot.score,
            tier=snapshot.tier,
            trend=snapshot.trend,
            signal_count=snapshot.signal_count,
            user_count=snapshot.user_count,
            last_signal_at=snapshot.last_signal_at,
            factors=snapshot.factors,
            computed_at=snapshot.captured_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "score": self.score,
            "tier": self.tier.value,
            "trend": self.trend.value,
            "signal_count": self.signal_count,
            "user_count": self.user_count,
            "last_signal_at": (
                format_timestamp(self.last_signal_at) if self.last_signal_at else None
            ),
            "factors": [f.to_dict() for f in self.factors],
            "computed_at": format_timestamp(self.computed_at),
        }


@dataclass(frozen=True)
class ScorePreview:
    """Projected score for an account under a proposed configuration."""

    account_id: str
    current_score: int | None
    current_tier: Tier | None
    projected_score: int
    projected_tier: Tier

    @property
    def delta(self) -> int:
        return self.projected_score - (self.current_score or 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "current_score": self.current_score,
            "current_tier": self.current_tier.value if self.current_tier else None,
            "projected_score": self.projected_score,
            "projected_tier": self.projected_tier.value,
            "delta": self.delta,
        }


@dataclass(frozen=True)
class ScoreOverviewPoint:
    """Daily aggregate of snapshot scores across all accounts."""

    day: str
    avg: float
    min: int
    max: int
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day, "avg": self.avg, "min": self.min, "max": self.max, "count": self.count}
