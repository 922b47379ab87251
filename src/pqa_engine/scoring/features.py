"""Reduce an account's signal window into the six canonical factors.

Every factor is cap-normalized: a raw count is divided by a configured
saturation ceiling and clamped to [0, 100], so each value is interpretable
in isolation rather than relative to other accounts.  Missing upstream data
yields 0, never an error.

The aggregator is a pure function.  The reference time ``as_of`` is always
passed in so identical inputs give identical factors.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache

from pqa_engine.config import FactorSettings, ScoringConfig
from pqa_engine.models import (
    AccountAttributes,
    ContactAttributes,
    Factor,
    Signal,
    ensure_utc,
)

_SECONDS_PER_DAY = 86_400

# Upper bounds (inclusive) used when only an employee count is known.
_SIZE_BY_HEADCOUNT: tuple[tuple[int, str], ...] = (
    (10, "STARTUP"),
    (50, "SMALL"),
    (500, "MEDIUM"),
    (5_000, "LARGE"),
)


@dataclass(frozen=True)
class AggregateResult:
    """Factors plus the raw counts persisted alongside the score."""

    factors: tuple[Factor, ...]
    signal_count: int
    user_count: int
    last_signal_at: datetime | None

    def factor_map(self) -> dict[str, float]:
        return {f.name: f.value for f in self.factors}


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def _saturate(count: float, ceiling: float) -> float:
    return _clamp(count / ceiling * 100.0)


def _age_days(ts: datetime, as_of: datetime) -> float:
    return max(0.0, (as_of - ts).total_seconds() / _SECONDS_PER_DAY)


def window_start(as_of: datetime, settings: FactorSettings) -> datetime:
    return ensure_utc(as_of) - timedelta(days=settings.lookback_days)


def distinct_actors(signals: Iterable[Signal], *, include_anonymous: bool = False) -> set[str]:
    actors: set[str] = set()
    for sig in signals:
        if sig.actor_id:
            actors.add(sig.actor_id)
        elif include_anonymous and sig.anonymous_id:
            actors.add(f"anon:{sig.anonymous_id}")
    return actors


def user_count_factor(actor_count: int, settings: FactorSettings) -> float:
    return _saturate(actor_count, settings.user_saturation)


def velocity_factor(
    timestamps: list[datetime], as_of: datetime, settings: FactorSettings,
) -> float:
    """Recent signal rate relative to the account's own baseline rate.

    A steady account scores ``100 / velocity_ratio_ceiling``; an account
    with no baseline but recent activity scores 100; no activity scores 0.
    """
    recent_start = as_of - timedelta(days=settings.velocity_recent_days)
    recent = sum(1 for ts in timestamps if ts > recent_start)
    baseline = len(timestamps) - recent

    if baseline == 0:
        return 100.0 if recent > 0 else 0.0

    baseline_days = settings.lookback_days - settings.velocity_recent_days
    recent_rate = recent / settings.velocity_recent_days
    baseline_rate = baseline / baseline_days
    return _clamp(recent_rate / baseline_rate / settings.velocity_ratio_ceiling * 100.0)


def breadth_factor(type_count: int, settings: FactorSettings) -> float:
    return _saturate(type_count, settings.breadth_saturation)


def engagement_factor(
    timestamps: list[datetime], as_of: datetime, settings: FactorSettings,
) -> float:
    """Blend of half-life decayed volume and the number of distinct active days."""
    if not timestamps:
        return 0.0
    decayed = sum(
        0.5 ** (_age_days(ts, as_of) / settings.engagement_half_life_days)
        for ts in timestamps
    )
    volume = _saturate(decayed, settings.engagement_saturation)
    active_days = len({ts.date() for ts in timestamps})
    consistency = _saturate(active_days, settings.engagement_active_days_target)
    w = settings.engagement_consistency_weight
    return _clamp((1.0 - w) * volume + w * consistency)


@lru_cache(maxsize=32)
def _title_pattern(keywords: tuple[str, ...]) -> re.Pattern[str] | None:
    if not keywords:
        return None
    alternation = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


def is_senior_title(title: str | None, settings: FactorSettings) -> bool:
    if not title:
        return False
    pattern = _title_pattern(tuple(settings.senior_title_keywords))
    return bool(pattern and pattern.search(title))


def seniority_factor(
    actor_ids: set[str],
    contacts: Mapping[str, ContactAttributes],
    settings: FactorSettings,
) -> tuple[float, int]:
    """Return ``(value, senior_actor_count)`` over signal-producing actors only."""
    senior = sum(
        1
        for actor_id in actor_ids
        if actor_id in contacts and is_senior_title(contacts[actor_id].title, settings)
    )
    return _saturate(senior, settings.seniority_saturation), senior


def size_bucket(account: AccountAttributes) -> str | None:
    if account.size:
        return account.size.strip().upper()
    if account.employee_count is not None and account.employee_count > 0:
        for upper, bucket in _SIZE_BY_HEADCOUNT:
            if account.employee_count <= upper:
                return bucket
        return "ENTERPRISE"
    return None


def firmographic_factor(
    account: AccountAttributes | None, settings: FactorSettings,
) -> float:
    if account is None:
        return 0.0
    bucket = size_bucket(account)
    base = settings.size_scores.get(bucket, 0.0) if bucket else 0.0
    industry = (account.industry or "").strip().upper()
    bonus = settings.industry_bonus.get(industry, 0.0) if industry else 0.0
    return _clamp(base + bonus)


def aggregate_factors(
    account_id: str,
    signals: Iterable[Signal],
    as_of: datetime,
    config: ScoringConfig,
    *,
    contacts: Mapping[str, ContactAttributes] | None = None,
    account: AccountAttributes | None = None,
    last_signal_at: datetime | None = None,
) -> AggregateResult:
    """Compute one :class:`Factor` per active factor name, in canonical order.

    Signals for other accounts, or outside ``[as_of - lookback_days, as_of]``,
    are ignored.  ``last_signal_at`` is the latest of the supplied signals up
    to ``as_of`` and the *last_signal_at* argument, which callers take from
    an unbounded lookup so idle accounts keep their last-seen time.
    """
    settings = config.factors
    as_of = ensure_utc(as_of)
    start = window_start(as_of, settings)
    contacts = contacts or {}

    own = [s for s in signals if s.account_id == account_id and s.timestamp <= as_of]
    in_window = [s for s in own if s.timestamp >= start]
    timestamps = sorted(s.timestamp for s in in_window)
    seen = [s.timestamp for s in own]
    if last_signal_at is not None and ensure_utc(last_signal_at) <= as_of:
        seen.append(ensure_utc(last_signal_at))
    last_seen = max(seen, default=None)

    named_actors = distinct_actors(in_window)
    counted_actors = distinct_actors(
        in_window, include_anonymous=settings.count_anonymous_actors,
    )
    types = {s.type for s in in_window}
    seniority, senior_count = seniority_factor(named_actors, contacts, settings)
    recent_days = settings.velocity_recent_days
    days = settings.lookback_days

    computed: dict[str, tuple[float, str]] = {
        "userCount": (
            user_count_factor(len(counted_actors), settings),
            f"{len(counted_actors)} distinct users active in last {days} days",
        ),
        "velocity": (
            velocity_factor(timestamps, as_of, settings),
            f"signal rate over last {recent_days} days vs prior {days - recent_days} days",
        ),
        "featureBreadth": (
            breadth_factor(len(types), settings),
            f"{len(types)} different signal types observed",
        ),
        "engagement": (
            engagement_factor(timestamps, as_of, settings),
            f"{len(timestamps)} signals, half-life {settings.engagement_half_life_days:g} days",
        ),
        "seniority": (seniority, f"{senior_count} active contacts with senior titles"),
        "firmographic": (
            firmographic_factor(account, settings),
            _firmographic_description(account),
        ),
    }

    factors = tuple(
        Factor(
            name=name,
            value=round(computed[name][0], 4),
            weight=weight,
            description=computed[name][1],
        )
        for name, weight in config.weights.items()
    )
    return AggregateResult(
        factors=factors,
        signal_count=len(in_window),
        user_count=len(counted_actors),
        last_signal_at=last_seen,
    )


def _firmographic_description(account: AccountAttributes | None) -> str:
    if account is None:
        return "No firmographic data"
    bucket = size_bucket(account)
    parts = [f"Company size: {bucket}" if bucket else "Company size unknown"]
    if account.industry:
        parts.append(f"industry: {account.industry}")
    return ", ".join(parts)
