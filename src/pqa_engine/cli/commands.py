"""CLI handlers for ``pqa compute|score|history|top|prune|preview|validate-config``."""

from __future__ import annotations

import asyncio
import os
import sys
from argparse import Namespace
from typing import NoReturn

from pqa_engine.cli.report import (
    format_factors,
    format_history_table,
    format_json,
    format_preview_table,
    format_scores_table,
)
from pqa_engine.config import load_config
from pqa_engine.engine import ScoringEngine
from pqa_engine.errors import ConfigurationError, PQAEngineError, UnknownAccount
from pqa_engine.models import AccountScore, Tier
from pqa_engine.sources import MemorySignalSource, SignalSource, load_signal_file
from pqa_engine.telemetry import LoggerTelemetrySink

CONFIG_ENV_VAR = "PQA_CONFIG_PATH"


def _config_path(args: Namespace) -> str | None:
    return getattr(args, "config", None) or os.environ.get(CONFIG_ENV_VAR) or None


def _fail(message: str, code: int = 1) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


def build_engine(args: Namespace) -> ScoringEngine:
    """Engine for a CLI run.  Exits with status 2 on a bad config or signal file."""
    source: SignalSource = MemorySignalSource()
    try:
        if getattr(args, "signals", None):
            source = load_signal_file(args.signals)
        return ScoringEngine.from_config(
            _config_path(args),
            source,
            database=args.database,
            telemetry_sink=LoggerTelemetrySink(),
        )
    except ConfigurationError as exc:
        _fail(str(exc), code=2)


def run_compute(args: Namespace) -> None:
    engine = build_engine(args)
    account_ids = list(args.account_ids)
    if not account_ids and isinstance(engine.source, MemorySignalSource):
        account_ids = engine.source.account_ids()
    if not account_ids:
        _fail("no accounts to score (pass account ids or --signals)")

    async def _compute_all() -> list[AccountScore | BaseException]:
        futures = [engine.trigger(a, reason="cli") for a in account_ids]
        return await asyncio.gather(*futures, return_exceptions=True)

    try:
        results = asyncio.run(_compute_all())
    finally:
        engine.close()

    scores = [r for r in results if isinstance(r, AccountScore)]
    failures = [(a, r) for a, r in zip(account_ids, results) if isinstance(r, BaseException)]
    if args.json:
        print(format_json([s.to_dict() for s in scores]))
    else:
        print(format_scores_table(scores, title="Computed Scores"))
    for account_id, exc in failures:
        print(f"Failed to score {account_id}: {exc}", file=sys.stderr)
    if failures:
        sys.exit(1)


def run_score(args: Namespace) -> None:
    engine = build_engine(args)
    try:
        score = asyncio.run(engine.current_score(args.account_id))
    except UnknownAccount as exc:
        _fail(str(exc))
    finally:
        engine.close()
    print(format_json(score.to_dict()) if args.json else format_factors(score))


def run_history(args: Namespace) -> None:
    engine = build_engine(args)
    try:
        snapshots = asyncio.run(engine.history(args.account_id, args.days))
    finally:
        engine.close()
    if args.json:
        print(format_json([s.to_dict() for s in snapshots]))
    else:
        print(format_history_table(snapshots))


def run_top(args: Namespace) -> None:
    engine = build_engine(args)
    tier = Tier(args.tier.upper()) if args.tier else None
    try:
        scores = asyncio.run(engine.top(args.limit, tier))
    finally:
        engine.close()
    if args.json:
        print(format_json([s.to_dict() for s in scores]))
    else:
        print(format_scores_table(scores, title="Top Accounts"))


def run_prune(args: Namespace) -> None:
    engine = build_engine(args)
    try:
        removed = asyncio.run(engine.prune_history())
    except PQAEngineError as exc:
        _fail(str(exc))
    finally:
        engine.close()
    print(f"Pruned {removed} snapshot(s)")


def run_preview(args: Namespace) -> None:
    engine = build_engine(args)
    try:
        proposed = load_config(args.proposed)
    except ConfigurationError as exc:
        engine.close()
        _fail(str(exc), code=2)
    account_ids = list(args.account_ids)
    if not account_ids and isinstance(engine.source, MemorySignalSource):
        account_ids = engine.source.account_ids()
    try:
        previews = asyncio.run(engine.preview(proposed, account_ids))
    finally:
        engine.close()
    if args.json:
        print(format_json([p.to_dict() for p in previews]))
    else:
        print(format_preview_table(previews))


def run_validate_config(args: Namespace) -> None:
    path = args.path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        _fail(f"no config path given and {CONFIG_ENV_VAR} is not set", code=2)
    try:
        config = load_config(path)
    except ConfigurationError as exc:
        _fail(str(exc), code=2)
    weights = ", ".join(f"{k}={v:.2f}" for k, v in config.weights.items())
    print(f"OK: {path}")
    print(f"  weights: {weights}")
    print(f"  tiers: hot>={config.tiers.hot} warm>={config.tiers.warm} cold>={config.tiers.cold}")
