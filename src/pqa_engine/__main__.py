"""CLI entry point: python -m pqa_engine <command>."""

from __future__ import annotations

import argparse
import logging
import sys


def _add_engine_args(p: argparse.ArgumentParser, *, signals: bool = False) -> None:
    p.add_argument("--config", default="", help="Scoring config YAML (default: $PQA_CONFIG_PATH)")
    p.add_argument("--database", default="pqa_scores.sqlite3", help="Snapshot database path")
    if signals:
        p.add_argument("--signals", default="", help="Signal/account YAML or JSON file")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="pqa",
        description="Product-qualified account scoring engine",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    sub = parser.add_subparsers(dest="command")

    cp = sub.add_parser("compute", help="Score accounts now and persist snapshots")
    _add_engine_args(cp, signals=True)
    cp.add_argument("account_ids", nargs="*", help="Accounts to score (default: all in --signals)")
    cp.add_argument("--json", action="store_true", default=False, help="Output as JSON")

    sc = sub.add_parser("score", help="Show an account's current score and factors")
    _add_engine_args(sc)
    sc.add_argument("account_id")
    sc.add_argument("--json", action="store_true", default=False, help="Output as JSON")

    hi = sub.add_parser("history", help="Show an account's score history")
    _add_engine_args(hi)
    hi.add_argument("account_id")
    hi.add_argument("--days", type=int, default=30)
    hi.add_argument("--json", action="store_true", default=False, help="Output as JSON")

    tp = sub.add_parser("top", help="Rank accounts by current score")
    _add_engine_args(tp)
    tp.add_argument("--limit", type=int, default=20)
    tp.add_argument("--tier", choices=["HOT", "WARM", "COLD", "INACTIVE"], type=str.upper)
    tp.add_argument("--json", action="store_true", default=False, help="Output as JSON")

    pr = sub.add_parser("prune", help="Delete snapshots older than retention_days")
    _add_engine_args(pr)

    pv = sub.add_parser("preview", help="Project scores under a proposed config")
    _add_engine_args(pv, signals=True)
    pv.add_argument("--proposed", required=True, help="Proposed scoring config YAML")
    pv.add_argument("account_ids", nargs="*")
    pv.add_argument("--json", action="store_true", default=False, help="Output as JSON")

    vc = sub.add_parser("validate-config", help="Validate a scoring config file")
    vc.add_argument("path", nargs="?", default="", help="Config path (default: $PQA_CONFIG_PATH)")

    sv = sub.add_parser("serve", help="Run the HTTP API")
    _add_engine_args(sv, signals=True)
    sv.add_argument("--host", default="127.0.0.1")
    sv.add_argument("--port", type=int, default=8000)
    sv.add_argument("--no-sweeper", action="store_true", default=False,
                    help="Disable the background stale-score sweep")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "compute":
        from pqa_engine.cli.commands import run_compute
        run_compute(args)
    elif args.command == "score":
        from pqa_engine.cli.commands import run_score
        run_score(args)
    elif args.command == "history":
        from pqa_engine.cli.commands import run_history
        run_history(args)
    elif args.command == "top":
        from pqa_engine.cli.commands import run_top
        run_top(args)
    elif args.command == "prune":
        from pqa_engine.cli.commands import run_prune
        run_prune(args)
    elif args.command == "preview":
        from pqa_engine.cli.commands import run_preview
        run_preview(args)
    elif args.command == "validate-config":
        from pqa_engine.cli.commands import run_validate_config
        run_validate_config(args)
    elif args.command == "serve":
        from pqa_engine.cli.serve import run_serve
        run_serve(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
