"""CLI handler for ``pqa serve``."""

from __future__ import annotations

from argparse import Namespace

import uvicorn

from pqa_engine.api import create_app
from pqa_engine.cli.commands import build_engine


def run_serve(args: Namespace) -> None:
    engine = build_engine(args)
    app = create_app(engine, run_sweeper=not args.no_sweeper)
    print(f"Starting PQA scoring API on {args.host}:{args.port}")
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    finally:
        engine.close()
