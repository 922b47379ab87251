"""HTTP surface for account scores.

- GET  /accounts/top                        - ranked current scores
- GET  /scores/overview                     - daily score aggregates
- GET  /accounts/{account_id}/score         - current score (404 if unknown)
- GET  /accounts/{account_id}/score-history - snapshots, oldest first
- POST /accounts/{account_id}/score/compute - run or join a pass

Route ordering: static paths MUST come before parameterized
/{account_id} paths so "top" is never matched as an account id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request

from pqa_engine.engine import ScoringEngine
from pqa_engine.errors import RETRYABLE_ERRORS, UnknownAccount
from pqa_engine.models import Tier
from pqa_engine.service import MAX_TOP_N

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scores"])


def _get_engine(request: Request) -> ScoringEngine:
    return request.app.state.engine


# =======================================================================
# STATIC ROUTES (must come before /{account_id} routes)
# =======================================================================


@router.get("/accounts/top")
async def top_accounts(
    limit: int = Query(20, ge=1, le=MAX_TOP_N, description="Number of accounts"),
    tier: Tier | None = Query(None, description="Restrict to one tier"),
    engine: ScoringEngine = Depends(_get_engine),
) -> list[dict[str, Any]]:
    """Accounts ranked by current score, highest first."""
    scores = await engine.top(limit, tier)
    return [s.to_dict() for s in scores]


@router.get("/scores/overview")
async def score_overview(
    days: int = Query(30, ge=1, le=365, description="Number of days of history"),
    engine: ScoringEngine = Depends(_get_engine),
) -> list[dict[str, Any]]:
    """Daily average, min, max and count of snapshot scores."""
    points = await engine.overview(days)
    return [p.to_dict() for p in points]


# =======================================================================
# PARAMETERIZED ROUTES (/{account_id} - must come AFTER static routes)
# =======================================================================


@router.get("/accounts/{account_id}/score")
async def get_account_score(
    account_id: str,
    engine: ScoringEngine = Depends(_get_engine),
) -> dict[str, Any]:
    try:
        score = await engine.current_score(account_id)
    except UnknownAccount as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return score.to_dict()


@router.get("/accounts/{account_id}/score-history")
async def get_score_history(
    account_id: str,
    days: int = Query(30, ge=1, le=365, description="Number of days of history"),
    engine: ScoringEngine = Depends(_get_engine),
) -> list[dict[str, Any]]:
    snapshots = await engine.history(account_id, days)
    return [s.to_dict() for s in snapshots]


@router.post("/accounts/{account_id}/score/compute")
async def compute_account_score(
    account_id: str,
    engine: ScoringEngine = Depends(_get_engine),
) -> dict[str, Any]:
    """Recompute now, or join the pass already in flight for this account."""
    try:
        score = await engine.compute_now(account_id)
    except RETRYABLE_ERRORS as exc:
        logger.warning("On-demand recompute for %s failed: %s", account_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return score.to_dict()


def create_app(engine: ScoringEngine, *, run_sweeper: bool = False) -> FastAPI:
    """Build the FastAPI app around an engine.

    With *run_sweeper*, a background task re-scores stale accounts every
    ``sweep_interval_seconds`` for the app's lifetime.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        stop = asyncio.Event()
        sweeper: asyncio.Task | None = None
        if run_sweeper:
            sweeper = asyncio.create_task(engine.coordinator.run_sweeper(stop=stop))
        try:
            yield
        finally:
            stop.set()
            if sweeper is not None:
                await sweeper
            await engine.drain()

    app = FastAPI(
        title="PQA Scoring API",
        description="Product-qualified account scores, tiers and history",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.include_router(router)
    return app
