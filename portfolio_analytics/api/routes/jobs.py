"""Job trigger endpoints for prices, snapshots and factor exposures."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import date
from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, status

from portfolio_analytics.providers.alpha_vantage import AlphaVantageError
from portfolio_analytics.schemas import JobRequest, JobResponse
from portfolio_analytics.services import jobs

router = APIRouter()
logger = logging.getLogger(__name__)


async def _factor_job(as_of: date | None) -> dict[str, Any]:
    exposures = await jobs.run_daily_factor_job(as_of)
    return {"exposures": len(exposures), "tickers": [e.ticker for e in exposures]}


async def _snapshot_job(as_of: date | None) -> dict[str, Any]:
    result = await jobs.run_snapshot_job(as_of)
    return {"snapshots": {str(k): v for k, v in result.snapshots.items()}, "failed": result.failed}


async def _price_job(as_of: date | None) -> dict[str, Any]:
    return asdict(await jobs.run_price_backfill_job(as_of))


async def _logged(name: str, job: Callable[[date | None], Awaitable[dict[str, Any]]], as_of: date | None) -> None:
    try:
        await job(as_of)
    except Exception:
        logger.exception("Background %s job failed", name)
        raise


async def _trigger(
    name: str,
    job: Callable[[date | None], Awaitable[dict[str, Any]]],
    payload: JobRequest,
    background_tasks: BackgroundTasks,
    run_sync: bool,
) -> JobResponse:
    if run_sync:
        try:
            detail = await job(payload.as_of)
        except AlphaVantageError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
        return JobResponse(job=name, status="completed", as_of=payload.as_of, detail=detail)
    background_tasks.add_task(_logged, name, job, payload.as_of)
    return JobResponse(job=name, status="scheduled", as_of=payload.as_of)


@router.post("/factors", status_code=status.HTTP_202_ACCEPTED, response_model=JobResponse)
async def trigger_factor_job(
    background_tasks: BackgroundTasks,
    payload: JobRequest | None = None,
    run_sync: bool = False,
) -> JobResponse:
    """Estimate factor exposures for every held ticker."""

    return await _trigger("factors", _factor_job, payload or JobRequest(), background_tasks, run_sync)


@router.post("/snapshots", status_code=status.HTTP_202_ACCEPTED, response_model=JobResponse)
async def trigger_snapshot_job(
    background_tasks: BackgroundTasks,
    payload: JobRequest | None = None,
    run_sync: bool = False,
) -> JobResponse:
    """Precompute and cache portfolio snapshots."""

    return await _trigger("snapshots", _snapshot_job, payload or JobRequest(), background_tasks, run_sync)


@router.post("/prices", status_code=status.HTTP_202_ACCEPTED, response_model=JobResponse)
async def trigger_price_job(
    background_tasks: BackgroundTasks,
    payload: JobRequest | None = None,
    run_sync: bool = False,
) -> JobResponse:
    """Top up the price cache for every traded ticker."""

    return await _trigger("prices", _price_job, payload or JobRequest(), background_tasks, run_sync)


__all__ = ["router"]
