"""Scheduler endpoints.

POST /v1/scheduler/start    start the recurring price check (optional cron)
POST /v1/scheduler/stop     stop future scheduled runs
GET  /v1/scheduler/status   running flag, cron, next fire time, last batch
POST /v1/scheduler/run      run one batch now and return its counts
GET  /v1/scheduler/runs     recent batch summaries (from Redis)
"""

import logging

from fastapi import APIRouter, Depends, Query

from pricewatch.container import Services, get_services
from pricewatch.schemas.scheduler import (
    BatchHistoryResponse,
    BatchRunResponse,
    BatchRunSummary,
    SchedulerActionResponse,
    SchedulerStartRequest,
    SchedulerStatusResponse,
)

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


@router.post("/start", response_model=SchedulerActionResponse)
async def start_scheduler(
    body: SchedulerStartRequest | None = None,
    services: Services = Depends(get_services),
) -> SchedulerActionResponse:
    """Start the price checker. Starting twice is a no-op."""
    scheduler = services.scheduler
    started = scheduler.start(body.cron_expression if body else None)
    if started:
        message = f"Price checker started with cron {scheduler.cron_expression!r}"
    else:
        message = "Price checker is already running"
    return SchedulerActionResponse(success=True, message=message, running=scheduler.is_running)


@router.post("/stop", response_model=SchedulerActionResponse)
async def stop_scheduler(services: Services = Depends(get_services)) -> SchedulerActionResponse:
    scheduler = services.scheduler
    stopped = scheduler.stop()
    message = "Price checker stopped" if stopped else "No price checker job is running"
    return SchedulerActionResponse(success=True, message=message, running=scheduler.is_running)


@router.get("/status", response_model=SchedulerStatusResponse)
async def scheduler_status(services: Services = Depends(get_services)) -> SchedulerStatusResponse:
    status = services.scheduler.get_status()
    last_run = status["last_run"]
    return SchedulerStatusResponse(
        running=status["running"],
        cron_expression=status["cron_expression"],
        next_run_at=status["next_run_at"],
        last_run=BatchRunSummary.model_validate(last_run) if last_run else None,
    )


@router.post("/run", response_model=BatchRunResponse)
async def run_price_check(services: Services = Depends(get_services)) -> BatchRunResponse:
    """Run one reconciliation batch and wait for it to finish."""
    summary = await services.scheduler.trigger_now()
    return BatchRunResponse(
        message="Manual price check completed",
        run=BatchRunSummary.model_validate(summary),
    )


@router.get("/runs", response_model=BatchHistoryResponse)
async def list_batch_runs(
    limit: int = Query(default=20, ge=1, le=100),
    services: Services = Depends(get_services),
) -> BatchHistoryResponse:
    """Recent batch summaries, newest first.

    If Redis is unavailable, only the in-process last run is returned.
    """
    try:
        runs = await services.run_history(limit)
    except Exception as e:
        logger.warning(f"[scheduler] batch history unavailable: {e!r}")
        last_run = services.scheduler.last_run
        runs = [last_run] if last_run else []
    return BatchHistoryResponse(runs=[BatchRunSummary.model_validate(r) for r in runs])
