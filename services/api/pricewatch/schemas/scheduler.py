"""Schemas for the price-check scheduler and scrape preview endpoints."""

from datetime import datetime
from typing import Any

from pydantic import Field

from pricewatch.schemas.product import ApiModel


class SchedulerStartRequest(ApiModel):
    """Request body for starting the recurring price check."""

    cron_expression: str | None = Field(
        default=None,
        description="Five-field cron expression; defaults to every 6 hours",
        examples=["0 */6 * * *"],
    )


class BatchRunSummary(ApiModel):
    """Outcome of one reconciliation batch."""

    trigger: str
    started_at: datetime
    finished_at: datetime
    success_count: int
    failure_count: int


class SchedulerStatusResponse(ApiModel):
    success: bool = True
    running: bool
    cron_expression: str | None = None
    next_run_at: datetime | None = None
    last_run: BatchRunSummary | None = None


class SchedulerActionResponse(ApiModel):
    success: bool
    message: str
    running: bool


class BatchRunResponse(ApiModel):
    success: bool = True
    message: str
    run: BatchRunSummary


class BatchHistoryResponse(ApiModel):
    success: bool = True
    runs: list[BatchRunSummary]


class ScrapePreviewRequest(ApiModel):
    url: str = Field(max_length=2048)


class ScrapePreviewResponse(ApiModel):
    success: bool = True
    url: str
    domain: str | None
    snapshot: dict[str, Any]
