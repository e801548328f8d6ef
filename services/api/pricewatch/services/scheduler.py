"""Recurring price check driven by a five-field cron expression.

States:
- Stopped -> Running on start(); starting again while running only logs
- Running -> Stopped on stop(); stopping while stopped only logs

The loop sleeps until the next cron fire time (UTC) and then launches the
batch as its own task. stop() cancels the loop only, so a batch that already
started always runs to completion. A tick that arrives while the previous
scheduled batch is still running is skipped.

trigger_now() runs one batch inline in either state and leaves the state alone.

Every batch summary goes to the optional recorder (Redis in production);
recorder failures are logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from croniter import croniter

from pricewatch.services.fetcher import SleepFn
from pricewatch.services.reconciliation import Reconciler

logger = logging.getLogger("uvicorn.error")

DEFAULT_CRON = "0 */6 * * *"

BatchRecorder = Callable[[dict[str, Any]], Awaitable[None]]
Clock = Callable[[], datetime]


class SchedulerError(ValueError):
    """Raised for an unusable cron expression."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_cron(expression: str) -> str:
    """Return the normalized expression or raise SchedulerError."""
    expression = (expression or "").strip()
    if len(expression.split()) != 5:
        raise SchedulerError(
            f"Invalid cron expression {expression!r}: expected 5 fields "
            "(minute hour day-of-month month day-of-week)"
        )
    if not croniter.is_valid(expression):
        raise SchedulerError(f"Invalid cron expression {expression!r}")
    return expression


class PriceCheckScheduler:
    """Runs Reconciler.reconcile_all on a cron cadence."""

    def __init__(
        self,
        reconciler: Reconciler,
        *,
        default_cron: str = DEFAULT_CRON,
        record_run: BatchRecorder | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = _utcnow,
    ):
        self.reconciler = reconciler
        self.default_cron = default_cron
        self._record_run = record_run
        self._sleep = sleep
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._batch_task: asyncio.Task | None = None
        self._cron: str | None = None
        self._next_run_at: datetime | None = None
        self.last_run: dict[str, Any] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None

    @property
    def cron_expression(self) -> str | None:
        return self._cron

    @property
    def next_run_at(self) -> datetime | None:
        return self._next_run_at if self.is_running else None

    def start(self, cron_expression: str | None = None) -> bool:
        """Start the recurring job. Returns False if it was already running.

        Raises:
            SchedulerError: Invalid cron expression.
        """
        expression = validate_cron(cron_expression or self.default_cron)
        if self.is_running:
            logger.warning(f"[scheduler] already running with cron={self._cron!r}, ignoring start")
            return False

        self._cron = expression
        self._task = asyncio.create_task(self._run_loop(expression))
        logger.info(f"[scheduler] started cron={expression!r}")
        return True

    def stop(self) -> bool:
        """Stop future runs. Returns False if nothing was running."""
        if not self.is_running:
            logger.info("[scheduler] no price check job is running")
            return False
        self._task.cancel()
        self._task = None
        self._next_run_at = None
        logger.info("[scheduler] stopped")
        return True

    async def trigger_now(self) -> dict[str, Any]:
        """Run one batch immediately and return its summary."""
        logger.info("[scheduler] manual price check triggered")
        return await self._run_batch("manual")

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "cron_expression": self._cron if self.is_running else None,
            "next_run_at": self.next_run_at,
            "last_run": self.last_run,
        }

    async def _run_loop(self, expression: str) -> None:
        while True:
            # Anchored on the current time so a stalled loop never replays missed
            # ticks, and never before the last fire time so an early wakeup cannot
            # fire the same tick twice
            now = self._clock()
            base = max(now, self._next_run_at) if self._next_run_at else now
            self._next_run_at = croniter(expression, base).get_next(datetime)
            delay = max(0.0, (self._next_run_at - now).total_seconds())
            await self._sleep(delay)

            if self._batch_task is not None and not self._batch_task.done():
                logger.warning("[scheduler] previous scheduled batch still running, skipping tick")
                continue
            self._batch_task = asyncio.create_task(self._run_scheduled_batch())

    async def _run_scheduled_batch(self) -> None:
        logger.info("[scheduler] running scheduled price check")
        try:
            await self._run_batch("scheduled")
        except Exception:
            logger.exception("[scheduler] scheduled price check failed")

    async def _run_batch(self, trigger: str) -> dict[str, Any]:
        started_at = self._clock()
        result = await self.reconciler.reconcile_all()
        summary = {
            "trigger": trigger,
            "started_at": started_at.isoformat(),
            "finished_at": self._clock().isoformat(),
            "success_count": result.success_count,
            "failure_count": result.failure_count,
        }
        self.last_run = summary

        if self._record_run is not None:
            try:
                await self._record_run(summary)
            except Exception as e:
                logger.warning(f"[scheduler] could not record batch summary: {e!r}")
        return summary
