import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from pricewatch.services.reconciliation import BatchResult
from pricewatch.services.scheduler import PriceCheckScheduler, SchedulerError, validate_cron

NOW = datetime(2026, 1, 1, 0, 0, tzinfo=UTC)


class FakeReconciler:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.calls = 0
        self.gate = gate

    async def reconcile_all(self) -> BatchResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return BatchResult(success_count=2, failure_count=1)


class ScriptedSleep:
    """Returns immediately for the first `free` calls, then blocks until cancelled."""

    def __init__(self, free: int = 0) -> None:
        self.free = free
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) > self.free:
            await asyncio.Event().wait()


async def _settle(condition, attempts: int = 50) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)


def _scheduler(reconciler, sleep, runs=None) -> PriceCheckScheduler:
    async def record(summary):
        if runs is not None:
            runs.append(summary)

    return PriceCheckScheduler(reconciler, record_run=record, sleep=sleep, clock=lambda: NOW)


def test_validate_cron():
    assert validate_cron(" 0 */6 * * * ") == "0 */6 * * *"
    with pytest.raises(SchedulerError):
        validate_cron("every six hours")
    with pytest.raises(SchedulerError):
        validate_cron("0 0 */6 * * *")  # six fields
    with pytest.raises(SchedulerError):
        validate_cron("61 * * * *")


@pytest.mark.asyncio
async def test_start_twice_keeps_a_single_job():
    scheduler = _scheduler(FakeReconciler(), ScriptedSleep())

    assert scheduler.start("0 */6 * * *") is True
    job = scheduler._task
    assert scheduler.start("0 */6 * * *") is False

    assert scheduler.is_running is True
    assert scheduler._task is job

    assert scheduler.stop() is True
    assert scheduler.is_running is False
    await _settle(job.done)
    assert job.cancelled()


@pytest.mark.asyncio
async def test_stop_when_stopped_is_noop():
    scheduler = _scheduler(FakeReconciler(), ScriptedSleep())
    assert scheduler.stop() is False
    assert scheduler.is_running is False


@pytest.mark.asyncio
async def test_invalid_cron_fails_start():
    scheduler = _scheduler(FakeReconciler(), ScriptedSleep())
    with pytest.raises(SchedulerError):
        scheduler.start("not a cron")
    assert scheduler.is_running is False


@pytest.mark.asyncio
async def test_default_cron_is_every_six_hours():
    sleep = ScriptedSleep()
    scheduler = _scheduler(FakeReconciler(), sleep)

    scheduler.start()
    await _settle(lambda: sleep.delays)

    status = scheduler.get_status()
    assert status["cron_expression"] == "0 */6 * * *"
    assert status["next_run_at"] == datetime(2026, 1, 1, 6, 0, tzinfo=UTC)
    assert sleep.delays == [6 * 3600]
    scheduler.stop()
    assert scheduler.get_status()["next_run_at"] is None


@pytest.mark.asyncio
async def test_scheduled_tick_runs_batch_and_records_summary():
    runs: list[dict] = []
    reconciler = FakeReconciler()
    scheduler = _scheduler(reconciler, ScriptedSleep(free=1), runs)

    scheduler.start("*/5 * * * *")
    await _settle(lambda: runs)
    scheduler.stop()

    assert reconciler.calls == 1
    assert runs[0]["trigger"] == "scheduled"
    assert runs[0]["success_count"] == 2
    assert runs[0]["failure_count"] == 1
    assert scheduler.last_run == runs[0]


@pytest.mark.asyncio
async def test_stop_does_not_cancel_in_flight_batch():
    gate = asyncio.Event()
    runs: list[dict] = []
    reconciler = FakeReconciler(gate)
    scheduler = _scheduler(reconciler, ScriptedSleep(free=1), runs)

    scheduler.start("*/5 * * * *")
    await _settle(lambda: reconciler.calls)
    scheduler.stop()

    gate.set()
    await _settle(lambda: runs)
    assert len(runs) == 1
    assert runs[0]["trigger"] == "scheduled"


@pytest.mark.asyncio
async def test_tick_skipped_while_previous_batch_runs():
    gate = asyncio.Event()
    reconciler = FakeReconciler(gate)
    sleep = ScriptedSleep(free=2)
    scheduler = _scheduler(reconciler, sleep)

    scheduler.start("* * * * *")
    await _settle(lambda: len(sleep.delays) >= 3 and reconciler.calls)

    assert reconciler.calls == 1
    scheduler.stop()
    gate.set()
    await _settle(scheduler._batch_task.done)


@pytest.mark.asyncio
async def test_trigger_now_works_in_either_state_without_changing_it():
    runs: list[dict] = []
    scheduler = _scheduler(FakeReconciler(), ScriptedSleep(), runs)

    summary = await scheduler.trigger_now()
    assert summary["trigger"] == "manual"
    assert (summary["success_count"], summary["failure_count"]) == (2, 1)
    assert scheduler.is_running is False

    scheduler.start()
    await scheduler.trigger_now()
    assert scheduler.is_running is True
    assert len(runs) == 2
    scheduler.stop()


@pytest.mark.asyncio
async def test_recorder_failure_is_not_fatal():
    async def broken_recorder(summary):
        raise ConnectionError("redis down")

    scheduler = PriceCheckScheduler(FakeReconciler(), record_run=broken_recorder, clock=lambda: NOW)
    summary = await scheduler.trigger_now()
    assert summary["success_count"] == 2
    assert scheduler.last_run == summary


class ManualClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class StallingSleep:
    """Advances the clock by the requested delay plus a stall on the first call."""

    def __init__(self, clock: ManualClock, stall: timedelta) -> None:
        self.clock = clock
        self.stall = stall
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) > 1:
            await asyncio.Event().wait()
        self.clock.now += timedelta(seconds=delay) + self.stall


@pytest.mark.asyncio
async def test_next_tick_is_computed_from_current_time_after_a_stall():
    clock = ManualClock(NOW)
    sleep = StallingSleep(clock, stall=timedelta(minutes=12))
    reconciler = FakeReconciler()
    scheduler = PriceCheckScheduler(reconciler, sleep=sleep, clock=clock)

    scheduler.start("*/5 * * * *")
    await _settle(lambda: len(sleep.delays) >= 2 and reconciler.calls)

    # Woke at 00:17 instead of 00:05; the 00:10 and 00:15 ticks are not replayed
    assert sleep.delays == [300, 180]
    assert scheduler.next_run_at == datetime(2026, 1, 1, 0, 20, tzinfo=UTC)
    assert reconciler.calls == 1
    scheduler.stop()


@pytest.mark.asyncio
async def test_early_wakeup_does_not_fire_the_same_tick_twice():
    clock = ManualClock(NOW)
    delays: list[float] = []

    async def early_sleep(delay: float) -> None:
        delays.append(delay)
        if len(delays) > 1:
            await asyncio.Event().wait()
        clock.now += timedelta(seconds=delay) - timedelta(milliseconds=5)

    scheduler = PriceCheckScheduler(FakeReconciler(), sleep=early_sleep, clock=clock)
    scheduler.start("*/5 * * * *")
    await _settle(lambda: len(delays) >= 2)

    assert scheduler.next_run_at == datetime(2026, 1, 1, 0, 10, tzinfo=UTC)
    assert delays[1] == pytest.approx(300.005)
    scheduler.stop()
