"""
Tests for the periodic evaluation scheduler.

Covers:
- EvaluationScheduler.run_now (task execution, failures, history)
- start/stop lifecycle and job registration
- get_status
"""

from unittest.mock import AsyncMock

import pytest

from financy.application.trading.dtos import AlertPassResult, SignalPassResult


def _scheduler(**overrides):
    from financy.realtime.scheduler import EvaluationScheduler

    alert_pass = AsyncMock()
    alert_pass.execute.return_value = AlertPassResult(evaluated=3, triggered=1, tracked=1)
    signal_pass = AsyncMock()
    signal_pass.execute.return_value = SignalPassResult(profiles=1, analyzed=2, signals_created=1)
    suggestion_pass = AsyncMock()
    suggestion_pass.execute.return_value = 4

    kwargs = {
        "alert_pass": alert_pass,
        "signal_pass": signal_pass,
        "suggestion_pass": suggestion_pass,
    }
    kwargs.update(overrides)
    return EvaluationScheduler(**kwargs)


# =====================================================================
# run_now
# =====================================================================


class TestRunNow:
    """Tests for on-demand task execution."""

    @pytest.mark.asyncio
    async def test_alert_pass_counters_become_details(self):
        from financy.realtime.scheduler import TaskStatus

        scheduler = _scheduler()

        result = await scheduler.run_now("alerts")

        assert result.status is TaskStatus.COMPLETED
        assert result.details["evaluated"] == 3
        assert result.details["triggered"] == 1
        assert result.finished_at is not None

    @pytest.mark.asyncio
    async def test_signal_and_suggestion_passes(self):
        from financy.realtime.scheduler import TaskStatus

        scheduler = _scheduler()

        signals = await scheduler.run_now("signals")
        suggestions = await scheduler.run_now("suggestions")

        assert signals.status is TaskStatus.COMPLETED
        assert signals.details["signals_created"] == 1
        assert suggestions.details == {"suggestions_created": 4}

    @pytest.mark.asyncio
    async def test_unknown_task_fails_without_running_anything(self):
        from financy.realtime.scheduler import TaskStatus

        scheduler = _scheduler()

        result = await scheduler.run_now("retrain")

        assert result.status is TaskStatus.FAILED
        assert "Unknown task" in result.error
        assert scheduler.task_history == []

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self):
        from financy.realtime.scheduler import TaskStatus

        broken = AsyncMock()
        broken.execute.side_effect = RuntimeError("database unreachable")
        scheduler = _scheduler(alert_pass=broken)

        result = await scheduler.run_now("alerts")

        assert result.status is TaskStatus.FAILED
        assert result.error == "database unreachable"
        assert scheduler.task_history[-1] is result

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        scheduler = _scheduler()
        scheduler._max_history = 3

        for _ in range(5):
            await scheduler.run_now("suggestions")

        assert len(scheduler.task_history) == 3


# =====================================================================
# Lifecycle
# =====================================================================


class TestLifecycle:
    """start() registers one job per pass; stop() is idempotent."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self):
        scheduler = _scheduler(alert_interval_seconds=30)

        scheduler.start()
        try:
            assert scheduler.is_running is True
            jobs = {job["id"]: job for job in scheduler.get_scheduled_jobs()}
            assert set(jobs) == {"alerts", "signals", "suggestions"}
            assert "0:00:30" in jobs["alerts"]["trigger"]
        finally:
            scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.get_scheduled_jobs() == []

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_scheduler(self):
        scheduler = _scheduler()

        scheduler.start()
        first = scheduler._scheduler
        scheduler.start()
        try:
            assert scheduler._scheduler is first
        finally:
            scheduler.stop()
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_status_lists_recent_tasks(self):
        scheduler = _scheduler()
        await scheduler.run_now("alerts")

        status = scheduler.get_status()

        assert status["running"] is False
        assert status["recent_tasks"][0]["task"] == "alerts"
        assert status["recent_tasks"][0]["status"] == "completed"
