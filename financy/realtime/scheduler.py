"""
Periodic evaluation scheduler.

Runs three interval jobs on the application's event loop with APScheduler:

- **alerts**: one alert pass over every active alert
- **signals**: signal rule engine over the watched and bought assets of
  every profile whose analysis interval elapsed
- **suggestions**: suggestion generation for every profile whose
  suggestion interval elapsed

Jobs coalesce and never run two instances at once, so a slow pass delays
the next one instead of overlapping it. Any job can also be triggered on
demand with ``run_now``.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from financy.application.trading.analyze_trading_asset import RunSignalPassUseCase
from financy.application.trading.evaluate_alerts import EvaluateAlertsUseCase
from financy.application.trading.generate_suggestions import RunSuggestionPassUseCase

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Result of a scheduled task execution."""

    task_name: str
    status: TaskStatus
    started_at: str
    finished_at: Optional[str] = None
    duration_seconds: float = 0.0
    details: dict = field(default_factory=dict)
    error: Optional[str] = None


class EvaluationScheduler:
    """Drives the periodic alert, signal and suggestion passes.

    Usage:
        scheduler = EvaluationScheduler(alerts, signals, suggestions)
        scheduler.start()                  # inside a running event loop
        await scheduler.run_now("alerts")  # trigger a pass immediately
        scheduler.stop()
    """

    def __init__(
        self,
        alert_pass: EvaluateAlertsUseCase,
        signal_pass: RunSignalPassUseCase,
        suggestion_pass: RunSuggestionPassUseCase,
        alert_interval_seconds: int = 60,
        signal_interval_seconds: int = 300,
        suggestion_interval_seconds: int = 300,
    ) -> None:
        self._alert_pass = alert_pass
        self._signal_pass = signal_pass
        self._suggestion_pass = suggestion_pass
        self._intervals = {
            "alerts": alert_interval_seconds,
            "signals": signal_interval_seconds,
            "suggestions": suggestion_interval_seconds,
        }
        self._task_history: list[TaskResult] = []
        self._max_history = 200
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def task_history(self) -> list[TaskResult]:
        return list(self._task_history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the interval jobs. Must be called with a running loop."""
        if self._scheduler is not None:
            logger.warning("Scheduler already running.")
            return

        self._scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        names = {
            "alerts": "Alert evaluation pass",
            "signals": "Trading signal pass",
            "suggestions": "Trading suggestion pass",
        }
        for task_name, title in names.items():
            self._scheduler.add_job(
                self.run_now,
                IntervalTrigger(seconds=self._intervals[task_name]),
                args=[task_name],
                id=task_name,
                name=title,
            )
        self._scheduler.start()
        logger.info("Scheduler started with %d jobs.", len(self._scheduler.get_jobs()))

    def stop(self) -> None:
        """Stop scheduling new runs; a pass already running finishes on its own."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped.")

    async def run_now(self, task_name: str) -> TaskResult:
        """Execute a named task immediately.

        Args:
            task_name: One of 'alerts', 'signals', 'suggestions'.
        """
        task_map: dict[str, Callable[[], Awaitable[Any]]] = {
            "alerts": self._task_alerts,
            "signals": self._task_signals,
            "suggestions": self._task_suggestions,
        }
        fn = task_map.get(task_name)
        if fn is None:
            return TaskResult(
                task_name=task_name,
                status=TaskStatus.FAILED,
                started_at=datetime.now(timezone.utc).isoformat(),
                error=f"Unknown task: {task_name}. Available: {list(task_map.keys())}",
            )

        start = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        try:
            details = await fn()
            result = TaskResult(
                task_name=task_name,
                status=TaskStatus.COMPLETED,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                details=details,
            )
        except Exception as exc:
            result = TaskResult(
                task_name=task_name,
                status=TaskStatus.FAILED,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                error=str(exc),
            )
            logger.exception("Scheduled %s pass failed.", task_name)

        self._record_result(result)
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _task_alerts(self) -> dict:
        result = await self._alert_pass.execute()
        return {
            "evaluated": result.evaluated,
            "triggered": result.triggered,
            "tracked": result.tracked,
            "reset": result.reset,
            "skipped": result.skipped,
            "failed": result.failed,
        }

    async def _task_signals(self) -> dict:
        result = await self._signal_pass.execute()
        return {
            "profiles": result.profiles,
            "analyzed": result.analyzed,
            "signals_created": result.signals_created,
            "skipped": result.skipped,
            "failed": result.failed,
        }

    async def _task_suggestions(self) -> dict:
        return {"suggestions_created": await self._suggestion_pass.execute()}

    def _record_result(self, result: TaskResult) -> None:
        self._task_history.append(result)
        if len(self._task_history) > self._max_history:
            self._task_history = self._task_history[-self._max_history:]

    # ------------------------------------------------------------------
    # Status & introspection
    # ------------------------------------------------------------------

    def get_scheduled_jobs(self) -> list[dict]:
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time),
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def get_status(self) -> dict:
        recent = self._task_history[-10:]
        return {
            "running": self.is_running,
            "jobs": self.get_scheduled_jobs(),
            "recent_tasks": [
                {
                    "task": r.task_name,
                    "status": r.status.value,
                    "duration": r.duration_seconds,
                    "started_at": r.started_at,
                }
                for r in recent
            ],
        }
