"""
Sweep scheduler for Mantissa Vigil.

Runs the matching sweep on a cron or rate schedule from a background
daemon thread.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from vigil.scheduling.expressions import ScheduleExpression, parse_schedule
from vigil.scheduling.sweep import MatchingSweep, SweepResult

logger = logging.getLogger(__name__)


DEFAULT_SCHEDULE = "rate(6 hours)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepJob:
    """
    Scheduling state of the matching sweep.

    Attributes:
        schedule: Schedule expression for when to run
        enabled: Whether scheduled runs happen
        last_run: When the sweep last ran
        next_run: When the sweep will next run
        run_count: Number of completed runs
        failure_count: Number of runs that raised
        last_result: Result of the last run that completed
    """

    schedule: ScheduleExpression
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    run_count: int = 0
    failure_count: int = 0
    last_result: SweepResult | None = None

    def should_run(self, now: datetime) -> bool:
        return self.enabled and self.next_run is not None and now >= self.next_run

    def mark_run(self, started_at: datetime, finished_at: datetime, result: SweepResult | None) -> None:
        self.last_run = started_at
        self.run_count += 1
        if result is None:
            self.failure_count += 1
        else:
            self.last_result = result
        self.next_run = self.schedule.get_next_run(finished_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_type": self.schedule.get_schedule_type().value,
            "schedule_expression": self.schedule.expression,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


class SweepScheduler:
    """
    Runs a MatchingSweep on a schedule.

    The first run happens one schedule interval after ``start``; use
    ``run_now`` for an immediate run. Overlap with a manual run is
    handled by the sweep's single-flight lock.

    Usage:
        scheduler = SweepScheduler(sweep, "rate(6 hours)")
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        sweep: MatchingSweep,
        schedule: ScheduleExpression | str = DEFAULT_SCHEDULE,
        check_interval: float = 60,
        clock: Callable[[], datetime] | None = None,
        enabled: bool = True,
    ):
        """
        Initialize the scheduler.

        Args:
            sweep: Sweep to run
            schedule: Schedule expression (cron or rate)
            check_interval: Seconds between schedule checks
            clock: Returns the current aware UTC time
            enabled: Whether scheduled runs happen

        Raises:
            ValueError: Invalid schedule expression
        """
        if isinstance(schedule, str):
            schedule = parse_schedule(schedule)

        self.sweep = sweep
        self.job = SweepJob(schedule=schedule, enabled=enabled)
        self._check_interval = check_interval
        self._clock = clock or _utcnow
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._callbacks: list[Callable[[SweepResult], None]] = []

    @classmethod
    def from_config(
        cls,
        config: Any,
        sweep: MatchingSweep,
        check_interval: float = 60,
        clock: Callable[[], datetime] | None = None,
    ) -> SweepScheduler:
        """
        Build a scheduler from an EngineConfiguration's sweep settings.

        Raises:
            ValueError: Invalid schedule expression
        """
        return cls(
            sweep,
            config.sweep.schedule,
            check_interval=check_interval,
            clock=clock,
            enabled=config.sweep.enabled,
        )

    def add_callback(self, callback: Callable[[SweepResult], None]) -> None:
        """Add a callback called with each completed sweep result."""
        self._callbacks.append(callback)

    def start(self) -> None:
        """Start the scheduler background thread."""
        if self.is_running():
            return

        self.job.next_run = self.job.schedule.get_next_run(self._clock())
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="vigil-sweep", daemon=True)
        self._thread.start()
        logger.info(
            f"Sweep scheduler started ({self.job.schedule.expression}), "
            f"next run {self.job.next_run.isoformat()}"
        )

    def stop(self, timeout: float = 5) -> None:
        """Stop the scheduler; an in-flight sweep is not interrupted."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Sweep scheduler stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop`` is called; returns False on timeout."""
        return self._stop_event.wait(timeout)

    def run_now(self) -> SweepResult | None:
        """Run the sweep immediately, regardless of schedule."""
        return self._execute()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            if self.job.should_run(self._clock()):
                self._execute()
            self._stop_event.wait(self._check_interval)

    def _execute(self) -> SweepResult | None:
        started_at = self._clock()
        result: SweepResult | None = None

        try:
            result = self.sweep.run()
        except Exception as e:
            logger.error(f"Matching sweep failed: {e}", exc_info=True)

        self.job.mark_run(started_at, self._clock(), result)

        if result is not None:
            for callback in self._callbacks:
                try:
                    callback(result)
                except Exception as e:
                    logger.warning(f"Sweep callback failed: {e}")

        return result

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status."""
        return {
            "running": self.is_running(),
            "check_interval": self._check_interval,
            "job": self.job.to_dict(),
        }
