"""
Scheduling for Mantissa Vigil.

Provides schedule expressions, the single-flight matching sweep and the
background scheduler that runs it.
"""

from vigil.scheduling.expressions import (
    CronExpression,
    RateExpression,
    ScheduleExpression,
    ScheduleType,
    parse_schedule,
)
from vigil.scheduling.sweep import MatchingSweep, SweepResult
from vigil.scheduling.scheduler import SweepJob, SweepScheduler

__all__ = [
    # Expressions
    "CronExpression",
    "RateExpression",
    "ScheduleExpression",
    "ScheduleType",
    "parse_schedule",
    # Sweep
    "MatchingSweep",
    "SweepResult",
    # Scheduler
    "SweepJob",
    "SweepScheduler",
]
