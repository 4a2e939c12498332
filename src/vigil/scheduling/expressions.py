"""
Schedule expressions for Mantissa Vigil.

Supports AWS-style ``rate(N unit)`` expressions and 5- or 6-field cron
expressions. All computations use aware UTC datetimes.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

_RATE_PATTERN = re.compile(r"^(\d+)\s*(minute|minutes|hour|hours|day|days)$", re.IGNORECASE)

# One year of minutes bounds the cron search
_MAX_CRON_STEPS = 366 * 24 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleType(Enum):
    """Types of schedule expressions."""

    CRON = "cron"
    RATE = "rate"


@dataclass
class ScheduleExpression(ABC):
    """Base class for schedule expressions."""

    expression: str

    @abstractmethod
    def get_next_run(self, after: datetime | None = None) -> datetime:
        """Get the next scheduled run time after the given datetime."""
        pass

    @abstractmethod
    def get_schedule_type(self) -> ScheduleType:
        pass


@dataclass
class CronExpression(ScheduleExpression):
    """
    Cron schedule: minute hour day-of-month month day-of-week [year].

    Fields accept ``*``, ``?``, lists (``1,15``), ranges (``1-5``) and
    steps (``*/15``, ``5/10``). Day-of-week uses 0 for Sunday. The
    AWS ``cron(...)`` wrapper is accepted.

    Examples:
        - "0 */6 * * *" - Every six hours on the hour
        - "cron(30 2 * * ? *)" - Daily at 02:30
    """

    def __post_init__(self):
        expr = self.expression.strip()
        if expr.startswith("cron(") and expr.endswith(")"):
            expr = expr[5:-1]

        parts = expr.split()
        if len(parts) == 5:
            parts.append("*")
        if len(parts) != 6:
            raise ValueError(
                f"Invalid cron expression: {self.expression}. Expected 5 or 6 fields."
            )
        self._minute, self._hour, self._dom, self._month, self._dow, self._year = parts

    def get_next_run(self, after: datetime | None = None) -> datetime:
        """
        Get the first matching minute strictly after ``after``.

        Raises:
            ValueError: No matching time within a year
        """
        after = after or _utcnow()
        current = after.replace(second=0, microsecond=0) + timedelta(minutes=1)

        for _ in range(_MAX_CRON_STEPS):
            if self.matches(current):
                return current
            current += timedelta(minutes=1)

        raise ValueError(f"Cron expression never fires within a year: {self.expression}")

    def matches(self, dt: datetime) -> bool:
        """Check if a datetime matches this cron expression."""
        return (
            _field_matches(self._minute, dt.minute, 0)
            and _field_matches(self._hour, dt.hour, 0)
            and _field_matches(self._dom, dt.day, 1)
            and _field_matches(self._month, dt.month, 1)
            and _field_matches(self._dow, (dt.weekday() + 1) % 7, 0)
            and _field_matches(self._year, dt.year, 1970)
        )

    def get_schedule_type(self) -> ScheduleType:
        return ScheduleType.CRON


def _field_matches(expr: str, value: int, minimum: int) -> bool:
    if expr in ("*", "?"):
        return True

    if "," in expr:
        return any(_field_matches(part.strip(), value, minimum) for part in expr.split(","))

    try:
        if "/" in expr:
            base, step = expr.split("/")
            start = minimum if base == "*" else int(base)
            return value >= start and (value - start) % int(step) == 0

        if "-" in expr:
            low, high = expr.split("-")
            return int(low) <= value <= int(high)

        return int(expr) == value
    except ValueError:
        return False


@dataclass
class RateExpression(ScheduleExpression):
    """
    Fixed-interval schedule.

    Examples:
        - "rate(6 hours)"
        - "rate(30 minutes)"
        - "1 day"
    """

    _interval: timedelta = field(default=None, init=False, repr=False)

    def __post_init__(self):
        expr = self.expression.strip()
        if expr.startswith("rate(") and expr.endswith(")"):
            expr = expr[5:-1].strip()

        match = _RATE_PATTERN.match(expr)
        if not match:
            raise ValueError(f"Invalid rate expression: {self.expression}")

        value = int(match.group(1))
        if value <= 0:
            raise ValueError(f"Rate must be positive: {self.expression}")

        unit = match.group(2).lower().rstrip("s")
        self._interval = timedelta(**{f"{unit}s": value})

    def get_next_run(self, after: datetime | None = None) -> datetime:
        return (after or _utcnow()) + self._interval

    def get_schedule_type(self) -> ScheduleType:
        return ScheduleType.RATE

    @property
    def interval(self) -> timedelta:
        """Get the interval between runs."""
        return self._interval


def parse_schedule(expression: str) -> ScheduleExpression:
    """
    Parse a schedule expression string.

    Args:
        expression: Cron or rate expression

    Returns:
        Parsed ScheduleExpression

    Raises:
        ValueError: If the expression is invalid
    """
    expr = expression.strip().lower()

    if expr.startswith("rate(") or re.match(r"^\d+\s*(minute|hour|day)", expr):
        return RateExpression(expression=expression)
    return CronExpression(expression=expression)
