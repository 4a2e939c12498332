"""
Structured logging configuration for Mantissa Vigil.

Modules log through ``logging.getLogger(__name__)``; this module attaches
a JSON or human-readable handler to the ``vigil`` logger and provides
event helpers for sweep and alert activity.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per log record.

    Fields passed through ``extra`` are emitted at the top level.
    """

    def __init__(
        self,
        include_location: bool = False,
        extra_fields: dict[str, Any] | None = None,
    ):
        """
        Initialize structured formatter.

        Args:
            include_location: Include file/line location
            extra_fields: Additional fields to include in every log
        """
        super().__init__()
        self.include_location = include_location
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        log_data.update(self.extra_fields)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter for terminals and local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, include_timestamp: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.RESET}"

        prefix = f"{level:>8} {record.name}:"
        if self.include_timestamp:
            prefix = f"[{_record_time(record):%Y-%m-%d %H:%M:%S}] {prefix}"

        output = f"{prefix} {record.getMessage()}"
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output


class VigilLogger:
    """
    Logger wrapper that carries context fields and emits typed events.

    Every event record has an ``event_type`` field so structured output
    can be filtered downstream.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self._context: dict[str, Any] = {}

    def set_context(self, **kwargs: Any) -> None:
        """Set persistent context fields for all logs."""
        self._context.update(kwargs)

    def clear_context(self) -> None:
        self._context.clear()

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.log(level, message, exc_info=exc_info, extra={**self._context, **kwargs})

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    def sweep_started(self, sweep_id: str, since: datetime, record_limit: int) -> None:
        self.info(
            f"Sweep {sweep_id} started",
            event_type="sweep.started",
            sweep_id=sweep_id,
            since=since.isoformat(),
            record_limit=record_limit,
        )

    def sweep_completed(
        self,
        sweep_id: str,
        records_checked: int,
        matches: int,
        alerts_created: int,
        duration_seconds: float,
    ) -> None:
        self.info(
            f"Sweep {sweep_id} completed: {records_checked} records, "
            f"{matches} matches, {alerts_created} new alerts",
            event_type="sweep.completed",
            sweep_id=sweep_id,
            records_checked=records_checked,
            matches=matches,
            alerts_created=alerts_created,
            duration_seconds=duration_seconds,
        )

    def sweep_skipped(self, reason: str) -> None:
        self.info(
            f"Sweep skipped: {reason}",
            event_type="sweep.skipped",
            reason=reason,
        )

    def alert_created(
        self,
        alert_id: str,
        tenant_id: str,
        vulnerability_id: str,
        severity: str,
        is_zero_day: bool,
    ) -> None:
        self.info(
            f"Alert {alert_id} created for {vulnerability_id}",
            event_type="alert.created",
            alert_id=alert_id,
            tenant_id=tenant_id,
            vulnerability_id=vulnerability_id,
            severity=severity,
            is_zero_day=is_zero_day,
        )


def configure_logging(
    level: str = "INFO",
    format: str = "human",
    output: str = "stderr",
    extra_fields: dict[str, Any] | None = None,
) -> None:
    """
    Configure logging for Vigil.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format (human, json)
        output: Output destination (stderr, stdout)
        extra_fields: Extra fields to include in structured logs

    Raises:
        ValueError: Unknown log level
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    vigil_logger = logging.getLogger("vigil")
    vigil_logger.setLevel(numeric_level)
    vigil_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout if output == "stdout" else sys.stderr)
    if format == "json":
        handler.setFormatter(StructuredFormatter(extra_fields=extra_fields))
    else:
        handler.setFormatter(HumanReadableFormatter())

    vigil_logger.addHandler(handler)


def get_logger(name: str) -> VigilLogger:
    """
    Get a Vigil logger instance.

    Args:
        name: Module name; prefixed with ``vigil.`` when it is not already

    Returns:
        VigilLogger instance
    """
    if name != "vigil" and not name.startswith("vigil."):
        name = f"vigil.{name}"
    return VigilLogger(name)


# Configure logging from environment on import
configure_logging(
    level=os.getenv("VIGIL_LOG_LEVEL", "INFO"),
    format=os.getenv("VIGIL_LOG_FORMAT", "human"),
)
