"""
Matching sweep for Mantissa Vigil.

A sweep loads recently published vulnerability records and all tracked
packages, matches them and turns the matches into per-tenant alerts.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from vigil.alerting.manager import AlertLifecycleManager
from vigil.matching.knowledge_base import DEFAULT_RECORD_LIMIT, VulnerabilityKnowledgeBase
from vigil.matching.matcher import PackageMatcher
from vigil.matching.version import get_comparator
from vigil.observability.logging import get_logger

logger = get_logger(__name__)


DEFAULT_LOOKBACK_HOURS = 24


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepResult:
    """
    Outcome of one matching sweep.

    Attributes:
        sweep_id: Unique ID of this run
        started_at: When the sweep started
        completed_at: When the sweep finished (None if skipped)
        records_checked: Vulnerability records examined
        packages_checked: Tracked packages loaded
        matches: Package matches found across all records
        alerts_created: New alerts stored
        record_errors: Records that failed to match
        alert_errors: Tenant alerts that failed to store
        skipped: Another sweep was already running
    """

    sweep_id: str
    started_at: datetime
    completed_at: datetime | None = None
    records_checked: int = 0
    packages_checked: int = 0
    matches: int = 0
    alerts_created: int = 0
    record_errors: int = 0
    alert_errors: int = 0
    skipped: bool = False

    @property
    def success(self) -> bool:
        return not self.skipped and self.record_errors == 0 and self.alert_errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep_id": self.sweep_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "records_checked": self.records_checked,
            "packages_checked": self.packages_checked,
            "matches": self.matches,
            "alerts_created": self.alerts_created,
            "record_errors": self.record_errors,
            "alert_errors": self.alert_errors,
            "skipped": self.skipped,
        }


class MatchingSweep:
    """
    Single-flight matching sweep.

    Only one ``run`` executes at a time per sweep instance; an
    overlapping call returns immediately with ``skipped=True``.

    Usage:
        sweep = MatchingSweep(kb, manager)
        result = sweep.run()
        print(f"{result.alerts_created} new alerts")
    """

    def __init__(
        self,
        knowledge_base: VulnerabilityKnowledgeBase,
        manager: AlertLifecycleManager,
        matcher: PackageMatcher | None = None,
        lookback_hours: int = DEFAULT_LOOKBACK_HOURS,
        record_limit: int = DEFAULT_RECORD_LIMIT,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the sweep.

        Args:
            knowledge_base: Source of records and tracked packages
            manager: Alert lifecycle manager receiving matches
            matcher: Package matcher (numeric comparator if None)
            lookback_hours: Publication window of records to examine
            record_limit: Maximum records per sweep
            clock: Returns the current aware UTC time
        """
        self.knowledge_base = knowledge_base
        self.manager = manager
        self.matcher = matcher if matcher is not None else PackageMatcher()
        self.lookback = timedelta(hours=lookback_hours)
        self.record_limit = record_limit
        self._clock = clock or _utcnow
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: Any,
        knowledge_base: VulnerabilityKnowledgeBase,
        manager: AlertLifecycleManager,
    ) -> MatchingSweep:
        """
        Build a sweep from an EngineConfiguration.

        Raises:
            ValueError: Unknown version comparator
        """
        return cls(
            knowledge_base=knowledge_base,
            manager=manager,
            matcher=PackageMatcher(get_comparator(config.matching.comparator)),
            lookback_hours=config.sweep.lookback_hours,
            record_limit=config.sweep.record_limit,
        )

    def is_running(self) -> bool:
        return self._lock.locked()

    def run(self) -> SweepResult:
        """
        Run one sweep.

        Failures to match a record or store an alert are counted and
        logged; they do not stop the sweep. Failures to read the
        knowledge base propagate.
        """
        if not self._lock.acquire(blocking=False):
            logger.sweep_skipped("previous sweep still running")
            return SweepResult(sweep_id=str(uuid4()), started_at=self._clock(), skipped=True)

        try:
            return self._run()
        finally:
            self._lock.release()

    def _run(self) -> SweepResult:
        now = self._clock()
        result = SweepResult(sweep_id=str(uuid4()), started_at=now)
        since = now - self.lookback
        start = time.monotonic()

        logger.sweep_started(result.sweep_id, since, self.record_limit)

        records = self.knowledge_base.get_recent_records(since, self.record_limit)
        packages = self.knowledge_base.get_tracked_packages()
        result.packages_checked = len(packages)

        def _on_alert_error(tenant_id: str, error: Exception) -> None:
            result.alert_errors += 1

        for record in records:
            result.records_checked += 1
            try:
                matches = self.matcher.match(record, packages)
                if not matches:
                    continue
                created = self.manager.create_alert(
                    record, matches, now=now, on_error=_on_alert_error
                )
            except Exception as e:
                result.record_errors += 1
                logger.error(f"Failed to process {record.id}: {e}", vulnerability_id=record.id)
                continue

            result.matches += len(matches)
            result.alerts_created += len(created)
            for alert in created:
                logger.alert_created(
                    alert.id,
                    alert.tenant_id,
                    alert.vulnerability_id,
                    alert.severity,
                    alert.is_zero_day,
                )

        result.completed_at = self._clock()
        logger.sweep_completed(
            result.sweep_id,
            result.records_checked,
            result.matches,
            result.alerts_created,
            round(time.monotonic() - start, 3),
        )
        return result
