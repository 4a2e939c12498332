"""
Alert lifecycle management for Mantissa Vigil.

Creates per-tenant alerts from vulnerability matches, drives their
status transitions and answers tenant-scoped queries.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from vigil.alerting.models import (
    AffectedPackage,
    Alert,
    AlertNotFoundError,
    AlertPage,
    AlertStats,
    AlertStatus,
    InvalidStatusTransitionError,
    PackageRisk,
)
from vigil.alerting.store import AlertStore, InMemoryAlertStore
from vigil.matching.knowledge_base import TrackedPackage, VulnerabilityRecord

logger = logging.getLogger(__name__)


ZERO_DAY_WINDOW = timedelta(hours=48)
DEFAULT_PAGE_SIZE = 50
RECENT_ALERT_COUNT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def group_affected_packages(matches: list[TrackedPackage]) -> list[AffectedPackage]:
    """
    Collapse matches into packages unique by (name, version).

    Source ids of duplicate entries are accumulated in first-seen order.
    """
    grouped: dict[tuple[str, str], AffectedPackage] = {}
    for match in matches:
        key = (match.component_name, match.component_version or "")
        package = grouped.get(key)
        if package is None:
            package = AffectedPackage(
                name=match.component_name,
                version=match.component_version or "",
                purl=match.purl or "",
            )
            grouped[key] = package
        if match.source_id and match.source_id not in package.source_ids:
            package.source_ids.append(match.source_id)
    return list(grouped.values())


def _priority_key(alert: Alert) -> tuple[bool, bool, float]:
    created = alert.created_at.timestamp() if alert.created_at else 0.0
    return (not alert.is_zero_day, not alert.is_kev, -created)


class AlertLifecycleManager:
    """
    Manages vulnerability alerts across tenants.

    Alert creation is idempotent: a tenant gets at most one alert per
    vulnerability record, however many sweeps observe the match.

    Usage:
        manager = AlertLifecycleManager(LocalAlertStore())
        created = manager.create_alert(record, matches)
        manager.acknowledge("tenant-1", created[0].id)
    """

    def __init__(
        self,
        store: AlertStore | None = None,
        zero_day_window: timedelta = ZERO_DAY_WINDOW,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the manager.

        Args:
            store: Alert storage backend (in-memory if None)
            zero_day_window: Maximum age of a record at alert creation
                for the alert to be flagged as a zero-day
            clock: Returns the current aware UTC time
        """
        self.store = store if store is not None else InMemoryAlertStore()
        self.zero_day_window = zero_day_window
        self._clock = clock or _utcnow

    def _generate_id(self, tenant_id: str, vulnerability_id: str) -> str:
        """Generate a stable alert ID."""
        data = f"{tenant_id}:{vulnerability_id}"
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def create_alert(
        self,
        record: VulnerabilityRecord,
        matches: list[TrackedPackage],
        now: datetime | None = None,
        on_error: Callable[[str, Exception], None] | None = None,
    ) -> list[Alert]:
        """
        Create alerts for the tenants owning the matched packages.

        Matches without a tenant are dropped. Tenants that already have
        an alert for the record are skipped. A storage failure for one
        tenant is logged and does not affect the others.

        Args:
            record: Matched vulnerability record
            matches: Packages the record was matched to
            now: Creation time (defaults to the manager clock)
            on_error: Called with the tenant ID and exception when
                storing a tenant's alert fails

        Returns:
            Newly created alerts
        """
        now = _as_utc(now or self._clock())
        published = _as_utc(record.published_date)

        by_tenant: dict[str, list[TrackedPackage]] = {}
        for match in matches:
            if not match.tenant_id:
                continue
            by_tenant.setdefault(match.tenant_id, []).append(match)

        created: list[Alert] = []
        for tenant_id, tenant_matches in by_tenant.items():
            try:
                if self.store.find(tenant_id, record.id) is not None:
                    continue

                is_zero_day = published is not None and now - published < self.zero_day_window

                alert = Alert(
                    id=self._generate_id(tenant_id, record.id),
                    tenant_id=tenant_id,
                    vulnerability_id=record.id,
                    title=f"New vulnerability: {record.id}",
                    description=record.description or "",
                    severity=record.severity or "unknown",
                    cvss_score=record.cvss_score,
                    epss_score=record.epss_score,
                    is_zero_day=is_zero_day,
                    is_kev=record.is_kev,
                    published_date=published,
                    affected_packages=group_affected_packages(tenant_matches),
                    status=AlertStatus.OPEN,
                    created_at=now,
                )

                if self.store.add(alert):
                    created.append(alert)
                    logger.debug(
                        f"Created alert {alert.id} for {record.id} in tenant {tenant_id}"
                    )
            except Exception as e:
                logger.error(f"Failed to create alert for {record.id} in tenant {tenant_id}: {e}")
                if on_error is not None:
                    on_error(tenant_id, e)

        return created

    def update_status(
        self,
        tenant_id: str,
        alert_id: str,
        status: AlertStatus | str,
        now: datetime | None = None,
    ) -> Alert:
        """
        Move an alert to a new status.

        The write is conditional on the status read here, so of two
        concurrent updates from the same status only one succeeds.

        Raises:
            AlertNotFoundError: Alert does not exist in the tenant
            InvalidStatusTransitionError: Transition is not allowed, or
                the alert changed status concurrently
        """
        if isinstance(status, str):
            status = AlertStatus.from_string(status)

        alert = self.store.get(tenant_id, alert_id)
        if alert is None:
            raise AlertNotFoundError(tenant_id, alert_id)

        if not alert.status.can_transition_to(status):
            raise InvalidStatusTransitionError(alert_id, alert.status, status)

        now = now or self._clock()
        previous = alert.status
        alert.status = status
        if status == AlertStatus.ACKNOWLEDGED:
            alert.acknowledged_at = now
        elif status == AlertStatus.RESOLVED:
            alert.resolved_at = now

        if not self.store.update(alert, expected_status=previous):
            current = self.store.get(tenant_id, alert_id)
            raise InvalidStatusTransitionError(
                alert_id, current.status if current is not None else previous, status
            )

        logger.info(f"Alert {alert_id} moved from {previous.value} to {status.value}")
        return alert

    def acknowledge(self, tenant_id: str, alert_id: str, now: datetime | None = None) -> Alert:
        return self.update_status(tenant_id, alert_id, AlertStatus.ACKNOWLEDGED, now)

    def resolve(self, tenant_id: str, alert_id: str, now: datetime | None = None) -> Alert:
        return self.update_status(tenant_id, alert_id, AlertStatus.RESOLVED, now)

    def suppress(self, tenant_id: str, alert_id: str, now: datetime | None = None) -> Alert:
        return self.update_status(tenant_id, alert_id, AlertStatus.SUPPRESSED, now)

    def get_alert(self, tenant_id: str, alert_id: str) -> Alert:
        alert = self.store.get(tenant_id, alert_id)
        if alert is None:
            raise AlertNotFoundError(tenant_id, alert_id)
        return alert

    def list_alerts(
        self,
        tenant_id: str,
        status: AlertStatus | None = None,
        severities: list[str] | None = None,
        is_zero_day: bool | None = None,
        is_kev: bool | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> AlertPage:
        """
        List a tenant's alerts, zero-days first, then KEV, then newest.

        Args:
            tenant_id: Tenant to list
            status: Only alerts in this status
            severities: Only alerts with one of these severities
            is_zero_day: Filter on the zero-day flag
            is_kev: Filter on the KEV flag
            limit: Page size
            offset: Number of alerts to skip

        Returns:
            AlertPage with the page and the total number of matches
        """
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")

        wanted = {s.lower() for s in severities} if severities else None

        alerts = [
            a for a in self.store.list_for_tenant(tenant_id)
            if (status is None or a.status == status)
            and (wanted is None or a.severity.lower() in wanted)
            and (is_zero_day is None or a.is_zero_day == is_zero_day)
            and (is_kev is None or a.is_kev == is_kev)
        ]
        alerts.sort(key=_priority_key)

        return AlertPage(alerts=alerts[offset:offset + limit], total=len(alerts))

    def get_stats(self, tenant_id: str) -> AlertStats:
        """Summarize all alerts of a tenant."""
        alerts = self.store.list_for_tenant(tenant_id)
        alerts.sort(
            key=lambda a: a.created_at.timestamp() if a.created_at else 0.0,
            reverse=True,
        )

        stats = AlertStats(total=len(alerts), recent_alerts=alerts[:RECENT_ALERT_COUNT])
        for alert in alerts:
            if alert.status == AlertStatus.OPEN:
                stats.open += 1
            if alert.is_zero_day:
                stats.zero_days += 1
            if alert.is_kev:
                stats.kev += 1
            stats.by_severity[alert.severity] = stats.by_severity.get(alert.severity, 0) + 1

        return stats

    def get_packages_at_risk(self, tenant_id: str) -> list[PackageRisk]:
        """
        Aggregate affected packages over the tenant's non-terminal alerts.

        Returns:
            Packages ordered by alert count, highest first
        """
        risks: dict[tuple[str, str], PackageRisk] = {}
        for alert in self.store.list_for_tenant(tenant_id):
            if alert.status.is_terminal:
                continue
            for package in alert.affected_packages:
                key = (package.name, package.version)
                risk = risks.get(key)
                if risk is None:
                    risk = PackageRisk(name=package.name, version=package.version)
                    risks[key] = risk
                risk.alert_count += 1
                if alert.severity.lower() == "critical":
                    risk.critical_count += 1

        return sorted(
            risks.values(),
            key=lambda r: (-r.alert_count, -r.critical_count, r.name, r.version),
        )
