"""
Alert data models for Mantissa Vigil.

An alert ties one vulnerability record to one tenant and carries the
packages of that tenant found affected by it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AlertError(Exception):
    """Base exception for alert operations."""

    pass


class AlertNotFoundError(AlertError):
    """Alert does not exist for the tenant."""

    def __init__(self, tenant_id: str, alert_id: str):
        self.tenant_id = tenant_id
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id} (tenant {tenant_id})")


class InvalidStatusTransitionError(AlertError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, alert_id: str, current: AlertStatus, target: AlertStatus):
        self.alert_id = alert_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move alert {alert_id} from {current.value} to {target.value}"
        )


class AlertStatus(Enum):
    """Lifecycle status of an alert."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"

    @classmethod
    def from_string(cls, value: str) -> AlertStatus:
        try:
            return cls(value.lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown alert status '{value}'. Valid: {valid}")

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def can_transition_to(self, target: AlertStatus) -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.OPEN: frozenset(
        {AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, AlertStatus.SUPPRESSED}
    ),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.SUPPRESSED: frozenset(),
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class AffectedPackage:
    """A (name, version) package affected by an alert's vulnerability."""

    name: str
    version: str = ""
    purl: str = ""
    source_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "purl": self.purl,
            "source_ids": list(self.source_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AffectedPackage:
        return cls(
            name=data["name"],
            version=data.get("version", ""),
            purl=data.get("purl", ""),
            source_ids=list(data.get("source_ids", [])),
        )


@dataclass
class Alert:
    """
    Per-tenant vulnerability alert.

    Attributes:
        id: Alert ID
        tenant_id: Owning tenant
        vulnerability_id: Vulnerability record ID (e.g. CVE ID)
        title: Short title
        description: Vulnerability description
        severity: Severity string from the record
        cvss_score: CVSS base score if known
        epss_score: EPSS probability if known
        is_zero_day: Published less than the zero-day window before creation
        is_kev: Listed in the Known Exploited Vulnerabilities catalog
        published_date: Record publication time
        affected_packages: Affected packages, unique by (name, version)
        status: Lifecycle status
        created_at: Creation time
        acknowledged_at: Set when acknowledged
        resolved_at: Set when resolved
    """

    id: str
    tenant_id: str
    vulnerability_id: str
    title: str
    description: str = ""
    severity: str = "unknown"
    cvss_score: float | None = None
    epss_score: float | None = None
    is_zero_day: bool = False
    is_kev: bool = False
    published_date: datetime | None = None
    affected_packages: list[AffectedPackage] = field(default_factory=list)
    status: AlertStatus = AlertStatus.OPEN
    created_at: datetime | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "vulnerability_id": self.vulnerability_id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "cvss_score": self.cvss_score,
            "epss_score": self.epss_score,
            "is_zero_day": self.is_zero_day,
            "is_kev": self.is_kev,
            "published_date": _iso(self.published_date),
            "affected_packages": [p.to_dict() for p in self.affected_packages],
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved_at": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Alert:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            vulnerability_id=data["vulnerability_id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            severity=data.get("severity", "unknown"),
            cvss_score=data.get("cvss_score"),
            epss_score=data.get("epss_score"),
            is_zero_day=bool(data.get("is_zero_day", False)),
            is_kev=bool(data.get("is_kev", False)),
            published_date=_from_iso(data.get("published_date")),
            affected_packages=[
                AffectedPackage.from_dict(p) for p in data.get("affected_packages", [])
            ],
            status=AlertStatus(data.get("status", "open")),
            created_at=_from_iso(data.get("created_at")),
            acknowledged_at=_from_iso(data.get("acknowledged_at")),
            resolved_at=_from_iso(data.get("resolved_at")),
        )


@dataclass
class AlertStats:
    """Summary counts over a tenant's alerts."""

    total: int = 0
    open: int = 0
    zero_days: int = 0
    kev: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    recent_alerts: list[Alert] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "open": self.open,
            "zero_days": self.zero_days,
            "kev": self.kev,
            "by_severity": dict(self.by_severity),
            "recent_alerts": [a.to_dict() for a in self.recent_alerts],
        }


@dataclass
class AlertPage:
    """One page of a filtered alert listing."""

    alerts: list[Alert] = field(default_factory=list)
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "total": self.total,
        }


@dataclass
class PackageRisk:
    """Aggregated alert exposure of one (name, version) package."""

    name: str
    version: str
    alert_count: int = 0
    critical_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "alert_count": self.alert_count,
            "critical_count": self.critical_count,
        }
