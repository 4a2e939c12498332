"""
Alert storage backends for Mantissa Vigil.

Alerts are unique per (tenant_id, vulnerability_id) and are never deleted
by the engine; status changes are written back with ``update``.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from vigil.alerting.models import AffectedPackage, Alert, AlertStatus

logger = logging.getLogger(__name__)


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class AlertStore(ABC):
    """Abstract base for alert storage backends."""

    @abstractmethod
    def add(self, alert: Alert) -> bool:
        """
        Insert a new alert.

        Returns:
            False if an alert already exists for the same
            (tenant_id, vulnerability_id), True otherwise
        """
        ...

    @abstractmethod
    def get(self, tenant_id: str, alert_id: str) -> Alert | None:
        """Get an alert by ID within a tenant."""
        ...

    @abstractmethod
    def find(self, tenant_id: str, vulnerability_id: str) -> Alert | None:
        """Get the alert for a vulnerability within a tenant."""
        ...

    @abstractmethod
    def update(self, alert: Alert, expected_status: AlertStatus | None = None) -> bool:
        """
        Persist status fields of an existing alert.

        Args:
            alert: Alert carrying the new status fields
            expected_status: Only write if the stored status still equals
                this value

        Returns:
            True if the alert was written
        """
        ...

    @abstractmethod
    def list_for_tenant(self, tenant_id: str) -> list[Alert]:
        """All alerts of a tenant, in no particular order."""
        ...


class InMemoryAlertStore(AlertStore):
    """
    In-memory alert store.

    Suitable for development and testing. Data is lost on restart.
    Alerts are copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._alerts: dict[str, Alert] = {}
        self._by_vulnerability: dict[tuple[str, str], str] = {}

    def add(self, alert: Alert) -> bool:
        key = (alert.tenant_id, alert.vulnerability_id)
        with self._lock:
            if key in self._by_vulnerability:
                return False
            self._alerts[alert.id] = replace(alert)
            self._by_vulnerability[key] = alert.id

        logger.debug(f"Stored alert: {alert.id}")
        return True

    def get(self, tenant_id: str, alert_id: str) -> Alert | None:
        with self._lock:
            alert = self._alerts.get(alert_id)
        if alert is None or alert.tenant_id != tenant_id:
            return None
        return replace(alert)

    def find(self, tenant_id: str, vulnerability_id: str) -> Alert | None:
        with self._lock:
            alert_id = self._by_vulnerability.get((tenant_id, vulnerability_id))
            alert = self._alerts.get(alert_id) if alert_id else None
            return replace(alert) if alert is not None else None

    def update(self, alert: Alert, expected_status: AlertStatus | None = None) -> bool:
        with self._lock:
            stored = self._alerts.get(alert.id)
            if stored is None:
                return False
            if expected_status is not None and stored.status != expected_status:
                return False
            self._alerts[alert.id] = replace(alert)
            return True

    def list_for_tenant(self, tenant_id: str) -> list[Alert]:
        with self._lock:
            return [replace(a) for a in self._alerts.values() if a.tenant_id == tenant_id]


class LocalAlertStore(AlertStore):
    """SQLite-based local alert storage."""

    def __init__(self, db_path: str = "~/.vigil/alerts.db"):
        """
        Initialize local alert store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = os.path.expanduser(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database tables."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS alerts (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    vulnerability_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    severity TEXT NOT NULL,
                    cvss_score REAL,
                    epss_score REAL,
                    is_zero_day INTEGER NOT NULL,
                    is_kev INTEGER NOT NULL,
                    published_date TEXT,
                    affected_packages TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    acknowledged_at TEXT,
                    resolved_at TEXT
                )
            """)

            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_tenant_vuln "
                "ON alerts(tenant_id, vulnerability_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_alerts_tenant_status ON alerts(tenant_id, status)"
            )

            conn.commit()

    def add(self, alert: Alert) -> bool:
        data = alert.to_dict()
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO alerts (
                        id, tenant_id, vulnerability_id, title, description,
                        severity, cvss_score, epss_score, is_zero_day, is_kev,
                        published_date, affected_packages, status, created_at,
                        acknowledged_at, resolved_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        data["id"],
                        data["tenant_id"],
                        data["vulnerability_id"],
                        data["title"],
                        data["description"],
                        data["severity"],
                        data["cvss_score"],
                        data["epss_score"],
                        int(alert.is_zero_day),
                        int(alert.is_kev),
                        data["published_date"],
                        json.dumps(data["affected_packages"]),
                        data["status"],
                        data["created_at"],
                        data["acknowledged_at"],
                        data["resolved_at"],
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError:
            logger.debug(
                f"Alert for {alert.vulnerability_id} already exists in tenant {alert.tenant_id}"
            )
            return False
        return True

    def get(self, tenant_id: str, alert_id: str) -> Alert | None:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM alerts WHERE tenant_id = ? AND id = ?",
                (tenant_id, alert_id),
            )
            row = cursor.fetchone()
            return self._row_to_alert(row) if row else None

    def find(self, tenant_id: str, vulnerability_id: str) -> Alert | None:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM alerts WHERE tenant_id = ? AND vulnerability_id = ?",
                (tenant_id, vulnerability_id),
            )
            row = cursor.fetchone()
            return self._row_to_alert(row) if row else None

    def update(self, alert: Alert, expected_status: AlertStatus | None = None) -> bool:
        data = alert.to_dict()
        query = """
            UPDATE alerts
            SET status = ?, acknowledged_at = ?, resolved_at = ?
            WHERE id = ?
        """
        params: tuple = (
            data["status"],
            data["acknowledged_at"],
            data["resolved_at"],
            data["id"],
        )
        if expected_status is not None:
            query += " AND status = ?"
            params += (expected_status.value,)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount > 0

    def list_for_tenant(self, tenant_id: str) -> list[Alert]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM alerts WHERE tenant_id = ?",
                (tenant_id,),
            )
            return [self._row_to_alert(row) for row in cursor.fetchall()]

    def _row_to_alert(self, row: sqlite3.Row) -> Alert:
        """Convert database row to Alert."""
        return Alert(
            id=row["id"],
            tenant_id=row["tenant_id"],
            vulnerability_id=row["vulnerability_id"],
            title=row["title"],
            description=row["description"] or "",
            severity=row["severity"],
            cvss_score=row["cvss_score"],
            epss_score=row["epss_score"],
            is_zero_day=bool(row["is_zero_day"]),
            is_kev=bool(row["is_kev"]),
            published_date=_dt(row["published_date"]),
            affected_packages=[
                AffectedPackage.from_dict(p)
                for p in json.loads(row["affected_packages"] or "[]")
            ],
            status=AlertStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            acknowledged_at=_dt(row["acknowledged_at"]),
            resolved_at=_dt(row["resolved_at"]),
        )
