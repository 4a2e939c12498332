"""
Vulnerability alerting for Mantissa Vigil.

Provides the alert model, alert storage backends and the lifecycle
manager that creates, transitions and queries per-tenant alerts.
"""

from vigil.alerting.models import (
    AffectedPackage,
    Alert,
    AlertError,
    AlertNotFoundError,
    AlertPage,
    AlertStats,
    AlertStatus,
    InvalidStatusTransitionError,
    PackageRisk,
)
from vigil.alerting.store import AlertStore, InMemoryAlertStore, LocalAlertStore
from vigil.alerting.manager import AlertLifecycleManager, group_affected_packages

__all__ = [
    # Models
    "AffectedPackage",
    "Alert",
    "AlertPage",
    "AlertStats",
    "AlertStatus",
    "PackageRisk",
    # Errors
    "AlertError",
    "AlertNotFoundError",
    "InvalidStatusTransitionError",
    # Storage
    "AlertStore",
    "InMemoryAlertStore",
    "LocalAlertStore",
    # Manager
    "AlertLifecycleManager",
    "group_affected_packages",
]
