"""
Tests for alert models and the alert lifecycle manager.
"""

import logging
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from vigil.alerting import (
    AlertLifecycleManager,
    AlertNotFoundError,
    AlertStatus,
    InMemoryAlertStore,
    InvalidStatusTransitionError,
    group_affected_packages,
)
from vigil.alerting.models import Alert
from vigil.alerting.store import AlertStore, LocalAlertStore
from vigil.matching import AffectedProduct, PackageMatcher, TrackedPackage, VulnerabilityRecord


def _record(fixed_now, vuln_id, product, age_hours, severity="high", is_kev=False):
    return VulnerabilityRecord(
        id=vuln_id,
        affected_products=[AffectedProduct(product)],
        published_date=fixed_now - timedelta(hours=age_hours),
        severity=severity,
        is_kev=is_kev,
    )


class TestAlertStatus:
    """Tests for the status state machine."""

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED, True),
            (AlertStatus.OPEN, AlertStatus.RESOLVED, True),
            (AlertStatus.OPEN, AlertStatus.SUPPRESSED, True),
            (AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, True),
            (AlertStatus.ACKNOWLEDGED, AlertStatus.SUPPRESSED, False),
            (AlertStatus.ACKNOWLEDGED, AlertStatus.OPEN, False),
            (AlertStatus.OPEN, AlertStatus.OPEN, False),
            (AlertStatus.RESOLVED, AlertStatus.OPEN, False),
            (AlertStatus.SUPPRESSED, AlertStatus.OPEN, False),
        ],
    )
    def test_transitions(self, current, target, allowed):
        """Test the allowed transition table."""
        assert current.can_transition_to(target) is allowed

    def test_terminal(self):
        """Test resolved and suppressed are terminal."""
        assert AlertStatus.RESOLVED.is_terminal
        assert AlertStatus.SUPPRESSED.is_terminal
        assert not AlertStatus.OPEN.is_terminal
        assert not AlertStatus.ACKNOWLEDGED.is_terminal

    def test_from_string(self):
        """Test parsing and rejection of unknown names."""
        assert AlertStatus.from_string("Resolved") == AlertStatus.RESOLVED
        with pytest.raises(ValueError, match="Unknown alert status"):
            AlertStatus.from_string("closed")


class TestGroupAffectedPackages:
    """Tests for group_affected_packages."""

    def test_dedupes_by_name_and_version(self, tracked_packages):
        """Test duplicates collapse and source ids accumulate."""
        grouped = group_affected_packages(tracked_packages[:3] + tracked_packages[:1])

        assert [(p.name, p.version) for p in grouped] == [("openssl", "1.1.1k"), ("zlib", "1.2.13")]
        assert grouped[0].source_ids == ["sbom-1", "sbom-2"]
        assert grouped[0].purl == "pkg:generic/openssl@1.1.1k"

    def test_versions_are_distinct(self):
        """Test the same name at two versions stays two packages."""
        grouped = group_affected_packages(
            [TrackedPackage("t", "s1", "curl", "7.0"), TrackedPackage("t", "s2", "curl", "8.0")]
        )

        assert len(grouped) == 2


class TestCreateAlert:
    """Tests for AlertLifecycleManager.create_alert."""

    def test_one_alert_per_tenant(self, alert_manager, openssl_record, tracked_packages, fixed_now):
        """Test alerts are split by tenant and tenantless matches are dropped."""
        matches = PackageMatcher().match(openssl_record, tracked_packages)

        created = alert_manager.create_alert(openssl_record, matches)

        assert sorted(a.tenant_id for a in created) == ["tenant-a", "tenant-b"]
        alert = next(a for a in created if a.tenant_id == "tenant-a")
        assert alert.vulnerability_id == "CVE-2024-0001"
        assert alert.title == "New vulnerability: CVE-2024-0001"
        assert alert.description == "Buffer overflow in OpenSSL"
        assert alert.severity == "critical"
        assert alert.cvss_score == 9.8
        assert alert.epss_score == 0.42
        assert alert.is_kev is True
        assert alert.is_zero_day is True
        assert alert.status == AlertStatus.OPEN
        assert alert.created_at == fixed_now
        assert len(alert.affected_packages) == 1
        assert alert.affected_packages[0].source_ids == ["sbom-1", "sbom-2"]

    def test_idempotent(self, alert_manager, openssl_record, tracked_packages):
        """Test a second call creates nothing."""
        matches = PackageMatcher().match(openssl_record, tracked_packages)

        alert_manager.create_alert(openssl_record, matches)
        again = alert_manager.create_alert(openssl_record, matches)

        assert again == []
        assert len(alert_manager.store.list_for_tenant("tenant-a")) == 1

    def test_existing_alert_is_not_modified(self, alert_manager, openssl_record, tracked_packages):
        """Test a resolved alert is not reopened by a new match."""
        matches = PackageMatcher().match(openssl_record, tracked_packages)
        created = alert_manager.create_alert(openssl_record, matches)
        alert_id = next(a.id for a in created if a.tenant_id == "tenant-a")
        alert_manager.resolve("tenant-a", alert_id)

        alert_manager.create_alert(openssl_record, matches)

        assert alert_manager.get_alert("tenant-a", alert_id).status == AlertStatus.RESOLVED

    def test_stable_ids(self, openssl_record, tracked_packages, fixed_now):
        """Test alert ids are deterministic per tenant and record."""
        matches = PackageMatcher().match(openssl_record, tracked_packages)
        first = AlertLifecycleManager(clock=lambda: fixed_now).create_alert(openssl_record, matches)
        second = AlertLifecycleManager(clock=lambda: fixed_now).create_alert(openssl_record, matches)

        assert sorted(a.id for a in first) == sorted(a.id for a in second)
        assert len({a.id for a in first}) == 2
        assert all(len(a.id) == 16 for a in first)

    @pytest.mark.parametrize(
        "age_hours,expected",
        [(0, True), (47.9, True), (48, False), (72, False)],
    )
    def test_zero_day_window(self, alert_manager, fixed_now, age_hours, expected):
        """Test the zero-day flag uses a strict 48 hour window."""
        record = _record(fixed_now, "CVE-2024-1000", "curl", age_hours)
        package = TrackedPackage("tenant-a", "s", "curl", "1.0")

        created = alert_manager.create_alert(record, [package])

        assert created[0].is_zero_day is expected

    def test_undated_record_is_not_zero_day(self, alert_manager):
        """Test a record without a published date is never a zero-day."""
        record = VulnerabilityRecord(id="CVE-2024-1001", affected_products=[AffectedProduct("curl")])

        created = alert_manager.create_alert(record, [TrackedPackage("t", "s", "curl")])

        assert created[0].is_zero_day is False

    def test_naive_published_date_is_utc(self, alert_manager, fixed_now):
        """Test a naive publication time is read as UTC."""
        record = _record(fixed_now, "CVE-2024-1003", "curl", 12)
        record.published_date = record.published_date.replace(tzinfo=None)

        created = alert_manager.create_alert(record, [TrackedPackage("t", "s", "curl")])

        assert created[0].is_zero_day is True
        assert created[0].published_date == fixed_now - timedelta(hours=12)

    def test_missing_severity_defaults_to_unknown(self, alert_manager, fixed_now):
        """Test an empty severity is stored as unknown."""
        record = _record(fixed_now, "CVE-2024-1002", "curl", 1, severity="")

        created = alert_manager.create_alert(record, [TrackedPackage("t", "s", "curl")])

        assert created[0].severity == "unknown"

    def test_no_matches(self, alert_manager, openssl_record):
        """Test no matches create no alerts."""
        assert alert_manager.create_alert(openssl_record, []) == []

    def test_store_failure_is_isolated(self, openssl_record, tracked_packages, fixed_now, caplog):
        """Test one tenant's storage failure does not block the others."""
        store = InMemoryAlertStore()
        original_add = store.add

        def flaky_add(alert):
            if alert.tenant_id == "tenant-a":
                raise RuntimeError("disk full")
            return original_add(alert)

        store.add = flaky_add
        errors = MagicMock()
        manager = AlertLifecycleManager(store=store, clock=lambda: fixed_now)
        matches = PackageMatcher().match(openssl_record, tracked_packages)

        with caplog.at_level(logging.ERROR, logger="vigil.alerting.manager"):
            created = manager.create_alert(openssl_record, matches, on_error=errors)

        assert [a.tenant_id for a in created] == ["tenant-b"]
        errors.assert_called_once()
        assert errors.call_args[0][0] == "tenant-a"
        assert "disk full" in caplog.text


class TestUpdateStatus:
    """Tests for status transitions through the manager."""

    @pytest.fixture
    def alert_id(self, alert_manager, openssl_record, tracked_packages):
        matches = PackageMatcher().match(openssl_record, tracked_packages)
        created = alert_manager.create_alert(openssl_record, matches)
        return next(a.id for a in created if a.tenant_id == "tenant-a")

    def test_acknowledge_then_resolve(self, alert_manager, alert_id, fixed_now):
        """Test timestamps are stamped on each transition."""
        later = fixed_now + timedelta(hours=1)

        acked = alert_manager.acknowledge("tenant-a", alert_id, now=later)
        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.acknowledged_at == later
        assert acked.resolved_at is None

        resolved = alert_manager.resolve("tenant-a", alert_id, now=later + timedelta(hours=1))
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.acknowledged_at == later
        assert resolved.resolved_at == later + timedelta(hours=1)

    def test_suppress(self, alert_manager, alert_id):
        """Test suppression sets no timestamps."""
        alert = alert_manager.suppress("tenant-a", alert_id)

        assert alert.status == AlertStatus.SUPPRESSED
        assert alert.acknowledged_at is None
        assert alert.resolved_at is None

    def test_string_status(self, alert_manager, alert_id):
        """Test status names are accepted."""
        assert alert_manager.update_status("tenant-a", alert_id, "acknowledged").status == (
            AlertStatus.ACKNOWLEDGED
        )

    def test_invalid_transition(self, alert_manager, alert_id):
        """Test terminal alerts cannot move."""
        alert_manager.resolve("tenant-a", alert_id)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            alert_manager.acknowledge("tenant-a", alert_id)

        assert exc_info.value.current == AlertStatus.RESOLVED
        assert exc_info.value.target == AlertStatus.ACKNOWLEDGED

    def test_same_status_is_invalid(self, alert_manager, alert_id):
        """Test re-acknowledging is rejected."""
        alert_manager.acknowledge("tenant-a", alert_id)

        with pytest.raises(InvalidStatusTransitionError):
            alert_manager.acknowledge("tenant-a", alert_id)

    def test_failed_transition_leaves_alert_unchanged(self, alert_manager, alert_id):
        """Test a rejected transition changes nothing."""
        alert_manager.suppress("tenant-a", alert_id)

        with pytest.raises(InvalidStatusTransitionError):
            alert_manager.resolve("tenant-a", alert_id)

        alert = alert_manager.get_alert("tenant-a", alert_id)
        assert alert.status == AlertStatus.SUPPRESSED
        assert alert.resolved_at is None

    def test_other_tenant_cannot_see_alert(self, alert_manager, alert_id):
        """Test cross-tenant access is reported as not found."""
        with pytest.raises(AlertNotFoundError):
            alert_manager.acknowledge("tenant-b", alert_id)

        assert alert_manager.get_alert("tenant-a", alert_id).status == AlertStatus.OPEN

    def test_unknown_alert(self, alert_manager):
        """Test a missing alert raises AlertNotFoundError."""
        with pytest.raises(AlertNotFoundError):
            alert_manager.get_alert("tenant-a", "does-not-exist")


class LaggingStore(AlertStore):
    """Delegating store whose first read returns a snapshot taken earlier."""

    def __init__(self, inner, snapshot):
        self.inner = inner
        self.snapshot = snapshot

    def add(self, alert):
        return self.inner.add(alert)

    def get(self, tenant_id, alert_id):
        if self.snapshot is not None:
            snapshot, self.snapshot = self.snapshot, None
            return snapshot
        return self.inner.get(tenant_id, alert_id)

    def find(self, tenant_id, vulnerability_id):
        return self.inner.find(tenant_id, vulnerability_id)

    def update(self, alert, expected_status=None):
        return self.inner.update(alert, expected_status=expected_status)

    def list_for_tenant(self, tenant_id):
        return self.inner.list_for_tenant(tenant_id)


class TestConcurrentUpdates:
    """Status changes racing on the same alert."""

    @pytest.fixture(params=["memory", "local"])
    def store(self, request, tmp_path):
        if request.param == "memory":
            return InMemoryAlertStore()
        return LocalAlertStore(str(tmp_path / "alerts.db"))

    @pytest.fixture
    def alert_id(self, store, openssl_record, tracked_packages, fixed_now):
        manager = AlertLifecycleManager(store=store, clock=lambda: fixed_now)
        matches = PackageMatcher().match(openssl_record, tracked_packages)
        created = manager.create_alert(openssl_record, matches)
        return next(a.id for a in created if a.tenant_id == "tenant-a")

    def test_update_from_stale_read_is_rejected(self, store, alert_id, fixed_now):
        """Test a writer that read OPEN loses to one that already acknowledged."""
        snapshot = store.get("tenant-a", alert_id)
        AlertLifecycleManager(store=store).acknowledge("tenant-a", alert_id, now=fixed_now)

        lagging = AlertLifecycleManager(store=LaggingStore(store, snapshot))
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            lagging.suppress("tenant-a", alert_id, now=fixed_now + timedelta(minutes=1))

        assert exc_info.value.current == AlertStatus.ACKNOWLEDGED
        assert exc_info.value.target == AlertStatus.SUPPRESSED
        stored = store.get("tenant-a", alert_id)
        assert stored.status == AlertStatus.ACKNOWLEDGED
        assert stored.acknowledged_at == fixed_now
        assert stored.resolved_at is None

    def test_racing_terminal_transitions(self, store, alert_id, fixed_now):
        """Test exactly one of a concurrent resolve and suppress succeeds."""
        manager = AlertLifecycleManager(store=store, clock=lambda: fixed_now)
        barrier = threading.Barrier(2)
        outcomes = {}

        def move(status):
            barrier.wait()
            try:
                outcomes[status] = manager.update_status("tenant-a", alert_id, status).status
            except InvalidStatusTransitionError:
                outcomes[status] = None

        threads = [
            threading.Thread(target=move, args=(status,))
            for status in (AlertStatus.RESOLVED, AlertStatus.SUPPRESSED)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [status for status, result in outcomes.items() if result is not None]
        assert len(winners) == 1
        stored = store.get("tenant-a", alert_id)
        assert stored.status == winners[0]
        assert stored.resolved_at == (fixed_now if winners[0] == AlertStatus.RESOLVED else None)


class TestQueries:
    """Tests for listing, stats and packages at risk."""

    @pytest.fixture
    def populated(self, fixed_now):
        """Manager with four alerts in tenant-a created an hour apart."""
        manager = AlertLifecycleManager(clock=lambda: fixed_now)
        specs = [
            ("CVE-A", "curl", 100, "medium", False),
            ("CVE-B", "zlib", 10, "high", False),
            ("CVE-C", "openssl", 100, "critical", True),
            ("CVE-D", "curl", 200, "critical", False),
        ]
        packages = [
            TrackedPackage("tenant-a", "sbom-1", "curl", "7.79.1"),
            TrackedPackage("tenant-a", "sbom-1", "zlib", "1.2.13"),
            TrackedPackage("tenant-a", "sbom-1", "openssl", "1.1.1k"),
        ]
        for offset, (vuln_id, product, age, severity, kev) in enumerate(specs):
            record = _record(fixed_now, vuln_id, product, age, severity, kev)
            matches = PackageMatcher().match(record, packages)
            manager.create_alert(record, matches, now=fixed_now + timedelta(hours=offset))
        return manager

    def test_priority_order(self, populated):
        """Test zero-days first, then KEV, then newest."""
        page = populated.list_alerts("tenant-a")

        assert [a.vulnerability_id for a in page.alerts] == ["CVE-B", "CVE-C", "CVE-D", "CVE-A"]
        assert page.total == 4

    def test_filters(self, populated):
        """Test severity, zero-day and KEV filters."""
        assert populated.list_alerts("tenant-a", severities=["CRITICAL"]).total == 2
        assert populated.list_alerts("tenant-a", severities=["medium", "high"]).total == 2
        assert [a.vulnerability_id for a in populated.list_alerts("tenant-a", is_zero_day=True).alerts] == [
            "CVE-B"
        ]
        assert [a.vulnerability_id for a in populated.list_alerts("tenant-a", is_kev=True).alerts] == [
            "CVE-C"
        ]

    def test_status_filter(self, populated):
        """Test filtering by status."""
        alert = populated.store.find("tenant-a", "CVE-A")
        populated.acknowledge("tenant-a", alert.id)

        page = populated.list_alerts("tenant-a", status=AlertStatus.ACKNOWLEDGED)

        assert [a.vulnerability_id for a in page.alerts] == ["CVE-A"]

    def test_pagination(self, populated):
        """Test total counts all matches while the page is sliced."""
        page = populated.list_alerts("tenant-a", limit=2, offset=1)

        assert [a.vulnerability_id for a in page.alerts] == ["CVE-C", "CVE-D"]
        assert page.total == 4
        assert populated.list_alerts("tenant-a", offset=10).alerts == []

    def test_negative_paging_rejected(self, populated):
        """Test negative limit or offset is rejected."""
        with pytest.raises(ValueError):
            populated.list_alerts("tenant-a", limit=-1)

    def test_tenant_isolation(self, populated):
        """Test another tenant sees nothing."""
        assert populated.list_alerts("tenant-b").total == 0
        assert populated.get_stats("tenant-b").total == 0
        assert populated.get_packages_at_risk("tenant-b") == []

    def test_stats(self, populated):
        """Test summary counts and recent alerts."""
        alert = populated.store.find("tenant-a", "CVE-A")
        populated.resolve("tenant-a", alert.id)

        stats = populated.get_stats("tenant-a")

        assert stats.total == 4
        assert stats.open == 3
        assert stats.zero_days == 1
        assert stats.kev == 1
        assert stats.by_severity == {"medium": 1, "high": 1, "critical": 2}
        assert [a.vulnerability_id for a in stats.recent_alerts] == ["CVE-D", "CVE-C", "CVE-B", "CVE-A"]

    def test_recent_alerts_capped(self, fixed_now):
        """Test at most five recent alerts are returned."""
        manager = AlertLifecycleManager(clock=lambda: fixed_now)
        for i in range(7):
            record = _record(fixed_now, f"CVE-{i}", "curl", 100)
            manager.create_alert(
                record,
                [TrackedPackage("t", "s", "curl")],
                now=fixed_now + timedelta(minutes=i),
            )

        stats = manager.get_stats("t")

        assert stats.total == 7
        assert [a.vulnerability_id for a in stats.recent_alerts] == [
            "CVE-6", "CVE-5", "CVE-4", "CVE-3", "CVE-2",
        ]

    def test_packages_at_risk(self, populated):
        """Test aggregation over non-terminal alerts."""
        risks = populated.get_packages_at_risk("tenant-a")

        assert [(r.name, r.alert_count, r.critical_count) for r in risks] == [
            ("curl", 2, 1),
            ("openssl", 1, 1),
            ("zlib", 1, 0),
        ]

    def test_packages_at_risk_ignores_terminal(self, populated):
        """Test resolved and suppressed alerts no longer count."""
        populated.resolve("tenant-a", populated.store.find("tenant-a", "CVE-D").id)
        populated.suppress("tenant-a", populated.store.find("tenant-a", "CVE-C").id)

        risks = populated.get_packages_at_risk("tenant-a")

        assert [(r.name, r.alert_count, r.critical_count) for r in risks] == [
            ("curl", 1, 0),
            ("zlib", 1, 0),
        ]


class TestAlertSerialization:
    """Tests for Alert dictionary conversion."""

    def test_round_trip(self, alert_manager, openssl_record, tracked_packages):
        """Test from_dict accepts to_dict output."""
        matches = PackageMatcher().match(openssl_record, tracked_packages)
        alert = alert_manager.create_alert(openssl_record, matches)[0]

        assert Alert.from_dict(alert.to_dict()) == alert
