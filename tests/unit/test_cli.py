"""
Tests for the command-line interface.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from vigil.cli import create_parser, main
from vigil.registry import ManifestFetchError, Manifest, ImageConfig, parse_image_reference
from vigil.scanner import DigestVerification, ImageInfo, LayerInfo, LayerReport
from vigil.scheduling import SweepScheduler


@pytest.fixture
def kb_file(tmp_path):
    """Knowledge base snapshot with records published relative to now."""
    now = datetime.now(timezone.utc)
    data = {
        "records": [
            {
                "id": "CVE-2024-1111",
                "affected_products": [
                    {"product": "openssl", "version_start_including": "1.0.0", "version_end_excluding": "3.0.2"}
                ],
                "published_date": (now - timedelta(hours=2)).isoformat(),
                "severity": "critical",
                "is_kev": True,
            },
            {
                "id": "CVE-2024-2222",
                "affected_products": [{"product": "zlib", "version_end_excluding": "1.3.0"}],
                "published_date": (now - timedelta(hours=5)).isoformat(),
                "severity": "medium",
            },
        ],
        "packages": [
            {"tenant_id": "tenant-a", "source_id": "sbom-1", "component_name": "openssl", "component_version": "1.1.1k"},
            {"tenant_id": "tenant-a", "source_id": "sbom-1", "component_name": "zlib", "component_version": "1.2.13"},
            {"tenant_id": "tenant-b", "source_id": "img-1", "component_name": "openssl", "component_version": "3.0.5"},
        ],
    }
    path = tmp_path / "kb.json"
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "alerts.db")


@pytest.fixture(autouse=True)
def restore_vigil_logger():
    """Undo handlers installed by commands that configure logging."""
    logger = logging.getLogger("vigil")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


class TestParser:
    """Tests for argument parsing."""

    def test_no_command_prints_help(self, capsys):
        """Test running without a command."""
        assert main([]) == 0
        assert "usage: vigil" in capsys.readouterr().out

    def test_version(self, capsys):
        """Test --version exits after printing the version."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "vigil 0.1.0" in capsys.readouterr().out

    def test_alerts_list_arguments(self):
        """Test alerts list flags."""
        args = create_parser().parse_args(
            ["alerts", "list", "--tenant", "t1", "--severity", "critical,high", "--zero-day", "--limit", "5"]
        )

        assert args.alerts_action == "list"
        assert args.severity == "critical,high"
        assert args.zero_day is True
        assert args.limit == 5
        assert args.offset == 0

    def test_update_rejects_open(self):
        """Test alerts cannot be moved back to open from the CLI."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["alerts", "update", "--tenant", "t", "abc", "open"])


class TestSweepAndAlertCommands:
    """Tests for sweep and alerts commands against a SQLite store."""

    def test_sweep_then_list(self, kb_file, db_path, capsys):
        """Test a sweep creates alerts that the list command shows."""
        assert main(["sweep", "--kb", kb_file, "--db", db_path, "--format", "json"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["records_checked"] == 2
        assert result["matches"] == 2
        assert result["alerts_created"] == 2

        assert main(["alerts", "list", "--tenant", "tenant-a", "--db", db_path, "--format", "json"]) == 0
        page = json.loads(capsys.readouterr().out)
        assert page["total"] == 2
        assert [a["vulnerability_id"] for a in page["alerts"]] == ["CVE-2024-1111", "CVE-2024-2222"]
        assert page["alerts"][0]["is_zero_day"] is True

        assert main(["alerts", "list", "--tenant", "tenant-b", "--db", db_path, "--format", "json"]) == 0
        assert json.loads(capsys.readouterr().out)["total"] == 0

    def test_sweep_is_idempotent(self, kb_file, db_path, capsys):
        """Test rerunning the sweep creates nothing new."""
        main(["sweep", "--kb", kb_file, "--db", db_path])
        capsys.readouterr()

        assert main(["sweep", "--kb", kb_file, "--db", db_path]) == 0
        assert "Alerts created: 0" in capsys.readouterr().out

    def test_update_and_stats(self, kb_file, db_path, capsys):
        """Test status updates are persisted and reflected in stats."""
        main(["sweep", "--kb", kb_file, "--db", db_path])
        capsys.readouterr()
        main(["alerts", "list", "--tenant", "tenant-a", "--severity", "critical", "--db", db_path, "--format", "json"])
        alert_id = json.loads(capsys.readouterr().out)["alerts"][0]["id"]

        assert main(["alerts", "update", "--tenant", "tenant-a", alert_id, "acknowledged", "--db", db_path]) == 0
        assert f"Alert {alert_id} is now acknowledged" in capsys.readouterr().out

        assert main(["alerts", "stats", "--tenant", "tenant-a", "--db", db_path, "--format", "json"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total"] == 2
        assert stats["open"] == 1
        assert stats["kev"] == 1

    def test_invalid_transition_returns_error(self, kb_file, db_path, capsys):
        """Test a rejected transition prints an error."""
        main(["sweep", "--kb", kb_file, "--db", db_path])
        main(["alerts", "list", "--tenant", "tenant-a", "--db", db_path, "--format", "json"])
        out = capsys.readouterr().out
        alert_id = json.loads(out[out.index("{"):])["alerts"][0]["id"]
        main(["alerts", "update", "--tenant", "tenant-a", alert_id, "resolved", "--db", db_path])
        capsys.readouterr()

        assert main(["alerts", "update", "--tenant", "tenant-a", alert_id, "acknowledged", "--db", db_path]) == 1
        assert "Cannot move alert" in capsys.readouterr().out

    def test_update_other_tenant_not_found(self, kb_file, db_path, capsys):
        """Test tenant scoping on updates."""
        main(["sweep", "--kb", kb_file, "--db", db_path])
        main(["alerts", "list", "--tenant", "tenant-a", "--db", db_path, "--format", "json"])
        out = capsys.readouterr().out
        alert_id = json.loads(out[out.index("{"):])["alerts"][0]["id"]

        assert main(["alerts", "update", "--tenant", "tenant-b", alert_id, "resolved", "--db", db_path]) == 1
        assert "Alert not found" in capsys.readouterr().out

    def test_packages_table(self, kb_file, db_path, capsys):
        """Test the packages-at-risk table."""
        main(["sweep", "--kb", kb_file, "--db", db_path])
        capsys.readouterr()

        assert main(["alerts", "packages", "--tenant", "tenant-a", "--db", db_path]) == 0
        out = capsys.readouterr().out
        assert "Packages at risk for tenant-a (2)" in out
        assert "openssl" in out
        assert "zlib" in out

    def test_missing_kb_file(self, tmp_path, db_path, capsys):
        """Test an unreadable knowledge base file is reported."""
        assert main(["sweep", "--kb", str(tmp_path / "missing.json"), "--db", db_path]) == 1
        assert capsys.readouterr().out.startswith("Error:")

    def test_sweep_applies_logging_config(self, kb_file, tmp_path, db_path, capsys):
        """Test the sweep configures logging from the config file."""
        config_path = tmp_path / "vigil.json"
        config_path.write_text(json.dumps({"logging": {"level": "chatty"}}))

        assert main(["sweep", "--kb", kb_file, "--db", db_path, "--config", str(config_path)]) == 1
        assert "Unknown log level: chatty" in capsys.readouterr().out

    def test_sweep_watch(self, kb_file, db_path, capsys):
        """Test watch mode sweeps immediately, then waits on the schedule."""
        with patch.object(SweepScheduler, "wait", side_effect=KeyboardInterrupt) as wait:
            assert main(
                ["sweep", "--kb", kb_file, "--db", db_path, "--watch", "--schedule", "rate(2 hours)"]
            ) == 0

        wait.assert_called_once()
        out = capsys.readouterr().out
        assert "Alerts created: 2" in out
        assert "Watching on rate(2 hours), next run" in out
        assert "Sweep watch interrupted." in out

    def test_sweep_watch_uses_configured_schedule(self, kb_file, tmp_path, db_path, capsys):
        """Test the schedule comes from the config file when not given."""
        config_path = tmp_path / "vigil.json"
        config_path.write_text(json.dumps({"sweep": {"schedule": "0 */4 * * *"}}))

        with patch.object(SweepScheduler, "wait", side_effect=KeyboardInterrupt):
            assert main(
                ["sweep", "--kb", kb_file, "--db", db_path, "--config", str(config_path), "--watch"]
            ) == 0

        assert "Watching on 0 */4 * * *" in capsys.readouterr().out

    def test_sweep_watch_disabled(self, kb_file, tmp_path, db_path, capsys):
        """Test watch mode refuses to run when scheduled sweeps are disabled."""
        config_path = tmp_path / "vigil.json"
        config_path.write_text(json.dumps({"sweep": {"enabled": False}}))

        with patch.object(SweepScheduler, "wait") as wait:
            assert main(
                ["sweep", "--kb", kb_file, "--db", db_path, "--config", str(config_path), "--watch"]
            ) == 1

        wait.assert_not_called()
        assert "Scheduled sweeps are disabled" in capsys.readouterr().out

    def test_sweep_watch_invalid_schedule(self, kb_file, db_path, capsys):
        """Test an unparseable schedule is reported before anything runs."""
        assert main(
            ["sweep", "--kb", kb_file, "--db", db_path, "--watch", "--schedule", "every tuesday"]
        ) == 1

        out = capsys.readouterr().out
        assert out.startswith("Error:")
        assert "Alerts created" not in out

    def test_alerts_without_action(self, capsys):
        """Test the alerts command requires an action."""
        assert main(["alerts"]) == 1
        assert "No alerts action specified" in capsys.readouterr().out

    def test_memory_backend_from_config(self, tmp_path, capsys):
        """Test the alert backend is read from the config file."""
        config_path = tmp_path / "vigil.json"
        config_path.write_text(json.dumps({"alerting": {"backend": "memory"}}))

        assert main(["alerts", "list", "--tenant", "t", "--config", str(config_path)]) == 0
        assert "showing 0 of 0" in capsys.readouterr().out

    def test_unknown_backend(self, tmp_path, capsys):
        """Test an unknown backend is a configuration error."""
        config_path = tmp_path / "vigil.json"
        config_path.write_text(json.dumps({"alerting": {"backend": "dynamodb"}}))

        assert main(["alerts", "stats", "--tenant", "t", "--config", str(config_path)]) == 1
        assert "Unknown alert backend" in capsys.readouterr().out


@pytest.fixture
def analyzer(manifest_document, config_document):
    analyzer = MagicMock()
    manifest = Manifest.from_dict(manifest_document)
    config = ImageConfig.from_dict(config_document)
    image = parse_image_reference("alpine:3.18")
    analyzer.get_image_info.return_value = ImageInfo(
        image=image,
        manifest=manifest,
        config=config,
        total_size=3404463,
        layer_count=2,
        created_at=config.created,
        architecture="amd64",
        os="linux",
        labels=config.labels,
    )
    analyzer.verify_image.return_value = DigestVerification(
        verified=True, digest="sha256:aaa", match=False, expected_digest="sha256:bbb"
    )
    analyzer.get_layer_info.return_value = LayerReport(
        image=image,
        layers=[LayerInfo(index=0, digest="sha256:l0", size=2048, media_type="m")],
    )
    analyzer.list_tags.return_value = ["3.18", "latest"]
    with patch("vigil.scanner.analyzer.ImageAnalyzer.from_config", return_value=analyzer):
        yield analyzer


class TestImageCommands:
    """Tests for image commands with a mocked analyzer."""

    def test_info(self, analyzer, capsys):
        """Test the info table."""
        assert main(["image", "info", "alpine:3.18"]) == 0

        out = capsys.readouterr().out
        assert "Image: registry-1.docker.io/library/alpine:3.18" in out
        assert "Platform: linux/amd64" in out
        assert "in 2 layers" in out
        assert "maintainer=platform@example.com" in out

    def test_credentials_forwarded(self, analyzer):
        """Test credential flags become RegistryCredentials."""
        main(["image", "info", "registry.internal/app:1", "--username", "u", "--password", "p",
              "--registry-type", "ghcr"])

        credentials = analyzer.get_image_info.call_args[0][1]
        assert credentials.username == "u"
        assert credentials.password == "p"
        assert credentials.type.value == "ghcr"

    def test_no_credentials(self, analyzer):
        """Test no flags means anonymous."""
        main(["image", "info", "alpine:3.18"])

        assert analyzer.get_image_info.call_args[0][1] is None

    def test_verify_mismatch_exit_code(self, analyzer, capsys):
        """Test a digest mismatch exits with 2."""
        assert main(["image", "verify", "alpine:3.18", "--expected-digest", "sha256:bbb"]) == 2
        assert "Match: No" in capsys.readouterr().out

    def test_layers_json(self, analyzer, capsys):
        """Test layer listing as JSON."""
        assert main(["image", "layers", "alpine:3.18", "--format", "json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["total_size"] == 2048
        assert data["layers"][0]["digest"] == "sha256:l0"

    def test_tags(self, analyzer, capsys):
        """Test tag listing."""
        assert main(["image", "tags", "alpine"]) == 0

        assert "Tags for alpine (2):" in capsys.readouterr().out
        assert analyzer.list_tags.call_args[0][0] == "alpine"

    def test_registry_error(self, analyzer, capsys):
        """Test registry failures print an error and exit 1."""
        analyzer.get_image_info.side_effect = ManifestFetchError(
            "Failed to get image manifest: HTTP 404 Not Found", status=404
        )

        assert main(["image", "info", "nope:1"]) == 1
        assert "Error: Failed to get image manifest: HTTP 404 Not Found" in capsys.readouterr().out

    def test_image_without_action(self, capsys):
        """Test the image command requires an action."""
        assert main(["image"]) == 1
        assert "No image action specified" in capsys.readouterr().out


class TestRegistriesCommand:
    """Tests for the registries command."""

    def test_json(self, capsys):
        """Test the registry catalogue as JSON."""
        assert main(["registries", "--format", "json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert "docker_hub" in {r["type"] for r in data["registries"]}

    def test_table(self, capsys):
        """Test the registry catalogue as a table."""
        assert main(["registries"]) == 0
        assert "Docker Hub [docker_hub]" in capsys.readouterr().out
