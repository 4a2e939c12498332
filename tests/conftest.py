"""
Pytest configuration and fixtures for Mantissa Vigil tests.

This module provides common fixtures used across unit and integration tests.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from vigil.alerting import AlertLifecycleManager, InMemoryAlertStore
from vigil.matching import (
    AffectedProduct,
    InMemoryKnowledgeBase,
    TrackedPackage,
    VulnerabilityRecord,
)
from vigil.registry import ImageConfig, Manifest, parse_image_reference
from vigil.scanner import ImageInfo


FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# HTTP fixtures


@pytest.fixture
def make_response() -> Callable[[Any], MagicMock]:
    """Return a factory for urlopen context-manager responses."""

    def _make(payload: Any) -> MagicMock:
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        response = MagicMock()
        response.read.return_value = body
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        return response

    return _make


# Registry fixtures


@pytest.fixture
def manifest_document() -> dict[str, Any]:
    """Return a Docker v2 manifest document."""
    return {
        "schemaVersion": 2,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": 1472,
            "digest": "sha256:c1aabb73d2339c5ebaa3681de2e9d9c18d57485045a4e311d9f8004bec208d67",
        },
        "layers": [
            {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                "size": 3401967,
                "digest": "sha256:c6a83fedfae6ed8a4f5f7cbb6a7b6f1c1ec3d86fea8cb9e5ba2e5e6a4b2c4fd1",
            },
            {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                "size": 1024,
                "digest": "sha256:7a1e5e7b47fe1bcd11c3c2a4e44c6a4c3b8c4e3a3f6b1e3b2c7d8e9f0a1b2c3d",
            },
        ],
    }


@pytest.fixture
def config_document() -> dict[str, Any]:
    """Return an image config blob."""
    return {
        "architecture": "amd64",
        "os": "linux",
        "created": "2024-01-02T03:04:05.123456789Z",
        "config": {"Labels": {"maintainer": "platform@example.com"}},
        "history": [
            {
                "created": "2024-01-01T00:00:00Z",
                "created_by": "/bin/sh -c #(nop) ADD file:abc in / ",
            },
            {
                "created": "2024-01-01T00:00:01Z",
                "created_by": "/bin/sh -c #(nop)  CMD [\"/bin/sh\"]",
                "empty_layer": True,
            },
        ],
        "rootfs": {"type": "layers", "diff_ids": ["sha256:aaa", "sha256:bbb"]},
    }


@pytest.fixture
def image_info(manifest_document, config_document) -> ImageInfo:
    """Return ImageInfo for alpine:3.18 with two layers."""
    manifest = Manifest.from_dict(manifest_document)
    config = ImageConfig.from_dict(config_document)
    return ImageInfo(
        image=parse_image_reference("alpine:3.18"),
        manifest=manifest,
        config=config,
        total_size=manifest.layers_size + manifest.config.size,
        layer_count=len(manifest.layers),
        created_at=config.created,
        architecture=config.architecture,
        os=config.os,
        labels=config.labels,
    )


# Matching fixtures


@pytest.fixture
def fixed_now() -> datetime:
    """Return a fixed aware UTC time."""
    return FIXED_NOW


@pytest.fixture
def tracked_packages() -> list[TrackedPackage]:
    """Return tracked packages across two tenants."""
    return [
        TrackedPackage("tenant-a", "sbom-1", "openssl", "1.1.1k", "pkg:generic/openssl@1.1.1k"),
        TrackedPackage("tenant-a", "sbom-2", "openssl", "1.1.1k", "pkg:generic/openssl@1.1.1k"),
        TrackedPackage("tenant-a", "sbom-1", "zlib", "1.2.13", "pkg:generic/zlib@1.2.13"),
        TrackedPackage("tenant-b", "img-9", "libopenssl", "3.0.1", "pkg:deb/debian/libopenssl@3.0.1"),
        TrackedPackage("", "orphan", "openssl", "1.0.2", ""),
    ]


@pytest.fixture
def openssl_record(fixed_now) -> VulnerabilityRecord:
    """Return a recent critical openssl record."""
    return VulnerabilityRecord(
        id="CVE-2024-0001",
        affected_products=[
            AffectedProduct("OpenSSL", version_start_including="1.0.0", version_end_excluding="3.0.2"),
        ],
        published_date=fixed_now - timedelta(hours=6),
        severity="critical",
        is_kev=True,
        epss_score=0.42,
        cvss_score=9.8,
        description="Buffer overflow in OpenSSL",
    )


@pytest.fixture
def zlib_record(fixed_now) -> VulnerabilityRecord:
    """Return an older medium zlib record."""
    return VulnerabilityRecord(
        id="CVE-2024-0002",
        affected_products=[AffectedProduct("zlib", version_end_excluding="1.3.0")],
        published_date=fixed_now - timedelta(hours=20),
        severity="medium",
        description="Memory corruption in zlib inflate",
    )


@pytest.fixture
def knowledge_base(tracked_packages, openssl_record, zlib_record) -> InMemoryKnowledgeBase:
    """Return a knowledge base with two records and the tracked packages."""
    return InMemoryKnowledgeBase(
        records=[openssl_record, zlib_record],
        packages=tracked_packages,
    )


# Alerting fixtures


@pytest.fixture
def alert_manager(fixed_now) -> AlertLifecycleManager:
    """Return an in-memory alert manager on a fixed clock."""
    return AlertLifecycleManager(store=InMemoryAlertStore(), clock=lambda: fixed_now)
