"""
Vulnerability knowledge base read interface.

The knowledge base is owned by external ingestion pipelines (CVE, KEV
and EPSS sync). The engine only reads vulnerability records by recency
and tracked packages by tenant.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


DEFAULT_RECORD_LIMIT = 500


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(value: Any) -> str | None:
    # YAML reads unquoted versions such as 1.1 as floats
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class TrackedPackage:
    """
    A software component from an ingested SBOM or image inventory.

    Attributes:
        tenant_id: Owning tenant
        source_id: SBOM or image identifier the component came from
        component_name: Package name
        component_version: Installed version ("" when unknown)
        purl: Package URL
    """

    tenant_id: str
    source_id: str
    component_name: str
    component_version: str = ""
    purl: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrackedPackage:
        if not isinstance(data, dict):
            raise ValueError(f"tracked package must be a mapping, got {type(data).__name__}")
        return cls(
            tenant_id=str(data.get("tenant_id") or ""),
            source_id=str(data.get("source_id") or data.get("sbom_id") or data.get("image_id") or ""),
            component_name=str(data.get("component_name") or ""),
            component_version=_optional_str(data.get("component_version")) or "",
            purl=str(data.get("purl") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "source_id": self.source_id,
            "component_name": self.component_name,
            "component_version": self.component_version,
            "purl": self.purl,
        }


@dataclass
class AffectedProduct:
    """Product and version range named by a vulnerability record."""

    product: str
    version_start_including: str | None = None
    version_end_excluding: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AffectedProduct:
        if not isinstance(data, dict):
            raise ValueError(f"affected product must be a mapping, got {type(data).__name__}")
        return cls(
            product=str(data.get("product") or ""),
            version_start_including=_optional_str(
                data.get("version_start_including") or data.get("versionStartIncluding")
            ),
            version_end_excluding=_optional_str(
                data.get("version_end_excluding") or data.get("versionEndExcluding")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product,
            "version_start_including": self.version_start_including,
            "version_end_excluding": self.version_end_excluding,
        }


@dataclass
class VulnerabilityRecord:
    """Knowledge base entry for a vulnerability (read-only)."""

    id: str
    affected_products: list[AffectedProduct] = field(default_factory=list)
    published_date: datetime | None = None
    severity: str = "unknown"
    is_kev: bool = False
    epss_score: float | None = None
    cvss_score: float | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VulnerabilityRecord:
        """
        Create from dictionary.

        Malformed affected-product entries are kept out of the record
        and logged, so one bad entry does not hide the others.
        """
        products = []
        for entry in data.get("affected_products", []) or []:
            try:
                products.append(AffectedProduct.from_dict(entry))
            except ValueError as e:
                logger.warning(f"Skipping affected product on {data.get('id')}: {e}")

        return cls(
            id=data["id"],
            affected_products=products,
            published_date=_parse_datetime(data.get("published_date")),
            severity=(data.get("severity") or "unknown").lower(),
            is_kev=bool(data.get("is_kev", False)),
            epss_score=data.get("epss_score"),
            cvss_score=data.get("cvss_score"),
            description=data.get("description") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "affected_products": [p.to_dict() for p in self.affected_products],
            "published_date": self.published_date.isoformat() if self.published_date else None,
            "severity": self.severity,
            "is_kev": self.is_kev,
            "epss_score": self.epss_score,
            "cvss_score": self.cvss_score,
            "description": self.description,
        }


class VulnerabilityKnowledgeBase(ABC):
    """Read interface over the vulnerability knowledge base."""

    @abstractmethod
    def get_recent_records(
        self,
        since: datetime,
        limit: int = DEFAULT_RECORD_LIMIT,
    ) -> list[VulnerabilityRecord]:
        """Records published at or after ``since``, newest first."""
        ...

    @abstractmethod
    def get_tracked_packages(self, tenant_id: str | None = None) -> list[TrackedPackage]:
        """Tracked packages, optionally restricted to one tenant."""
        ...


class InMemoryKnowledgeBase(VulnerabilityKnowledgeBase):
    """
    In-memory knowledge base.

    Suitable for development, tests and the CLI. Data is lost on restart.
    """

    def __init__(
        self,
        records: list[VulnerabilityRecord] | None = None,
        packages: list[TrackedPackage] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, VulnerabilityRecord] = {}
        self._packages: list[TrackedPackage] = list(packages or [])
        for record in records or []:
            self._records[record.id] = record

    def add_record(self, record: VulnerabilityRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def add_package(self, package: TrackedPackage) -> None:
        with self._lock:
            self._packages.append(package)

    def get_recent_records(
        self,
        since: datetime,
        limit: int = DEFAULT_RECORD_LIMIT,
    ) -> list[VulnerabilityRecord]:
        with self._lock:
            recent = [
                r for r in self._records.values()
                if r.published_date is not None and r.published_date >= since
            ]
        recent.sort(key=lambda r: r.published_date, reverse=True)
        return recent[:limit]

    def get_tracked_packages(self, tenant_id: str | None = None) -> list[TrackedPackage]:
        with self._lock:
            if tenant_id is None:
                return list(self._packages)
            return [p for p in self._packages if p.tenant_id == tenant_id]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryKnowledgeBase:
        """
        Create from ``{"records": [...], "packages": [...]}``.

        Missing or null sections load as empty. Malformed records and
        packages are skipped and logged.
        """
        records = []
        for item in data.get("records") or []:
            try:
                records.append(VulnerabilityRecord.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed vulnerability record: {e}")

        packages = []
        for item in data.get("packages") or []:
            try:
                packages.append(TrackedPackage.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed tracked package: {e}")

        return cls(records=records, packages=packages)

    @classmethod
    def from_file(cls, path: str) -> InMemoryKnowledgeBase:
        """Load a knowledge base snapshot from a JSON or YAML file."""
        path = os.path.expanduser(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                return cls.from_dict(json.load(f))
            else:
                import yaml
                return cls.from_dict(yaml.safe_load(f) or {})
