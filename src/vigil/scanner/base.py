"""
Base classes for container image vulnerability scanning.

This module provides the pluggable scanner interface, the vulnerability
and scan-result models, and the severity summary / risk score that are
computed identically for every scanner implementation.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from vigil.registry.manifest import ImageConfig, Manifest
from vigil.registry.reference import ImageReference

logger = logging.getLogger(__name__)


class VulnerabilitySeverity(Enum):
    """Severity levels for vulnerabilities."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: str | None) -> "VulnerabilitySeverity":
        """Convert string to severity enum."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.lower().strip())
        except ValueError:
            return cls.UNKNOWN


# Risk score weight per severity
RISK_WEIGHTS = {
    VulnerabilitySeverity.CRITICAL: 10.0,
    VulnerabilitySeverity.HIGH: 5.0,
    VulnerabilitySeverity.MEDIUM: 2.0,
    VulnerabilitySeverity.LOW: 0.5,
    VulnerabilitySeverity.UNKNOWN: 0.0,
}

MAX_RISK_SCORE = 100


@dataclass
class Vulnerability:
    """Represents a single vulnerability in a container image."""

    cve_id: str
    severity: VulnerabilitySeverity
    package: str
    installed_version: str
    fixed_version: str | None = None
    title: str = ""
    description: str = ""
    references: list[str] = field(default_factory=list)

    @property
    def is_fixable(self) -> bool:
        return bool(self.fixed_version)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "cve_id": self.cve_id,
            "severity": self.severity.value,
            "package": self.package,
            "installed_version": self.installed_version,
            "fixed_version": self.fixed_version,
            "title": self.title,
            "description": self.description,
            "references": self.references,
        }


@dataclass
class SeveritySummary:
    """Vulnerability counts per severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    unknown: int = 0

    @classmethod
    def from_vulnerabilities(cls, vulnerabilities: list[Vulnerability]) -> SeveritySummary:
        summary = cls()
        for vuln in vulnerabilities:
            name = vuln.severity.value
            setattr(summary, name, getattr(summary, name) + 1)
        return summary

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.unknown

    def to_dict(self) -> dict[str, int]:
        return {
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
            "unknown": self.unknown,
        }


def calculate_risk_score(summary: SeveritySummary) -> int:
    """
    Calculate a 0-100 risk score from severity counts.

    ``critical*10 + high*5 + medium*2 + low*0.5``, rounded half up and
    clamped to [0, 100].
    """
    score = (
        summary.critical * RISK_WEIGHTS[VulnerabilitySeverity.CRITICAL]
        + summary.high * RISK_WEIGHTS[VulnerabilitySeverity.HIGH]
        + summary.medium * RISK_WEIGHTS[VulnerabilitySeverity.MEDIUM]
        + summary.low * RISK_WEIGHTS[VulnerabilitySeverity.LOW]
    )
    return max(0, min(MAX_RISK_SCORE, math.floor(score + 0.5)))


@dataclass
class ImageInfo:
    """Aggregate metadata for a container image."""

    image: ImageReference
    manifest: Manifest
    config: ImageConfig
    total_size: int
    layer_count: int
    created_at: str = ""
    architecture: str = ""
    os: str = ""
    base_image: str | None = None
    labels: dict[str, str] | None = None

    def created_datetime(self) -> datetime | None:
        """Parse ``created_at`` into an aware datetime, if possible."""
        return parse_timestamp(self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": self.image.to_dict(),
            "manifest": self.manifest.to_dict(),
            "total_size": self.total_size,
            "layer_count": self.layer_count,
            "created_at": self.created_at,
            "architecture": self.architecture,
            "os": self.os,
            "base_image": self.base_image,
            "labels": self.labels,
        }


@dataclass
class VulnerabilityScanResult:
    """Result from scanning a container image."""

    image: ImageReference
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    summary: SeveritySummary = field(default_factory=SeveritySummary)
    risk_score: int = 0
    scanner_name: str = "unknown"

    @classmethod
    def from_vulnerabilities(
        cls,
        image: ImageReference,
        vulnerabilities: list[Vulnerability],
        scanner_name: str = "unknown",
        scanned_at: datetime | None = None,
    ) -> VulnerabilityScanResult:
        """Build a result, deriving summary and risk score from the list."""
        summary = SeveritySummary.from_vulnerabilities(vulnerabilities)
        return cls(
            image=image,
            scanned_at=scanned_at or datetime.now(timezone.utc),
            vulnerabilities=list(vulnerabilities),
            summary=summary,
            risk_score=calculate_risk_score(summary),
            scanner_name=scanner_name,
        )

    @property
    def vulnerability_count(self) -> int:
        return len(self.vulnerabilities)

    @property
    def fixable_count(self) -> int:
        return sum(1 for v in self.vulnerabilities if v.is_fixable)

    def get_vulnerabilities_by_severity(
        self, severity: VulnerabilitySeverity
    ) -> list[Vulnerability]:
        """Get vulnerabilities filtered by severity."""
        return [v for v in self.vulnerabilities if v.severity == severity]

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": self.image.to_dict(),
            "scanned_at": self.scanned_at.isoformat(),
            "scanner": self.scanner_name,
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "summary": self.summary.to_dict(),
            "risk_score": self.risk_score,
        }


class ScannerError(Exception):
    """Base exception for scanner errors."""

    pass


class ImageScanner(ABC):
    """
    Abstract base class for image vulnerability scanners.

    A scanner turns image metadata into a list of vulnerabilities.
    Summary and risk score are derived by the analyzer, so any
    implementation (layer extraction plus package DB lookup, an external
    tool, a placeholder) can be substituted without touching them.
    """

    scanner_name: str = "unknown"

    @abstractmethod
    def scan(self, info: ImageInfo) -> list[Vulnerability]:
        """
        Scan an image for vulnerabilities.

        Args:
            info: Image metadata from the registry

        Returns:
            Vulnerabilities found

        Raises:
            ScannerError: On scanner failure
        """
        pass


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as found in image configs."""
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    # Registries emit nanosecond fractions; fromisoformat takes at most six digits
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
