"""
Placeholder image scanner.

Produces synthetic vulnerabilities from image age and layer count. It
stands in until a real scanner (layer extraction plus package database
lookup) is plugged in through the ImageScanner interface.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Callable

from vigil.scanner.base import (
    ImageInfo,
    ImageScanner,
    Vulnerability,
    VulnerabilitySeverity,
)

logger = logging.getLogger(__name__)


MAX_SYNTHETIC_VULNERABILITIES = 20

# (package, [installed, intermediate, fixed])
SYNTHETIC_PACKAGES = [
    ("openssl", ["1.1.1k", "1.1.1l", "3.0.0"]),
    ("curl", ["7.79.1", "7.80.0", "7.81.0"]),
    ("zlib", ["1.2.11", "1.2.12", "1.2.13"]),
    ("libexpat", ["2.4.0", "2.4.1", "2.4.2"]),
    ("glibc", ["2.31", "2.33", "2.34"]),
]

SYNTHETIC_SEVERITIES = [
    VulnerabilitySeverity.CRITICAL,
    VulnerabilitySeverity.HIGH,
    VulnerabilitySeverity.MEDIUM,
    VulnerabilitySeverity.LOW,
]


class PlaceholderScanner(ImageScanner):
    """
    Synthetic scanner driven by image age and layer count.

    Older images and images with more layers get more findings:
    ``min(20, days_since_creation // 30 + layer_count)``.

    Usage:
        scanner = PlaceholderScanner(rng=random.Random(42))
        vulns = scanner.scan(info)
    """

    scanner_name: str = "placeholder"

    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize PlaceholderScanner.

        Args:
            rng: Random source for severities and identifiers
            clock: Returns the current time (UTC)
        """
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def vulnerability_count(self, info: ImageInfo) -> int:
        """Number of synthetic vulnerabilities for an image."""
        created = info.created_datetime()
        days = 0.0
        if created is not None:
            days = max(0.0, (self._clock() - created).total_seconds() / 86400)
        return min(MAX_SYNTHETIC_VULNERABILITIES, int(days // 30) + info.layer_count)

    def scan(self, info: ImageInfo) -> list[Vulnerability]:
        count = self.vulnerability_count(info)
        logger.debug(f"Generating {count} synthetic vulnerabilities for {info.image.full_name}")

        vulns: list[Vulnerability] = []
        for i in range(count):
            package, versions = SYNTHETIC_PACKAGES[i % len(SYNTHETIC_PACKAGES)]
            severity = self._rng.choice(SYNTHETIC_SEVERITIES)
            year = 2022 + self._rng.randrange(3)
            number = 10000 + self._rng.randrange(40000)
            cve_id = f"CVE-{year}-{number}"

            impact = (
                "remote code execution"
                if severity == VulnerabilitySeverity.CRITICAL
                else "denial of service"
            )
            vulns.append(
                Vulnerability(
                    cve_id=cve_id,
                    severity=severity,
                    package=package,
                    installed_version=versions[0],
                    fixed_version=versions[2],
                    title=f"{package} vulnerability",
                    description=f"A vulnerability was found in {package} that could allow {impact}",
                    references=[f"https://nvd.nist.gov/vuln/detail/{cve_id}"],
                )
            )

        return vulns
