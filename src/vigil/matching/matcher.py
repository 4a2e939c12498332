"""
Package vulnerability matcher.

Matches a vulnerability record's affected products against tracked
packages by name containment and version range.
"""

from __future__ import annotations

import logging

from vigil.matching.knowledge_base import TrackedPackage, VulnerabilityRecord
from vigil.matching.version import NumericVersionComparator, VersionComparator

logger = logging.getLogger(__name__)


class PackageMatcher:
    """
    Match vulnerability records to tracked packages.

    A package matches an affected product when its lowercased component
    name contains the lowercased product name and its version lies in
    the product's affected range.

    Usage:
        matcher = PackageMatcher()
        matches = matcher.match(record, kb.get_tracked_packages())
    """

    def __init__(self, comparator: VersionComparator | None = None):
        self.comparator = comparator if comparator is not None else NumericVersionComparator()

    def match(
        self,
        record: VulnerabilityRecord,
        packages: list[TrackedPackage],
    ) -> list[TrackedPackage]:
        """
        Find the packages affected by a record.

        A package is reported once per affected product it matches.
        Products with no name are skipped. A package whose version cannot
        be compared against a product's range is skipped and logged
        without affecting the other packages.

        Args:
            record: Vulnerability record
            packages: Candidate tracked packages

        Returns:
            Matching packages in product order
        """
        matches: list[TrackedPackage] = []

        for product in record.affected_products:
            name = (product.product or "").strip().lower()
            if not name:
                logger.debug(f"Skipping unnamed affected product on {record.id}")
                continue

            for package in packages:
                try:
                    if name not in (package.component_name or "").lower():
                        continue
                    affected = self.comparator.is_affected(
                        package.component_version,
                        product.version_start_including,
                        product.version_end_excluding,
                    )
                except (AttributeError, TypeError, ValueError) as e:
                    logger.warning(
                        f"Skipping {package.component_name!r} from {package.source_id} "
                        f"for {name!r} on {record.id}: {e}"
                    )
                    continue

                if affected:
                    matches.append(package)

        return matches
