"""
Version comparison for package matching.

The default comparator is deliberately coarse: dot-separated integer
segments with no pre-release or build-metadata semantics. Ecosystem
specific comparators (SemVer, PEP 440, ...) plug in through
VersionComparator.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

_LEADING_DIGITS = re.compile(r"\s*(\d+)")


class VersionComparator(ABC):
    """Interface for version ordering."""

    @abstractmethod
    def compare(self, v1: str, v2: str) -> int:
        """Return -1, 0 or 1 as ``v1`` is lower, equal or higher than ``v2``."""
        pass

    def is_affected(
        self,
        version: str | None,
        start_including: str | None = None,
        end_excluding: str | None = None,
    ) -> bool:
        """
        Check whether ``version`` lies in ``[start_including, end_excluding)``.

        A missing version is treated as affected.
        """
        if not version:
            return True
        if start_including and self.compare(version, start_including) < 0:
            return False
        if end_excluding and self.compare(version, end_excluding) >= 0:
            return False
        return True


class NumericVersionComparator(VersionComparator):
    """
    Compare versions segment by segment as integers.

    Each ``.``-separated segment is read as its leading integer (``0`` if
    it has none) and missing trailing segments count as ``0``, so
    ``1.2`` == ``1.2.0`` and ``1.0.0rc1`` == ``1.0.0``.
    """

    def compare(self, v1: str, v2: str) -> int:
        p1 = self._segments(v1)
        p2 = self._segments(v2)

        for i in range(max(len(p1), len(p2))):
            a = p1[i] if i < len(p1) else 0
            b = p2[i] if i < len(p2) else 0
            if a < b:
                return -1
            if a > b:
                return 1
        return 0

    @staticmethod
    def _segments(version: str) -> list[int]:
        segments = []
        for part in version.split("."):
            match = _LEADING_DIGITS.match(part)
            segments.append(int(match.group(1)) if match else 0)
        return segments


COMPARATORS: dict[str, type[VersionComparator]] = {
    "numeric": NumericVersionComparator,
}


def get_comparator(name: str) -> VersionComparator:
    """
    Get a comparator by configured name.

    Raises:
        ValueError: Unknown comparator name
    """
    try:
        return COMPARATORS[name.lower()]()
    except KeyError:
        valid = ", ".join(sorted(COMPARATORS))
        raise ValueError(f"Unknown version comparator '{name}'. Valid: {valid}")


_default_comparator = NumericVersionComparator()


def compare_versions(v1: str, v2: str) -> int:
    """Compare two versions with the default numeric comparator."""
    return _default_comparator.compare(v1, v2)


def is_version_affected(
    version: str | None,
    start_including: str | None = None,
    end_excluding: str | None = None,
) -> bool:
    """
    Check a version against an affected range with the default comparator.

    Example:
        >>> is_version_affected("1.2.0", "1.0.0", "2.0.0")
        True
        >>> is_version_affected("2.0.0", "1.0.0", "2.0.0")
        False
    """
    return _default_comparator.is_affected(version, start_including, end_excluding)
