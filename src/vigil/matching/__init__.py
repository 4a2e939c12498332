"""
Package vulnerability matching for Mantissa Vigil.

Provides version comparison, the knowledge base read interface and the
matcher that pairs vulnerability records with tracked packages.
"""

from vigil.matching.version import (
    NumericVersionComparator,
    VersionComparator,
    compare_versions,
    get_comparator,
    is_version_affected,
)
from vigil.matching.knowledge_base import (
    AffectedProduct,
    InMemoryKnowledgeBase,
    TrackedPackage,
    VulnerabilityKnowledgeBase,
    VulnerabilityRecord,
)
from vigil.matching.matcher import PackageMatcher

__all__ = [
    # Versions
    "NumericVersionComparator",
    "VersionComparator",
    "compare_versions",
    "get_comparator",
    "is_version_affected",
    # Knowledge base
    "AffectedProduct",
    "InMemoryKnowledgeBase",
    "TrackedPackage",
    "VulnerabilityKnowledgeBase",
    "VulnerabilityRecord",
    # Matcher
    "PackageMatcher",
]
