"""
Container image analysis for Mantissa Vigil.

Provides image metadata, digest verification, base image detection and
vulnerability scanning behind a pluggable scanner interface.
"""

from vigil.scanner.base import (
    ImageInfo,
    ImageScanner,
    ScannerError,
    SeveritySummary,
    Vulnerability,
    VulnerabilityScanResult,
    VulnerabilitySeverity,
    calculate_risk_score,
)
from vigil.scanner.base_image import BaseImageDetector, HistoryBaseImageDetector
from vigil.scanner.placeholder import PlaceholderScanner
from vigil.scanner.analyzer import (
    DigestVerification,
    ImageAnalyzer,
    LayerInfo,
    LayerReport,
)

__all__ = [
    # Base classes
    "ImageInfo",
    "ImageScanner",
    "ScannerError",
    "SeveritySummary",
    "Vulnerability",
    "VulnerabilityScanResult",
    "VulnerabilitySeverity",
    "calculate_risk_score",
    # Base image detection
    "BaseImageDetector",
    "HistoryBaseImageDetector",
    # Implementations
    "PlaceholderScanner",
    # Analyzer
    "DigestVerification",
    "ImageAnalyzer",
    "LayerInfo",
    "LayerReport",
]
