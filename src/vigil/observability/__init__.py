"""
Observability for Mantissa Vigil.

Provides structured and human-readable logging with event helpers for
matching sweeps and alert creation.
"""

from vigil.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    VigilLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "HumanReadableFormatter",
    "StructuredFormatter",
    "VigilLogger",
    "configure_logging",
    "get_logger",
]
