"""
Mantissa Vigil - Vulnerability Intelligence Matching & Alerting Engine.

Resolves and authenticates against container registries to analyze image
manifests, and matches tracked software packages against a vulnerability
knowledge base to produce deduplicated, stateful, per-tenant alerts.
"""

__version__ = "0.1.0"
