"""
Container registry access for Mantissa Vigil.

Resolves image references, authenticates against Docker Hub, GCR, GHCR,
ECR and custom registries, and fetches manifests and config blobs.
"""

from vigil.registry.reference import (
    DOCKER_HUB_REGISTRY,
    ImageReference,
    RegistryType,
    parse_image_reference,
    registry_type_for,
)
from vigil.registry.auth import (
    CachedToken,
    RegistryAuthBroker,
    RegistryCredentials,
    RegistryToken,
    TokenCache,
    TokenKind,
)
from vigil.registry.manifest import (
    Descriptor,
    HistoryEntry,
    ImageConfig,
    Manifest,
    canonical_manifest_json,
    compute_manifest_digest,
)
from vigil.registry.client import (
    ConfigFetchError,
    ManifestFetchError,
    RegistryClient,
    RegistryError,
    RegistryRequestError,
    TagListError,
    build_headers,
)

__all__ = [
    # Reference resolution
    "DOCKER_HUB_REGISTRY",
    "ImageReference",
    "RegistryType",
    "parse_image_reference",
    "registry_type_for",
    # Auth
    "CachedToken",
    "RegistryAuthBroker",
    "RegistryCredentials",
    "RegistryToken",
    "TokenCache",
    "TokenKind",
    # Manifests
    "Descriptor",
    "HistoryEntry",
    "ImageConfig",
    "Manifest",
    "canonical_manifest_json",
    "compute_manifest_digest",
    # Client
    "ConfigFetchError",
    "ManifestFetchError",
    "RegistryClient",
    "RegistryError",
    "RegistryRequestError",
    "TagListError",
    "build_headers",
]
