"""
Image reference resolution.

Parses free-form container image references such as ``alpine:3.18``,
``ghcr.io/org/app:v1`` or ``repo@sha256:...`` into structured
ImageReference values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


DOCKER_HUB_REGISTRY = "registry-1.docker.io"
DEFAULT_TAG = "latest"

# Host fragments that mark the first path segment as a registry
KNOWN_REGISTRY_MARKERS = ["gcr", "ghcr", "ecr", "azurecr", "quay"]


class RegistryType(Enum):
    """Supported registry families."""

    DOCKER_HUB = "docker_hub"
    GCR = "gcr"
    ECR = "ecr"
    ACR = "acr"
    GHCR = "ghcr"
    CUSTOM = "custom"

    @classmethod
    def from_string(cls, value: str) -> "RegistryType":
        """Convert string to registry type, defaulting to CUSTOM."""
        try:
            return cls(value.lower().strip())
        except ValueError:
            return cls.CUSTOM


@dataclass(frozen=True)
class ImageReference:
    """Structured container image reference."""

    registry: str
    repository: str
    tag: str = DEFAULT_TAG
    digest: str | None = None

    @property
    def full_name(self) -> str:
        """Registry-qualified name, always ``registry/repository:tag``."""
        return f"{self.registry}/{self.repository}:{self.tag}"

    @property
    def reference(self) -> str:
        """Manifest reference to fetch; a digest wins over the tag."""
        return self.digest or self.tag

    @property
    def cache_key(self) -> str:
        """Key identifying the registry+repository auth scope."""
        return f"{self.registry}/{self.repository}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "registry": self.registry,
            "repository": self.repository,
            "tag": self.tag,
            "digest": self.digest,
            "full_name": self.full_name,
        }


def _looks_like_registry(segment: str) -> bool:
    if "." in segment or ":" in segment:
        return True
    return any(marker in segment for marker in KNOWN_REGISTRY_MARKERS)


def parse_image_reference(image_ref: str) -> ImageReference:
    """
    Parse an image reference string.

    Resolution never fails; ambiguous input degrades to Docker Hub
    defaults (``registry-1.docker.io``, ``library/`` prefix, ``latest``).

    Args:
        image_ref: Reference like ``repo:tag``, ``registry/repo:tag``
            or ``repo@sha256:...``

    Returns:
        ImageReference

    Example:
        >>> parse_image_reference("alpine:3.18").full_name
        'registry-1.docker.io/library/alpine:3.18'
    """
    registry = DOCKER_HUB_REGISTRY
    tag = DEFAULT_TAG
    digest: str | None = None
    remainder = image_ref.strip()

    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)

    if ":" in remainder and digest is None:
        remainder, tag = remainder.rsplit(":", 1)

    if "/" in remainder:
        possible_registry, rest = remainder.split("/", 1)
        if _looks_like_registry(possible_registry):
            registry = possible_registry
            repository = rest
        else:
            repository = remainder
    else:
        # Docker Hub official images live under library/
        repository = f"library/{remainder}"

    return ImageReference(
        registry=registry,
        repository=repository,
        tag=tag,
        digest=digest,
    )


def registry_type_for(registry: str) -> RegistryType:
    """Classify a registry host into a RegistryType."""
    host = registry.lower()

    if host in (DOCKER_HUB_REGISTRY, "docker.io", "index.docker.io"):
        return RegistryType.DOCKER_HUB
    if host == "ghcr.io":
        return RegistryType.GHCR
    if "gcr.io" in host:
        return RegistryType.GCR
    if ".dkr.ecr." in host and host.endswith(".amazonaws.com"):
        return RegistryType.ECR
    if host.endswith(".azurecr.io"):
        return RegistryType.ACR
    return RegistryType.CUSTOM
