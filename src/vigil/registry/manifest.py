"""
Image manifest and config models.

Covers the subset of the Docker v2 / OCI v1 manifest and image-config
documents used for image analysis, plus the canonical manifest digest.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Descriptor:
    """Content descriptor for a config or layer blob."""

    media_type: str
    size: int
    digest: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Descriptor:
        return cls(
            media_type=data.get("mediaType", ""),
            size=int(data.get("size", 0) or 0),
            digest=data.get("digest", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"mediaType": self.media_type, "size": self.size, "digest": self.digest}


@dataclass
class Manifest:
    """
    Image manifest.

    ``raw`` keeps the decoded registry document so the digest is computed
    over every field the registry returned, not only the modelled ones.
    """

    schema_version: int
    media_type: str
    config: Descriptor
    layers: list[Descriptor] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        """Create from a decoded manifest document."""
        return cls(
            schema_version=int(data.get("schemaVersion", 2) or 2),
            media_type=data.get("mediaType", ""),
            config=Descriptor.from_dict(data.get("config") or {}),
            layers=[Descriptor.from_dict(layer) for layer in data.get("layers") or []],
            raw=data,
        )

    def to_dict(self) -> dict[str, Any]:
        if self.raw:
            return self.raw
        return {
            "schemaVersion": self.schema_version,
            "mediaType": self.media_type,
            "config": self.config.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
        }

    @property
    def layers_size(self) -> int:
        return sum(layer.size for layer in self.layers)


@dataclass
class HistoryEntry:
    """One entry of an image config's build history."""

    created: str = ""
    created_by: str = ""
    empty_layer: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            created=data.get("created", ""),
            created_by=data.get("created_by", "") or "",
            empty_layer=bool(data.get("empty_layer", False)),
        )


@dataclass
class ImageConfig:
    """Image configuration blob."""

    architecture: str = ""
    os: str = ""
    created: str = ""
    history: list[HistoryEntry] = field(default_factory=list)
    rootfs: dict[str, Any] = field(default_factory=dict)
    labels: dict[str, str] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageConfig:
        """Create from a decoded config blob."""
        container_config = data.get("config") or {}
        return cls(
            architecture=data.get("architecture", ""),
            os=data.get("os", ""),
            created=data.get("created", ""),
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
            rootfs=data.get("rootfs") or {},
            labels=container_config.get("Labels"),
        )


def canonical_manifest_json(manifest: Manifest | dict[str, Any]) -> str:
    """
    Serialize a manifest to its canonical form.

    Canonical form is JSON with sorted keys, no insignificant whitespace
    and non-ASCII characters kept as UTF-8, so the same document always
    yields the same bytes.
    """
    document = manifest.to_dict() if isinstance(manifest, Manifest) else manifest
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_manifest_digest(manifest: Manifest | dict[str, Any]) -> str:
    """Compute ``sha256:<hex>`` over the canonical manifest JSON."""
    canonical = canonical_manifest_json(manifest)
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
