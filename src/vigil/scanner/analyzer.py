"""
Image analyzer for Mantissa Vigil.

Composes reference resolution, registry auth and manifest fetching to
produce image metadata, digest verification and vulnerability scan
results. Each call issues its registry requests sequentially and
propagates fetch failures to the caller without retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from vigil.registry.auth import RegistryAuthBroker, RegistryCredentials
from vigil.registry.client import RegistryClient
from vigil.registry.manifest import compute_manifest_digest
from vigil.registry.reference import ImageReference, parse_image_reference
from vigil.scanner.base import (
    ImageInfo,
    ImageScanner,
    VulnerabilityScanResult,
)
from vigil.scanner.base_image import BaseImageDetector, HistoryBaseImageDetector
from vigil.scanner.placeholder import PlaceholderScanner

logger = logging.getLogger(__name__)


SUPPORTED_REGISTRIES = [
    {
        "type": "docker_hub",
        "name": "Docker Hub",
        "registry": "registry-1.docker.io",
        "auth_url": "https://auth.docker.io/token",
        "public": True,
    },
    {
        "type": "ghcr",
        "name": "GitHub Container Registry",
        "registry": "ghcr.io",
        "auth_method": "token",
        "public": True,
    },
    {
        "type": "gcr",
        "name": "Google Container Registry",
        "registry": "gcr.io",
        "auth_method": "service_account",
        "public": False,
    },
    {
        "type": "ecr",
        "name": "Amazon ECR",
        "registry": "<account>.dkr.ecr.<region>.amazonaws.com",
        "auth_method": "aws_credentials",
        "public": False,
    },
    {
        "type": "acr",
        "name": "Azure Container Registry",
        "registry": "<registry>.azurecr.io",
        "auth_method": "basic",
        "public": False,
    },
    {
        "type": "custom",
        "name": "Quay.io",
        "registry": "quay.io",
        "auth_method": "basic",
        "public": True,
    },
]


@dataclass
class DigestVerification:
    """Outcome of a manifest digest check."""

    verified: bool
    digest: str
    match: bool
    expected_digest: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "digest": self.digest,
            "match": self.match,
            "expected_digest": self.expected_digest,
        }


@dataclass
class LayerInfo:
    """A single manifest layer."""

    index: int
    digest: str
    size: int
    media_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "digest": self.digest,
            "size": self.size,
            "media_type": self.media_type,
        }


@dataclass
class LayerReport:
    """Layers of an image and their combined size."""

    image: ImageReference
    layers: list[LayerInfo] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(layer.size for layer in self.layers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": self.image.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
            "total_size": self.total_size,
        }


class ImageAnalyzer:
    """
    Container image analyzer.

    Usage:
        analyzer = ImageAnalyzer()
        info = analyzer.get_image_info("alpine:3.18")
        result = analyzer.scan_image("alpine:3.18")
        print(f"Risk score: {result.risk_score}")
    """

    def __init__(
        self,
        broker: RegistryAuthBroker | None = None,
        client: RegistryClient | None = None,
        scanner: ImageScanner | None = None,
        base_image_detector: BaseImageDetector | None = None,
    ):
        """
        Initialize ImageAnalyzer.

        Args:
            broker: Registry auth broker
            client: Registry content API client
            scanner: Vulnerability scanner (placeholder if None)
            base_image_detector: Base image detector (history heuristic if None)
        """
        self.broker = broker if broker is not None else RegistryAuthBroker()
        self.client = client if client is not None else RegistryClient()
        self.scanner = scanner if scanner is not None else PlaceholderScanner()
        self.base_image_detector = (
            base_image_detector if base_image_detector is not None else HistoryBaseImageDetector()
        )

    @classmethod
    def from_config(cls, config: Any, scanner: ImageScanner | None = None) -> ImageAnalyzer:
        """Build an analyzer from an EngineConfiguration."""
        registry = config.registry
        broker = RegistryAuthBroker(
            gcr_token=registry.gcr_token or None,
            ghcr_token=registry.ghcr_token or None,
            aws_region=registry.aws_region,
            timeout=registry.http_timeout_seconds,
            docker_hub_auth_url=registry.docker_hub_auth_url,
            default_ttl_seconds=registry.default_token_ttl_seconds,
        )
        client = RegistryClient(timeout=registry.http_timeout_seconds)
        return cls(broker=broker, client=client, scanner=scanner)

    def get_image_info(
        self,
        image_ref: str,
        credentials: RegistryCredentials | None = None,
    ) -> ImageInfo:
        """
        Fetch manifest and config and derive image metadata.

        Args:
            image_ref: Image reference string
            credentials: Optional registry credentials

        Returns:
            ImageInfo

        Raises:
            RegistryRequestError: Manifest or config fetch failed
        """
        image = parse_image_reference(image_ref)
        token = self.broker.get_token(image, credentials)

        manifest = self.client.get_manifest(image, token)
        config = self.client.get_config(image, manifest.config.digest, token)

        total_size = manifest.layers_size + manifest.config.size

        return ImageInfo(
            image=image,
            manifest=manifest,
            config=config,
            total_size=total_size,
            layer_count=len(manifest.layers),
            created_at=config.created,
            architecture=config.architecture,
            os=config.os,
            base_image=self.base_image_detector.detect(config),
            labels=config.labels,
        )

    def scan_image(
        self,
        image_ref: str,
        credentials: RegistryCredentials | None = None,
    ) -> VulnerabilityScanResult:
        """
        Scan an image and summarize its vulnerabilities.

        Returns:
            VulnerabilityScanResult with severity summary and risk score
        """
        info = self.get_image_info(image_ref, credentials)
        vulnerabilities = self.scanner.scan(info)

        result = VulnerabilityScanResult.from_vulnerabilities(
            image=info.image,
            vulnerabilities=vulnerabilities,
            scanner_name=self.scanner.scanner_name,
        )
        logger.info(
            f"Scanned {info.image.full_name}: {result.vulnerability_count} "
            f"vulnerabilities, risk score {result.risk_score}"
        )
        return result

    def verify_image(
        self,
        image_ref: str,
        expected_digest: str | None = None,
        credentials: RegistryCredentials | None = None,
    ) -> DigestVerification:
        """
        Compute the canonical manifest digest and compare it.

        A mismatch is reported through ``match``; it is never raised.
        """
        image = parse_image_reference(image_ref)
        token = self.broker.get_token(image, credentials)
        manifest = self.client.get_manifest(image, token)

        digest = compute_manifest_digest(manifest)
        match = digest == expected_digest if expected_digest else True

        if not match:
            logger.warning(f"Digest mismatch for {image.full_name}: {digest} != {expected_digest}")

        return DigestVerification(
            verified=True,
            digest=digest,
            match=match,
            expected_digest=expected_digest,
        )

    def get_layer_info(
        self,
        image_ref: str,
        credentials: RegistryCredentials | None = None,
    ) -> LayerReport:
        """List the layers of an image from its manifest."""
        image = parse_image_reference(image_ref)
        token = self.broker.get_token(image, credentials)
        manifest = self.client.get_manifest(image, token)

        return LayerReport(
            image=image,
            layers=[
                LayerInfo(
                    index=index,
                    digest=layer.digest,
                    size=layer.size,
                    media_type=layer.media_type,
                )
                for index, layer in enumerate(manifest.layers)
            ],
        )

    def list_tags(
        self,
        repository: str,
        credentials: RegistryCredentials | None = None,
    ) -> list[str]:
        """List tags of a repository (e.g. ``nginx`` or ``ghcr.io/org/app``)."""
        image = parse_image_reference(f"{repository}:latest")
        token = self.broker.get_token(image, credentials)
        return self.client.list_tags(image, token)

    @staticmethod
    def supported_registries() -> list[dict[str, Any]]:
        """Describe the registry families the broker knows how to authenticate."""
        return [dict(entry) for entry in SUPPORTED_REGISTRIES]
