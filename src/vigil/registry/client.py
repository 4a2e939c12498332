"""
Registry content API client.

Fetches manifests, config blobs and tag lists over the container
registry HTTP API v2. Every call is a single GET; failures are raised
immediately without retry.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any

from vigil.registry.auth import RegistryToken
from vigil.registry.manifest import ImageConfig, Manifest
from vigil.registry.reference import ImageReference

logger = logging.getLogger(__name__)


MANIFEST_MEDIA_TYPES = [
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
]

CONFIG_MEDIA_TYPES = [
    "application/vnd.docker.container.image.v1+json",
    "application/vnd.oci.image.config.v1+json",
]


class RegistryError(Exception):
    """Base exception for registry errors."""

    pass


class RegistryRequestError(RegistryError):
    """
    A registry call failed.

    Client-facing: the message names the failed call and carries the
    upstream error.
    """

    def __init__(self, message: str, url: str = "", status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ManifestFetchError(RegistryRequestError):
    """Raised when an image manifest cannot be fetched."""

    pass


class ConfigFetchError(RegistryRequestError):
    """Raised when an image config blob cannot be fetched."""

    pass


class TagListError(RegistryRequestError):
    """Raised when a repository tag list cannot be fetched."""

    pass


def build_headers(
    token: RegistryToken | None,
    accept: list[str] | None = None,
) -> dict[str, str]:
    """Build request headers for a registry call."""
    headers = {"Accept": ", ".join(accept or MANIFEST_MEDIA_TYPES)}
    if token is not None:
        headers["Authorization"] = token.authorization_header()
    return headers


class RegistryClient:
    """
    Client for the registry content-addressable API.

    Usage:
        client = RegistryClient(timeout=30)
        manifest = client.get_manifest(image, token)
        config = client.get_config(image, manifest.config.digest, token)
    """

    def __init__(self, timeout: float = 30.0, scheme: str = "https"):
        """
        Initialize RegistryClient.

        Args:
            timeout: Transport timeout in seconds
            scheme: URL scheme (https outside of tests)
        """
        self._timeout = timeout
        self._scheme = scheme

    def get_manifest(
        self,
        image: ImageReference,
        token: RegistryToken | None,
    ) -> Manifest:
        """
        Fetch an image manifest.

        Args:
            image: Image reference; its digest wins over its tag
            token: Access token or None for anonymous access

        Returns:
            Manifest

        Raises:
            ManifestFetchError: On network failure, non-2xx response or
                a malformed manifest
        """
        url = self._url(image, f"manifests/{image.reference}")
        data = self._get_json(
            url,
            build_headers(token, MANIFEST_MEDIA_TYPES),
            ManifestFetchError,
            "Failed to get image manifest",
        )
        try:
            return Manifest.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to get image manifest: malformed document from {url}")
            raise ManifestFetchError(
                f"Failed to get image manifest: malformed manifest ({e})", url=url
            ) from e

    def get_config(
        self,
        image: ImageReference,
        config_digest: str,
        token: RegistryToken | None,
    ) -> ImageConfig:
        """
        Fetch an image config blob.

        Raises:
            ConfigFetchError: On network failure, non-2xx response or
                a malformed config
        """
        url = self._url(image, f"blobs/{config_digest}")
        data = self._get_json(
            url,
            build_headers(token, CONFIG_MEDIA_TYPES),
            ConfigFetchError,
            "Failed to get image config",
        )
        try:
            return ImageConfig.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to get image config: malformed document from {url}")
            raise ConfigFetchError(
                f"Failed to get image config: malformed config ({e})", url=url
            ) from e

    def list_tags(
        self,
        image: ImageReference,
        token: RegistryToken | None,
    ) -> list[str]:
        """
        List the tags of an image's repository.

        Raises:
            TagListError: On network failure or non-2xx response
        """
        url = self._url(image, "tags/list")
        data = self._get_json(
            url,
            build_headers(token, ["application/json"]),
            TagListError,
            "Failed to list tags",
        )
        return data.get("tags") or []

    def _url(self, image: ImageReference, path: str) -> str:
        return f"{self._scheme}://{image.registry}/v2/{image.repository}/{path}"

    def _get_json(
        self,
        url: str,
        headers: dict[str, str],
        error_cls: type[RegistryRequestError],
        action: str,
    ) -> dict[str, Any]:
        """Issue a single GET and decode the JSON body."""
        request = urllib.request.Request(url, headers=headers, method="GET")
        logger.debug(f"GET {url}")

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as e:
            logger.error(f"{action}: HTTP {e.code} from {url}")
            raise error_cls(f"{action}: HTTP {e.code} {e.reason}", url=url, status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            logger.error(f"{action}: {reason}")
            raise error_cls(f"{action}: {reason}", url=url) from e

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"{action}: invalid JSON from {url}")
            raise error_cls(f"{action}: invalid JSON response ({e})", url=url) from e

        if not isinstance(data, dict):
            raise error_cls(f"{action}: unexpected response document", url=url)
        return data
