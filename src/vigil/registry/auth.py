"""
Registry authentication for Mantissa Vigil.

Obtains short-lived access tokens for container registries and caches
them per registry+repository scope. Auth failures are never fatal: the
broker logs a warning and returns None so that callers fall back to an
unauthenticated request.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from vigil.registry.reference import ImageReference, RegistryType, registry_type_for

logger = logging.getLogger(__name__)


DOCKER_HUB_AUTH_URL = "https://auth.docker.io/token"
DOCKER_HUB_SERVICE = "registry.docker.io"
DEFAULT_TOKEN_TTL_SECONDS = 300


class TokenKind(Enum):
    """Authorization scheme of a registry token."""

    BEARER = "Bearer"
    BASIC = "Basic"


@dataclass(frozen=True)
class RegistryToken:
    """An access token tagged with its authorization scheme."""

    value: str
    kind: TokenKind = TokenKind.BEARER

    @classmethod
    def bearer(cls, value: str) -> RegistryToken:
        return cls(value=value, kind=TokenKind.BEARER)

    @classmethod
    def basic(cls, username: str, password: str) -> RegistryToken:
        encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
        return cls(value=encoded, kind=TokenKind.BASIC)

    def authorization_header(self) -> str:
        """Render the value of an ``Authorization`` header."""
        return f"{self.kind.value} {self.value}"

    def __repr__(self) -> str:
        return f"RegistryToken(kind={self.kind.value}, value=***)"


@dataclass
class RegistryCredentials:
    """
    Caller-supplied registry credentials.

    Supplied per request and never persisted by the engine.
    """

    type: RegistryType = RegistryType.CUSTOM
    registry: str = ""
    username: str | None = None
    password: str | None = None
    token: str | None = None

    @property
    def has_basic(self) -> bool:
        """Whether a username/password pair is available."""
        return bool(self.username and self.password)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegistryCredentials:
        """Create from dictionary."""
        return cls(
            type=RegistryType.from_string(data.get("type", "custom")),
            registry=data.get("registry", ""),
            username=data.get("username"),
            password=data.get("password"),
            token=data.get("token"),
        )

    def __repr__(self) -> str:
        return (
            f"RegistryCredentials(type={self.type.value}, registry={self.registry!r}, "
            f"username={self.username!r})"
        )


@dataclass
class CachedToken:
    """Token cache entry, valid until ``expires_at`` on the cache clock."""

    key: str
    token: RegistryToken
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """
    Thread-safe token cache keyed by ``registry/repository``.

    A short global lock guards the entry table. Population for a key is
    serialized by a per-key lock so concurrent misses on the same scope
    issue a single network request, while misses on other keys proceed
    in parallel.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CachedToken] = {}
        self._key_locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> RegistryToken | None:
        """Return a valid cached token or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_valid(self._clock()):
                return entry.token
            del self._entries[key]
            return None

    def set(self, key: str, token: RegistryToken, ttl_seconds: float) -> None:
        """Store a token for ``ttl_seconds``."""
        with self._lock:
            self._entries[key] = CachedToken(
                key=key,
                token=token,
                expires_at=self._clock() + ttl_seconds,
            )

    def get_or_populate(
        self,
        key: str,
        loader: Callable[[], tuple[RegistryToken, float] | None],
    ) -> RegistryToken | None:
        """
        Return the cached token for ``key``, calling ``loader`` on a miss.

        Args:
            key: Cache key
            loader: Returns ``(token, ttl_seconds)`` or None; only invoked
                while holding the per-key lock

        Returns:
            Cached or freshly loaded token, None if the loader produced none
        """
        token = self.get(key)
        if token is not None:
            return token

        with self._key_lock(key):
            # Another thread may have populated the key while we waited
            token = self.get(key)
            if token is not None:
                return token

            loaded = loader()
            if loaded is None:
                return None

            token, ttl_seconds = loaded
            self.set(key, token, ttl_seconds)
            return token

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._key_locks.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _key_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock


class RegistryAuthBroker:
    """
    Obtains registry access tokens using registry-specific auth flows.

    Supported flows:
    - Docker Hub: pull-scoped bearer token from the public token endpoint,
      cached for the server-reported ``expires_in``
    - GCR / GHCR: caller token or configured environment token
    - ECR: caller token, or ``GetAuthorizationToken`` via boto3 (cached
      until the AWS-reported expiry)
    - Other registries: HTTP Basic from caller username/password

    Usage:
        broker = RegistryAuthBroker()
        token = broker.get_token(parse_image_reference("alpine:3.18"))
    """

    def __init__(
        self,
        gcr_token: str | None = None,
        ghcr_token: str | None = None,
        aws_region: str = "us-east-1",
        timeout: float = 30.0,
        cache: TokenCache | None = None,
        aws_session: Any | None = None,
        docker_hub_auth_url: str = DOCKER_HUB_AUTH_URL,
        default_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        """
        Initialize the broker.

        Args:
            gcr_token: Fallback token for gcr.io registries
            ghcr_token: Fallback token for ghcr.io
            aws_region: Region used for ECR when the host carries none
            timeout: Timeout in seconds for token endpoint requests
            cache: Token cache (a private one is created if None)
            aws_session: Optional boto3 session for ECR
            docker_hub_auth_url: Docker Hub token endpoint
            default_ttl_seconds: TTL used when the server reports none
        """
        self._gcr_token = gcr_token
        self._ghcr_token = ghcr_token
        self._aws_region = aws_region
        self._timeout = timeout
        self._cache = cache if cache is not None else TokenCache()
        self._aws_session = aws_session
        self._docker_hub_auth_url = docker_hub_auth_url
        self._default_ttl = default_ttl_seconds

    @property
    def cache(self) -> TokenCache:
        return self._cache

    def get_token(
        self,
        image: ImageReference,
        credentials: RegistryCredentials | None = None,
    ) -> RegistryToken | None:
        """
        Get an access token for an image's registry+repository.

        Args:
            image: Resolved image reference
            credentials: Optional caller-supplied credentials

        Returns:
            RegistryToken, or None to request anonymously
        """
        registry_type = registry_type_for(image.registry)
        if registry_type == RegistryType.CUSTOM and credentials is not None:
            registry_type = credentials.type

        try:
            if registry_type == RegistryType.DOCKER_HUB:
                return self._cache.get_or_populate(
                    image.cache_key,
                    lambda: self._fetch_docker_hub_token(image, credentials),
                )

            if registry_type == RegistryType.GCR:
                return self._caller_or_configured(credentials, self._gcr_token)

            if registry_type == RegistryType.GHCR:
                return self._caller_or_configured(credentials, self._ghcr_token)

            if registry_type == RegistryType.ECR:
                return self._get_ecr_token(image, credentials)

            if credentials is not None and credentials.has_basic:
                return RegistryToken.basic(credentials.username, credentials.password)

        except Exception as e:
            logger.warning(
                f"Failed to get {registry_type.value} token for {image.cache_key}: {e}"
            )
            return None

        return None

    def _caller_or_configured(
        self,
        credentials: RegistryCredentials | None,
        configured: str | None,
    ) -> RegistryToken | None:
        """Caller token first, then the environment-configured token."""
        if credentials is not None and credentials.token:
            return RegistryToken.bearer(credentials.token)
        if configured:
            return RegistryToken.bearer(configured)
        return None

    def _fetch_docker_hub_token(
        self,
        image: ImageReference,
        credentials: RegistryCredentials | None,
    ) -> tuple[RegistryToken, float]:
        """Request a pull-scoped token from the Docker Hub token endpoint."""
        query = urllib.parse.urlencode(
            {
                "service": DOCKER_HUB_SERVICE,
                "scope": f"repository:{image.repository}:pull",
            },
            safe=":/",
        )
        url = f"{self._docker_hub_auth_url}?{query}"

        headers = {"Accept": "application/json"}
        if credentials is not None and credentials.has_basic:
            basic = RegistryToken.basic(credentials.username, credentials.password)
            headers["Authorization"] = basic.authorization_header()

        request = urllib.request.Request(url, headers=headers)
        logger.debug(f"Requesting Docker Hub token for {image.repository}")

        with urllib.request.urlopen(request, timeout=self._timeout) as response:
            data = json.loads(response.read().decode())

        value = data.get("token") or data.get("access_token")
        if not value:
            raise ValueError("token endpoint returned no token")

        expires_in = data.get("expires_in") or self._default_ttl
        return RegistryToken.bearer(value), float(expires_in)

    def _get_ecr_token(
        self,
        image: ImageReference,
        credentials: RegistryCredentials | None,
    ) -> RegistryToken | None:
        """Caller-supplied ECR credentials, else a cached GetAuthorizationToken."""
        if credentials is not None and credentials.token:
            return RegistryToken(value=credentials.token, kind=TokenKind.BASIC)
        if credentials is not None and credentials.has_basic:
            return RegistryToken.basic(credentials.username, credentials.password)

        return self._cache.get_or_populate(
            image.cache_key,
            lambda: self._fetch_ecr_token(image),
        )

    def _fetch_ecr_token(self, image: ImageReference) -> tuple[RegistryToken, float]:
        """Call ECR GetAuthorizationToken for the registry's account."""
        import boto3

        # <account>.dkr.ecr.<region>.amazonaws.com
        host_parts = image.registry.split(".")
        account_id = host_parts[0]
        region = host_parts[3] if len(host_parts) > 4 else self._aws_region

        session = self._aws_session or boto3
        client = session.client("ecr", region_name=region)
        response = client.get_authorization_token(registryIds=[account_id])

        auth_data = response["authorizationData"][0]
        token = RegistryToken(value=auth_data["authorizationToken"], kind=TokenKind.BASIC)

        expires_at = auth_data.get("expiresAt")
        if isinstance(expires_at, datetime):
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            ttl = (expires_at - datetime.now(timezone.utc)).total_seconds()
        else:
            ttl = float(self._default_ttl)

        return token, max(ttl, 0.0)
