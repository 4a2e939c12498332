"""
Engine configuration for Mantissa Vigil.

Configuration is a tree of dataclasses that round-trips through plain
dictionaries, so it can be stored as JSON or YAML and overridden from
the environment.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any


class ConfigurationError(Exception):
    """Configuration could not be loaded or is invalid."""

    pass


@dataclass
class RegistryConfig:
    """
    Registry access settings.

    Attributes:
        http_timeout_seconds: Timeout for every registry and auth request
        gcr_token: Bearer token for Google Container Registry
        ghcr_token: Bearer token for GitHub Container Registry
        aws_region: Region used for ECR authorization calls
        docker_hub_auth_url: Docker Hub token endpoint
        default_token_ttl_seconds: Cache lifetime when the endpoint omits one
    """

    http_timeout_seconds: float = 30.0
    gcr_token: str = ""
    ghcr_token: str = ""
    aws_region: str = "us-east-1"
    docker_hub_auth_url: str = "https://auth.docker.io/token"
    default_token_ttl_seconds: int = 300

    def to_dict(self) -> dict[str, Any]:
        # Tokens are never written back out
        return {
            "http_timeout_seconds": self.http_timeout_seconds,
            "aws_region": self.aws_region,
            "docker_hub_auth_url": self.docker_hub_auth_url,
            "default_token_ttl_seconds": self.default_token_ttl_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegistryConfig:
        return cls(
            http_timeout_seconds=float(data.get("http_timeout_seconds", 30.0)),
            gcr_token=data.get("gcr_token", ""),
            ghcr_token=data.get("ghcr_token", ""),
            aws_region=data.get("aws_region", "us-east-1"),
            docker_hub_auth_url=data.get("docker_hub_auth_url", "https://auth.docker.io/token"),
            default_token_ttl_seconds=int(data.get("default_token_ttl_seconds", 300)),
        )


@dataclass
class MatchingConfig:
    """Package matching settings."""

    comparator: str = "numeric"

    def to_dict(self) -> dict[str, Any]:
        return {"comparator": self.comparator}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MatchingConfig:
        return cls(comparator=data.get("comparator", "numeric"))


@dataclass
class AlertingConfig:
    """
    Alert storage and classification settings.

    Attributes:
        backend: Alert store backend (memory, local)
        db_path: SQLite path for the local backend
        zero_day_hours: Maximum record age for the zero-day flag
        page_size: Default page size for alert listings
    """

    backend: str = "local"
    db_path: str = "~/.vigil/alerts.db"
    zero_day_hours: int = 48
    page_size: int = 50

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "db_path": self.db_path,
            "zero_day_hours": self.zero_day_hours,
            "page_size": self.page_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertingConfig:
        return cls(
            backend=data.get("backend", "local"),
            db_path=data.get("db_path", "~/.vigil/alerts.db"),
            zero_day_hours=int(data.get("zero_day_hours", 48)),
            page_size=int(data.get("page_size", 50)),
        )


@dataclass
class SweepConfig:
    """Matching sweep settings."""

    enabled: bool = True
    schedule: str = "rate(6 hours)"
    lookback_hours: int = 24
    record_limit: int = 500

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "schedule": self.schedule,
            "lookback_hours": self.lookback_hours,
            "record_limit": self.record_limit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SweepConfig:
        return cls(
            enabled=data.get("enabled", True),
            schedule=data.get("schedule", "rate(6 hours)"),
            lookback_hours=int(data.get("lookback_hours", 24)),
            record_limit=int(data.get("record_limit", 500)),
        )


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    format: str = "human"

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "format": self.format}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        return cls(
            level=data.get("level", "INFO"),
            format=data.get("format", "human"),
        )


@dataclass
class EngineConfiguration:
    """
    Complete engine configuration.

    Usage:
        config = EngineConfiguration.from_file("vigil.yaml")
        analyzer = ImageAnalyzer.from_config(config)
    """

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "registry": self.registry.to_dict(),
            "matching": self.matching.to_dict(),
            "alerting": self.alerting.to_dict(),
            "sweep": self.sweep.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfiguration:
        """
        Create from dictionary.

        Raises:
            ConfigurationError: A section has a value of the wrong type
        """
        try:
            return cls(
                registry=RegistryConfig.from_dict(data.get("registry", {})),
                matching=MatchingConfig.from_dict(data.get("matching", {})),
                alerting=AlertingConfig.from_dict(data.get("alerting", {})),
                sweep=SweepConfig.from_dict(data.get("sweep", {})),
                logging=LoggingConfig.from_dict(data.get("logging", {})),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, path: str) -> EngineConfiguration:
        """Load configuration from a JSON or YAML file."""
        path = os.path.expanduser(path)
        if path.endswith(".json"):
            load, parse_errors = json.load, (ValueError,)
        else:
            import yaml
            load, parse_errors = yaml.safe_load, (yaml.YAMLError,)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        except parse_errors as e:
            raise ConfigurationError(f"Cannot parse configuration file {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        return cls.from_dict(data or {})

    def save(self, path: str) -> None:
        """Save configuration to a JSON or YAML file."""
        path = os.path.expanduser(path)
        with open(path, "w", encoding="utf-8") as f:
            if path.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
            else:
                import yaml
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _env_number(name: str, convert: type) -> Any:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    try:
        return convert(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def load_config_from_env() -> EngineConfiguration:
    """
    Load configuration from environment variables.

    Environment variables:
        VIGIL_CONFIG_FILE: Path to configuration file (used as the base)
        VIGIL_HTTP_TIMEOUT: Registry request timeout in seconds
        VIGIL_SWEEP_SCHEDULE: Sweep schedule expression
        VIGIL_LOOKBACK_HOURS: Sweep lookback window in hours
        VIGIL_ALERT_DB: SQLite path for alert storage
        GCR_TOKEN: Google Container Registry bearer token
        GHCR_TOKEN: GitHub Container Registry bearer token
        AWS_REGION: Region for ECR authorization

    Returns:
        EngineConfiguration instance

    Raises:
        ConfigurationError: A variable has an invalid value
    """
    config_file = os.getenv("VIGIL_CONFIG_FILE")
    if config_file and os.path.exists(os.path.expanduser(config_file)):
        config = EngineConfiguration.from_file(config_file)
    else:
        config = EngineConfiguration()

    timeout = _env_number("VIGIL_HTTP_TIMEOUT", float)
    if timeout is not None:
        config.registry.http_timeout_seconds = timeout

    lookback = _env_number("VIGIL_LOOKBACK_HOURS", int)
    if lookback is not None:
        config.sweep.lookback_hours = lookback

    schedule = os.getenv("VIGIL_SWEEP_SCHEDULE")
    if schedule:
        config.sweep.schedule = schedule

    alert_db = os.getenv("VIGIL_ALERT_DB")
    if alert_db:
        config.alerting.db_path = alert_db

    config.registry.gcr_token = os.getenv("GCR_TOKEN", config.registry.gcr_token)
    config.registry.ghcr_token = os.getenv("GHCR_TOKEN", config.registry.ghcr_token)
    config.registry.aws_region = os.getenv("AWS_REGION", config.registry.aws_region)

    return config


def create_default_config() -> EngineConfiguration:
    """
    Create a default engine configuration.

    Returns:
        EngineConfiguration with sensible defaults
    """
    return EngineConfiguration()
