"""
Configuration for Mantissa Vigil.
"""

from vigil.config.settings import (
    AlertingConfig,
    ConfigurationError,
    EngineConfiguration,
    LoggingConfig,
    MatchingConfig,
    RegistryConfig,
    SweepConfig,
    create_default_config,
    load_config_from_env,
)

__all__ = [
    "AlertingConfig",
    "ConfigurationError",
    "EngineConfiguration",
    "LoggingConfig",
    "MatchingConfig",
    "RegistryConfig",
    "SweepConfig",
    "create_default_config",
    "load_config_from_env",
]
