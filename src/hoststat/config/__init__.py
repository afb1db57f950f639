"""Configuration module for hoststat.

This module provides:
- Pydantic models for configuration validation
- YAML config file loading and discovery
- Default configuration values
- Environment variable expansion and legacy variable overrides
- Clear error messages for config issues
"""

from hoststat.config.defaults import DEFAULT_CONFIG
from hoststat.config.loader import (
    Config,
    ConfigError,
    ConfigReloader,
    ConfigSyntaxError,
    ConfigValidationError,
    DatabaseConfig,
    DockerSourceConfig,
    FilesystemSourceConfig,
    LoggingConfig,
    NginxSourceConfig,
    PostgresSourceConfig,
    SentryConfig,
    SourceConfig,
    SourcesConfig,
    get_config_path,
    load_config,
)

__all__ = [
    "Config",
    "ConfigError",
    "ConfigReloader",
    "ConfigSyntaxError",
    "ConfigValidationError",
    "DatabaseConfig",
    "DockerSourceConfig",
    "FilesystemSourceConfig",
    "LoggingConfig",
    "NginxSourceConfig",
    "PostgresSourceConfig",
    "SentryConfig",
    "SourceConfig",
    "SourcesConfig",
    "DEFAULT_CONFIG",
    "get_config_path",
    "load_config",
]
