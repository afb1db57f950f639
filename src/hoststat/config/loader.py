"""Configuration loading and validation for hoststat.

This module provides:
- Pydantic models for configuration validation
- YAML config file discovery and loading
- Environment variable expansion in config values
- Overrides from the environment variables of earlier agent releases
- Merging of config file with defaults
- Clear, user-friendly error messages for config issues
- Periodic re-reading of the config file by the running agent
"""

from datetime import timedelta
from difflib import get_close_matches
import logging
import os
from pathlib import Path
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
import yaml

from hoststat.config.defaults import DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Base exception for configuration errors.

    Provides user-friendly error messages with context about what went wrong
    and suggestions for how to fix it.

    Attributes:
        message: The main error message
        file_path: Path to the config file (if applicable)
        line_number: Line number where the error occurred (if known)
        suggestion: Helpful suggestion for fixing the error
    """

    def __init__(
        self,
        message: str,
        *,
        file_path: str | None = None,
        line_number: int | None = None,
        column: int | None = None,
        suggestion: str | None = None,
        context_lines: list[str] | None = None,
    ) -> None:
        self.message = message
        self.file_path = file_path
        self.line_number = line_number
        self.column = column
        self.suggestion = suggestion
        self.context_lines = context_lines
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context and suggestions."""
        parts = []

        if self.file_path:
            location = f"Error in {self.file_path}"
            if self.line_number:
                location += f" line {self.line_number}"
            parts.append(location + ":")
        else:
            parts.append("Configuration error:")

        parts.append(f"  {self.message}")

        if self.context_lines and self.column:
            parts.append("")
            for line in self.context_lines:
                parts.append(f"    {line}")
            pointer = " " * (self.column + 3) + "^"
            parts.append(pointer)

        if self.suggestion:
            parts.append("")
            parts.append(f"  Suggestion: {self.suggestion}")

        return "\n".join(parts)


class ConfigSyntaxError(ConfigError):
    """Error for YAML syntax issues."""


class ConfigValidationError(ConfigError):
    """Error for configuration value validation failures."""


# Known valid configuration keys at each level for suggestions
VALID_KEYS: dict[tuple[str, ...], set[str]] = {
    (): {
        "report_interval",
        "max_metric_age",
        "cleanup_every",
        "hostname",
        "procfs_path",
        "database",
        "sources",
        "logging",
        "sentry",
    },
    ("database",): {"dsn", "min_connections", "max_connections", "command_timeout"},
    ("sources",): {
        "cpu",
        "load_average",
        "memory",
        "io",
        "filesystem",
        "network",
        "docker",
        "nginx",
        "postgres",
    },
    ("logging",): {"level", "file"},
    ("sentry",): {"dsn", "environment", "traces_sample_rate"},
}

SOURCE_KEYS = {"enabled", "timeout", "exclude_fstypes", "socket_path", "status_url", "monitor_database"}

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

# /proc/net/dev relative to the procfs mount
NET_DEV_SUFFIX = "/net/dev"

# Last rejected value per legacy variable, warned about once
_ignored_env: dict[str, str] = {}


def _suggest_key(unknown_key: str, valid_keys: set[str]) -> str | None:
    """Suggest a similar valid key for an unknown key.

    Args:
        unknown_key: The key that was not recognized
        valid_keys: Set of valid key names

    Returns:
        A suggestion message, or None if no good match found
    """
    matches = get_close_matches(unknown_key, list(valid_keys), n=1, cutoff=0.6)
    if matches:
        return f"Did you mean '{matches[0]}'?"
    return None


def _get_type_description(value: Any) -> str:
    """Get a human-readable type description for a value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return f'string "{value}"'
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _format_pydantic_error(
    error: ValidationError,
    config_data: dict[str, Any],
    file_path: str | None = None,
) -> ConfigValidationError:
    """Convert a Pydantic ValidationError to a user-friendly ConfigValidationError.

    Args:
        error: The Pydantic validation error
        config_data: The original config data for context
        file_path: Path to the config file

    Returns:
        A ConfigValidationError with helpful message and suggestions
    """
    errors = error.errors()
    if not errors:
        return ConfigValidationError("Configuration validation failed", file_path=file_path)

    first_error = errors[0]
    loc = first_error.get("loc", ())
    msg = first_error.get("msg", "Invalid value")
    error_type = first_error.get("type", "")
    ctx = first_error.get("ctx", {})

    path = ".".join(str(part) for part in loc)

    actual_value: Any = config_data
    for key in loc:
        if isinstance(actual_value, dict):
            actual_value = actual_value.get(key)
        elif isinstance(actual_value, list) and isinstance(key, int):
            actual_value = actual_value[key] if key < len(actual_value) else None
        else:
            break

    suggestion = None

    if error_type == "literal_error":
        expected = ctx.get("expected", "")
        message = f"Invalid value for '{path}': got {_get_type_description(actual_value)}"
        suggestion = f"Expected one of: {expected}"

    elif error_type in ("greater_than", "greater_than_equal", "less_than_equal"):
        limit = next(
            (ctx[bound] for bound in ("gt", "ge", "le") if ctx.get(bound) is not None), None
        )
        if isinstance(limit, float) and limit.is_integer():
            limit = int(limit)
        message = f"Value for '{path}' is out of range: {actual_value}"
        if error_type == "less_than_equal":
            suggestion = f"Value must be at most {limit}"
        elif error_type == "greater_than":
            suggestion = f"Value must be greater than {limit}"
        else:
            suggestion = f"Value must be at least {limit}"

    elif error_type in ("int_parsing", "float_parsing"):
        message = f"Invalid number for '{path}': got {_get_type_description(actual_value)}"
        suggestion = "Please provide a valid number"

    elif error_type.startswith("time_delta"):
        message = f"Invalid duration for '{path}': got {_get_type_description(actual_value)}"
        suggestion = "Use a number of seconds (e.g., 1209600 for 14 days)"

    elif error_type == "string_type":
        message = f"Expected string for '{path}': got {_get_type_description(actual_value)}"
        suggestion = "Please provide a text value"

    elif error_type in ("bool_type", "bool_parsing"):
        message = f"Expected boolean for '{path}': got {_get_type_description(actual_value)}"
        suggestion = "Use 'true' or 'false'"

    elif error_type == "list_type":
        message = f"Expected list for '{path}': got {_get_type_description(actual_value)}"
        suggestion = "Please provide a list (e.g., [tmpfs, squashfs])"

    elif error_type == "extra_forbidden":
        unknown_key = str(loc[-1]) if loc else "unknown"
        message = f"Unknown configuration key '{path}'"
        parent_path = tuple(str(part) for part in loc[:-1])
        if len(parent_path) == 2 and parent_path[0] == "sources":
            suggestion = _suggest_key(unknown_key, SOURCE_KEYS)
        elif parent_path in VALID_KEYS:
            suggestion = _suggest_key(unknown_key, VALID_KEYS[parent_path])

        if not suggestion:
            suggestion = "Check the documentation for valid configuration options"

    else:
        message = f"Invalid value for '{path}': {msg}"

    return ConfigValidationError(message, file_path=file_path, suggestion=suggestion)


def _format_yaml_error(
    error: yaml.YAMLError,
    file_path: str | None = None,
    content: str | None = None,
) -> ConfigSyntaxError:
    """Convert a YAML error to a user-friendly ConfigSyntaxError.

    Args:
        error: The YAML error
        file_path: Path to the config file
        content: The file content for context

    Returns:
        A ConfigSyntaxError with helpful message and context
    """
    line_number = None
    column = None
    context_lines = None
    suggestion = None

    mark = getattr(error, "problem_mark", None)
    if mark is not None:
        line_number = mark.line + 1  # YAML uses 0-indexed lines
        column = mark.column + 1

        if content:
            lines = content.splitlines()
            if 0 <= mark.line < len(lines):
                context_lines = [lines[mark.line]]

    error_str = str(error).lower()

    if "could not find expected ':'" in error_str:
        suggestion = "Check for missing colons after keys (e.g., 'key: value')"
    elif "found character" in error_str and "tab" in error_str:
        suggestion = "Use spaces instead of tabs for indentation"
    elif "mapping values are not allowed" in error_str:
        suggestion = "Check your indentation - make sure nested keys are properly indented"
    elif "found undefined alias" in error_str:
        suggestion = "Check that all YAML anchors (&name) are defined before aliases (*name)"

    message = "Invalid YAML syntax"
    problem = getattr(error, "problem", None)
    if problem:
        message = f"YAML syntax error: {problem}"

    return ConfigSyntaxError(
        message,
        file_path=file_path,
        line_number=line_number,
        column=column,
        context_lines=context_lines,
        suggestion=suggestion,
    )


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: The value to expand (string, dict, list, or other)

    Returns:
        The value with environment variables expanded
    """
    if isinstance(value, str):

        def replace_env_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            return match.group(0)  # Keep original if not found and no default

        return ENV_VAR_PATTERN.sub(replace_env_var, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Args:
        base: Base dictionary with defaults
        override: Dictionary with overriding values

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _positive_int(name: str, value: str) -> int | None:
    try:
        parsed = int(value)
    except ValueError:
        parsed = 0
    if parsed <= 0:
        if _ignored_env.get(name) != value:
            logger.warning("Ignoring %s=%r: expected a positive integer", name, value)
            _ignored_env[name] = value
        return None
    _ignored_env.pop(name, None)
    return parsed


def legacy_env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect overrides from the environment variables of earlier releases.

    Args:
        environ: Environment to read (os.environ if None)

    Returns:
        Nested dict suitable for deep_merge over the file config

    Raises:
        ConfigValidationError: If NETWORK_STATS_FILE does not point into a procfs mount
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    if "REPORT_INTERVAL" in env:
        interval = _positive_int("REPORT_INTERVAL", env["REPORT_INTERVAL"])
        if interval is not None:
            overrides["report_interval"] = interval

    if "MAX_METRICS_AGE" in env:
        age = _positive_int("MAX_METRICS_AGE", env["MAX_METRICS_AGE"])
        if age is not None:
            overrides["max_metric_age"] = age

    if env.get("HOST"):
        overrides["hostname"] = env["HOST"]

    if env.get("DATABASE_URL"):
        overrides["database"] = {"dsn": env["DATABASE_URL"]}

    sources: dict[str, Any] = {}
    if env.get("NGINX_STATUS_ENDPOINT"):
        sources["nginx"] = {"status_url": env["NGINX_STATUS_ENDPOINT"]}
    if env.get("DATABASE_TO_MONITOR"):
        sources["postgres"] = {"monitor_database": env["DATABASE_TO_MONITOR"]}
    if sources:
        overrides["sources"] = sources

    stats_file = env.get("NETWORK_STATS_FILE")
    if stats_file:
        if not stats_file.endswith(NET_DEV_SUFFIX):
            raise ConfigValidationError(
                f"NETWORK_STATS_FILE must end with '{NET_DEV_SUFFIX}': got '{stats_file}'",
                suggestion="Point it at the net/dev file of the mounted procfs, "
                "or set procfs_path instead",
            )
        overrides["procfs_path"] = stats_file[: -len(NET_DEV_SUFFIX)] or "/"

    return overrides


# Pydantic Configuration Models


class SourceConfig(BaseModel):
    """Configuration shared by every source."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    timeout: float = Field(default=5.0, gt=0, le=300)


class FilesystemSourceConfig(SourceConfig):
    """Filesystem usage source configuration."""

    exclude_fstypes: list[str] = Field(
        default_factory=lambda: ["squashfs", "devtmpfs", "tmpfs", "fuse"]
    )


class DockerSourceConfig(SourceConfig):
    """Docker container source configuration."""

    timeout: float = Field(default=10.0, gt=0, le=300)
    socket_path: str = "/var/run/docker.sock"


class NginxSourceConfig(SourceConfig):
    """Nginx stub status source configuration."""

    status_url: str | None = None


class PostgresSourceConfig(SourceConfig):
    """PostgreSQL statistics source configuration."""

    monitor_database: str | None = None


class SourcesConfig(BaseModel):
    """Per-source configuration."""

    model_config = ConfigDict(extra="forbid")

    cpu: SourceConfig = Field(default_factory=SourceConfig)
    load_average: SourceConfig = Field(default_factory=SourceConfig)
    memory: SourceConfig = Field(default_factory=SourceConfig)
    io: SourceConfig = Field(default_factory=SourceConfig)
    filesystem: FilesystemSourceConfig = Field(default_factory=FilesystemSourceConfig)
    network: SourceConfig = Field(default_factory=SourceConfig)
    docker: DockerSourceConfig = Field(default_factory=DockerSourceConfig)
    nginx: NginxSourceConfig = Field(default_factory=NginxSourceConfig)
    postgres: PostgresSourceConfig = Field(default_factory=PostgresSourceConfig)


class DatabaseConfig(BaseModel):
    """Metric storage connection configuration."""

    model_config = ConfigDict(extra="forbid")

    dsn: str | None = None
    min_connections: int = Field(default=1, ge=1, le=100)
    max_connections: int = Field(default=4, ge=1, le=100)
    command_timeout: float = Field(default=10.0, gt=0, le=600)

    @model_validator(mode="after")
    def validate_pool_size(self) -> "DatabaseConfig":
        """Ensure the pool can hold its minimum number of connections."""
        if self.max_connections < self.min_connections:
            raise ValueError("max_connections must be at least min_connections")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file: str | None = None


class SentryConfig(BaseModel):
    """Error tracking configuration."""

    model_config = ConfigDict(extra="forbid")

    dsn: str | None = None
    environment: str = "production"
    traces_sample_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class Config(BaseModel):
    """Main configuration model for hoststat.

    This model validates and holds all configuration for the agent.
    Configuration is loaded from YAML files and can be overridden by
    environment variables and CLI flags.
    """

    model_config = ConfigDict(extra="forbid")

    # Core settings
    report_interval: float = Field(default=60.0, gt=0, le=86400)
    max_metric_age: timedelta = Field(default=timedelta(days=14))
    cleanup_every: int = Field(default=100, ge=1)
    hostname: str | None = None
    procfs_path: str = "/proc"

    # Section configs
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sentry: SentryConfig = Field(default_factory=SentryConfig)

    @field_validator("max_metric_age")
    @classmethod
    def validate_max_metric_age(cls, v: timedelta) -> timedelta:
        """Reject retention horizons that would delete fresh rows."""
        if v <= timedelta(0):
            raise ValueError("max_metric_age must be positive")
        return v

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


def get_config_path(custom_path: str | None = None) -> Path | None:
    """Determine the configuration file path.

    Checks locations in this order:
    1. Custom path (if provided via --config flag)
    2. HOSTSTAT_CONFIG_PATH environment variable
    3. ~/.config/hoststat/config.yaml (XDG standard)
    4. /etc/hoststat/config.yaml (system-wide)

    Args:
        custom_path: Optional custom config path from CLI

    Returns:
        Path to config file if found, None otherwise

    Raises:
        FileNotFoundError: If the custom path does not exist
    """
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {custom_path}")

    env_path = os.environ.get("HOSTSTAT_CONFIG_PATH")
    if env_path:
        path = Path(env_path).expanduser()
        if path.exists():
            return path
        # Env var set but file not found - continue with defaults
        logger.warning("HOSTSTAT_CONFIG_PATH points to a missing file: %s", env_path)
        return None

    xdg_path = Path.home() / ".config" / "hoststat" / "config.yaml"
    if xdg_path.exists():
        return xdg_path

    system_path = Path("/etc/hoststat/config.yaml")
    if system_path.exists():
        return system_path

    return None


def load_config(
    config_path: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    use_legacy_env: bool = True,
) -> Config:
    """Load and validate configuration.

    Configuration is merged in this order (later overrides earlier):
    1. Default configuration
    2. Config file (if found)
    3. Legacy environment variables (REPORT_INTERVAL, DATABASE_URL, ...)
    4. CLI overrides (if provided)

    Environment variables in config values are expanded using ${VAR} syntax.

    Args:
        config_path: Optional custom config file path
        cli_overrides: Optional dict of CLI argument overrides
        use_legacy_env: Whether to apply the legacy environment variables

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If custom config path doesn't exist
        ConfigSyntaxError: If config file has invalid YAML syntax
        ConfigValidationError: If config values are invalid
    """
    config_data = DEFAULT_CONFIG.copy()
    resolved_path: Path | None = None

    path = get_config_path(config_path)
    if path:
        resolved_path = path
        file_content = path.read_text()
        try:
            file_config = yaml.safe_load(file_content) or {}
        except yaml.YAMLError as e:
            raise _format_yaml_error(e, str(path), file_content) from e

        if not isinstance(file_config, dict):
            raise ConfigValidationError(
                f"Expected a mapping at the top level: got {_get_type_description(file_config)}",
                file_path=str(path),
            )
        config_data = deep_merge(config_data, file_config)

    config_data = expand_env_vars(config_data)

    if use_legacy_env:
        config_data = deep_merge(config_data, legacy_env_overrides())

    if cli_overrides:
        config_data = deep_merge(config_data, cli_overrides)

    try:
        return Config(**config_data)
    except ValidationError as e:
        raise _format_pydantic_error(
            e,
            config_data,
            str(resolved_path) if resolved_path else None,
        ) from e


class ConfigReloader:
    """Re-reads the configuration on demand, keeping the last good one.

    The running agent calls get() once per cycle so edits to the config
    file (report interval, retention) take effect without a restart. A
    broken edit is logged and the previous configuration stays in force.
    """

    def __init__(
        self,
        initial: Config,
        config_path: str | None = None,
        cli_overrides: dict[str, Any] | None = None,
    ) -> None:
        self._config = initial
        self._config_path = config_path
        self._cli_overrides = cli_overrides

    @property
    def current(self) -> Config:
        return self._config

    def get(self) -> Config:
        """Reload the configuration, falling back to the last good one."""
        try:
            config = load_config(self._config_path, self._cli_overrides)
        except (ConfigError, OSError) as e:
            logger.warning("Keeping previous configuration: %s", e)
            return self._config

        if config.report_interval != self._config.report_interval:
            logger.info(
                "Report interval changed from %ss to %ss",
                self._config.report_interval,
                config.report_interval,
            )
        self._config = config
        return config
