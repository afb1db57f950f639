"""Sentry SDK integration for hoststat.

This module provides:
- Sentry initialization with asyncio support (only when a DSN is configured)
- Logging integration (errors forwarded to Sentry)
- Agent context and tags
- Collector error capture

Usage:
    from hoststat.sentry import init_sentry, set_agent_context, capture_collector_error

    if init_sentry(config.sentry):
        set_agent_context(hostname="web-1", collectors=["cpu", "memory"])
        scheduler.add_error_callback(capture_collector_error)
"""

from __future__ import annotations

import logging
import platform
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from hoststat import __version__
from hoststat.config.loader import SentryConfig


def init_sentry(config: SentryConfig) -> bool:
    """Initialize Sentry SDK with hoststat-specific configuration.

    Configures Sentry with:
    - AsyncioIntegration for async task error capture
    - LoggingIntegration for capturing log messages
    - Default tags for filtering

    Args:
        config: Sentry section of the agent configuration

    Returns:
        True if Sentry was initialized, False if no DSN is configured
    """
    if not config.dsn:
        return False

    sentry_sdk.init(
        dsn=config.dsn,
        traces_sample_rate=config.traces_sample_rate,
        send_default_pii=False,  # Don't send personally identifiable info
        environment=config.environment,
        release=f"hoststat@{__version__}",
        integrations=[
            AsyncioIntegration(),
            LoggingIntegration(
                level=logging.INFO,  # Capture INFO+ as breadcrumbs
                event_level=logging.ERROR,
            ),
        ],
        before_send=_before_send,
    )

    sentry_sdk.set_tag("app.version", __version__)
    sentry_sdk.set_tag("python.version", platform.python_version())
    sentry_sdk.set_tag("os.name", platform.system())
    sentry_sdk.set_tag("arch", platform.machine())
    return True


def _before_send(
    event: dict[str, Any],
    hint: dict[str, Any],
) -> dict[str, Any] | None:
    """Drop events for interrupts; send everything else unchanged."""
    if "exc_info" in hint:
        exc_type, _, _ = hint["exc_info"]
        if exc_type is KeyboardInterrupt:
            return None
    return event


def set_agent_context(
    *,
    hostname: str,
    collectors: list[str],
    report_interval: float | None = None,
    config_path: str | None = None,
) -> None:
    """Set agent-specific context for error tracking.

    Args:
        hostname: Host identity the agent reports as
        collectors: Names of the active collectors
        report_interval: Seconds between polling cycles
        config_path: Path to config file if custom
    """
    context: dict[str, Any] = {
        "hostname": hostname,
        "collectors": collectors,
        "collector_count": len(collectors),
    }
    if report_interval is not None:
        context["report_interval"] = report_interval
    if config_path is not None:
        context["config_path"] = config_path
        sentry_sdk.set_tag("hoststat.custom_config", "true")

    sentry_sdk.set_tag("hoststat.hostname", hostname)
    sentry_sdk.set_context("hoststat", context)


def capture_collector_error(
    collector_name: str,
    error: Exception,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Capture an error from a collector with context.

    Args:
        collector_name: Name of the collector that failed
        error: The exception that occurred
        extra: Additional context to include
    """
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("collector", collector_name)
        scope.set_context("collector_error", {
            "collector": collector_name,
            "error_type": type(error).__name__,
            **(extra or {}),
        })
        sentry_sdk.capture_exception(error)
