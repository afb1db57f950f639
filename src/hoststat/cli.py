"""Command-line interface for hoststat.

This module provides:
- Typer-based CLI application
- Config file loading with CLI overrides
- Logging and error tracking setup
- The agent loop (``run``) and a storage-free one-off (``snapshot``)

Usage:
    hoststat run                 # Poll every source and write to PostgreSQL
    hoststat snapshot            # Collect twice and print each metric as JSON
    hoststat --version           # Show version and exit

Examples:
    # Run the agent against a database
    DATABASE_URL=postgresql://agent@db/metrics hoststat run

    # Run ten cycles five seconds apart, with debug logging
    hoststat run --interval 5 --cycles 10 --debug

    # Show what the agent would store for cpu and network
    hoststat snapshot --collector cpu --collector network --pretty
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Any

from rich.console import Console
from rich.logging import RichHandler
import typer

from hoststat import __version__
from hoststat.collectors.base import Collector
from hoststat.collectors.scheduler import PollingScheduler
from hoststat.config import Config, ConfigError, ConfigReloader, LoggingConfig, load_config
from hoststat.errors import HostStatError, NotConfiguredError, StorageUnavailableError
from hoststat.hostname import get_hostname
from hoststat.sentry import capture_collector_error, init_sentry, set_agent_context
from hoststat.sources import build_collectors
from hoststat.storage import PostgresStore

logger = logging.getLogger(__name__)

# Create the main Typer app
app = typer.Typer(
    name="hoststat",
    help="hoststat - host and service telemetry agent",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

# Diagnostics go to stderr; snapshot output goes to stdout
console = Console(stderr=True)
out = Console()


def version_callback(value: bool) -> None:
    """Display version and exit."""
    if value:
        out.print(f"hoststat version {__version__}")
        raise typer.Exit()


ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to custom config file",
        envvar="HOSTSTAT_CONFIG_PATH",
        exists=False,  # We handle existence check ourselves
    ),
]

IntervalOption = Annotated[
    float | None,
    typer.Option(
        "--interval",
        "-i",
        help="Seconds between polling cycles (overrides report_interval)",
        min=0.1,
        max=86400,
    ),
]

DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug",
        help="Enable debug logging",
    ),
]

VersionOption = Annotated[
    bool | None,
    typer.Option(
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
]


def build_cli_overrides(interval: float | None = None) -> dict[str, Any]:
    """Build configuration overrides from CLI arguments.

    Args:
        interval: Seconds between polling cycles

    Returns:
        Dict of overrides to merge over the loaded configuration
    """
    overrides: dict[str, Any] = {}
    if interval is not None:
        overrides["report_interval"] = interval
    return overrides


def load_cli_config(config: Path | None, overrides: dict[str, Any]) -> Config:
    """Load configuration, exiting with a readable message on failure."""
    try:
        return load_config(config_path=str(config) if config else None, cli_overrides=overrides)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e


def setup_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Configure the root logger.

    Logs go to the console through rich, or to a plain file when
    ``logging.file`` is set.
    """
    level = logging.DEBUG if debug else getattr(logging, config.level)

    handler: logging.Handler
    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    else:
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logging.basicConfig(level=level, handlers=[handler], force=True)
    # Per-request lines from httpx are too chatty at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


async def run_agent(
    config: Config,
    reloader: ConfigReloader,
    max_cycles: int | None = None,
    sentry_enabled: bool = False,
    config_path: str | None = None,
) -> None:
    """Connect to storage and poll until cancelled.

    Raises:
        StorageUnavailableError: If storage is unreachable at startup or is
            lost and cannot be reconnected
    """
    store = PostgresStore(config.database)
    await store.connect()

    hostname = get_hostname(config.hostname, config.procfs_path)
    scheduler = PollingScheduler(store, hostname, reloader.get)
    for collector in build_collectors(config, store):
        scheduler.register(collector)

    if sentry_enabled:
        scheduler.add_error_callback(capture_collector_error)
        set_agent_context(
            hostname=hostname,
            collectors=scheduler.list_collectors(),
            report_interval=config.report_interval,
            config_path=config_path,
        )

    logger.info(
        "Reporting as %s every %ss: %s",
        hostname,
        config.report_interval,
        ", ".join(scheduler.list_collectors()),
    )
    try:
        await scheduler.run(max_cycles)
    finally:
        await scheduler.close()
        await store.close()


async def _snapshot_collect(collectors: list[Collector]) -> None:
    for collector in collectors:
        try:
            await collector.collect()
        except NotConfiguredError as e:
            logger.debug("Skipping %s: %s", collector.name, e.message)
        except HostStatError as e:
            logger.warning("Failed to collect %s metric: %s", collector.name, e)


async def take_snapshot(
    config: Config,
    wait: float,
    names: list[str] | None = None,
) -> list[Collector]:
    """Collect twice, ``wait`` seconds apart, without writing anything.

    The postgres source is only polled when a database DSN is configured.

    Returns:
        The collectors, holding their latest Metric
    """
    pg_store: PostgresStore | None = None
    if config.database.dsn and config.sources.postgres.monitor_database:
        pg_store = PostgresStore(config.database)
        try:
            await pg_store.connect()
        except StorageUnavailableError as e:
            logger.warning("Postgres source unavailable: %s", e)
            pg_store = None

    collectors = build_collectors(config, pg_store)
    if names:
        unknown = set(names) - {c.name for c in collectors}
        if unknown:
            logger.warning("Unknown or disabled collectors: %s", ", ".join(sorted(unknown)))
        collectors = [c for c in collectors if c.name in names]

    try:
        await _snapshot_collect(collectors)
        await asyncio.sleep(wait)
        await _snapshot_collect(collectors)
    finally:
        for collector in collectors:
            await collector.source.close()
        if pg_store is not None:
            await pg_store.close()

    return collectors


@app.callback()
def main(version: VersionOption = None) -> None:
    """hoststat - host and service telemetry agent.

    Samples CPU, memory, disk, filesystem, network, Docker, nginx and
    PostgreSQL counters on a fixed interval and stores per-interval rates
    in PostgreSQL.
    """


@app.command("run")
def run_command(
    config: ConfigOption = None,
    interval: IntervalOption = None,
    cycles: Annotated[
        int | None,
        typer.Option("--cycles", "-n", help="Stop after this many cycles", min=1),
    ] = None,
    debug: DebugOption = False,
) -> None:
    """Run the agent, writing every metric to PostgreSQL."""
    overrides = build_cli_overrides(interval=interval)
    cfg = load_cli_config(config, overrides)
    setup_logging(cfg.logging, debug)
    sentry_enabled = init_sentry(cfg.sentry)

    config_path = str(config) if config else None
    reloader = ConfigReloader(cfg, config_path=config_path, cli_overrides=overrides)
    try:
        asyncio.run(run_agent(cfg, reloader, cycles, sentry_enabled, config_path))
    except StorageUnavailableError as e:
        # Sentry receives this through its logging integration
        logger.error("%s. Exiting... Hopefully we will be restarted.", e)
        raise typer.Exit(1) from e


@app.command("snapshot")
def snapshot_command(
    config: ConfigOption = None,
    collector: Annotated[
        list[str] | None,
        typer.Option("--collector", "-C", help="Only run these collectors (repeatable)"),
    ] = None,
    wait: Annotated[
        float,
        typer.Option("--wait", "-w", help="Seconds between the two samples", min=0.1, max=3600),
    ] = 1.0,
    pretty: Annotated[
        bool,
        typer.Option("--pretty/--compact", help="Pretty-print each metric"),
    ] = False,
    debug: DebugOption = False,
) -> None:
    """Collect twice and print each collector's metric as JSON (nothing is stored)."""
    cfg = load_cli_config(config, {})
    setup_logging(cfg.logging, debug)

    collectors = asyncio.run(take_snapshot(cfg, wait, collector))

    printed = 0
    for item in collectors:
        try:
            encoded = item.encode(indent=2 if pretty else None)
        except HostStatError as e:
            logger.debug("No output for %s: %s", item.name, e)
            continue
        if pretty:
            out.rule(item.name)
            out.print_json(encoded)
        else:
            out.print(encoded, soft_wrap=True, markup=False, highlight=False)
        printed += 1

    if printed == 0:
        console.print("[red]Error:[/red] no collector produced a metric")
        raise typer.Exit(1)
