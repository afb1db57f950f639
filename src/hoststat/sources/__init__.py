"""Source adapters, one per metric kind.

build_collectors() composes the configured collectors in the order the
agent polls them.
"""

import logging

import psutil

from hoststat.collectors.base import Collector
from hoststat.config.loader import Config
from hoststat.sources.cpu import CpuCollector, CpuSource
from hoststat.sources.docker import DockerCollector, DockerSource
from hoststat.sources.filesystem import FilesystemCollector, FilesystemSource
from hoststat.sources.io import IoCollector, IoSource
from hoststat.sources.load_average import LoadAverageCollector, LoadAverageSource
from hoststat.sources.memory import MemoryCollector, MemorySource
from hoststat.sources.network import NetworkCollector, NetworkSource
from hoststat.sources.nginx import NginxCollector, NginxSource
from hoststat.sources.postgres import PostgresCollector, PostgresSource
from hoststat.storage.base import MetricStore
from hoststat.storage.postgres import PostgresStore

logger = logging.getLogger(__name__)


def build_collectors(config: Config, store: MetricStore | None = None) -> list[Collector]:
    """Create a collector for every enabled source.

    Args:
        config: Agent configuration
        store: The agent's store; the postgres source reads through it when
            it is a PostgresStore

    Returns:
        Collectors in polling order
    """
    if config.procfs_path != "/proc":
        # psutil reads /proc through this module-level setting on Linux
        psutil.PROCFS_PATH = config.procfs_path

    sources = config.sources
    pg_store = store if isinstance(store, PostgresStore) else None

    candidates: list[tuple[bool, Collector]] = [
        (sources.cpu.enabled, CpuCollector(CpuSource(timeout=sources.cpu.timeout))),
        (
            sources.load_average.enabled,
            LoadAverageCollector(LoadAverageSource(timeout=sources.load_average.timeout)),
        ),
        (sources.memory.enabled, MemoryCollector(MemorySource(timeout=sources.memory.timeout))),
        (sources.io.enabled, IoCollector(IoSource(timeout=sources.io.timeout))),
        (
            sources.filesystem.enabled,
            FilesystemCollector(
                FilesystemSource(
                    exclude_fstypes=sources.filesystem.exclude_fstypes,
                    timeout=sources.filesystem.timeout,
                )
            ),
        ),
        (
            sources.network.enabled,
            NetworkCollector(NetworkSource(timeout=sources.network.timeout)),
        ),
        (
            sources.docker.enabled,
            DockerCollector(
                DockerSource(
                    socket_path=sources.docker.socket_path, timeout=sources.docker.timeout
                )
            ),
        ),
        (
            sources.nginx.enabled,
            NginxCollector(
                NginxSource(status_url=sources.nginx.status_url, timeout=sources.nginx.timeout)
            ),
        ),
        (
            sources.postgres.enabled,
            PostgresCollector(
                PostgresSource(
                    store=pg_store,
                    database=sources.postgres.monitor_database,
                    timeout=sources.postgres.timeout,
                )
            ),
        ),
    ]

    collectors = [collector for enabled, collector in candidates if enabled]
    disabled = [collector.name for enabled, collector in candidates if not enabled]
    if disabled:
        logger.info("Disabled sources: %s", ", ".join(disabled))
    return collectors


__all__ = [
    "CpuCollector",
    "CpuSource",
    "DockerCollector",
    "DockerSource",
    "FilesystemCollector",
    "FilesystemSource",
    "IoCollector",
    "IoSource",
    "LoadAverageCollector",
    "LoadAverageSource",
    "MemoryCollector",
    "MemorySource",
    "NetworkCollector",
    "NetworkSource",
    "NginxCollector",
    "NginxSource",
    "PostgresCollector",
    "PostgresSource",
    "build_collectors",
]
