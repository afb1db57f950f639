"""Polling scheduler driving every collector on a fixed cadence.

One cycle is:

    sleep(report_interval) -> check storage -> collect/save every collector
        -> cleanup every collector (every ``cleanup_every`` cycles)

Key features:
- Collectors run in registration order, one after the other
- Independent failure handling (one collector's failure doesn't affect others)
- One storage reconnect attempt per cycle; a second failure is fatal
- Age-based retention pruning, run concurrently across collectors
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
import logging
from typing import Any

from hoststat.collectors.base import Collector
from hoststat.config.loader import Config
from hoststat.errors import HostStatError, NotConfiguredError, StorageUnavailableError
from hoststat.storage.base import MetricStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


@dataclass
class SchedulerStats:
    """Statistics about the scheduler's progress.

    Attributes:
        cycles: Number of completed polling cycles
        collect_failures: Failed collect() calls (not-configured excluded)
        save_failures: Failed save() calls
        cleanups: Number of cleanup passes run
        cleanup_failures: Failed per-collector cleanups
        reconnects: Successful storage reconnects
    """

    cycles: int = 0
    collect_failures: int = 0
    save_failures: int = 0
    cleanups: int = 0
    cleanup_failures: int = 0
    reconnects: int = 0


# Invoked with the collector name and the error for every reported failure
ErrorCallback = Callable[[str, HostStatError], None]


class PollingScheduler:
    """Scheduler running every registered collector once per cycle.

    Example:
        scheduler = PollingScheduler(store, "web-1", reloader.get)
        scheduler.register(cpu_collector)
        scheduler.register(memory_collector)

        await scheduler.run()
    """

    def __init__(
        self,
        store: MetricStore,
        hostname: str,
        config_provider: Callable[[], Config],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Store every collector saves to and cleans up
            hostname: Host identity written with every row
            config_provider: Returns the current configuration; called once per cycle
            sleep: Coroutine function used to wait between cycles
            clock: Returns the current time (used for retention cutoffs)
        """
        self.store = store
        self.hostname = hostname
        self._config_provider = config_provider
        self._sleep = sleep
        self._clock = clock
        self._collectors: dict[str, Collector] = {}
        self._error_callbacks: list[ErrorCallback] = []
        self.stats = SchedulerStats()

    def register(self, collector: Collector) -> None:
        """Register a collector. Collectors run in registration order.

        Raises:
            ValueError: If a collector with the same name is already registered
        """
        if collector.name in self._collectors:
            raise ValueError(f"Collector '{collector.name}' is already registered")
        self._collectors[collector.name] = collector

    def get_collector(self, name: str) -> Collector | None:
        return self._collectors.get(name)

    def list_collectors(self) -> list[str]:
        """Get the names of all registered collectors, in run order."""
        return list(self._collectors.keys())

    def add_error_callback(self, callback: ErrorCallback) -> None:
        """Add a callback invoked for every collector failure that gets logged.

        Not-configured sources are not reported.
        """
        self._error_callbacks.append(callback)

    def _report(self, name: str, error: HostStatError) -> None:
        for callback in self._error_callbacks:
            try:
                callback(name, error)
            except Exception:
                logger.exception("Error callback failed for collector '%s'", name)

    async def _collect(self, collector: Collector) -> bool:
        try:
            await collector.collect()
        except NotConfiguredError as e:
            logger.debug("Skipping %s: %s", collector.name, e.message)
            return False
        except HostStatError as e:
            self.stats.collect_failures += 1
            logger.warning("Failed to collect %s metric: %s", collector.name, e)
            self._report(collector.name, e)
            return False
        except Exception as e:
            self.stats.collect_failures += 1
            logger.exception("Unexpected error collecting %s metric", collector.name)
            self._report(
                collector.name,
                HostStatError("Unexpected error", collector=collector.name, cause=e),
            )
            return False
        return True

    async def prime(self) -> None:
        """Collect once from every collector without saving.

        Gives rate collectors their baseline so the first cycle already
        yields a Metric.
        """
        for collector in self._collectors.values():
            await self._collect(collector)

    async def check_storage(self) -> None:
        """Make sure storage answers, reconnecting at most once.

        Raises:
            StorageUnavailableError: If storage is still unreachable after
                one reconnect attempt
        """
        if await self.store.ping():
            return

        logger.warning("Storage connection is not live, reconnecting...")
        try:
            await self.store.reconnect()
        except StorageUnavailableError as e:
            raise StorageUnavailableError(
                "Reconnect to storage failed", cause=e.cause or e
            ) from e

        if not await self.store.ping():
            raise StorageUnavailableError("Storage connection is not live after reconnect")

        self.stats.reconnects += 1
        logger.info("Reconnected to storage")

    async def poll_collector(self, collector: Collector) -> None:
        """Collect and then save a single collector, logging any failure."""
        if not await self._collect(collector):
            return

        try:
            await collector.save(self.store, self.hostname)
        except HostStatError as e:
            self.stats.save_failures += 1
            logger.warning("Failed to save %s metric: %s", collector.name, e)
            self._report(collector.name, e)
        except Exception as e:
            self.stats.save_failures += 1
            logger.exception("Unexpected error saving %s metric", collector.name)
            self._report(
                collector.name,
                HostStatError("Unexpected error", collector=collector.name, cause=e),
            )

    async def poll_once(self) -> None:
        """Run collect then save on every collector, in registration order."""
        for collector in self._collectors.values():
            await self.poll_collector(collector)

    async def cleanup_all(self, config: Config | None = None) -> int:
        """Delete rows older than the retention horizon for every collector.

        The cutoff is computed once and shared by all collectors; the
        per-collector deletes run concurrently.

        Returns:
            Total number of rows deleted
        """
        if config is None:
            config = self._config_provider()
        cutoff = self._clock() - config.max_metric_age
        collectors = list(self._collectors.values())

        results = await asyncio.gather(
            *(c.cleanup(self.store, cutoff, self.hostname) for c in collectors),
            return_exceptions=True,
        )

        deleted = 0
        for collector, result in zip(collectors, results, strict=True):
            if isinstance(result, HostStatError):
                self.stats.cleanup_failures += 1
                logger.warning("%s metric cleanup failed: %s", collector.name, result)
                self._report(collector.name, result)
            elif isinstance(result, Exception):
                self.stats.cleanup_failures += 1
                logger.warning("%s metric cleanup failed: %r", collector.name, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                deleted += result

        self.stats.cleanups += 1
        logger.info("Retention cleanup removed %d rows older than %s", deleted, cutoff)
        return deleted

    async def run(self, max_cycles: int | None = None) -> None:
        """Prime the collectors and poll until cancelled.

        Args:
            max_cycles: Stop after this many cycles (run forever if None)

        Raises:
            StorageUnavailableError: If storage is lost and cannot be reconnected
        """
        await self.prime()
        logger.info("Ready, polling %d collectors", len(self._collectors))

        while max_cycles is None or self.stats.cycles < max_cycles:
            config = self._config_provider()
            await self._sleep(config.report_interval)

            await self.check_storage()
            await self.poll_once()

            self.stats.cycles += 1
            if self.stats.cycles % config.cleanup_every == 0:
                await self.cleanup_all(config)

    async def close(self) -> None:
        """Release every collector's source."""
        for collector in self._collectors.values():
            try:
                await collector.source.close()
            except Exception as e:
                logger.debug("Error closing %s source: %s", collector.name, e)
