"""Abstract base class for metric stores.

A store appends Metric entries as rows, deletes rows older than a
retention cutoff, and answers liveness pings. Rows are independent: every
entry of a Metric is written by its own statement, concurrently with its
siblings.
"""

from abc import ABC, abstractmethod
import asyncio
from datetime import datetime
import logging

from hoststat.errors import PersistenceError, StorageWriteError
from hoststat.models.base import Metric, MetricEntry

logger = logging.getLogger(__name__)


class MetricStore(ABC):
    """Abstract base class for persistence adapters.

    Subclasses implement the per-row write, the purge and the connection
    handling; append() fans a Metric out into concurrent row writes.
    """

    name: str = "unnamed_store"

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection to storage.

        Raises:
            StorageUnavailableError: If storage cannot be reached
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call when not connected."""
        ...

    async def reconnect(self) -> None:
        """Drop the current connection and open a new one.

        Raises:
            StorageUnavailableError: If storage cannot be reached
        """
        await self.close()
        await self.connect()

    @abstractmethod
    async def ping(self) -> bool:
        """Issue a trivial round-trip and report whether it succeeded."""
        ...

    @abstractmethod
    async def write_entry(self, hostname: str, metric: Metric, entry: MetricEntry) -> None:
        """Write a single Metric entry as one row.

        Raises:
            PersistenceError: If the row could not be written
        """
        ...

    @abstractmethod
    async def purge_older_than(
        self,
        source: str,
        cutoff: datetime,
        hostname: str | None = None,
    ) -> int:
        """Delete rows of a source older than the cutoff.

        Args:
            source: Source whose rows to delete
            cutoff: Rows with an older timestamp are deleted
            hostname: Restrict deletion to this host (all hosts if None)

        Returns:
            Number of rows deleted
        """
        ...

    async def append(self, hostname: str, metric: Metric) -> int:
        """Write every entry of a Metric concurrently.

        A failing row never cancels its siblings; once all writes have
        finished, any failure is raised as StorageWriteError.

        Args:
            hostname: Host identity stored with every row
            metric: The Metric to persist

        Returns:
            Number of rows written

        Raises:
            StorageWriteError: If any row failed to write
        """
        if not metric.entries:
            return 0

        results = await asyncio.gather(
            *(self.write_entry(hostname, metric, entry) for entry in metric.entries),
            return_exceptions=True,
        )

        failures: list[Exception] = []
        for result in results:
            if isinstance(result, Exception):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result

        if failures:
            for failure in failures[1:]:
                logger.debug("Additional %s row failure: %s", metric.source, failure)
            cause = failures[0]
            if isinstance(cause, PersistenceError) and cause.cause is not None:
                cause = cause.cause
            raise StorageWriteError(
                f"{len(failures)} of {len(results)} rows failed to write",
                collector=metric.source,
                cause=cause,
            )

        return len(results)
