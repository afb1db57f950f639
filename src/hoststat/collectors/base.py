"""Source adapters and collectors.

This module defines the two halves of every metric kind:

- Source: knows how to acquire a fresh Sample (one per metric kind)
- Collector: owns one Source's polling state (previous Sample, current
  Metric) and exposes collect, save, encode and cleanup

Collector variants differ only in how they turn Samples into a Metric:

- RateCollector: per-second rates between consecutive Samples
- PerMinuteCollector: whole events per minute between consecutive Samples
- InstantCollector: a Metric straight from every Sample, no baseline
"""

from abc import ABC, abstractmethod
import asyncio
from datetime import UTC, datetime
from enum import Enum
import logging
from typing import Any

from pydantic import ValidationError
import psutil

from hoststat.collectors.rates import metric_from_sample, per_minute_from_pair, rate_from_pair
from hoststat.errors import (
    AcquisitionError,
    ComputationError,
    NoRecordError,
    NotConfiguredError,
    ParseError,
    SerializationError,
    TransportError,
)
from hoststat.models.base import Metric, MetricKind, Sample
from hoststat.storage.base import MetricStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class CollectorState(str, Enum):
    """Lifecycle of a collector.

    Attributes:
        UNINITIALIZED: No Sample acquired yet
        ARMED: A baseline Sample is held, no Metric yet
        READY: A Metric is available for save/encode
    """

    UNINITIALIZED = "uninitialized"
    ARMED = "armed"
    READY = "ready"


class Source(ABC):
    """Abstract base class for source adapters.

    Class Attributes:
        kind: The metric kind this source produces
        timeout: Maximum time allowed for a single acquisition in seconds

    Example:
        class LoadAverageSource(Source):
            kind = MetricKind.LOAD_AVERAGE

            async def acquire(self) -> Sample:
                one, five, fifteen = await asyncio.to_thread(psutil.getloadavg)
                return Sample(source=self.name, readings=(...))
    """

    kind: MetricKind
    timeout: float = 5.0

    def __init__(self, timeout: float | None = None) -> None:
        if timeout is not None:
            if timeout <= 0:
                raise ValueError("Timeout must be positive")
            self.timeout = timeout

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def acquire(self) -> Sample:
        """Acquire a fresh Sample.

        Raises:
            TransportError: If the source could not be read
            ParseError: If the source's payload could not be parsed
            NotConfiguredError: If the source is disabled
        """
        ...

    async def close(self) -> None:
        """Release resources held by the source (HTTP clients, sockets)."""


class Collector(ABC):
    """Abstract base class for collectors.

    A collector binds one Source to the rate calculation and to storage.
    Its state is only ever changed by its own collect() call.

    Class Attributes:
        tracks_previous: Whether Samples are kept as a baseline for the next one
    """

    tracks_previous: bool = True

    def __init__(self, source: Source) -> None:
        """Initialize the collector with no Sample and no Metric.

        Args:
            source: The source adapter this collector polls
        """
        self.source = source
        self._previous_sample: Sample | None = None
        self._current_metric: Metric | None = None
        self._pending = False
        self._last_collection: datetime | None = None
        self._consecutive_failures: int = 0
        self._total_collections: int = 0
        self._total_failures: int = 0

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def kind(self) -> MetricKind:
        return self.source.kind

    @property
    def previous_sample(self) -> Sample | None:
        """The baseline the next Sample will be differenced against."""
        return self._previous_sample

    @property
    def current_metric(self) -> Metric | None:
        """The most recently computed Metric."""
        return self._current_metric

    @property
    def state(self) -> CollectorState:
        if self._current_metric is not None:
            return CollectorState.READY
        if self._previous_sample is not None:
            return CollectorState.ARMED
        return CollectorState.UNINITIALIZED

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def stats(self) -> dict[str, Any]:
        """Get collector statistics.

        Returns:
            Dictionary with collection stats
        """
        return {
            "name": self.name,
            "state": self.state.value,
            "total_collections": self._total_collections,
            "total_failures": self._total_failures,
            "consecutive_failures": self._consecutive_failures,
            "last_collection": self._last_collection,
        }

    @abstractmethod
    def compute(self, previous: Sample | None, sample: Sample) -> Metric | None:
        """Derive a Metric from the new Sample and the previous one.

        Args:
            previous: The baseline Sample (None on the first acquisition)
            sample: The freshly acquired Sample

        Returns:
            The new Metric, or None if none can be computed yet

        Raises:
            ComputationError: If the Samples cannot be combined
        """
        ...

    async def acquire(self) -> Sample:
        """Acquire a Sample from the source, bounded by its timeout.

        Library exceptions escaping the source are converted into
        TransportError or ParseError here.

        Raises:
            AcquisitionError: If no Sample could be acquired
        """
        try:
            return await asyncio.wait_for(self.source.acquire(), timeout=self.source.timeout)
        except TimeoutError as e:
            raise TransportError(
                f"Acquisition timed out after {self.source.timeout}s",
                collector=self.name,
                cause=e,
            ) from e
        except AcquisitionError as e:
            if e.collector is None:
                e.collector = self.name
            raise
        except (OSError, psutil.Error) as e:
            raise TransportError("Failed to read source", collector=self.name, cause=e) from e
        except (ValidationError, ValueError, KeyError, IndexError) as e:
            raise ParseError("Failed to parse source", collector=self.name, cause=e) from e

    async def collect(self) -> None:
        """Acquire a new Sample and update the current Metric.

        On acquisition failure the stored state is left untouched, so the
        next successful Sample is still differenced against the old
        baseline. On success the new Sample always replaces the baseline,
        even if computing the Metric then fails.

        Raises:
            AcquisitionError: If the source failed
            ComputationError: If the Metric could not be computed
        """
        try:
            sample = await self.acquire()
        except NotConfiguredError:
            raise
        except AcquisitionError:
            self._record_failure()
            raise

        self._total_collections += 1
        self._last_collection = _utcnow()

        previous = self._previous_sample
        if self.tracks_previous:
            self._previous_sample = sample

        try:
            metric = self.compute(previous, sample)
        except ComputationError as e:
            if e.collector is None:
                e.collector = self.name
            self._record_failure(counted=False)
            raise

        self._consecutive_failures = 0
        if metric is not None:
            self._current_metric = metric
            self._pending = True

    def _record_failure(self, counted: bool = True) -> None:
        if counted:
            self._total_collections += 1
        self._consecutive_failures += 1
        self._total_failures += 1

    async def save(self, store: MetricStore, hostname: str) -> None:
        """Persist the current Metric.

        A no-op when no Metric exists yet or when the current Metric has
        already been written.

        Args:
            store: The store to write to
            hostname: Host identity stored with every row

        Raises:
            StorageWriteError: If any row failed to write
        """
        if self._current_metric is None or not self._pending:
            return

        await store.append(hostname, self._current_metric)
        self._pending = False

    def encode(self, indent: int | None = None) -> str:
        """Serialize the current Metric as JSON.

        Args:
            indent: Indentation for pretty output (compact if None)

        Raises:
            NoRecordError: If no Metric has been computed yet
            SerializationError: If the Metric could not be serialized
        """
        if self._current_metric is None:
            raise NoRecordError("No metric recorded yet", collector=self.name)

        try:
            return self._current_metric.model_dump_json(indent=indent)
        except ValueError as e:
            raise SerializationError(
                "Failed to serialize metric", collector=self.name, cause=e
            ) from e

    async def cleanup(
        self,
        store: MetricStore,
        cutoff: datetime,
        hostname: str | None = None,
    ) -> int:
        """Delete this source's rows older than the cutoff.

        Idempotent: running it again, or with no rows stored, is harmless.

        Returns:
            Number of rows deleted
        """
        deleted = await store.purge_older_than(self.name, cutoff, hostname)
        logger.debug("Purged %d %s rows older than %s", deleted, self.name, cutoff)
        return deleted


class RateCollector(Collector):
    """Collector reporting per-second rates between consecutive Samples."""

    def compute(self, previous: Sample | None, sample: Sample) -> Metric | None:
        if previous is None:
            return None
        return rate_from_pair(previous, sample)


class PerMinuteCollector(Collector):
    """Collector reporting whole events per minute between consecutive Samples."""

    def compute(self, previous: Sample | None, sample: Sample) -> Metric | None:
        if previous is None:
            return None
        return per_minute_from_pair(previous, sample)


class InstantCollector(Collector):
    """Collector for sources whose readings need no differencing.

    Every Sample yields a Metric directly, so the collector goes straight
    to READY and never keeps a baseline.
    """

    tracks_previous = False

    def compute(self, previous: Sample | None, sample: Sample) -> Metric | None:
        return metric_from_sample(sample)
