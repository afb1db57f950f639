"""Base Pydantic models for hoststat data types.

This module defines the data every collector works with:
- MetricKind: The closed set of metric kinds the agent knows about
- Reading: One keyed group of counters and gauges inside a Sample
- Sample: Immutable, timestamped raw reading from one source
- MetricEntry: One keyed group of derived values inside a Metric
- Metric: Immutable, reporting-ready values derived from one or two Samples
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

Number = int | float


class MetricKind(str, Enum):
    """Metric kinds, one per source adapter.

    Values double as collector names and as storage table suffixes.
    """

    CPU = "cpu"
    LOAD_AVERAGE = "load_average"
    MEMORY = "memory"
    IO = "io"
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    DOCKER = "docker"
    NGINX = "nginx"
    POSTGRES = "postgres"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class MetricData(BaseModel):
    """Base class for Samples and Metrics.

    Attributes:
        timestamp: When the data was taken (UTC, timezone-aware)
        source: Name of the source that produced it
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    timestamp: datetime = Field(default_factory=_utcnow)
    source: str = Field(..., min_length=1, description="Data source identifier")

    @field_validator("timestamp")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC so samples stay comparable."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class Reading(BaseModel):
    """A keyed group of values inside a Sample.

    Attributes:
        key: What the values describe (device, cpu index, container, table)
        labels: Descriptive strings carried through to storage
        counters: Cumulative, monotonically non-decreasing values
        gauges: Absolute values that need no differencing
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(..., min_length=1)
    labels: dict[str, str] = Field(default_factory=dict)
    counters: dict[str, Number] = Field(default_factory=dict)
    gauges: dict[str, Number] = Field(default_factory=dict)

    @field_validator("counters")
    @classmethod
    def validate_counters(cls, v: dict[str, Number]) -> dict[str, Number]:
        """Cumulative counters are never negative."""
        for name, value in v.items():
            if value < 0:
                raise ValueError(f"Counter '{name}' must be non-negative, got {value}")
        return v


class Sample(MetricData):
    """Raw, point-in-time reading from one source.

    Produced fresh on every collect call and owned by the collector that
    fetched it until the next Sample supersedes it.
    """

    readings: tuple[Reading, ...] = ()

    @field_validator("readings")
    @classmethod
    def validate_unique_keys(cls, v: tuple[Reading, ...]) -> tuple[Reading, ...]:
        """Reading keys identify what is being paired and must be unique."""
        seen: set[str] = set()
        for reading in v:
            if reading.key in seen:
                raise ValueError(f"Duplicate reading key '{reading.key}'")
            seen.add(reading.key)
        return v

    @property
    def keys(self) -> list[str]:
        """Return reading keys in sample order."""
        return [reading.key for reading in self.readings]

    def get(self, key: str) -> Reading | None:
        """Get a reading by key."""
        for reading in self.readings:
            if reading.key == key:
                return reading
        return None


class MetricEntry(BaseModel):
    """A keyed group of derived values inside a Metric."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str
    labels: dict[str, str] = Field(default_factory=dict)
    values: dict[str, Number] = Field(default_factory=dict)


class Metric(MetricData):
    """Reporting-ready values (rates, deltas or absolute quantities).

    The timestamp is the timestamp of the newest Sample it was derived from.
    """

    entries: tuple[MetricEntry, ...] = ()

    def get(self, key: str) -> MetricEntry | None:
        """Get an entry by key."""
        for entry in self.entries:
            if entry.key == key:
                return entry
        return None
