"""In-process metric store.

Keeps rows in memory. Used by the snapshot command, which never touches a
database, and as the storage double in tests.
"""

from dataclasses import dataclass, field
from datetime import datetime

from hoststat.errors import StorageUnavailableError
from hoststat.models.base import Metric, MetricEntry, Number
from hoststat.storage.base import MetricStore


@dataclass(frozen=True)
class StoredRow:
    """A persisted Metric entry."""

    hostname: str
    source: str
    timestamp: datetime
    key: str
    labels: dict[str, str] = field(default_factory=dict)
    values: dict[str, Number] = field(default_factory=dict)


class MemoryStore(MetricStore):
    """Metric store backed by a dict of row lists, one list per source."""

    name = "memory"

    def __init__(self) -> None:
        self._rows: dict[str, list[StoredRow]] = {}
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def ping(self) -> bool:
        return self._connected

    async def write_entry(self, hostname: str, metric: Metric, entry: MetricEntry) -> None:
        if not self._connected:
            raise StorageUnavailableError("Memory store is closed", collector=metric.source)
        self._rows.setdefault(metric.source, []).append(
            StoredRow(
                hostname=hostname,
                source=metric.source,
                timestamp=metric.timestamp,
                key=entry.key,
                labels=dict(entry.labels),
                values=dict(entry.values),
            )
        )

    async def purge_older_than(
        self,
        source: str,
        cutoff: datetime,
        hostname: str | None = None,
    ) -> int:
        rows = self._rows.get(source, [])
        kept = [
            row
            for row in rows
            if row.timestamp >= cutoff or (hostname is not None and row.hostname != hostname)
        ]
        self._rows[source] = kept
        return len(rows) - len(kept)

    def rows(self, source: str) -> list[StoredRow]:
        """Return the stored rows of a source, oldest first."""
        return list(self._rows.get(source, []))
