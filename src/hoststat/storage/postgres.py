"""PostgreSQL metric store.

Rows are written to one ``metric_<source>`` table per source through an
asyncpg connection pool. The matching DDL ships as ``schema.sql`` at the
repository root.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any

import asyncpg
from asyncpg import Pool, Record

from hoststat.config.loader import DatabaseConfig
from hoststat.errors import StorageUnavailableError, StorageWriteError
from hoststat.models.base import Metric, MetricEntry, MetricKind
from hoststat.storage.base import MetricStore

logger = logging.getLogger(__name__)

# Errors asyncpg raises when the server or the pool is unusable
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
)


@dataclass(frozen=True)
class TableSpec:
    """Layout of a metric table.

    Attributes:
        table: Table name
        value_columns: Columns filled from MetricEntry.values
        key_column: Column filled from MetricEntry.key (None for single-row sources)
        key_type: Conversion applied to the key before it is bound
        label_columns: Columns filled from MetricEntry.labels
        scope: Only entries whose "scope" label equals this go to this table
    """

    table: str
    value_columns: tuple[str, ...]
    key_column: str | None = None
    key_type: Callable[[str], Any] = str
    label_columns: tuple[str, ...] = field(default=())
    scope: str | None = None

    def matches(self, entry: MetricEntry) -> bool:
        return self.scope is None or entry.labels.get("scope") == self.scope

    def columns(self) -> list[str]:
        columns = ["hostname", "timestamp"]
        if self.key_column:
            columns.append(self.key_column)
        columns.extend(self.label_columns)
        columns.extend(self.value_columns)
        return columns


TABLES: dict[str, tuple[TableSpec, ...]] = {
    MetricKind.CPU.value: (
        TableSpec(
            "metric_cpu",
            (
                "user",
                "nice",
                "system",
                "idle",
                "iowait",
                "irq",
                "softirq",
                "steal",
                "guest",
                "guest_nice",
            ),
            key_column="cpu",
            key_type=int,
        ),
    ),
    MetricKind.LOAD_AVERAGE.value: (
        TableSpec("metric_load_average", ("one", "five", "fifteen")),
    ),
    MetricKind.MEMORY.value: (
        TableSpec(
            "metric_memory",
            ("total", "free", "available", "buffers", "cached", "swap_total", "swap_free"),
        ),
    ),
    MetricKind.IO.value: (
        TableSpec("metric_io", ("read", "write"), key_column="device"),
    ),
    MetricKind.FILESYSTEM.value: (
        TableSpec("metric_fs", ("total", "used"), key_column="filesystem"),
    ),
    MetricKind.NETWORK.value: (
        TableSpec("metric_network", ("rx", "tx"), key_column="device"),
    ),
    MetricKind.DOCKER.value: (
        TableSpec(
            "metric_docker_containers",
            ("cpu_usage", "memory_usage", "memory_cache", "network_tx", "network_rx"),
            key_column="name",
            label_columns=("state",),
        ),
    ),
    MetricKind.NGINX.value: (
        TableSpec("metric_nginx", ("handled_requests",)),
    ),
    MetricKind.POSTGRES.value: (
        TableSpec(
            "metric_postgres_database",
            ("returned", "fetched", "inserted", "updated", "deleted"),
            label_columns=("database",),
            scope="database",
        ),
        TableSpec(
            "metric_postgres_tables",
            ("rows", "total_bytes"),
            key_column="name",
            scope="table",
        ),
    ),
}


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def build_insert(spec: TableSpec) -> str:
    """Build the parameterized INSERT statement for a table."""
    columns = spec.columns()
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    return (
        f"INSERT INTO {_quote(spec.table)} ({', '.join(_quote(c) for c in columns)}) "
        f"VALUES ({placeholders})"
    )


def build_row(spec: TableSpec, hostname: str, metric: Metric, entry: MetricEntry) -> list[Any]:
    """Build the positional arguments for build_insert(spec)."""
    row: list[Any] = [hostname, metric.timestamp]
    if spec.key_column:
        row.append(spec.key_type(entry.key))
    row.extend(entry.labels.get(column) for column in spec.label_columns)
    row.extend(entry.values.get(column) for column in spec.value_columns)
    return row


def table_for(source: str, entry: MetricEntry) -> TableSpec:
    """Select the table an entry is written to.

    Raises:
        StorageWriteError: If no table is defined for the source/entry
    """
    for spec in TABLES.get(source, ()):
        if spec.matches(entry):
            return spec
    raise StorageWriteError(f"No table defined for entry '{entry.key}'", collector=source)


def _deleted_count(status: str) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 42"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


class PostgresStore(MetricStore):
    """Metric store backed by an asyncpg connection pool.

    The same pool also serves the postgres source, which reads server
    statistics from the database it writes to.
    """

    name = "postgres"

    def __init__(self, config: DatabaseConfig) -> None:
        self.config = config
        self._pool: Pool | None = None

    @property
    def connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        if not self.config.dsn:
            raise StorageUnavailableError("No database DSN configured")

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.dsn,
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                command_timeout=self.config.command_timeout,
            )
        except CONNECTION_ERRORS as e:
            raise StorageUnavailableError("Failed to connect to database", cause=e) from e

        logger.info("Connected to database")

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        try:
            await pool.close()
        except CONNECTION_ERRORS as e:
            logger.debug("Error while closing database pool: %s", e)

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            return await self._pool.fetchval("SELECT 'ping' AS ping_response") == "ping"
        except CONNECTION_ERRORS as e:
            logger.debug("Database ping failed: %s", e)
            return False

    def _require_pool(self) -> Pool:
        if self._pool is None:
            raise StorageUnavailableError("Database is not connected")
        return self._pool

    async def write_entry(self, hostname: str, metric: Metric, entry: MetricEntry) -> None:
        spec = table_for(metric.source, entry)
        pool = self._require_pool()
        try:
            await pool.execute(build_insert(spec), *build_row(spec, hostname, metric, entry))
        except CONNECTION_ERRORS as e:
            raise StorageWriteError(
                f"Failed to insert into {spec.table}", collector=metric.source, cause=e
            ) from e

    async def purge_older_than(
        self,
        source: str,
        cutoff: datetime,
        hostname: str | None = None,
    ) -> int:
        pool = self._require_pool()
        deleted = 0
        for spec in TABLES.get(source, ()):
            query = f"DELETE FROM {_quote(spec.table)} WHERE timestamp < $1"
            args: list[Any] = [cutoff]
            if hostname is not None:
                query += " AND hostname = $2"
                args.append(hostname)
            try:
                deleted += _deleted_count(await pool.execute(query, *args))
            except CONNECTION_ERRORS as e:
                raise StorageWriteError(
                    f"Failed to purge {spec.table}", collector=source, cause=e
                ) from e
        return deleted

    async def fetch(self, query: str, *args: Any) -> list[Record]:
        """Run a read query on the pool. asyncpg errors propagate unchanged."""
        return await self._require_pool().fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        """Run a single-row read query on the pool. asyncpg errors propagate unchanged."""
        return await self._require_pool().fetchrow(query, *args)
