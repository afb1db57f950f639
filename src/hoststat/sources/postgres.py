"""PostgreSQL server statistics.

Reports per-interval tuple counts of one database (from pg_stat_database)
and the row estimate and on-disk size of every user table. The statistics
are read through the same pool the agent writes its metrics with.
"""

from typing import Any

from hoststat.collectors.base import Collector, Source
from hoststat.collectors.rates import delta_from_pair
from hoststat.errors import NotConfiguredError, ParseError, TransportError
from hoststat.models.base import Metric, MetricEntry, MetricKind, Reading, Sample
from hoststat.storage.postgres import CONNECTION_ERRORS, PostgresStore

# Key of the database-wide reading; user tables never start with pg_
DATABASE_KEY = "pg_stat_database"

DATABASE_STATS_QUERY = """
SELECT tup_returned::bigint AS returned,
       tup_fetched::bigint AS fetched,
       tup_inserted::bigint AS inserted,
       tup_updated::bigint AS updated,
       tup_deleted::bigint AS deleted
  FROM pg_stat_database
 WHERE datname = $1
 LIMIT 1
"""

TABLE_STATS_QUERY = """
SELECT n.nspname AS table_schema,
       c.relname AS table_name,
       c.reltuples AS row_estimate,
       pg_total_relation_size(c.oid) AS total_bytes
  FROM pg_class c
  LEFT JOIN pg_namespace n ON n.oid = c.relnamespace
 WHERE c.relkind = 'r'
   AND c.relname NOT LIKE 'pg\\_%'
   AND c.relname NOT LIKE 'sql\\_%'
"""


def table_key(schema: str | None, name: str) -> str:
    """Name a table the way it is stored: bare in public, schema-qualified elsewhere."""
    if schema in (None, "public"):
        return name
    return f"{schema}.{name}"


def table_reading(row: Any) -> Reading:
    return Reading(
        key=table_key(row["table_schema"], row["table_name"]),
        labels={"scope": "table"},
        gauges={
            # reltuples is -1 for tables never analyzed
            "rows": max(int(row["row_estimate"]), 0),
            "total_bytes": int(row["total_bytes"]),
        },
    )


class PostgresSource(Source):
    """Statistics of the monitored database.

    Args:
        store: Connected PostgresStore to query (not configured if None)
        database: Name of the database to report on (not configured if None)
        timeout: Acquisition timeout in seconds
    """

    kind = MetricKind.POSTGRES

    def __init__(
        self,
        store: PostgresStore | None = None,
        database: str | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(timeout)
        self.store = store
        self.database = database

    async def acquire(self) -> Sample:
        if not self.database:
            raise NotConfiguredError("Database to monitor is not set", collector=self.name)
        if self.store is None:
            raise NotConfiguredError("No database connection available", collector=self.name)

        try:
            database_row = await self.store.fetchrow(DATABASE_STATS_QUERY, self.database)
            table_rows = await self.store.fetch(TABLE_STATS_QUERY)
        except CONNECTION_ERRORS as e:
            raise TransportError("Database query failed", collector=self.name, cause=e) from e

        if database_row is None:
            raise ParseError(
                f"Database '{self.database}' not found in pg_stat_database",
                collector=self.name,
            )

        readings = [
            Reading(
                key=DATABASE_KEY,
                labels={"scope": "database", "database": self.database},
                counters={name: int(value or 0) for name, value in dict(database_row).items()},
            )
        ]
        seen = {DATABASE_KEY}
        for row in table_rows:
            reading = table_reading(row)
            if reading.key not in seen:
                seen.add(reading.key)
                readings.append(reading)

        return Sample(source=self.name, readings=tuple(readings))


class PostgresCollector(Collector):
    """Tuple count deltas of the database plus absolute per-table figures.

    Table figures always come from the newer Sample, so a table created
    since the previous poll is reported straight away.
    """

    def __init__(self, source: PostgresSource | None = None) -> None:
        super().__init__(source or PostgresSource())

    def compute(self, previous: Sample | None, sample: Sample) -> Metric | None:
        if previous is None:
            return None

        deltas = delta_from_pair(previous, sample)
        entries: list[MetricEntry] = [
            entry for entry in deltas.entries if entry.labels.get("scope") == "database"
        ]
        entries.extend(
            MetricEntry(key=reading.key, labels=reading.labels, values=dict(reading.gauges))
            for reading in sample.readings
            if reading.labels.get("scope") == "table"
        )
        return Metric(timestamp=sample.timestamp, source=sample.source, entries=tuple(entries))
