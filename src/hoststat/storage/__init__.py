"""Persistence adapters for hoststat.

- MetricStore: Abstract base class for stores
- MemoryStore: In-process store (snapshot command, tests)
- PostgresStore: asyncpg-backed store used by the agent
"""

from hoststat.storage.base import MetricStore
from hoststat.storage.memory import MemoryStore, StoredRow
from hoststat.storage.postgres import PostgresStore

__all__ = [
    "MetricStore",
    "MemoryStore",
    "PostgresStore",
    "StoredRow",
]
