"""Data store adapters package.

Provides the ``DataStore`` Protocol and its implementations: an async
PostgreSQL store and an in-memory store for tests and local runs.

Usage:
    from db_backup.adapters import DataStore, AsyncPostgresStore, InMemoryStore
"""

from db_backup.adapters.base import DataStore
from db_backup.adapters.memory import InMemoryStore
from db_backup.adapters.postgres import AsyncPostgresStore

__all__ = [
    "DataStore",
    "AsyncPostgresStore",
    "InMemoryStore",
]
