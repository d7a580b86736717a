"""Audit storage backends for workflow run records.

Provides multiple implementations behind a common interface:
    - RunStore: Abstract interface
    - InMemoryRunStore: In-memory storage for testing
    - SqliteRunStore: SQLite-backed storage
    - RedisRunStore: Redis-backed storage

Backends with third-party drivers are imported lazily, so importing
grantflow.storage does not require aiosqlite or redis to be importable
until those stores are used.
"""

from grantflow.storage.base import (
    DuplicateRunError,
    RunRecord,
    RunStore,
    StorageError,
    fingerprint_payload,
)
from grantflow.storage.memory import InMemoryRunStore


def __getattr__(name: str):
    """Lazy import driver-backed stores."""
    if name == "SqliteRunStore":
        from grantflow.storage.sqlite import SqliteRunStore

        return SqliteRunStore
    elif name == "RedisRunStore":
        from grantflow.storage.redis import RedisRunStore

        return RedisRunStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "RunStore",
    "RunRecord",
    "StorageError",
    "DuplicateRunError",
    "fingerprint_payload",
    "InMemoryRunStore",
    "SqliteRunStore",
    "RedisRunStore",
]
