"""SQLite-backed run store.

Design Pattern: Adapter Pattern
SqliteRunStore adapts a SQLite database to the RunStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- run_id PRIMARY KEY enforces append-only semantics
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path

import aiosqlite

from grantflow.storage.base import DuplicateRunError, RunRecord, RunStore, StorageError


class SqliteRunStore(RunStore):
    """SQLite-backed audit storage.

    After __init__, the instance is not yet usable. Call connect() first.

    Usage:
        store = SqliteRunStore("runs.db")
        await store.connect()
        try:
            await store.save(record)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteRunStore:
        """Create and connect an in-memory store for testing."""
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteRunStore(in-memory)"
        return f"SqliteRunStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()
        if result and result[0].upper() not in ("WAL", "MEMORY"):
            raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA busy_timeout=5000")
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS workflow_runs (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL UNIQUE,
                request_type TEXT NOT NULL,
                status TEXT NOT NULL,
                payload_hash INTEGER NOT NULL,
                recorded_at TEXT NOT NULL,
                record BLOB NOT NULL
            )
        """)
        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_workflow_runs_status
            ON workflow_runs(status, recorded_at)
        """)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")
        return self._connection

    async def save(self, record: RunRecord) -> None:
        conn = self._check_connected()
        async with self._lock:
            try:
                await conn.execute(
                    """
                    INSERT INTO workflow_runs
                        (run_id, request_type, status, payload_hash, recorded_at, record)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.run_id,
                        record.request_type,
                        record.result.status.value,
                        record.payload_hash,
                        record.recorded_at.isoformat(),
                        record.to_bytes(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateRunError(record.run_id) from e
            except sqlite3.Error as e:
                raise StorageError(f"Failed to save run {record.run_id}: {e}") from e

    async def get(self, run_id: str) -> RunRecord | None:
        conn = self._check_connected()
        async with self._lock:
            cursor = await conn.execute(
                "SELECT record FROM workflow_runs WHERE run_id = ?", (run_id,)
            )
            row = await cursor.fetchone()
            await cursor.close()
        if row is None:
            return None
        return RunRecord.from_bytes(row[0])

    async def exists(self, run_id: str) -> bool:
        conn = self._check_connected()
        async with self._lock:
            cursor = await conn.execute(
                "SELECT 1 FROM workflow_runs WHERE run_id = ?", (run_id,)
            )
            row = await cursor.fetchone()
            await cursor.close()
        return row is not None

    async def list_run_ids(self) -> list[str]:
        conn = self._check_connected()
        async with self._lock:
            cursor = await conn.execute("SELECT run_id FROM workflow_runs ORDER BY seq")
            rows = await cursor.fetchall()
            await cursor.close()
        return [row[0] for row in rows]
