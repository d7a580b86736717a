"""In-memory run store.

Design Pattern: Adapter Pattern
InMemoryRunStore adapts a dictionary to the RunStore interface.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio

from grantflow.storage.base import DuplicateRunError, RunRecord, RunStore


class InMemoryRunStore(RunStore):
    """In-memory storage for testing.

    Can be substituted for SqliteRunStore without changing client code.
    """

    def __init__(self):
        self._records: dict[str, RunRecord] = {}
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return "InMemoryRunStore"

    async def save(self, record: RunRecord) -> None:
        async with self._lock:
            if record.run_id in self._records:
                raise DuplicateRunError(record.run_id)
            self._records[record.run_id] = record

    async def get(self, run_id: str) -> RunRecord | None:
        async with self._lock:
            return self._records.get(run_id)

    async def list_run_ids(self) -> list[str]:
        async with self._lock:
            return list(self._records)

    async def reset(self) -> None:
        """Drop every record (tests only)."""
        async with self._lock:
            self._records.clear()
