"""
RunStore protocol - Abstract interface for workflow audit storage.

Design Pattern: Adapter Pattern
RunStore defines the target interface that all storage adapters implement.
Different backends (SQLite, Redis, Memory) adapt to this common interface.

Records are append-only and keyed by a caller-supplied run id: saving a
second record under an existing id is an error, and records are never
updated or deleted through this interface.
"""

from __future__ import annotations

import pickle
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import xxhash

from grantflow.core.result import WorkflowResult


class StorageError(Exception):
    """Storage operation failed."""

    pass


class DuplicateRunError(StorageError):
    """A record already exists for this run id."""

    def __init__(self, run_id: str):
        super().__init__(f"Run '{run_id}' is already recorded")
        self.run_id = run_id


@dataclass(frozen=True)
class RunRecord:
    """
    Opaque audit record of one workflow run.

    Attributes:
        run_id: Caller-supplied (or generated) run identifier
        request_type: Workflow request type the run was planned from
        payload_hash: xxhash64 fingerprint of the initial payload
        result: The WorkflowResult returned to the caller
        recorded_at: When the record was written (UTC)
    """

    run_id: str
    request_type: str
    payload_hash: int
    result: WorkflowResult
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_bytes(self) -> bytes:
        return pickle.dumps(self)

    @staticmethod
    def from_bytes(data: bytes) -> RunRecord:
        return pickle.loads(data)


def fingerprint_payload(payload: Mapping[str, Any]) -> int:
    """Stable 63-bit fingerprint of a payload, for audit without storing it."""
    try:
        data = pickle.dumps(sorted(payload.items()))
    except (pickle.PicklingError, TypeError, AttributeError):
        data = repr(sorted(payload.items(), key=lambda kv: kv[0])).encode("utf-8")
    return xxhash.xxh64(data).intdigest() & 0x7FFFFFFFFFFFFFFF


class RunStore(ABC):
    """
    Abstract append-only storage for workflow run records.

    Clients program to this interface; InMemoryRunStore serves tests,
    SqliteRunStore and RedisRunStore serve deployments.
    """

    @abstractmethod
    async def save(self, record: RunRecord) -> None:
        """
        Append a record.

        Raises:
            DuplicateRunError: A record already exists for ``record.run_id``
        """
        ...

    @abstractmethod
    async def get(self, run_id: str) -> RunRecord | None:
        """Return the record for ``run_id``, or None."""
        ...

    @abstractmethod
    async def list_run_ids(self) -> list[str]:
        """Return every recorded run id in insertion order."""
        ...

    async def exists(self, run_id: str) -> bool:
        """Check whether a record exists for ``run_id``."""
        return await self.get(run_id) is not None

    async def close(self) -> None:
        """Release backend resources. Default: nothing to release."""
        return None
