"""Redis-backed run store.

Design: Adapter Pattern
Adapts the Redis key-value store to the RunStore interface.

Layout:
    grantflow:run:{run_id}   pickled RunRecord (written with SET NX)
    grantflow:runs           list of run ids in insertion order
"""

from __future__ import annotations

import redis.asyncio as redis
from redis.exceptions import RedisError

from grantflow.storage.base import DuplicateRunError, RunRecord, RunStore, StorageError


class RedisRunStore(RunStore):
    """Redis run store using connection pooling.

    Usage:
        store = RedisRunStore("redis://localhost:6379")
        await store.connect()
        await store.save(record)
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", max_connections: int = 16):
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisRunStore({self._redis_url})"

    @classmethod
    def from_client(cls, client: redis.Redis) -> RedisRunStore:
        """Wrap an existing client (already connected)."""
        instance = cls()
        instance._redis = client
        return instance

    async def connect(self) -> None:
        self._redis = redis.from_url(
            self._redis_url,
            decode_responses=False,  # Records are binary
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> redis.Redis:
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")
        return self._redis

    @staticmethod
    def _run_key(run_id: str) -> str:
        return f"grantflow:run:{run_id}"

    _INDEX_KEY = "grantflow:runs"

    async def save(self, record: RunRecord) -> None:
        client = self._check_connected()
        try:
            created = await client.set(
                self._run_key(record.run_id), record.to_bytes(), nx=True
            )
            if created:
                await client.rpush(self._INDEX_KEY, record.run_id)
        except RedisError as e:
            raise StorageError(f"Failed to save run {record.run_id}: {e}") from e
        if not created:
            raise DuplicateRunError(record.run_id)

    async def get(self, run_id: str) -> RunRecord | None:
        client = self._check_connected()
        data = await client.get(self._run_key(run_id))
        if data is None:
            return None
        return RunRecord.from_bytes(data)

    async def exists(self, run_id: str) -> bool:
        client = self._check_connected()
        return bool(await client.exists(self._run_key(run_id)))

    async def list_run_ids(self) -> list[str]:
        client = self._check_connected()
        ids = await client.lrange(self._INDEX_KEY, 0, -1)
        return [i.decode("utf-8") if isinstance(i, bytes) else i for i in ids]
