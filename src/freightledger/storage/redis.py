"""
Redis Storage Backend.

Shared backend for multi-process deployments. Every record is a JSON string
under ``<prefix>:<collection>:<key>`` and each collection keeps a set index
of its keys so it can be scanned without KEYS.
"""

from __future__ import annotations

import json
import os
import uuid
from typing import Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from freightledger.core.exceptions import ConcurrentModificationError
from freightledger.storage.base import (
    Precondition,
    StorageBackend,
    Write,
    matches_filters,
    order_records,
    register_storage_backend,
)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

# Deletes the lock only while it still holds the caller's token
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    ``commit`` is an optimistic transaction: every precondition key is
    WATCHed, compared, and the writes are queued in MULTI/EXEC. Locks are
    ``SET NX EX`` keys holding a random token.
    """

    def __init__(self, redis_url: str | None = None, prefix: str = "freightledger") -> None:
        """
        Args:
            redis_url: Connection URL, falling back to FREIGHTLEDGER_REDIS_URL
            prefix: Namespace for every key this backend touches
        """
        self._redis_url = redis_url or os.environ.get("FREIGHTLEDGER_REDIS_URL", DEFAULT_REDIS_URL)
        self._prefix = prefix
        self._client: aioredis.Redis | None = None

    def _conn(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _record_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    def _lock_key(self, key: str) -> str:
        return f"{self._prefix}:locks:{key}"

    def _queue_write(self, pipe: Any, collection: str, key: str, data: dict[str, Any] | None) -> None:
        if data is None:
            pipe.delete(self._record_key(collection, key))
            pipe.srem(self._index_key(collection), key)
        else:
            pipe.set(self._record_key(collection, key), json.dumps(data))
            pipe.sadd(self._index_key(collection), key)

    async def save(self, collection: str, key: str, data: dict[str, Any]) -> None:
        async with self._conn().pipeline(transaction=True) as pipe:
            self._queue_write(pipe, collection, key, data)
            await pipe.execute()

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        raw = await self._conn().get(self._record_key(collection, key))
        return None if raw is None else json.loads(raw)

    async def delete(self, collection: str, key: str) -> bool:
        async with self._conn().pipeline(transaction=True) as pipe:
            self._queue_write(pipe, collection, key, None)
            removed, _ = await pipe.execute()
        return removed > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        conn = self._conn()
        keys = sorted(await conn.smembers(self._index_key(collection)))
        if not keys:
            return []

        raws = await conn.mget([self._record_key(collection, k) for k in keys])
        matched = []
        for key, raw in zip(keys, raws):
            # Index entries can briefly outlive a deleted record
            if raw is None:
                continue
            record = json.loads(raw)
            if matches_filters(record, filters):
                record["_key"] = key
                matched.append(record)

        matched = order_records(matched, order_by, descending)
        end = None if limit is None else offset + limit
        return matched[offset:end]

    async def update(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        record = await self.get(collection, key)
        if record is None:
            return False
        record.update(data)
        await self.save(collection, key, record)
        return True

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        if filters:
            return len(await self.query(collection, filters))
        return await self._conn().scard(self._index_key(collection))

    async def clear(self, collection: str) -> int:
        keys = await self._conn().smembers(self._index_key(collection))
        for key in keys:
            await self.delete(collection, key)
        return len(keys)

    async def commit(self, writes: list[Write], preconditions: list[Precondition]) -> None:
        """
        Apply ``writes`` in one MULTI/EXEC guarded by WATCH on every precondition key.

        EXEC aborted by a concurrent write is reported exactly like a failed
        comparison: ConcurrentModificationError, nothing applied.
        """
        watched = [self._record_key(p.collection, p.key) for p in preconditions]

        async with self._conn().pipeline(transaction=True) as pipe:
            try:
                if watched:
                    await pipe.watch(*watched)

                for pre, redis_key in zip(preconditions, watched):
                    raw = await pipe.get(redis_key)
                    if (None if raw is None else json.loads(raw)) != pre.expected:
                        raise ConcurrentModificationError(
                            f"Record {pre.collection}/{pre.key} changed since it was read",
                            collection=pre.collection,
                            key=pre.key,
                        )

                pipe.multi()
                for write in writes:
                    self._queue_write(pipe, write.collection, write.key, write.data)
                await pipe.execute()
            except WatchError as e:
                first = preconditions[0] if preconditions else None
                raise ConcurrentModificationError(
                    "Watched record changed during commit",
                    collection=first.collection if first else "",
                    key=first.key if first else "",
                ) from e

    async def acquire_lock(self, key: str, ttl: int = 30) -> str | None:
        token = uuid.uuid4().hex
        acquired = await self._conn().set(self._lock_key(key), token, nx=True, ex=ttl)
        return token if acquired else None

    async def release_lock(self, key: str, token: str) -> bool:
        released = await self._conn().eval(_RELEASE_LOCK_SCRIPT, 1, self._lock_key(key), token)
        return int(released) > 0

    async def health_check(self) -> bool:
        try:
            return bool(await self._conn().ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


register_storage_backend("redis", RedisStorage)
