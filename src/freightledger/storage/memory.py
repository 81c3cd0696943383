"""
In-Memory Storage Backend.

Process-local backend used by default and throughout the test suite.
Records vanish with the process.
"""

from __future__ import annotations

import time
import uuid
from copy import deepcopy
from typing import Any

from freightledger.core.exceptions import ConcurrentModificationError
from freightledger.storage.base import (
    Precondition,
    StorageBackend,
    Write,
    matches_filters,
    order_records,
    register_storage_backend,
)


class InMemoryStorage(StorageBackend):
    """
    Dict-backed storage.

    None of the coroutines below await between reading and mutating the
    dicts, so each call (``commit`` included) runs atomically with respect
    to other coroutines on the same event loop. Records are deep-copied on
    the way in and out so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._locks: dict[str, tuple[str, float]] = {}

    def _bucket(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def save(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._bucket(collection)[key] = deepcopy(data)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        record = self._bucket(collection).get(key)
        return None if record is None else deepcopy(record)

    async def delete(self, collection: str, key: str) -> bool:
        return self._bucket(collection).pop(key, None) is not None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        matched = [
            {**deepcopy(record), "_key": key}
            for key, record in self._bucket(collection).items()
            if matches_filters(record, filters)
        ]
        matched = order_records(matched, order_by, descending)
        end = None if limit is None else offset + limit
        return matched[offset:end]

    async def update(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        record = self._bucket(collection).get(key)
        if record is None:
            return False
        record.update(deepcopy(data))
        return True

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        bucket = self._bucket(collection)
        if not filters:
            return len(bucket)
        return sum(1 for record in bucket.values() if matches_filters(record, filters))

    async def clear(self, collection: str) -> int:
        bucket = self._bucket(collection)
        removed = len(bucket)
        bucket.clear()
        return removed

    async def commit(self, writes: list[Write], preconditions: list[Precondition]) -> None:
        """Verify every precondition, then apply every write. All or nothing."""
        for pre in preconditions:
            if self._bucket(pre.collection).get(pre.key) != pre.expected:
                raise ConcurrentModificationError(
                    f"Record {pre.collection}/{pre.key} changed since it was read",
                    collection=pre.collection,
                    key=pre.key,
                )

        for write in writes:
            bucket = self._bucket(write.collection)
            if write.data is None:
                bucket.pop(write.key, None)
            else:
                bucket[write.key] = deepcopy(write.data)

    async def acquire_lock(self, key: str, ttl: int = 30) -> str | None:
        now = time.monotonic()
        holder = self._locks.get(key)
        if holder is not None and holder[1] > now:
            return None

        token = uuid.uuid4().hex
        self._locks[key] = (token, now + ttl)
        return token

    async def release_lock(self, key: str, token: str) -> bool:
        holder = self._locks.get(key)
        if holder is None or holder[0] != token:
            return False
        del self._locks[key]
        return True

    async def health_check(self) -> bool:
        return True


register_storage_backend("memory", InMemoryStorage)
