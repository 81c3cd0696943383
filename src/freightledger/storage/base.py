"""
Abstract Storage Backend for FreightLedger.

Provides the pluggable persistence layer behind the ledger store: plain CRUD,
equality/ordering queries, token-owned locks and one atomic conditional
multi-write used to commit a unit of work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Write:
    """
    One buffered write.

    ``data=None`` deletes the record.
    """

    collection: str
    key: str
    data: dict[str, Any] | None


@dataclass(frozen=True)
class Precondition:
    """
    Compare-and-swap guard for a commit.

    The stored record must equal ``expected`` exactly; ``expected=None`` means
    the record must not exist.
    """

    collection: str
    key: str
    expected: dict[str, Any] | None


def matches_filters(data: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Exact-match filter shared by the backends."""
    if not filters:
        return True
    return all(data.get(name) == value for name, value in filters.items())


def order_records(
    records: list[dict[str, Any]],
    order_by: str | None,
    descending: bool,
) -> list[dict[str, Any]]:
    """Sort records by one field; records missing the field sort first."""
    if not order_by:
        return records

    def sort_key(record: dict[str, Any]) -> tuple[bool, Any]:
        value = record.get(order_by)
        # Missing values only ever compare against each other
        return (False, 0) if value is None else (True, value)

    return sorted(records, key=sort_key, reverse=descending)


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Provides simple CRUD operations plus the atomic ``commit`` primitive.
    Implementations can use any persistence layer (memory, Redis, SQL, ...).
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save data to storage.

        Args:
            collection: Collection/table name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get data from storage.

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Query data with optional filters.

        Args:
            collection: Collection/table name
            filters: Key-value pairs to filter by (exact match)
            limit: Maximum records to return
            offset: Number of records to skip
            order_by: Field to sort by before paging
            descending: Sort direction

        Returns:
            List of matching records
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """
        Update existing data.

        Returns:
            True if updated, False if not found
        """
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """
        Clear all records from a collection.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def commit(
        self,
        writes: list[Write],
        preconditions: list[Precondition],
    ) -> None:
        """
        Atomically check every precondition and apply every write.

        Either all writes become visible together or none do.

        Raises:
            ConcurrentModificationError: If any precondition does not hold
        """
        ...

    @abstractmethod
    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """
        Acquire a lock with an ownership token.

        Returns:
            Token if acquired, None if already held
        """
        ...

    @abstractmethod
    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """
        Release a lock if ``token`` still owns it.

        Returns:
            True if released
        """
        ...

    async def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
