"""
Ledger Store - system of record for the ledger.

Wraps a StorageBackend with the five ledger collections and enforces a
timeout on every backend call. Any backend fault (timeout, connection error,
protocol error) surfaces as StoreUnavailableError; ledger errors raised by
the backend itself (compare-and-swap conflicts) pass through unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar

from freightledger.core.exceptions import FreightLedgerError, StoreUnavailableError

if TYPE_CHECKING:
    from freightledger.storage.base import Precondition, StorageBackend, Write

logger = logging.getLogger(__name__)

T = TypeVar("T")

WALLETS = "wallets"
PAYMENTS = "payments"
ESCROWS = "escrows"
JOBS = "jobs"
TRACKING_RECORDS = "tracking_records"

COLLECTIONS = (WALLETS, PAYMENTS, ESCROWS, JOBS, TRACKING_RECORDS)


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await a backend call, bounded by ``timeout`` seconds.

    Raises:
        StoreUnavailableError: On timeout or any non-ledger backend exception
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except FreightLedgerError:
        raise
    except asyncio.TimeoutError as e:
        logger.warning(f"Store call '{operation}' timed out after {timeout}s")
        raise StoreUnavailableError(
            f"Store call '{operation}' timed out after {timeout}s", operation=operation
        ) from e
    except Exception as e:
        logger.warning(f"Store call '{operation}' failed: {e}")
        raise StoreUnavailableError(
            f"Store call '{operation}' failed: {e}", operation=operation
        ) from e


class LedgerStore:
    """
    Timeout-guarded access to the ledger collections.

    Services never talk to the backend directly; reads inside an atomic scope
    go through a UnitOfWork, which itself reads through this class.
    """

    def __init__(self, storage: StorageBackend, timeout: float = 5.0) -> None:
        """
        Initialize ledger store.

        Args:
            storage: Storage backend (Memory/Redis)
            timeout: Per-call timeout in seconds
        """
        self._storage = storage
        self._timeout = timeout

    @property
    def backend(self) -> StorageBackend:
        return self._storage

    @property
    def timeout(self) -> float:
        return self._timeout

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        return await call_with_timeout(
            self._storage.get(collection, key), self._timeout, f"get {collection}"
        )

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        records = await call_with_timeout(
            self._storage.query(
                collection,
                filters=filters,
                limit=limit,
                offset=offset,
                order_by=order_by,
                descending=descending,
            ),
            self._timeout,
            f"query {collection}",
        )
        for record in records:
            record.pop("_key", None)
        return records

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        return await call_with_timeout(
            self._storage.count(collection, filters), self._timeout, f"count {collection}"
        )

    async def commit(self, writes: list[Write], preconditions: list[Precondition]) -> None:
        await call_with_timeout(
            self._storage.commit(writes, preconditions), self._timeout, "commit"
        )

    async def health_check(self) -> bool:
        try:
            return await call_with_timeout(
                self._storage.health_check(), self._timeout, "health_check"
            )
        except StoreUnavailableError:
            return False
