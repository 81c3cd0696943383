"""
Transaction Coordinator (unit of work).

Every operation that touches more than one record runs inside one scope:

1. entity locks are acquired (sorted, re-entrant within the scope),
2. reads are recorded as compare-and-swap snapshots, writes are buffered,
3. commit hands all writes plus all snapshots to the backend's atomic
   ``commit``; nothing reaches the store before that call,
4. on any exception the buffer is discarded, so the store is untouched,
5. locks are released and, only after a successful commit, post-commit
   hooks run.

Scopes nest: a component called with the caller's UnitOfWork joins it and
may add locks; the outermost scope owns commit and release.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from copy import deepcopy
from enum import Enum
from typing import TYPE_CHECKING, Any

from freightledger.core.exceptions import StoreUnavailableError
from freightledger.storage.base import Precondition, Write

if TYPE_CHECKING:
    from freightledger.store.ledger_store import LedgerStore
    from freightledger.store.lock import LockService

logger = logging.getLogger(__name__)


class UnitState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class UnitOfWork:
    """
    Buffered, isolated view of the ledger store for one atomic scope.

    Reads see the scope's own earlier writes. Every record read from the
    store becomes a precondition of the commit, so a record changed by
    someone else in the meantime aborts the whole unit instead of being
    silently overwritten.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store
        self._snapshots: dict[tuple[str, str], dict[str, Any] | None] = {}
        self._writes: dict[tuple[str, str], dict[str, Any] | None] = {}
        self._after_commit: list[Callable[[], Any]] = []
        self.locks: dict[str, str] = {}
        self.state = UnitState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state == UnitState.ACTIVE

    def _ensure_active(self) -> None:
        if not self.is_active:
            raise RuntimeError(f"Unit of work is {self.state.value}")

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Read a record, preferring this unit's buffered writes."""
        self._ensure_active()
        ref = (collection, key)
        if ref in self._writes:
            return deepcopy(self._writes[ref])
        if ref in self._snapshots:
            return deepcopy(self._snapshots[ref])

        data = await self._store.get(collection, key)
        self._snapshots[ref] = deepcopy(data)
        return data

    def put(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Buffer an upsert of a record previously read in this unit."""
        self._ensure_active()
        self._writes[(collection, key)] = deepcopy(data)

    def insert(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Buffer a new record; the commit fails if the key already exists."""
        self._ensure_active()
        self._snapshots.setdefault((collection, key), None)
        self._writes[(collection, key)] = deepcopy(data)

    def delete(self, collection: str, key: str) -> None:
        """Buffer a delete of a record previously read in this unit."""
        self._ensure_active()
        self._writes[(collection, key)] = None

    def after_commit(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` once the outermost scope has committed."""
        self._after_commit.append(callback)

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    async def commit(self) -> None:
        """Apply all buffered writes atomically."""
        self._ensure_active()
        if self._writes:
            writes = [Write(c, k, data) for (c, k), data in self._writes.items()]
            preconditions = [
                Precondition(c, k, expected) for (c, k), expected in self._snapshots.items()
            ]
            await self._store.commit(writes, preconditions)
            logger.debug(f"Committed {len(writes)} writes with {len(preconditions)} preconditions")
        self.state = UnitState.COMMITTED

    def rollback(self) -> None:
        """Discard every buffered write."""
        if self.state == UnitState.ACTIVE:
            if self._writes:
                logger.debug(f"Rolled back {len(self._writes)} buffered writes")
            self._writes.clear()
            self._snapshots.clear()
            self._after_commit.clear()
            self.state = UnitState.ROLLED_BACK

    async def run_after_commit(self) -> None:
        """Invoke post-commit hooks; a failing hook never undoes the commit."""
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Post-commit hook failed")


class TransactionCoordinator:
    """
    Opens atomic scopes over the ledger store.

    Example:
        >>> async with coordinator.scope(wallet_lock("u1")) as uow:
        ...     data = await uow.get(WALLETS, "u1")
        ...     uow.put(WALLETS, "u1", {...})
    """

    def __init__(self, store: LedgerStore, locks: LockService) -> None:
        self._store = store
        self._locks = locks

    @property
    def store(self) -> LedgerStore:
        return self._store

    async def _acquire(self, uow: UnitOfWork, resources: tuple[str, ...]) -> None:
        for resource in sorted(set(resources)):
            if resource in uow.locks:
                continue
            token = await self._locks.acquire(resource)
            if token is None:
                raise StoreUnavailableError(
                    f"Timed out waiting for lock {resource}", operation="lock"
                )
            uow.locks[resource] = token

    async def _release(self, uow: UnitOfWork) -> None:
        for resource, token in list(uow.locks.items()):
            try:
                await self._locks.release(resource, token)
            except StoreUnavailableError as e:
                # The lock expires on its own after its TTL
                logger.warning(f"Could not release lock {resource}: {e}")
        uow.locks.clear()

    @asynccontextmanager
    async def scope(
        self,
        *resources: str,
        uow: UnitOfWork | None = None,
    ) -> AsyncIterator[UnitOfWork]:
        """
        Enter an atomic scope holding locks on ``resources``.

        Args:
            *resources: Lock names (see ``freightledger.store.lock``)
            uow: Join this caller-owned unit instead of opening a new one

        Yields:
            The active UnitOfWork
        """
        if uow is not None:
            if not uow.is_active:
                raise RuntimeError(f"Cannot join a unit of work that is {uow.state.value}")
            await self._acquire(uow, resources)
            yield uow
            return

        unit = UnitOfWork(self._store)
        try:
            await self._acquire(unit, resources)
            yield unit
            await unit.commit()
        finally:
            unit.rollback()
            await self._release(unit)

        await unit.run_after_commit()
