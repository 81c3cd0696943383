"""
Entity Lock Service.

Serializes concurrent operations on the same job, escrow or wallet so that,
for example, two "complete" calls for one job cannot both release its escrow.
Unrelated entities never contend.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from freightledger.store.ledger_store import call_with_timeout

if TYPE_CHECKING:
    from freightledger.storage.base import StorageBackend

logger = logging.getLogger(__name__)


def job_lock(job_id: str) -> str:
    return f"job:{job_id}"


def escrow_lock(job_id: str) -> str:
    return f"escrow:{job_id}"


def wallet_lock(user_id: str) -> str:
    return f"wallet:{user_id}"


class LockService:
    """
    Service for managing entity locks (mutexes).

    Implements a token-owned lock pattern using the storage backend, so it is
    distributed when the backend is Redis.
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: int = 30,
        retry_count: int = 40,
        retry_delay: float = 0.05,
        timeout: float = 5.0,
    ) -> None:
        """
        Initialize lock service.

        Args:
            storage: Storage backend (Redis/Memory)
            ttl: Lock time-to-live in seconds
            retry_count: Number of retries while the lock is held elsewhere
            retry_delay: Delay between retries
            timeout: Per-call timeout for the backend
        """
        self._storage = storage
        self._ttl = ttl
        self._retry_count = retry_count
        self._retry_delay = retry_delay
        self._timeout = timeout

    async def acquire(
        self,
        resource: str,
        ttl: int | None = None,
        retry_count: int | None = None,
        retry_delay: float | None = None,
    ) -> str | None:
        """
        Acquire a lock for a resource.

        Args:
            resource: Lock name, e.g. ``wallet:user-1``
            ttl: Override lock time-to-live
            retry_count: Override number of retries
            retry_delay: Override delay between retries

        Returns:
            lock_token (str) if successful, None if the lock stayed busy

        Raises:
            StoreUnavailableError: If the backend fails or times out
        """
        ttl = self._ttl if ttl is None else ttl
        retry_count = self._retry_count if retry_count is None else retry_count
        retry_delay = self._retry_delay if retry_delay is None else retry_delay

        for i in range(retry_count + 1):
            token = await call_with_timeout(
                self._storage.acquire_lock(resource, ttl), self._timeout, f"lock {resource}"
            )
            if token:
                logger.debug(f"Acquired lock {resource} (token: {token[:8]}...)")
                return token

            if i < retry_count:
                logger.debug(f"{resource} locked, retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)

        logger.warning(f"Failed to acquire lock {resource} after {retry_count} retries")
        return None

    async def release(self, resource: str, token: str) -> bool:
        """
        Release a previously acquired lock.

        Args:
            resource: The resource the lock was acquired for
            token: The ownership token returned by acquire()

        Returns:
            True if released, False if expired or owned by someone else
        """
        result = await call_with_timeout(
            self._storage.release_lock(resource, token), self._timeout, f"unlock {resource}"
        )
        if result:
            logger.debug(f"Released lock {resource}")
        else:
            logger.warning(f"Lock {resource} was no longer owned at release")
        return result
