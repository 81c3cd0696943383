"""Tests for LockService."""

import asyncio

import pytest

from freightledger.core.exceptions import StoreUnavailableError
from freightledger.storage.memory import InMemoryStorage
from freightledger.store.lock import LockService, escrow_lock, job_lock, wallet_lock


@pytest.fixture
def memory_storage():
    """Provides memory storage."""
    return InMemoryStorage()


@pytest.fixture
def lock_service(memory_storage):
    """Provides lock service."""
    return LockService(memory_storage, retry_count=3, retry_delay=0.01)


def test_lock_names():
    assert job_lock("j1") == "job:j1"
    assert escrow_lock("j1") == "escrow:j1"
    assert wallet_lock("u1") == "wallet:u1"


@pytest.mark.asyncio
async def test_acquire_and_release_lock(lock_service):
    """Test basic lock acquire and release."""
    resource = wallet_lock("client-1")

    lock_token = await lock_service.acquire(resource)
    assert lock_token is not None
    assert isinstance(lock_token, str)

    # Held: retries run out and None comes back
    assert await lock_service.acquire(resource, retry_count=1, retry_delay=0.01) is None

    assert await lock_service.release(resource, lock_token) is True

    lock_token_2 = await lock_service.acquire(resource)
    assert lock_token_2 is not None
    await lock_service.release(resource, lock_token_2)


@pytest.mark.asyncio
async def test_release_with_wrong_token(lock_service):
    resource = job_lock("j1")
    token = await lock_service.acquire(resource)

    assert await lock_service.release(resource, "someone-else") is False
    assert await lock_service.release(resource, token) is True


@pytest.mark.asyncio
async def test_lock_ttl(memory_storage):
    """Test that locks expire after TTL."""
    service = LockService(memory_storage, retry_count=0)
    resource = escrow_lock("j2")

    lock_token = await service.acquire(resource, ttl=1)
    assert lock_token is not None
    assert await service.acquire(resource) is None

    await asyncio.sleep(1.1)

    lock_token_2 = await service.acquire(resource)
    assert lock_token_2 is not None
    await service.release(resource, lock_token_2)


@pytest.mark.asyncio
async def test_retry_mechanism(memory_storage):
    """Test that retry mechanism waits and acquires if lock is freed."""
    service = LockService(memory_storage, retry_count=50, retry_delay=0.01)
    resource = wallet_lock("client-3")
    lock_token = await service.acquire(resource)

    async def delayed_release():
        await asyncio.sleep(0.1)
        await service.release(resource, lock_token)

    release_task = asyncio.create_task(delayed_release())

    lock_token_2 = await service.acquire(resource)
    await release_task

    assert lock_token_2 is not None
    assert lock_token_2 != lock_token


class _HangingStorage(InMemoryStorage):
    async def acquire_lock(self, key, ttl=30):
        await asyncio.sleep(10)
        return None


@pytest.mark.asyncio
async def test_backend_timeout_raises_store_unavailable():
    service = LockService(_HangingStorage(), timeout=0.05)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await service.acquire(job_lock("j1"))

    assert exc_info.value.retryable is True
