"""
Storage backends for FreightLedger.

Provides pluggable persistence for wallets, payments, escrows, jobs and
tracking records.

Configuration via environment:
    FREIGHTLEDGER_STORAGE_BACKEND=memory  # or 'redis'
    FREIGHTLEDGER_REDIS_URL=redis://localhost:6379/0

Example:
    >>> from freightledger.storage import get_storage, InMemoryStorage, RedisStorage
    >>>
    >>> # Get storage from environment
    >>> storage = get_storage()
    >>>
    >>> # Or create specific backend
    >>> storage = InMemoryStorage()
    >>> storage = RedisStorage(redis_url="redis://localhost:6379")
"""

from __future__ import annotations

import os
from typing import Any

from freightledger.storage.base import (
    Precondition,
    StorageBackend,
    Write,
    get_storage_backend,
    list_storage_backends,
    register_storage_backend,
)
from freightledger.storage.memory import InMemoryStorage
from freightledger.storage.redis import RedisStorage


def get_storage(backend_name: str | None = None, **kwargs: Any) -> StorageBackend:
    """
    Get storage backend from environment or by name.

    Args:
        backend_name: Backend name, or None to read from FREIGHTLEDGER_STORAGE_BACKEND env
        **kwargs: Passed to the backend constructor (e.g. redis_url)

    Returns:
        StorageBackend instance

    Raises:
        ValueError: If backend name is unknown
    """
    if backend_name is None:
        backend_name = os.environ.get("FREIGHTLEDGER_STORAGE_BACKEND", "memory")

    backend_class = get_storage_backend(backend_name)

    if backend_class is None:
        available = list_storage_backends()
        raise ValueError(
            f"Unknown storage backend: '{backend_name}'. Available: {', '.join(available)}"
        )

    return backend_class(**kwargs)


__all__ = [
    "StorageBackend",
    "InMemoryStorage",
    "RedisStorage",
    "Precondition",
    "Write",
    "get_storage",
    "get_storage_backend",
    "list_storage_backends",
    "register_storage_backend",
]
