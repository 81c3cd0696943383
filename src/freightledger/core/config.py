"""
Configuration management for FreightLedger.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")
    return value


@dataclass(frozen=True)
class Config:
    """Ledger configuration."""

    storage_backend: str = "memory"
    redis_url: str | None = None
    # Every storage call is bounded by this many seconds
    store_timeout: float = 5.0
    # Entity locks
    lock_ttl: int = 30
    lock_retry_count: int = 40
    lock_retry_delay: float = 0.05
    # Wallets are created in this currency; amounts are minor units
    currency: str = "KES"
    # Notifications
    webhook_url: str | None = None
    webhook_signing_key: str | None = None
    webhook_timeout: float = 10.0
    log_level: str = "INFO"
    env: str = "development"

    def __post_init__(self) -> None:
        if self.store_timeout <= 0:
            raise ValueError("store_timeout must be positive")
        if self.lock_ttl <= 0:
            raise ValueError("lock_ttl must be positive")
        if self.lock_retry_count < 0:
            raise ValueError("lock_retry_count must not be negative")
        if self.lock_retry_delay < 0:
            raise ValueError("lock_retry_delay must not be negative")
        if not self.currency:
            raise ValueError("currency is required")

    @property
    def lock_wait_budget(self) -> float:
        """Longest time a caller may wait for one entity lock."""
        return self.lock_retry_count * self.lock_retry_delay

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        storage_backend = overrides.get("storage_backend") or _get_env_var(
            "FREIGHTLEDGER_STORAGE_BACKEND", default="memory"
        )
        redis_url = overrides.get("redis_url") or _get_env_var("FREIGHTLEDGER_REDIS_URL")

        store_timeout = overrides.get("store_timeout") or float(
            _get_env_var("FREIGHTLEDGER_STORE_TIMEOUT", default=str(cls.store_timeout))  # type: ignore
        )
        lock_ttl = overrides.get("lock_ttl") or int(
            _get_env_var("FREIGHTLEDGER_LOCK_TTL", default=str(cls.lock_ttl))  # type: ignore
        )
        lock_retry_count = overrides.get("lock_retry_count")
        if lock_retry_count is None:
            lock_retry_count = int(
                _get_env_var(  # type: ignore
                    "FREIGHTLEDGER_LOCK_RETRY_COUNT", default=str(cls.lock_retry_count)
                )
            )
        lock_retry_delay = overrides.get("lock_retry_delay")
        if lock_retry_delay is None:
            lock_retry_delay = float(
                _get_env_var(  # type: ignore
                    "FREIGHTLEDGER_LOCK_RETRY_DELAY", default=str(cls.lock_retry_delay)
                )
            )

        currency = overrides.get("currency") or _get_env_var(
            "FREIGHTLEDGER_CURRENCY", default=cls.currency
        )
        webhook_url = overrides.get("webhook_url") or _get_env_var("FREIGHTLEDGER_WEBHOOK_URL")
        webhook_signing_key = overrides.get("webhook_signing_key") or _get_env_var(
            "FREIGHTLEDGER_WEBHOOK_SIGNING_KEY"
        )

        log_level = overrides.get("log_level") or _get_env_var(
            "FREIGHTLEDGER_LOG_LEVEL", default="INFO"
        )
        env = overrides.get("env") or _get_env_var("FREIGHTLEDGER_ENV", default="development")

        return cls(
            storage_backend=storage_backend,  # type: ignore
            redis_url=redis_url,
            store_timeout=store_timeout,
            lock_ttl=lock_ttl,
            lock_retry_count=lock_retry_count,
            lock_retry_delay=lock_retry_delay,
            currency=currency,  # type: ignore
            webhook_url=webhook_url,
            webhook_signing_key=webhook_signing_key,
            webhook_timeout=overrides.get("webhook_timeout", cls.webhook_timeout),
            log_level=log_level,  # type: ignore
            env=env,  # type: ignore
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(updates)
        return Config(**current)

    def masked_signing_key(self) -> str:
        """Return the webhook signing key with most characters masked for safe logging."""
        if not self.webhook_signing_key:
            return ""
        if len(self.webhook_signing_key) <= 8:
            return "****"
        return self.webhook_signing_key[:4] + "..." + self.webhook_signing_key[-4:]
