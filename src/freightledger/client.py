"""FreightLedger - Main entry point."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar

from freightledger.core.config import Config
from freightledger.core.exceptions import FreightLedgerError
from freightledger.core.logging import configure_logging, get_logger
from freightledger.core.types import (
    Actor,
    Escrow,
    Job,
    JobDetails,
    JobStatus,
    LedgerResult,
    Location,
    Payment,
    TrackingRecord,
    UserRole,
    Wallet,
)
from freightledger.jobs.lifecycle import JobLifecycleManager
from freightledger.ledger.escrow import EscrowManager
from freightledger.ledger.wallet import WalletLedger
from freightledger.notifications.dispatcher import EventDispatcher, LoggingNotifier, Notifier
from freightledger.notifications.webhook import WebhookNotifier
from freightledger.payment.gateway import PaymentGateway, SimulatedGateway
from freightledger.storage import StorageBackend, get_storage
from freightledger.store.ledger_store import LedgerStore
from freightledger.store.lock import LockService
from freightledger.store.transaction import TransactionCoordinator

T = TypeVar("T")


class FreightLedger:
    """
    Main client for the freight marketplace ledger.

    Wires storage, locks, the transaction coordinator and the three ledger
    services from one Config. Every public operation returns a LedgerResult;
    ledger failures are carried in ``result.error`` instead of raised.

    Example:
        >>> ledger = FreightLedger()
        >>> await ledger.deposit("client-1", 50_000, "mobile money")
        >>> job = (await ledger.create_job("client-1", details)).unwrap()
        >>> result = await ledger.publish(job.id, 50_000)
        >>> result.ok
        True
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        gateway: PaymentGateway | None = None,
        notifiers: list[Notifier] | None = None,
    ) -> None:
        """
        Initialize FreightLedger.

        Args:
            config: Configuration (default: Config.from_env())
            storage: Storage backend (default: chosen by config.storage_backend)
            gateway: Payment provider (default: SimulatedGateway)
            notifiers: Event receivers (default: logging, plus a webhook if configured)
        """
        self._config = config or Config.from_env()

        configure_logging(level=self._config.log_level)
        self._logger = get_logger("client")
        self._logger.info(
            f"Initializing FreightLedger (storage: {self._config.storage_backend}, "
            f"env: {self._config.env})"
        )

        if storage is None:
            kwargs = {}
            if self._config.storage_backend == "redis" and self._config.redis_url:
                kwargs["redis_url"] = self._config.redis_url
            storage = get_storage(self._config.storage_backend, **kwargs)
        self._storage = storage

        if notifiers is None:
            notifiers = [LoggingNotifier()]
            if self._config.webhook_url:
                self._logger.info(
                    f"Webhook notifications enabled (signing key: "
                    f"{self._config.masked_signing_key() or 'none'})"
                )
                notifiers.append(
                    WebhookNotifier(
                        self._config.webhook_url,
                        signing_key=self._config.webhook_signing_key,
                        timeout=self._config.webhook_timeout,
                    )
                )
        self._dispatcher = EventDispatcher(notifiers)

        self._store = LedgerStore(self._storage, timeout=self._config.store_timeout)
        self._locks = LockService(
            self._storage,
            ttl=self._config.lock_ttl,
            retry_count=self._config.lock_retry_count,
            retry_delay=self._config.lock_retry_delay,
            timeout=self._config.store_timeout,
        )
        self._coordinator = TransactionCoordinator(self._store, self._locks)

        self._gateway = gateway or SimulatedGateway()
        self._wallets = WalletLedger(
            self._coordinator, self._gateway, self._dispatcher, currency=self._config.currency
        )
        self._escrows = EscrowManager(self._coordinator, self._wallets, self._dispatcher)
        self._jobs = JobLifecycleManager(self._coordinator, self._escrows, self._dispatcher)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def wallets(self) -> WalletLedger:
        return self._wallets

    @property
    def escrows(self) -> EscrowManager:
        return self._escrows

    @property
    def jobs(self) -> JobLifecycleManager:
        return self._jobs

    async def _run(self, operation: str, call: Awaitable[T]) -> LedgerResult[T]:
        try:
            return LedgerResult.success(await call)
        except FreightLedgerError as e:
            if e.retryable:
                self._logger.warning(f"{operation} failed ({e.kind.value}): {e}")
            else:
                self._logger.info(f"{operation} rejected ({e.kind.value}): {e}")
            return LedgerResult.failure(e)

    # ==================== Wallets ====================

    async def deposit(
        self, user_id: str, amount: int, method: str, payment_id: str | None = None
    ) -> LedgerResult[Payment]:
        return await self._run("deposit", self._wallets.deposit(user_id, amount, method, payment_id))

    async def withdraw(self, user_id: str, amount: int, bank_ref: str) -> LedgerResult[Payment]:
        return await self._run("withdraw", self._wallets.withdraw(user_id, amount, bank_ref))

    async def get_wallet(self, user_id: str) -> LedgerResult[Wallet]:
        return await self._run("get_wallet", self._wallets.get_wallet(user_id))

    async def list_payments(self, user_id: str, limit: int = 100) -> LedgerResult[list[Payment]]:
        return await self._run("list_payments", self._wallets.list_payments(user_id, limit))

    # ==================== Escrows ====================

    async def get_escrow(self, job_id: str) -> LedgerResult[Escrow]:
        return await self._run("get_escrow", self._escrows.get_escrow(job_id))

    # ==================== Jobs ====================

    async def create_job(self, client_id: str, details: JobDetails) -> LedgerResult[Job]:
        return await self._run("create_job", self._jobs.create_job(client_id, details))

    async def publish(
        self, job_id: str, amount: int, actor: Actor | None = None
    ) -> LedgerResult[Job]:
        return await self._run("publish", self._jobs.publish(job_id, amount, actor))

    async def advance_status(
        self, job_id: str, target: JobStatus | str, actor: Actor
    ) -> LedgerResult[Job]:
        return await self._run("advance_status", self._jobs.advance_status(job_id, target, actor))

    async def record_location(
        self, job_id: str, location: Location, actor: Actor
    ) -> LedgerResult[TrackingRecord]:
        return await self._run(
            "record_location", self._jobs.record_location(job_id, location, actor)
        )

    async def update_job(self, job_id: str, actor: Actor, details: JobDetails) -> LedgerResult[Job]:
        return await self._run("update_job", self._jobs.update_job(job_id, actor, details))

    async def delete_job(self, job_id: str, actor: Actor) -> LedgerResult[None]:
        return await self._run("delete_job", self._jobs.delete_job(job_id, actor))

    async def rate_job(
        self, job_id: str, actor: Actor, rating: int, feedback: str | None = None
    ) -> LedgerResult[Job]:
        return await self._run("rate_job", self._jobs.rate_job(job_id, actor, rating, feedback))

    async def get_job(self, job_id: str) -> LedgerResult[Job]:
        return await self._run("get_job", self._jobs.get_job(job_id))

    async def list_jobs(
        self,
        user_id: str,
        role: UserRole | str,
        status_filter: JobStatus | str | None = None,
    ) -> LedgerResult[list[Job]]:
        return await self._run("list_jobs", self._jobs.list_jobs(user_id, role, status_filter))

    async def list_tracking(self, job_id: str) -> LedgerResult[list[TrackingRecord]]:
        return await self._run("list_tracking", self._jobs.list_tracking(job_id))

    # ==================== Lifecycle ====================

    async def health_check(self) -> bool:
        return await self._store.health_check()

    async def flush(self) -> None:
        """Wait for in-flight notifications."""
        await self._dispatcher.flush()

    async def close(self) -> None:
        """Flush notifications and release network resources."""
        await self._dispatcher.flush()
        for notifier in self._dispatcher.notifiers:
            if isinstance(notifier, WebhookNotifier):
                await notifier.close()
        await self._storage.close()
