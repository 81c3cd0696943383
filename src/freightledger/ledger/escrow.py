"""
Escrow Manager.

Holds a client's funds while a job is active. Every state change of an
escrow is paired with its wallet movement in one atomic scope:

    hold     client -amount (escrow)          escrow created, held
    release  transporter +amount (release)    held -> released
    refund   client +amount (escrow)          held -> refunded

``released`` and ``refunded`` are terminal; retrying a release or refund
fails with EscrowAlreadyFinalizedError instead of crediting twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from freightledger.core.exceptions import (
    EscrowAlreadyFinalizedError,
    EscrowNotFoundError,
    JobAlreadyEscrowedError,
    NoTransporterAssignedError,
    NotFoundError,
)
from freightledger.core.types import (
    Escrow,
    EscrowStatus,
    Job,
    PaymentType,
    escrow_id_for,
    require_amount,
    utc_now,
)
from freightledger.notifications.events import EventType, LedgerEvent
from freightledger.store.ledger_store import ESCROWS, JOBS
from freightledger.store.lock import escrow_lock, job_lock, wallet_lock

if TYPE_CHECKING:
    from freightledger.ledger.wallet import WalletLedger
    from freightledger.notifications.dispatcher import EventDispatcher
    from freightledger.store.transaction import TransactionCoordinator, UnitOfWork

logger = logging.getLogger(__name__)


class EscrowManager:
    """Service for holding, releasing and refunding job escrows."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        wallets: WalletLedger,
        dispatcher: EventDispatcher,
    ) -> None:
        self._coordinator = coordinator
        self._wallets = wallets
        self._dispatcher = dispatcher

    async def _load_escrow(self, uow: UnitOfWork, job_id: str) -> Escrow | None:
        data = await uow.get(ESCROWS, escrow_id_for(job_id))
        return Escrow.from_dict(data) if data else None

    async def _load_job(self, uow: UnitOfWork, job_id: str) -> Job:
        data = await uow.get(JOBS, job_id)
        if data is None:
            raise NotFoundError(f"Job not found: {job_id}", collection=JOBS, key=job_id)
        return Job.from_dict(data)

    async def _load_held(self, uow: UnitOfWork, job_id: str) -> Escrow:
        escrow = await self._load_escrow(uow, job_id)
        if escrow is None:
            raise EscrowNotFoundError(f"No escrow for job {job_id}", job_id=job_id)
        if escrow.status.is_terminal():
            raise EscrowAlreadyFinalizedError(
                f"Escrow for job {job_id} is already {escrow.status.value}",
                job_id=job_id,
                status=escrow.status.value,
            )
        return escrow

    def _announce(self, uow: UnitOfWork, event_type: EventType, escrow: Escrow, *users: str) -> None:
        uow.after_commit(
            lambda: self._dispatcher.emit(
                LedgerEvent(type=event_type, data=escrow.to_dict(), user_ids=tuple(users))
            )
        )

    async def hold(
        self,
        job_id: str,
        client_id: str,
        amount: int,
        *,
        uow: UnitOfWork | None = None,
    ) -> Escrow:
        """
        Debit the client and hold the funds for a job.

        Raises:
            ValidationError: If amount is not a positive int
            JobAlreadyEscrowedError: If the job already has an escrow
            InsufficientFundsError: If the client cannot cover amount
        """
        require_amount(amount)

        async with self._coordinator.scope(
            escrow_lock(job_id), wallet_lock(client_id), uow=uow
        ) as tx:
            if await self._load_escrow(tx, job_id) is not None:
                raise JobAlreadyEscrowedError(f"Job {job_id} already has an escrow", job_id=job_id)

            await self._wallets.apply_delta(
                client_id,
                -amount,
                PaymentType.ESCROW,
                f"Escrow payment for job #{job_id}",
                uow=tx,
            )

            escrow = Escrow(job_id=job_id, amount=amount)
            tx.insert(ESCROWS, escrow.id, escrow.to_dict())
            self._announce(tx, EventType.ESCROW_HELD, escrow, client_id)

        logger.info(f"Held {amount} in escrow {escrow.id} for job {job_id}")
        return escrow

    async def release(self, job_id: str, *, uow: UnitOfWork | None = None) -> Escrow:
        """
        Pay the held funds to the job's transporter.

        Raises:
            EscrowNotFoundError: If the job has no escrow
            EscrowAlreadyFinalizedError: If the escrow is already released or refunded
            NotFoundError: If the job does not exist
            NoTransporterAssignedError: If nobody accepted the job
        """
        async with self._coordinator.scope(escrow_lock(job_id), job_lock(job_id), uow=uow) as tx:
            escrow = await self._load_held(tx, job_id)
            job = await self._load_job(tx, job_id)
            if not job.transporter_id:
                raise NoTransporterAssignedError(
                    f"No transporter assigned to job {job_id}", job_id=job_id
                )

            async with self._coordinator.scope(wallet_lock(job.transporter_id), uow=tx):
                escrow.status = EscrowStatus.RELEASED
                escrow.updated_at = utc_now()
                tx.put(ESCROWS, escrow.id, escrow.to_dict())

                await self._wallets.apply_delta(
                    job.transporter_id,
                    escrow.amount,
                    PaymentType.ESCROW_RELEASE,
                    f"Payment received for job #{job_id}",
                    uow=tx,
                )
            self._announce(tx, EventType.ESCROW_RELEASED, escrow, job.client_id, job.transporter_id)

        logger.info(f"Released escrow {escrow.id} ({escrow.amount}) to {job.transporter_id}")
        return escrow

    async def refund(self, job_id: str, *, uow: UnitOfWork | None = None) -> Escrow:
        """
        Return the held funds to the job's client.

        Raises:
            EscrowNotFoundError: If the job has no escrow
            EscrowAlreadyFinalizedError: If the escrow is already released or refunded
            NotFoundError: If the job does not exist
        """
        async with self._coordinator.scope(escrow_lock(job_id), job_lock(job_id), uow=uow) as tx:
            escrow = await self._load_held(tx, job_id)
            job = await self._load_job(tx, job_id)

            async with self._coordinator.scope(wallet_lock(job.client_id), uow=tx):
                escrow.status = EscrowStatus.REFUNDED
                escrow.updated_at = utc_now()
                tx.put(ESCROWS, escrow.id, escrow.to_dict())

                await self._wallets.apply_delta(
                    job.client_id,
                    escrow.amount,
                    PaymentType.ESCROW,
                    f"Escrow refund for job #{job_id}",
                    uow=tx,
                )
            self._announce(tx, EventType.ESCROW_REFUNDED, escrow, job.client_id)

        logger.info(f"Refunded escrow {escrow.id} ({escrow.amount}) to {job.client_id}")
        return escrow

    async def get_escrow(self, job_id: str) -> Escrow:
        """
        Read the escrow of a job.

        Raises:
            NotFoundError: If the job has no escrow
        """
        key = escrow_id_for(job_id)
        data = await self._coordinator.store.get(ESCROWS, key)
        if data is None:
            raise NotFoundError(f"No escrow for job {job_id}", collection=ESCROWS, key=key)
        return Escrow.from_dict(data)
