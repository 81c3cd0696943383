"""
Wallet Ledger.

The only place balances change. Every change is a signed delta applied
together with exactly one completed Payment record inside one atomic scope,
so balance and payment history can never drift apart.

Deposits are recorded as ``pending`` before the gateway is asked to collect
and settled afterwards, so money taken by the provider always has a record
that a retry can finish.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from freightledger.core.exceptions import (
    FreightLedgerError,
    InsufficientFundsError,
    NotFoundError,
    PaymentDeclinedError,
    PaymentGatewayError,
    ValidationError,
)
from freightledger.core.types import (
    Payment,
    PaymentStatus,
    PaymentType,
    Wallet,
    new_id,
    require_amount,
    utc_now,
)
from freightledger.notifications.events import EventType, LedgerEvent
from freightledger.payment.gateway import call_gateway
from freightledger.store.ledger_store import PAYMENTS, WALLETS
from freightledger.store.lock import wallet_lock

if TYPE_CHECKING:
    from freightledger.notifications.dispatcher import EventDispatcher
    from freightledger.payment.gateway import PaymentGateway
    from freightledger.store.transaction import TransactionCoordinator, UnitOfWork

logger = logging.getLogger(__name__)


def _bank_suffix(bank_ref: str) -> str:
    return bank_ref[-4:] if len(bank_ref) >= 4 else bank_ref


class WalletLedger:
    """
    Per-user balances and their payment audit trail.

    Wallets are keyed by user ID and created lazily with a zero balance.
    The wallet balance always equals the sum of the user's completed payments.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        gateway: PaymentGateway,
        dispatcher: EventDispatcher,
        currency: str = "KES",
    ) -> None:
        """
        Initialize wallet ledger.

        Args:
            coordinator: Opens atomic scopes over the ledger store
            gateway: External provider for deposits and withdrawals
            dispatcher: Receives payment events after commit
            currency: Currency of newly created wallets
        """
        self._coordinator = coordinator
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._currency = currency

    async def _load_or_create(self, uow: UnitOfWork, user_id: str) -> Wallet:
        data = await uow.get(WALLETS, user_id)
        if data is not None:
            return Wallet.from_dict(data)

        wallet = Wallet(user_id=user_id, currency=self._currency)
        uow.insert(WALLETS, user_id, wallet.to_dict())
        logger.info(f"Created wallet {wallet.id} for user {user_id}")
        return wallet

    async def _post(self, uow: UnitOfWork, payment: Payment, *, new: bool) -> Payment:
        """Apply a completed payment's amount to its wallet and store both."""
        wallet = await self._load_or_create(uow, payment.user_id)

        new_balance = wallet.balance + payment.amount
        if new_balance < 0:
            raise InsufficientFundsError(
                f"Insufficient funds in wallet of {payment.user_id}",
                user_id=payment.user_id,
                current_balance=wallet.balance,
                required_amount=-payment.amount,
            )

        wallet.balance = new_balance
        wallet.updated_at = utc_now()
        uow.put(WALLETS, payment.user_id, wallet.to_dict())
        if new:
            uow.insert(PAYMENTS, payment.id, payment.to_dict())
        else:
            uow.put(PAYMENTS, payment.id, payment.to_dict())

        uow.after_commit(
            lambda: self._dispatcher.emit(
                LedgerEvent(
                    type=EventType.PAYMENT_COMPLETED,
                    data={**payment.to_dict(), "balance": new_balance},
                    user_ids=(payment.user_id,),
                )
            )
        )
        return payment

    async def apply_delta(
        self,
        user_id: str,
        amount: int,
        payment_type: PaymentType,
        description: str = "",
        *,
        uow: UnitOfWork | None = None,
    ) -> Payment:
        """
        Apply a signed balance change and record its payment.

        Args:
            user_id: Wallet owner
            amount: Non-zero minor units; negative debits the wallet
            payment_type: Kind of event recorded on the payment
            description: Developer-facing note stored on the payment
            uow: Join the caller's atomic scope instead of opening one

        Returns:
            The completed Payment

        Raises:
            ValidationError: If amount is not a non-zero int
            InsufficientFundsError: If a debit would make the balance negative
        """
        require_amount(amount, allow_negative=True)

        payment = Payment(
            user_id=user_id,
            amount=amount,
            type=payment_type,
            status=PaymentStatus.COMPLETED,
            description=description,
        )
        async with self._coordinator.scope(wallet_lock(user_id), uow=uow) as tx:
            await self._post(tx, payment, new=True)

        logger.info(
            f"Applied {payment_type.value} delta {amount:+d} to {user_id} "
            f"(payment {payment.id}{', pending commit' if uow is not None else ''})"
        )
        return payment

    async def _open_deposit(
        self, user_id: str, amount: int, description: str, payment_id: str | None
    ) -> Payment:
        """Insert a pending deposit, or return the one ``payment_id`` already names."""
        async with self._coordinator.scope(wallet_lock(user_id)) as tx:
            if payment_id is not None:
                data = await tx.get(PAYMENTS, payment_id)
                if data is not None:
                    existing = Payment.from_dict(data)
                    if (existing.user_id, existing.amount, existing.type) != (
                        user_id,
                        amount,
                        PaymentType.DEPOSIT,
                    ):
                        raise ValidationError(
                            f"Payment {payment_id} does not match this deposit",
                            details={"payment_id": payment_id},
                        )
                    return existing

            pending = Payment(
                id=payment_id or new_id("pay"),
                user_id=user_id,
                amount=amount,
                type=PaymentType.DEPOSIT,
                status=PaymentStatus.PENDING,
                description=description,
            )
            tx.insert(PAYMENTS, pending.id, pending.to_dict())
        return pending

    async def _finish_deposit(self, pending: Payment, status: PaymentStatus) -> Payment:
        """Move a pending deposit to ``status``; completing it credits the wallet."""
        async with self._coordinator.scope(wallet_lock(pending.user_id)) as tx:
            data = await tx.get(PAYMENTS, pending.id)
            if data is None:
                raise NotFoundError(f"Payment {pending.id} not found", collection=PAYMENTS, key=pending.id)

            current = Payment.from_dict(data)
            # A concurrent retry got here first
            if current.status != PaymentStatus.PENDING:
                return current

            if status == PaymentStatus.COMPLETED:
                return await self._post(tx, replace(current, status=status), new=False)

            failed = replace(current, status=status)
            tx.put(PAYMENTS, failed.id, failed.to_dict())
            return failed

    async def deposit(
        self, user_id: str, amount: int, method: str, payment_id: str | None = None
    ) -> Payment:
        """
        Top up a wallet through the payment gateway.

        A pending Payment is written first and its ID is sent to the gateway as
        the idempotency key. If anything fails after that, the raised error
        carries ``details["payment_id"]``. Calling deposit again with that ID
        finishes the same deposit without charging twice.

        Args:
            user_id: Wallet owner
            amount: Positive minor units
            method: Payment method label, e.g. "mobile money"
            payment_id: ID of an earlier attempt to resume

        Raises:
            PaymentDeclinedError: If the gateway refuses the collection
            PaymentGatewayError: If the gateway fails without a decision
            StoreUnavailableError: If the ledger store fails
        """
        require_amount(amount)
        pending = await self._open_deposit(user_id, amount, f"Wallet top-up via {method}", payment_id)

        if pending.status == PaymentStatus.COMPLETED:
            logger.info(f"Deposit {pending.id} already completed; replaying result")
            return pending
        if pending.status == PaymentStatus.FAILED:
            raise PaymentDeclinedError(
                f"Deposit {pending.id} was declined", user_id=user_id, amount=amount
            )

        try:
            try:
                reference = await call_gateway(
                    self._gateway.collect(user_id, amount, method, pending.id),
                    "collect",
                    user_id,
                    amount,
                )
            except PaymentDeclinedError:
                await self._finish_deposit(pending, PaymentStatus.FAILED)
                raise

            logger.debug(f"Gateway {self._gateway.name} collected {amount} from {user_id}: {reference}")
            payment = await self._finish_deposit(pending, PaymentStatus.COMPLETED)
        except FreightLedgerError as e:
            e.details.setdefault("payment_id", pending.id)
            raise

        if payment.status == PaymentStatus.FAILED:
            raise PaymentDeclinedError(
                f"Deposit {payment.id} was declined", user_id=user_id, amount=amount
            )
        logger.info(f"Deposit {payment.id} of {amount} to {user_id} completed")
        return payment

    async def withdraw(self, user_id: str, amount: int, bank_ref: str) -> Payment:
        """
        Withdraw funds to a bank account.

        The balance check and the debit share one atomic scope. The payout is
        sent after commit with the debit's payment ID as idempotency key. Any
        payout failure reverses the debit with a compensating credit before
        the error is raised.

        Raises:
            InsufficientFundsError: If the balance is lower than amount
            PaymentDeclinedError: If the gateway refuses the payout
            PaymentGatewayError: If the gateway fails without a decision
        """
        require_amount(amount)
        payment = await self.apply_delta(
            user_id,
            -amount,
            PaymentType.WITHDRAWAL,
            f"Withdrawal to bank account ending in {_bank_suffix(bank_ref)}",
        )

        try:
            reference = await call_gateway(
                self._gateway.payout(user_id, amount, bank_ref, payment.id),
                "payout",
                user_id,
                amount,
            )
        except FreightLedgerError as e:
            logger.warning(f"Payout of {amount} to {user_id} failed ({e.kind.value}); reversing {payment.id}")
            await self.apply_delta(
                user_id,
                amount,
                PaymentType.WITHDRAWAL,
                f"Withdrawal reversal for {payment.id}",
            )
            e.details.setdefault("payment_id", payment.id)
            raise

        logger.debug(f"Gateway {self._gateway.name} paid out {amount} to {user_id}: {reference}")
        return payment

    async def get_wallet(self, user_id: str) -> Wallet:
        """Return the user's wallet, creating an empty one on first access."""
        data = await self._coordinator.store.get(WALLETS, user_id)
        if data is not None:
            return Wallet.from_dict(data)

        async with self._coordinator.scope(wallet_lock(user_id)) as tx:
            return await self._load_or_create(tx, user_id)

    async def list_payments(self, user_id: str, limit: int = 100) -> list[Payment]:
        """Payments of a user, newest first."""
        records = await self._coordinator.store.query(
            PAYMENTS,
            filters={"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        return [Payment.from_dict(r) for r in records]
