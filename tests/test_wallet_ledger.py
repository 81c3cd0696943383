"""Tests for WalletLedger."""

import asyncio
from unittest.mock import patch

import httpx
import pytest
from conftest import CLIENT_ID

from freightledger import FreightLedger
from freightledger.core.exceptions import (
    ErrorKind,
    InsufficientFundsError,
    PaymentDeclinedError,
    PaymentGatewayError,
    StoreUnavailableError,
    ValidationError,
)
from freightledger.core.types import PaymentStatus, PaymentType
from freightledger.payment.gateway import SimulatedGateway


class DecliningGateway(SimulatedGateway):
    """Refuses every payout (and optionally every collection)."""

    def __init__(self, decline_collect: bool = False) -> None:
        super().__init__()
        self.decline_collect = decline_collect
        self.payouts = 0

    async def collect(self, user_id, amount, method, idempotency_key):
        if self.decline_collect:
            raise PaymentDeclinedError("Card declined", user_id=user_id, amount=amount)
        return await super().collect(user_id, amount, method, idempotency_key)

    async def payout(self, user_id, amount, bank_ref, idempotency_key):
        self.payouts += 1
        raise PaymentDeclinedError("Bank rejected payout", user_id=user_id, amount=amount)


class FlakyGateway(SimulatedGateway):
    """
    Provider whose first ``timeouts`` calls time out.

    Collections are charged once per idempotency key, like a real provider.
    """

    def __init__(self, timeouts: int = 0) -> None:
        super().__init__()
        self.timeouts = timeouts
        self.collect_keys = []
        self.charged = {}

    def _maybe_time_out(self):
        if self.timeouts:
            self.timeouts -= 1
            request = httpx.Request("POST", "https://provider.example/v1/transfers")
            raise httpx.ConnectTimeout("provider timed out", request=request)

    async def collect(self, user_id, amount, method, idempotency_key):
        self.collect_keys.append(idempotency_key)
        self._maybe_time_out()
        self.charged.setdefault(idempotency_key, amount)
        return await super().collect(user_id, amount, method, idempotency_key)

    async def payout(self, user_id, amount, bank_ref, idempotency_key):
        self._maybe_time_out()
        return await super().payout(user_id, amount, bank_ref, idempotency_key)


def fail_commit(storage, call_number):
    """Make the ``call_number``-th storage commit fail like a dropped connection."""
    original = storage.commit
    calls = []

    async def commit(writes, preconditions):
        calls.append(writes)
        if len(calls) == call_number:
            raise ConnectionError("connection reset by peer")
        await original(writes, preconditions)

    return patch.object(storage, "commit", side_effect=commit)


class TestDeposit:
    @pytest.mark.asyncio
    async def test_deposit_credits_wallet(self, ledger):
        """Deposit 50000 into an empty wallet."""
        payment = await ledger.wallets.deposit(CLIENT_ID, 50_000, "mobile money")

        wallet = await ledger.wallets.get_wallet(CLIENT_ID)
        assert wallet.balance == 50_000
        assert wallet.currency == "KES"

        payments = await ledger.wallets.list_payments(CLIENT_ID)
        assert payments == [payment]
        assert payment.amount == 50_000
        assert payment.type == PaymentType.DEPOSIT
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.description == "Wallet top-up via mobile money"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 10.5])
    async def test_invalid_amount(self, ledger, amount):
        with pytest.raises(ValidationError):
            await ledger.wallets.deposit(CLIENT_ID, amount, "card")

        assert await ledger.wallets.list_payments(CLIENT_ID) == []

    @pytest.mark.asyncio
    async def test_declined_collection_records_failed_payment(self, config, storage):
        ledger = FreightLedger(
            config=config, storage=storage, gateway=DecliningGateway(True), notifiers=[]
        )

        with pytest.raises(PaymentDeclinedError) as exc_info:
            await ledger.wallets.deposit(CLIENT_ID, 1_000, "card")

        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 0
        [payment] = await ledger.wallets.list_payments(CLIENT_ID)
        assert payment.status == PaymentStatus.FAILED
        assert payment.amount == 1_000
        assert exc_info.value.details["payment_id"] == payment.id

    @pytest.mark.asyncio
    async def test_store_failure_after_collection_is_resumable(self, config, storage):
        """Commit of the credit fails after the provider took the money."""
        gateway = FlakyGateway()
        ledger = FreightLedger(config=config, storage=storage, gateway=gateway, notifiers=[])

        # Commit 1 writes the pending payment, commit 2 settles it
        with fail_commit(storage, 2):
            result = await ledger.deposit(CLIENT_ID, 50_000, "mobile money")

        assert result.kind == ErrorKind.STORE_UNAVAILABLE
        assert gateway.charged and sum(gateway.charged.values()) == 50_000
        [pending] = await ledger.wallets.list_payments(CLIENT_ID)
        assert pending.status == PaymentStatus.PENDING
        assert result.error.details["payment_id"] == pending.id
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 0

        retried = await ledger.deposit(CLIENT_ID, 50_000, "mobile money", pending.id)

        assert retried.ok
        assert retried.value.id == pending.id
        assert retried.value.status == PaymentStatus.COMPLETED
        assert gateway.collect_keys == [pending.id, pending.id]
        assert sum(gateway.charged.values()) == 50_000
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 50_000
        assert len(await ledger.wallets.list_payments(CLIENT_ID)) == 1

    @pytest.mark.asyncio
    async def test_pending_insert_failure_collects_nothing(self, config, storage):
        gateway = FlakyGateway()
        ledger = FreightLedger(config=config, storage=storage, gateway=gateway, notifiers=[])

        with fail_commit(storage, 1):
            with pytest.raises(StoreUnavailableError):
                await ledger.wallets.deposit(CLIENT_ID, 50_000, "mobile money")

        assert gateway.collect_keys == []
        assert await ledger.wallets.list_payments(CLIENT_ID) == []

    @pytest.mark.asyncio
    async def test_gateway_timeout_leaves_pending_deposit(self, config, storage):
        gateway = FlakyGateway(timeouts=1)
        ledger = FreightLedger(config=config, storage=storage, gateway=gateway, notifiers=[])

        result = await ledger.deposit(CLIENT_ID, 2_000, "card")

        assert result.kind == ErrorKind.GATEWAY_UNAVAILABLE
        assert result.error.retryable
        assert isinstance(result.error.__cause__, httpx.ConnectTimeout)
        payment_id = result.error.details["payment_id"]
        [pending] = await ledger.wallets.list_payments(CLIENT_ID)
        assert (pending.id, pending.status) == (payment_id, PaymentStatus.PENDING)

        retried = await ledger.deposit(CLIENT_ID, 2_000, "card", payment_id)

        assert retried.value.status == PaymentStatus.COMPLETED
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 2_000

    @pytest.mark.asyncio
    async def test_completed_deposit_replays(self, ledger):
        first = await ledger.wallets.deposit(CLIENT_ID, 700, "mobile money")

        again = await ledger.wallets.deposit(CLIENT_ID, 700, "mobile money", first.id)

        assert again == first
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 700

    @pytest.mark.asyncio
    async def test_payment_id_of_other_request_rejected(self, ledger):
        first = await ledger.wallets.deposit(CLIENT_ID, 700, "mobile money")

        with pytest.raises(ValidationError):
            await ledger.wallets.deposit(CLIENT_ID, 900, "mobile money", first.id)

        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 700


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_withdraw_debits_wallet(self, ledger):
        await ledger.wallets.deposit(CLIENT_ID, 500, "mobile money")

        payment = await ledger.wallets.withdraw(CLIENT_ID, 200, "0123456789")

        assert payment.amount == -200
        assert payment.type == PaymentType.WITHDRAWAL
        assert payment.description == "Withdrawal to bank account ending in 6789"
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 300

    @pytest.mark.asyncio
    async def test_withdraw_more_than_balance(self, ledger):
        """Withdraw 100 with a balance of 50."""
        await ledger.wallets.deposit(CLIENT_ID, 50, "mobile money")

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.wallets.withdraw(CLIENT_ID, 100, "0123456789")

        assert exc_info.value.shortfall == 50
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 50
        assert len(await ledger.wallets.list_payments(CLIENT_ID)) == 1

    @pytest.mark.asyncio
    async def test_withdraw_from_unknown_user(self, ledger):
        with pytest.raises(InsufficientFundsError):
            await ledger.wallets.withdraw("nobody", 1, "0000")

    @pytest.mark.asyncio
    async def test_declined_payout_is_reversed(self, config, storage):
        gateway = DecliningGateway()
        ledger = FreightLedger(config=config, storage=storage, gateway=gateway, notifiers=[])
        await ledger.wallets.deposit(CLIENT_ID, 1_000, "mobile money")

        with pytest.raises(PaymentDeclinedError):
            await ledger.wallets.withdraw(CLIENT_ID, 400, "0123456789")

        assert gateway.payouts == 1
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 1_000
        amounts = sorted(p.amount for p in await ledger.wallets.list_payments(CLIENT_ID))
        assert amounts == [-400, 400, 1_000]

    @pytest.mark.asyncio
    async def test_payout_transport_error_is_reversed(self, config, storage):
        gateway = FlakyGateway()
        ledger = FreightLedger(config=config, storage=storage, gateway=gateway, notifiers=[])
        await ledger.wallets.deposit(CLIENT_ID, 1_000, "mobile money")
        gateway.timeouts = 1

        result = await ledger.withdraw(CLIENT_ID, 400, "0123456789")

        assert not result.ok
        assert result.kind == ErrorKind.GATEWAY_UNAVAILABLE
        assert isinstance(result.error, PaymentGatewayError)
        assert result.error.operation == "payout"
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 1_000
        payments = await ledger.wallets.list_payments(CLIENT_ID)
        debit = next(p for p in payments if p.amount == -400)
        assert result.error.details["payment_id"] == debit.id
        assert any(p.description == f"Withdrawal reversal for {debit.id}" for p in payments)
        assert sum(p.amount for p in payments) == 1_000

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_never_overdraw(self, ledger):
        await ledger.wallets.deposit(CLIENT_ID, 100, "mobile money")

        results = await asyncio.gather(
            *(ledger.wallets.withdraw(CLIENT_ID, 30, "0123456789") for _ in range(10)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 3
        assert all(isinstance(e, InsufficientFundsError) for e in failed)
        assert (await ledger.wallets.get_wallet(CLIENT_ID)).balance == 10


class TestApplyDelta:
    @pytest.mark.asyncio
    async def test_balance_matches_payment_sum(self, ledger):
        await ledger.wallets.apply_delta(CLIENT_ID, 700, PaymentType.DEPOSIT)
        await ledger.wallets.apply_delta(CLIENT_ID, -250, PaymentType.FEE, "Platform fee")
        await ledger.wallets.apply_delta(CLIENT_ID, 50, PaymentType.ESCROW)

        wallet = await ledger.wallets.get_wallet(CLIENT_ID)
        payments = await ledger.wallets.list_payments(CLIENT_ID)
        assert wallet.balance == 500
        assert sum(p.amount for p in payments) == wallet.balance

    @pytest.mark.asyncio
    async def test_zero_delta_rejected(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.wallets.apply_delta(CLIENT_ID, 0, PaymentType.DEPOSIT)

    @pytest.mark.asyncio
    async def test_list_payments_newest_first(self, ledger):
        for amount in (1, 2, 3):
            await ledger.wallets.apply_delta(CLIENT_ID, amount, PaymentType.DEPOSIT)

        payments = await ledger.wallets.list_payments(CLIENT_ID, limit=2)

        assert len(payments) == 2
        assert payments[0].created_at >= payments[1].created_at


class TestGetWallet:
    @pytest.mark.asyncio
    async def test_created_lazily_once(self, ledger, storage):
        first = await ledger.wallets.get_wallet("new-user")
        second = await ledger.wallets.get_wallet("new-user")

        assert first.balance == 0
        assert first.id == second.id
        assert await storage.count("wallets") == 1

    @pytest.mark.asyncio
    async def test_payment_event_emitted(self, ledger, recorder):
        await ledger.wallets.deposit(CLIENT_ID, 10, "mobile money")
        await ledger.flush()

        assert recorder.types() == ["payment.completed"]
        assert recorder.events[0].data["balance"] == 10
        assert recorder.events[0].user_ids == (CLIENT_ID,)
