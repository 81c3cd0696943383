"""Tests for the FreightLedger client."""

import asyncio
import logging
from unittest.mock import patch

import pytest
from conftest import CLIENT_ID, TRANSPORTER_ID, RecordingNotifier

from freightledger import (
    Actor,
    Config,
    ErrorKind,
    FreightLedger,
    InsufficientFundsError,
    JobStatus,
)
from freightledger.notifications.dispatcher import LoggingNotifier, Notifier
from freightledger.notifications.webhook import WebhookNotifier
from freightledger.storage.memory import InMemoryStorage


class ExplodingNotifier(Notifier):
    async def notify(self, event):
        raise RuntimeError("push service down")


class SlowStorage(InMemoryStorage):
    """Commits hang past the store timeout."""

    async def commit(self, writes, preconditions):
        await asyncio.sleep(5)
        await super().commit(writes, preconditions)


class TestClientInit:
    def test_default_wiring(self, config):
        ledger = FreightLedger(config=config)

        assert isinstance(ledger.storage, InMemoryStorage)
        assert [type(n) for n in ledger.dispatcher.notifiers] == [LoggingNotifier]

    def test_webhook_notifier_from_config(self, config):
        ledger = FreightLedger(
            config=config.with_updates(webhook_url="https://dispatch.example/hook")
        )

        assert any(isinstance(n, WebhookNotifier) for n in ledger.dispatcher.notifiers)

    def test_config_from_env_by_default(self):
        with patch.dict("os.environ", {"FREIGHTLEDGER_CURRENCY": "UGX"}, clear=True):
            ledger = FreightLedger()

        assert ledger.config.currency == "UGX"
        assert logging.getLogger("freightledger").level == logging.INFO

    @pytest.mark.asyncio
    async def test_health_check(self, ledger):
        assert await ledger.health_check() is True


class TestResults:
    """Every operation reports a LedgerResult."""

    @pytest.mark.asyncio
    async def test_scenario_results(self, ledger, details, client_actor, transporter_actor):
        assert (await ledger.deposit(CLIENT_ID, 50_000, "mobile money")).ok

        job = (await ledger.create_job(CLIENT_ID, details)).unwrap()
        published = await ledger.publish(job.id, 50_000)
        assert published.ok
        assert published.value.status == JobStatus.PENDING

        for status in ("accepted", "picked_up", "in_transit", "delivered", "completed"):
            result = await ledger.advance_status(job.id, status, transporter_actor)
            assert result.ok, result.error

        assert (await ledger.get_wallet(CLIENT_ID)).value.balance == 0
        assert (await ledger.get_wallet(TRANSPORTER_ID)).value.balance == 50_000
        assert (await ledger.get_escrow(job.id)).value.status.value == "released"

    @pytest.mark.asyncio
    async def test_failure_carries_kind(self, ledger):
        await ledger.deposit(CLIENT_ID, 50, "mobile money")

        result = await ledger.withdraw(CLIENT_ID, 100, "0123456789")

        assert not result.ok
        assert result.kind == ErrorKind.INSUFFICIENT_FUNDS
        assert isinstance(result.error, InsufficientFundsError)
        assert (await ledger.get_wallet(CLIENT_ID)).value.balance == 50

    @pytest.mark.asyncio
    async def test_not_found(self, ledger):
        result = await ledger.get_job("job_missing")

        assert result.kind == ErrorKind.NOT_FOUND
        assert (await ledger.get_escrow("job_missing")).kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_request(self, ledger, details, client_actor):
        job = (await ledger.create_job(CLIENT_ID, details)).unwrap()

        assert (await ledger.advance_status(job.id, "flying", client_actor)).kind == (
            ErrorKind.INVALID_REQUEST
        )
        assert (await ledger.deposit(CLIENT_ID, 12.5, "card")).kind == ErrorKind.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_illegal_and_unauthorized(self, ledger, details, client_actor):
        await ledger.deposit(CLIENT_ID, 10_000, "mobile money")
        job = (await ledger.create_job(CLIENT_ID, details)).unwrap()
        await ledger.publish(job.id, 10_000)

        assert (await ledger.advance_status(job.id, "completed", client_actor)).kind == (
            ErrorKind.ILLEGAL_TRANSITION
        )
        assert (await ledger.advance_status(job.id, "accepted", client_actor)).kind == (
            ErrorKind.NOT_AUTHORIZED
        )

    @pytest.mark.asyncio
    async def test_listing(self, ledger, details, transporter_actor):
        await ledger.deposit(CLIENT_ID, 10_000, "mobile money")
        job = (await ledger.create_job(CLIENT_ID, details)).unwrap()
        await ledger.publish(job.id, 10_000)
        await ledger.advance_status(job.id, "accepted", transporter_actor)
        await ledger.record_location(job.id, details.pickup_location, transporter_actor)

        visible = (await ledger.list_jobs(TRANSPORTER_ID, "transporter")).value
        assert [j.id for j in visible] == [job.id]
        assert len((await ledger.list_tracking(job.id)).value) == 1
        assert len((await ledger.list_payments(CLIENT_ID)).value) == 2

    @pytest.mark.asyncio
    async def test_editing_operations(self, ledger, details, client_actor):
        job = (await ledger.create_job(CLIENT_ID, details)).unwrap()

        assert (await ledger.update_job(job.id, client_actor, details)).ok
        assert (await ledger.rate_job(job.id, client_actor, 5)).kind == ErrorKind.INVALID_STATE
        assert (await ledger.delete_job(job.id, client_actor)).ok
        assert (await ledger.get_job(job.id)).kind == ErrorKind.NOT_FOUND


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_store_timeout_leaves_no_partial_state(self, details):
        storage = SlowStorage()
        config = Config(store_timeout=0.05, log_level="WARNING")
        ledger = FreightLedger(config=config, storage=storage)

        result = await ledger.deposit(CLIENT_ID, 1_000, "mobile money")

        assert result.kind == ErrorKind.STORE_UNAVAILABLE
        assert result.error.retryable
        assert await storage.get("wallets", CLIENT_ID) is None
        assert await storage.count("payments") == 0


class TestNotifications:
    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_fail_operation(self, config, storage):
        recorder = RecordingNotifier()
        ledger = FreightLedger(
            config=config, storage=storage, notifiers=[ExplodingNotifier(), recorder]
        )

        result = await ledger.deposit(CLIENT_ID, 500, "mobile money")
        await ledger.flush()

        assert result.ok
        assert recorder.types() == ["payment.completed"]

    @pytest.mark.asyncio
    async def test_no_events_for_failed_operations(self, ledger, recorder):
        await ledger.withdraw(CLIENT_ID, 100, "0123456789")
        await ledger.flush()

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_close(self, ledger):
        await ledger.deposit(CLIENT_ID, 500, "mobile money")

        await ledger.close()


def test_actor_shortcuts():
    assert Actor.client("c").role.value == "client"
    assert Actor.transporter("t").role.value == "transporter"
