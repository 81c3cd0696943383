"""Tests for EventDispatcher."""

import asyncio

import pytest
from conftest import RecordingNotifier

from freightledger.notifications.dispatcher import EventDispatcher, LoggingNotifier, Notifier
from freightledger.notifications.events import EventType, LedgerEvent


class FailingNotifier(Notifier):
    def __init__(self) -> None:
        self.calls = 0

    async def notify(self, event):
        self.calls += 1
        raise ConnectionError("dispatch service unreachable")


class SlowNotifier(RecordingNotifier):
    async def notify(self, event):
        await asyncio.sleep(0.05)
        await super().notify(event)


def make_event(event_type=EventType.JOB_CREATED):
    return LedgerEvent(type=event_type, data={"id": "job_1"}, user_ids=("client-1",))


class TestEventDispatcher:
    @pytest.mark.asyncio
    async def test_emit_returns_before_delivery(self):
        slow = SlowNotifier()
        dispatcher = EventDispatcher([slow])

        dispatcher.emit(make_event())
        assert slow.events == []

        await dispatcher.flush()
        assert slow.types() == ["job.created"]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self):
        failing = FailingNotifier()
        recorder = RecordingNotifier()
        dispatcher = EventDispatcher([failing, recorder])

        dispatcher.emit(make_event(EventType.ESCROW_HELD))
        dispatcher.emit(make_event(EventType.ESCROW_RELEASED))
        await dispatcher.flush()

        assert failing.calls == 2
        assert recorder.types() == ["escrow.held", "escrow.released"]

    @pytest.mark.asyncio
    async def test_add_notifier(self):
        dispatcher = EventDispatcher()
        recorder = RecordingNotifier()
        dispatcher.add_notifier(recorder)
        dispatcher.add_notifier(LoggingNotifier())

        dispatcher.emit(make_event())
        await dispatcher.flush()

        assert len(dispatcher.notifiers) == 2
        assert recorder.types() == ["job.created"]

    @pytest.mark.asyncio
    async def test_flush_without_events(self):
        await EventDispatcher().flush()


def test_event_to_dict():
    event = make_event(EventType.PAYMENT_COMPLETED)

    data = event.to_dict()

    assert data["type"] == "payment.completed"
    assert data["user_ids"] == ["client-1"]
    assert data["id"].startswith("evt_")
