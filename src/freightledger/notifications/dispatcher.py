"""
Event dispatcher.

Fans committed ledger events out to notifiers in the background. Delivery is
best-effort: a slow or failing notifier never delays or fails the operation
that produced the event.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from freightledger.notifications.events import LedgerEvent

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Receiver of ledger events (push service, webhook, audit log...)."""

    @abstractmethod
    async def notify(self, event: LedgerEvent) -> None:
        ...


class LoggingNotifier(Notifier):
    """Writes every event to the freightledger log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def notify(self, event: LedgerEvent) -> None:
        logger.log(self._level, f"Event {event.type.value} for {list(event.user_ids)}: {event.data}")


class EventDispatcher:
    """
    Schedules delivery of events to all registered notifiers.

    ``emit`` returns immediately; call ``flush`` to wait for in-flight
    deliveries (on shutdown, or in tests).
    """

    def __init__(self, notifiers: list[Notifier] | None = None) -> None:
        self._notifiers: list[Notifier] = list(notifiers or [])
        self._tasks: set[asyncio.Task] = set()

    def add_notifier(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    def emit(self, event: LedgerEvent) -> None:
        """Schedule delivery of ``event`` to every notifier."""
        for notifier in self._notifiers:
            task = asyncio.get_running_loop().create_task(self._deliver(notifier, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, notifier: Notifier, event: LedgerEvent) -> None:
        try:
            await notifier.notify(event)
        except Exception as e:
            logger.warning(
                f"Notifier {type(notifier).__name__} failed for event {event.id} "
                f"({event.type.value}): {e}"
            )

    async def flush(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
