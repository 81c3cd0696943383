"""
Payment gateway capability.

Money enters the platform through a collection (mobile money, card) and
leaves through a payout to a bank account. Real providers plug in by
implementing PaymentGateway; declines are reported by raising
PaymentDeclinedError. Every request carries an idempotency key (the ID of
the Payment it settles) and providers must not move money twice for one key.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TypeVar

from freightledger.core.exceptions import FreightLedgerError, PaymentGatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_gateway(awaitable: Awaitable[T], operation: str, user_id: str, amount: int) -> T:
    """
    Await a gateway request.

    Raises:
        PaymentDeclinedError: Passed through from the provider
        PaymentGatewayError: On any non-ledger provider exception
    """
    try:
        return await awaitable
    except FreightLedgerError:
        raise
    except Exception as e:
        logger.warning(f"Gateway {operation} of {amount} for {user_id} failed: {e!r}")
        raise PaymentGatewayError(
            f"Gateway {operation} failed: {e}",
            operation=operation,
            user_id=user_id,
            amount=amount,
        ) from e


class PaymentGateway(ABC):
    """Abstract external payment provider."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logs."""
        ...

    @abstractmethod
    async def collect(self, user_id: str, amount: int, method: str, idempotency_key: str) -> str:
        """
        Collect ``amount`` minor units from the user.

        A repeated call with the same ``idempotency_key`` returns the original
        reference without charging again.

        Returns:
            Provider reference for the collection

        Raises:
            PaymentDeclinedError: If the provider refuses
        """
        ...

    @abstractmethod
    async def payout(self, user_id: str, amount: int, bank_ref: str, idempotency_key: str) -> str:
        """
        Send ``amount`` minor units to the user's bank account.

        Returns:
            Provider reference for the payout

        Raises:
            PaymentDeclinedError: If the provider refuses
        """
        ...


class SimulatedGateway(PaymentGateway):
    """Gateway that approves every request. Used in development and tests."""

    def __init__(self) -> None:
        self._references: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "simulated"

    async def collect(self, user_id: str, amount: int, method: str, idempotency_key: str) -> str:
        if idempotency_key in self._references:
            return self._references[idempotency_key]

        reference = f"sim-col-{uuid.uuid4().hex[:12]}"
        self._references[idempotency_key] = reference
        logger.debug(f"Simulated collection of {amount} from {user_id} via {method}: {reference}")
        return reference

    async def payout(self, user_id: str, amount: int, bank_ref: str, idempotency_key: str) -> str:
        if idempotency_key in self._references:
            return self._references[idempotency_key]

        reference = f"sim-pay-{uuid.uuid4().hex[:12]}"
        self._references[idempotency_key] = reference
        logger.debug(f"Simulated payout of {amount} to {user_id}: {reference}")
        return reference
