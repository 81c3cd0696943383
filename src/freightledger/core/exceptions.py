"""
Exception hierarchy for FreightLedger.

All ledger-specific exceptions inherit from FreightLedgerError for easy catching.
Every exception carries an ErrorKind so callers can branch on a stable value
instead of parsing messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Discriminator for every failure the ledger can report."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    ILLEGAL_TRANSITION = "illegal_transition"
    NOT_AUTHORIZED = "not_authorized"
    JOB_ALREADY_ESCROWED = "job_already_escrowed"
    ESCROW_NOT_FOUND = "escrow_not_found"
    ESCROW_ALREADY_FINALIZED = "escrow_already_finalized"
    NO_TRANSPORTER_ASSIGNED = "no_transporter_assigned"
    INVALID_STATE = "invalid_state"
    STORE_UNAVAILABLE = "store_unavailable"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    PAYMENT_DECLINED = "payment_declined"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"


class FreightLedgerError(Exception):
    """
    Base exception for all FreightLedger errors.

    Catch this to handle any ledger-related exception.

    Example:
        >>> try:
        ...     await wallets.withdraw("user-1", 100, "0123456789")
        ... except FreightLedgerError as e:
        ...     print(e.kind)
    """

    kind: ErrorKind = ErrorKind.INVALID_REQUEST
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(FreightLedgerError):
    """
    Input validation error.

    Raised when:
    - An amount is not a positive integer of minor units
    - A status or role value is unknown
    - A rating is out of range
    """

    kind = ErrorKind.INVALID_REQUEST


class InsufficientFundsError(FreightLedgerError):
    """Wallet does not have enough balance for a debit."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(
        self,
        message: str,
        user_id: str,
        current_balance: int,
        required_amount: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.user_id = user_id
        self.current_balance = current_balance
        self.required_amount = required_amount
        self.shortfall = required_amount - current_balance

    def __str__(self) -> str:
        return (
            f"{self.message} | "
            f"Balance: {self.current_balance}, Required: {self.required_amount}, "
            f"Shortfall: {self.shortfall}"
        )


class IllegalTransitionError(FreightLedgerError):
    """Requested job status is not reachable from the current one."""

    kind = ErrorKind.ILLEGAL_TRANSITION

    def __init__(
        self,
        message: str,
        job_id: str,
        current: str,
        target: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.job_id = job_id
        self.current = current
        self.target = target

    def __str__(self) -> str:
        return f"{self.message} ({self.current} -> {self.target})"


class NotAuthorizedError(FreightLedgerError):
    """Actor is not allowed to perform the operation on this job."""

    kind = ErrorKind.NOT_AUTHORIZED

    def __init__(
        self,
        message: str,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.actor_id = actor_id


class JobAlreadyEscrowedError(FreightLedgerError):
    """An escrow already exists for the job."""

    kind = ErrorKind.JOB_ALREADY_ESCROWED

    def __init__(self, message: str, job_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)
        self.job_id = job_id


class EscrowNotFoundError(FreightLedgerError):
    """No escrow exists for the job."""

    kind = ErrorKind.ESCROW_NOT_FOUND

    def __init__(self, message: str, job_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)
        self.job_id = job_id


class EscrowAlreadyFinalizedError(FreightLedgerError):
    """
    Escrow is already released or refunded.

    Raised instead of crediting a second time when release/refund is retried.
    """

    kind = ErrorKind.ESCROW_ALREADY_FINALIZED

    def __init__(
        self,
        message: str,
        job_id: str,
        status: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.job_id = job_id
        self.status = status


class NoTransporterAssignedError(FreightLedgerError):
    """Escrow cannot be released because nobody accepted the job."""

    kind = ErrorKind.NO_TRANSPORTER_ASSIGNED

    def __init__(self, message: str, job_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)
        self.job_id = job_id


class InvalidStateError(FreightLedgerError):
    """Operation is not allowed in the job's current status."""

    kind = ErrorKind.INVALID_STATE


class NotFoundError(FreightLedgerError):
    """Requested record does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        collection: str,
        key: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.collection = collection
        self.key = key


class StoreUnavailableError(FreightLedgerError):
    """
    Storage backend failed or timed out.

    Raised when:
    - A backend call exceeds the configured store timeout
    - The backend raises (connection refused, protocol error, ...)
    - An entity lock cannot be acquired in time

    The enclosing atomic scope has been rolled back; the call can be retried.
    """

    kind = ErrorKind.STORE_UNAVAILABLE
    retryable = True

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.operation = operation


class ConcurrentModificationError(StoreUnavailableError):
    """A record changed between read and commit (compare-and-swap failed)."""

    def __init__(
        self,
        message: str,
        collection: str,
        key: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, operation="commit", details=details)
        self.collection = collection
        self.key = key


class PaymentDeclinedError(FreightLedgerError):
    """The payment gateway refused a collection or payout."""

    kind = ErrorKind.PAYMENT_DECLINED

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        amount: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.user_id = user_id
        self.amount = amount


class PaymentGatewayError(FreightLedgerError):
    """
    The payment gateway failed without a decision (timeout, transport error).

    Collections are keyed by the pending Payment ID, so repeating the same
    deposit is safe. Payouts that fail this way have already been reversed.
    """

    kind = ErrorKind.GATEWAY_UNAVAILABLE
    retryable = True

    def __init__(
        self,
        message: str,
        operation: str,
        user_id: str | None = None,
        amount: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.operation = operation
        self.user_id = user_id
        self.amount = amount
