"""
FreightLedger - Wallets, escrow and job lifecycle for a freight marketplace

Clients fund jobs from their wallet, the funds are held in escrow while a
transporter moves the load, and released on completion or refunded on
cancellation. Every money movement is atomic and auditable.

Usage:
    >>> from freightledger import FreightLedger, Actor, JobDetails, Location
    >>>
    >>> ledger = FreightLedger()
    >>> await ledger.deposit("client-1", 50_000, "mobile money")
    >>> job = (await ledger.create_job("client-1", JobDetails(
    ...     pickup_location=Location(-1.29, 36.82),
    ...     dropoff_location=Location(-4.04, 39.67),
    ... ))).unwrap()
    >>> await ledger.publish(job.id, 50_000)
    >>> await ledger.advance_status(job.id, "accepted", Actor.transporter("truck-7"))
"""

from freightledger.client import FreightLedger
from freightledger.core.config import Config
from freightledger.core.exceptions import (
    ConcurrentModificationError,
    ErrorKind,
    EscrowAlreadyFinalizedError,
    EscrowNotFoundError,
    FreightLedgerError,
    IllegalTransitionError,
    InsufficientFundsError,
    InvalidStateError,
    JobAlreadyEscrowedError,
    NoTransporterAssignedError,
    NotAuthorizedError,
    NotFoundError,
    PaymentDeclinedError,
    PaymentGatewayError,
    StoreUnavailableError,
    ValidationError,
)
from freightledger.core.types import (
    Actor,
    Escrow,
    EscrowStatus,
    Job,
    JobDetails,
    JobStatus,
    LedgerResult,
    Location,
    Payment,
    PaymentStatus,
    PaymentType,
    TrackingRecord,
    UserRole,
    Wallet,
)
from freightledger.notifications import EventType, LedgerEvent, Notifier, WebhookNotifier
from freightledger.payment import PaymentGateway, SimulatedGateway

__version__ = "0.1.0"
__all__ = [
    # Main Client
    "FreightLedger",
    # Config
    "Config",
    # Types
    "Actor",
    "UserRole",
    "Location",
    "Wallet",
    "Payment",
    "PaymentType",
    "PaymentStatus",
    "Escrow",
    "EscrowStatus",
    "Job",
    "JobDetails",
    "JobStatus",
    "TrackingRecord",
    "LedgerResult",
    # Exceptions
    "ErrorKind",
    "FreightLedgerError",
    "ValidationError",
    "InsufficientFundsError",
    "IllegalTransitionError",
    "NotAuthorizedError",
    "JobAlreadyEscrowedError",
    "EscrowNotFoundError",
    "EscrowAlreadyFinalizedError",
    "NoTransporterAssignedError",
    "InvalidStateError",
    "NotFoundError",
    "StoreUnavailableError",
    "ConcurrentModificationError",
    "PaymentDeclinedError",
    "PaymentGatewayError",
    # Notifications
    "EventType",
    "LedgerEvent",
    "Notifier",
    "WebhookNotifier",
    # Payment gateway
    "PaymentGateway",
    "SimulatedGateway",
]
