"""
Type definitions for FreightLedger.

This module contains the enums, records and result types shared by the
wallet ledger, escrow manager and job lifecycle manager. Every persisted
record converts to and from a plain dict; money is always an int of minor
currency units and timestamps are ISO-8601 strings.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from freightledger.core.exceptions import ErrorKind, FreightLedgerError, ValidationError

T = TypeVar("T")


def utc_now() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def require_amount(amount: Any, *, allow_negative: bool = False) -> int:
    """
    Validate a money amount in minor units.

    Args:
        amount: Candidate amount
        allow_negative: Accept debits (non-zero is still required)

    Returns:
        The amount as int

    Raises:
        ValidationError: If amount is not an int, is zero, or has the wrong sign
    """
    # bool is an int subclass; True is never a price
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(
            f"Amount must be an integer of minor units, got {type(amount).__name__}",
            details={"amount": repr(amount)},
        )
    if amount == 0:
        raise ValidationError("Amount must not be zero")
    if amount < 0 and not allow_negative:
        raise ValidationError(f"Amount must be positive, got {amount}")
    return amount


class UserRole(str, Enum):
    """Roles supplied by the identity provider."""

    CLIENT = "client"
    TRANSPORTER = "transporter"
    ADMIN = "admin"
    FINANCE = "finance"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    DRAFT = "draft"
    PENDING = "pending"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: JobStatus | str) -> JobStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                f"Unknown job status: {value}. Supported: {[s.value for s in cls]}"
            ) from None

    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED)

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.DRAFT: frozenset({JobStatus.PENDING, JobStatus.CANCELLED}),
    JobStatus.PENDING: frozenset({JobStatus.ACCEPTED, JobStatus.CANCELLED}),
    JobStatus.ACCEPTED: frozenset({JobStatus.PICKED_UP, JobStatus.CANCELLED}),
    JobStatus.PICKED_UP: frozenset({JobStatus.IN_TRANSIT, JobStatus.CANCELLED}),
    JobStatus.IN_TRANSIT: frozenset({JobStatus.DELIVERED, JobStatus.CANCELLED}),
    JobStatus.DELIVERED: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# Statuses some legal transition leads into; only these can be replayed
REACHABLE_STATUSES = frozenset().union(*ALLOWED_TRANSITIONS.values())

# Statuses in which the transporter is on the road and reports its position
TRACKABLE_STATUSES = frozenset({JobStatus.ACCEPTED, JobStatus.PICKED_UP, JobStatus.IN_TRANSIT})


class PaymentType(str, Enum):
    """Kinds of balance-affecting events."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    ESCROW = "escrow"
    ESCROW_RELEASE = "escrow_release"
    FEE = "fee"


class PaymentStatus(str, Enum):
    """Status of a payment record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class EscrowStatus(str, Enum):
    """Escrow lifecycle status."""

    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"

    def is_terminal(self) -> bool:
        return self != EscrowStatus.HELD


@dataclass(frozen=True)
class Actor:
    """Verified caller identity supplied by the session provider."""

    user_id: str
    role: UserRole

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValidationError("Actor user_id is required")
        if not isinstance(self.role, UserRole):
            object.__setattr__(self, "role", UserRole(self.role))

    @classmethod
    def client(cls, user_id: str) -> Actor:
        return cls(user_id, UserRole.CLIENT)

    @classmethod
    def transporter(cls, user_id: str) -> Actor:
        return cls(user_id, UserRole.TRANSPORTER)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class Location:
    """A point on the map, optionally with a geocoded address."""

    latitude: float
    longitude: float
    address: str | None = None

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValidationError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValidationError(f"Longitude out of range: {self.longitude}")

    def to_dict(self) -> dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, "address": self.address}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Location:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            address=data.get("address"),
        )


def _location_or_none(data: dict[str, Any] | None) -> Location | None:
    return Location.from_dict(data) if data else None


@dataclass
class Wallet:
    """Per-user stored balance in minor units."""

    user_id: str
    balance: int = 0
    currency: str = "KES"
    id: str = field(default_factory=lambda: new_id("wal"))
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance": self.balance,
            "currency": self.currency,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Wallet:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            balance=int(data["balance"]),
            currency=data["currency"],
            created_at=data["created_at"],
            updated_at=data.get("updated_at", data["created_at"]),
        )


@dataclass(frozen=True)
class Payment:
    """
    Immutable audit record of one balance-affecting event.

    Attributes:
        id: Unique payment ID
        user_id: Wallet owner
        amount: Signed minor units (positive = credit, negative = debit)
        type: Kind of event
        status: Completed for every ledger-applied delta
        description: Developer-facing note (job reference, payment method)
        created_at: ISO-8601 timestamp
    """

    user_id: str
    amount: int
    type: PaymentType
    status: PaymentStatus = PaymentStatus.COMPLETED
    description: str = ""
    id: str = field(default_factory=lambda: new_id("pay"))
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "type": self.type.value,
            "status": self.status.value,
            "description": self.description,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Payment:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            amount=int(data["amount"]),
            type=PaymentType(data["type"]),
            status=PaymentStatus(data["status"]),
            description=data.get("description", ""),
            created_at=data["created_at"],
        )


def escrow_id_for(job_id: str) -> str:
    """Escrow IDs derive from the job so a second hold collides on insert."""
    return f"esc_{job_id}"


@dataclass
class Escrow:
    """Funds held between job publication and completion or cancellation."""

    job_id: str
    amount: int
    status: EscrowStatus = EscrowStatus.HELD
    id: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.id:
            self.id = escrow_id_for(self.job_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "amount": self.amount,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Escrow:
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            amount=int(data["amount"]),
            status=EscrowStatus(data["status"]),
            created_at=data["created_at"],
            updated_at=data.get("updated_at", data["created_at"]),
        )


@dataclass
class JobDetails:
    """Caller-editable part of a job."""

    pickup_location: Location
    dropoff_location: Location
    description: str | None = None
    vehicle_type_id: int | None = None
    distance: float | None = None
    duration: float | None = None


@dataclass
class Job:
    """A shipment request and its lifecycle state."""

    client_id: str
    pickup_location: Location
    dropoff_location: Location
    status: JobStatus = JobStatus.DRAFT
    transporter_id: str | None = None
    price: int | None = None
    description: str | None = None
    vehicle_type_id: int | None = None
    current_location: Location | None = None
    start_time: str | None = None
    end_time: str | None = None
    distance: float | None = None
    duration: float | None = None
    rating: int | None = None
    feedback: str | None = None
    id: str = field(default_factory=lambda: new_id("job"))
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def apply_details(self, details: JobDetails) -> None:
        self.pickup_location = details.pickup_location
        self.dropoff_location = details.dropoff_location
        self.description = details.description
        self.vehicle_type_id = details.vehicle_type_id
        self.distance = details.distance
        self.duration = details.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "transporter_id": self.transporter_id,
            "pickup_location": self.pickup_location.to_dict(),
            "dropoff_location": self.dropoff_location.to_dict(),
            "current_location": (
                self.current_location.to_dict() if self.current_location else None
            ),
            "description": self.description,
            "vehicle_type_id": self.vehicle_type_id,
            "price": self.price,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "distance": self.distance,
            "duration": self.duration,
            "rating": self.rating,
            "feedback": self.feedback,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        return cls(
            id=data["id"],
            client_id=data["client_id"],
            transporter_id=data.get("transporter_id"),
            pickup_location=Location.from_dict(data["pickup_location"]),
            dropoff_location=Location.from_dict(data["dropoff_location"]),
            current_location=_location_or_none(data.get("current_location")),
            description=data.get("description"),
            vehicle_type_id=data.get("vehicle_type_id"),
            price=data.get("price"),
            status=JobStatus(data["status"]),
            created_at=data["created_at"],
            updated_at=data.get("updated_at", data["created_at"]),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            distance=data.get("distance"),
            duration=data.get("duration"),
            rating=data.get("rating"),
            feedback=data.get("feedback"),
        )


@dataclass(frozen=True)
class TrackingRecord:
    """Append-only location breadcrumb for a job."""

    job_id: str
    location: Location
    id: str = field(default_factory=lambda: new_id("trk"))
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "location": self.location.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrackingRecord:
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            location=Location.from_dict(data["location"]),
            timestamp=data["timestamp"],
        )


@dataclass
class LedgerResult(Generic[T]):
    """
    Outcome of a public ledger operation.

    Either ``ok`` with ``value`` set, or not ok with ``error`` set. The UI layer
    branches on ``kind`` and renders its own message.
    """

    ok: bool
    value: T | None = None
    error: FreightLedgerError | None = None

    @classmethod
    def success(cls, value: T) -> LedgerResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: FreightLedgerError) -> LedgerResult[T]:
        return cls(ok=False, error=error)

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
