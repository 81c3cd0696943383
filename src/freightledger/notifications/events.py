"""
Core Event Types for FreightLedger.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from freightledger.core.types import utc_now


class EventType(str, Enum):
    """Types of ledger notifications."""

    JOB_CREATED = "job.created"
    JOB_STATUS_CHANGED = "job.status_changed"
    JOB_LOCATION_UPDATED = "job.location_updated"
    PAYMENT_COMPLETED = "payment.completed"
    ESCROW_HELD = "escrow.held"
    ESCROW_RELEASED = "escrow.released"
    ESCROW_REFUNDED = "escrow.refunded"


@dataclass(frozen=True)
class LedgerEvent:
    """
    Committed change announced to the dispatch layer.

    ``user_ids`` lists whose devices should hear about it.
    """

    type: EventType
    data: dict[str, Any]
    user_ids: tuple[str, ...] = ()
    id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex}")
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "user_ids": list(self.user_ids),
            "data": self.data,
        }
