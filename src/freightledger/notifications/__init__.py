"""
Notifications Layer for FreightLedger.

Provides post-commit event fan-out to logging and signed webhooks.
"""

from .dispatcher import EventDispatcher, LoggingNotifier, Notifier
from .events import EventType, LedgerEvent
from .webhook import (
    SIGNATURE_HEADER,
    InvalidSignatureError,
    WebhookNotifier,
    verify_webhook_signature,
)

__all__ = [
    "EventDispatcher",
    "EventType",
    "LedgerEvent",
    "LoggingNotifier",
    "Notifier",
    "WebhookNotifier",
    "InvalidSignatureError",
    "SIGNATURE_HEADER",
    "verify_webhook_signature",
]
