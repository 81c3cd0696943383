"""
Resilience Layer for FreightLedger.

Provides retry with backoff for outbound deliveries.
"""

from .retry import execute_with_retry, is_transient_error

__all__ = [
    "execute_with_retry",
    "is_transient_error",
]
