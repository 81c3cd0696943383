"""
Store module - the ledger's system of record.

Provides timeout-guarded access to the ledger collections, entity locks and
the transaction coordinator that makes multi-record changes atomic.
"""

from freightledger.store.ledger_store import (
    COLLECTIONS,
    ESCROWS,
    JOBS,
    PAYMENTS,
    TRACKING_RECORDS,
    WALLETS,
    LedgerStore,
    call_with_timeout,
)
from freightledger.store.lock import LockService, escrow_lock, job_lock, wallet_lock
from freightledger.store.transaction import TransactionCoordinator, UnitOfWork, UnitState

__all__ = [
    "LedgerStore",
    "call_with_timeout",
    "COLLECTIONS",
    "WALLETS",
    "PAYMENTS",
    "ESCROWS",
    "JOBS",
    "TRACKING_RECORDS",
    "LockService",
    "job_lock",
    "escrow_lock",
    "wallet_lock",
    "TransactionCoordinator",
    "UnitOfWork",
    "UnitState",
]
