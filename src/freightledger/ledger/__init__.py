"""
Ledger module - wallet balances and job escrows.
"""

from freightledger.ledger.escrow import EscrowManager
from freightledger.ledger.wallet import WalletLedger

__all__ = [
    "WalletLedger",
    "EscrowManager",
]
