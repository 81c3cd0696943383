"""
Payment module - external payment provider capability.
"""

from freightledger.payment.gateway import PaymentGateway, SimulatedGateway, call_gateway

__all__ = [
    "PaymentGateway",
    "SimulatedGateway",
    "call_gateway",
]
