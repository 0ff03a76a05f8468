"""
Payment gateway abstraction.

Exports the gateway contract, the backend variants and the registry that
builds one gateway per process.
"""

from payments.gateways.base import (
    GatewayBackend,
    GatewayOutcome,
    GatewayResult,
    IdempotencyKeyGenerator,
    PaymentGateway,
    PaymentMethodCheck,
)
from payments.gateways.factory import (
    FallbackPolicy,
    GatewayRegistry,
    build_gateway,
)
from payments.gateways.profiles import PROFILES, PaymentProfile, get_profile
from payments.gateways.simulator import SimulatorGateway
from payments.gateways.stripe_gateway import StripeGateway
from payments.gateways.unavailable import UnavailableGateway

__all__ = [
    "FallbackPolicy",
    "GatewayBackend",
    "GatewayOutcome",
    "GatewayRegistry",
    "GatewayResult",
    "IdempotencyKeyGenerator",
    "PROFILES",
    "PaymentGateway",
    "PaymentMethodCheck",
    "PaymentProfile",
    "SimulatorGateway",
    "StripeGateway",
    "UnavailableGateway",
    "build_gateway",
    "get_profile",
]
