"""
Payment profiles: per-environment fee rates, limits and default backend.

    development  1.0% platform fee, simulator
    staging      3.0% platform fee, backend from settings
    production   5.0% platform fee, Stripe, higher limits
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from payments.gateways.base import GatewayBackend


@dataclass(frozen=True)
class PaymentProfile:
    """
    Configuration bundle for one deployment environment.

    Attributes:
        name: Profile name
        backend: Default gateway backend
        platform_rate / processing_rate / minimum_fee: Fee policy inputs
        min_transaction / max_transaction: Accepted subtotal window
        daily_limit: Per-buyer daily spend ceiling
        auto_release_hours: Delay before a delivered order's escrow auto-releases
        dispute_window_hours: How long after delivery a dispute may be opened
    """

    name: str
    backend: GatewayBackend
    platform_rate: Decimal = Decimal("0.05")
    processing_rate: Decimal = Decimal("0.029")
    minimum_fee: Decimal = Decimal("0.30")
    min_transaction: Decimal = Decimal("1.00")
    max_transaction: Decimal = Decimal("10000.00")
    daily_limit: Decimal = Decimal("50000.00")
    auto_release_hours: int = 72
    dispute_window_hours: int = 168


PROFILES: dict[str, PaymentProfile] = {
    "development": PaymentProfile(
        name="development",
        backend=GatewayBackend.SIMULATOR,
        platform_rate=Decimal("0.01"),
    ),
    "staging": PaymentProfile(
        name="staging",
        backend=GatewayBackend.SIMULATOR,
        platform_rate=Decimal("0.03"),
    ),
    "production": PaymentProfile(
        name="production",
        backend=GatewayBackend.STRIPE,
        platform_rate=Decimal("0.05"),
        max_transaction=Decimal("25000.00"),
        daily_limit=Decimal("100000.00"),
    ),
}


def get_profile(
    name: str,
    backend: str | None = None,
    auto_release_hours: int | None = None,
) -> PaymentProfile:
    """
    Look up a profile by name, applying optional overrides.

    Raises:
        ValueError: Unknown profile or backend name
    """
    try:
        profile = PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown payment profile {name!r}; expected one of {sorted(PROFILES)}"
        ) from None
    if backend:
        profile = replace(profile, backend=GatewayBackend(backend))
    if auto_release_hours is not None:
        profile = replace(profile, auto_release_hours=auto_release_hours)
    return profile
