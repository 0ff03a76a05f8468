"""
Gateway construction and the simulator fallback policy.

A GatewayRegistry is built once at process start (PaymentsConfig.ready)
and passed to the services that move money. There is no module-level
gateway singleton.

If the configured backend can't be constructed (for example Stripe without
a secret key), the FallbackPolicy decides what happens: by default a
warning is logged and the simulator is used so the process still starts.
The fallback is decided here, at construction time, never mid-operation.

Usage:
    from payments.gateways.factory import FallbackPolicy, GatewayRegistry

    registry = GatewayRegistry.from_settings()
    registry.gateway          # PaymentGateway
    registry.fee_policy       # FeePolicy for the active profile
    registry.fell_back        # True if the simulator replaced the configured backend
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.conf import settings

from payments.exceptions import GatewayConfigurationError
from payments.fees import FeePolicy
from payments.gateways.base import GatewayBackend, PaymentGateway
from payments.gateways.profiles import PaymentProfile, get_profile
from payments.gateways.simulator import SimulatorGateway
from payments.gateways.stripe_gateway import StripeGateway
from payments.gateways.unavailable import UNIMPLEMENTED_BACKENDS, UnavailableGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackPolicy:
    """
    What to do when the configured backend can't be built.

    Attributes:
        enabled: Substitute the fallback backend instead of failing
        fallback_backend: Backend used as the substitute (the simulator)
    """

    enabled: bool = True
    fallback_backend: GatewayBackend = GatewayBackend.SIMULATOR


def construct_backend(backend: GatewayBackend) -> PaymentGateway:
    """
    Build one backend variant.

    Raises:
        GatewayConfigurationError: Backend is missing required configuration
    """
    if backend == GatewayBackend.SIMULATOR:
        return SimulatorGateway()
    if backend == GatewayBackend.STRIPE:
        return StripeGateway.from_settings()
    if backend in UNIMPLEMENTED_BACKENDS:
        return UnavailableGateway(backend)
    raise GatewayConfigurationError(f"Unsupported payment backend: {backend}")


def build_gateway(
    backend: GatewayBackend,
    policy: FallbackPolicy | None = None,
) -> tuple[PaymentGateway, bool]:
    """
    Build the configured backend, applying the fallback policy.

    Returns:
        Tuple of (gateway, fell_back)

    Raises:
        GatewayConfigurationError: Construction failed and fallback is disabled
    """
    policy = policy or FallbackPolicy()
    try:
        return construct_backend(backend), False
    except GatewayConfigurationError as e:
        if not policy.enabled:
            logger.error(
                "Payment backend unavailable and fallback disabled",
                extra={"backend": backend.value, "error": str(e)},
            )
            raise
        logger.warning(
            f"Payment backend {backend.value} unavailable, "
            f"falling back to {policy.fallback_backend.value}",
            extra={
                "backend": backend.value,
                "fallback_backend": policy.fallback_backend.value,
                "error": str(e),
            },
        )
        return construct_backend(policy.fallback_backend), True


@dataclass
class GatewayRegistry:
    """
    The process's payment configuration: profile, fee policy and gateway.

    Attributes:
        profile: Active PaymentProfile
        gateway: Gateway instance services call
        fee_policy: FeePolicy derived from the profile
        configured_backend: Backend named in configuration
        fell_back: Whether the fallback policy replaced it
    """

    profile: PaymentProfile
    gateway: PaymentGateway
    fee_policy: FeePolicy = field(default_factory=FeePolicy)
    configured_backend: GatewayBackend = GatewayBackend.SIMULATOR
    fell_back: bool = False

    @property
    def active_backend(self) -> GatewayBackend:
        return self.gateway.backend

    @classmethod
    def build(
        cls,
        profile: PaymentProfile,
        policy: FallbackPolicy | None = None,
    ) -> GatewayRegistry:
        gateway, fell_back = build_gateway(profile.backend, policy)
        logger.info(
            "Payment gateway configured",
            extra={
                "profile": profile.name,
                "configured_backend": profile.backend.value,
                "active_backend": gateway.backend.value,
                "fell_back": fell_back,
            },
        )
        return cls(
            profile=profile,
            gateway=gateway,
            fee_policy=FeePolicy.from_profile(profile),
            configured_backend=profile.backend,
            fell_back=fell_back,
        )

    @classmethod
    def from_settings(cls) -> GatewayRegistry:
        """Build the registry from PAYMENT_* settings."""
        profile = get_profile(
            getattr(settings, "PAYMENT_PROFILE", "development"),
            backend=getattr(settings, "PAYMENT_BACKEND", "") or None,
            auto_release_hours=getattr(settings, "ESCROW_AUTO_RELEASE_HOURS", None),
        )
        policy = FallbackPolicy(
            enabled=getattr(settings, "PAYMENT_FALLBACK_ENABLED", True),
        )
        return cls.build(profile, policy)
