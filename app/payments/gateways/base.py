"""
Payment gateway contract shared by every backend.

Backends never raise for business outcomes. A decline, a provider outage or
a missing implementation all come back as a GatewayResult whose ``outcome``
the caller branches on:

    result = gateway.process_payment(...)
    if result.outcome == GatewayOutcome.SUCCEEDED:
        ...
    elif result.outcome == GatewayOutcome.NOT_IMPLEMENTED:
        ...

Every money-moving call takes an idempotency key. Keys are derived from the
(action, order) pair with IdempotencyKeyGenerator so a retried call maps to
the provider's first attempt instead of moving money twice.
"""

from __future__ import annotations

import hashlib
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from django.conf import settings


class GatewayBackend(str, Enum):
    """Closed set of payment backends the factory knows how to build."""

    SIMULATOR = "simulator"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    COINBASE = "coinbase"
    BANK_TRANSFER = "bank_transfer"


class GatewayOutcome(str, Enum):
    """What happened to a gateway call."""

    SUCCEEDED = "succeeded"
    DECLINED = "declined"
    ERROR = "error"
    NOT_IMPLEMENTED = "not_implemented"


@dataclass
class GatewayResult:
    """
    Result of a gateway call.

    Attributes:
        outcome: SUCCEEDED, DECLINED, ERROR or NOT_IMPLEMENTED
        transaction_id: Backend-assigned id (payment or refund)
        status: Backend status string (e.g. "completed", "failed")
        amount: Amount the backend acted on
        error: Human-readable failure reason
        error_code: Backend failure code (e.g. "insufficient_funds")
        raw: Backend response payload, stored on the PaymentTransaction
    """

    outcome: GatewayOutcome
    transaction_id: str | None = None
    status: str = ""
    amount: Decimal | None = None
    error: str | None = None
    error_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == GatewayOutcome.SUCCEEDED

    @classmethod
    def not_implemented(cls, backend: GatewayBackend, operation: str) -> GatewayResult:
        return cls(
            outcome=GatewayOutcome.NOT_IMPLEMENTED,
            status="failed",
            error=f"{backend.value} does not support {operation} yet",
            error_code="NOT_IMPLEMENTED",
            raw={"backend": backend.value, "operation": operation},
        )


@dataclass
class PaymentMethodCheck:
    """
    Result of validate_payment_method().

    Attributes:
        valid: Whether the method can be charged
        method_type: "card", "wallet", ... when known
        last4: Last four digits for cards
        reason: Why the method was rejected
    """

    valid: bool
    method_type: str | None = None
    last4: str | None = None
    reason: str | None = None


class IdempotencyKeyGenerator:
    """
    Derive idempotency keys for gateway calls.

    Format: "{operation}:{entity_id}[:{qualifier}...]:{hash}"

    The key depends only on its inputs and SECRET_KEY, so the same
    (operation, order) pair yields the same key on every retry and
    across restarts.

    Example:
        key = IdempotencyKeyGenerator.generate("capture", order.id)
        # "capture:550e8400-e29b-41d4-a716-446655440000:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, *qualifiers: Any) -> str:
        parts = [operation, str(entity_id), *(str(q) for q in qualifiers)]
        base = ":".join(parts)
        hash_input = f"{base}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{base}:{short_hash}"


class PaymentGateway(ABC):
    """
    Uniform capability interface implemented by every backend.

    All calls are synchronous and may block on network I/O.
    """

    backend: GatewayBackend

    @abstractmethod
    def process_payment(
        self,
        amount: Decimal,
        currency: str,
        payment_method_ref: str,
        order_ref: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        """Authorize and capture ``amount`` from the payment method."""

    @abstractmethod
    def capture_payment(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        """Capture a previously authorized payment."""

    @abstractmethod
    def refund_payment(
        self,
        transaction_id: str,
        amount: Decimal,
        idempotency_key: str | None = None,
        reason: str | None = None,
    ) -> GatewayResult:
        """Return ``amount`` of a captured payment to the payer."""

    @abstractmethod
    def release_funds(
        self,
        transaction_id: str,
        amount: Decimal,
        recipient_ref: str,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        """Pay ``amount`` of a captured payment out to the seller."""

    @abstractmethod
    def get_transaction_status(self, transaction_id: str) -> GatewayResult:
        """Look up the backend's view of a transaction."""

    @abstractmethod
    def validate_payment_method(self, payment_method_ref: str) -> PaymentMethodCheck:
        """Check that a payment method reference can be charged."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(backend={self.backend.value})"
