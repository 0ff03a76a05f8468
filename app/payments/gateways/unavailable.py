"""
Placeholder backends that are part of the backend enum but not built yet.

PayPal, Coinbase and bank transfer can be selected in configuration so
deployments can name them ahead of time, but every call returns a
NOT_IMPLEMENTED result instead of raising.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from payments.gateways.base import (
    GatewayBackend,
    GatewayResult,
    PaymentGateway,
    PaymentMethodCheck,
)

UNIMPLEMENTED_BACKENDS = frozenset(
    {GatewayBackend.PAYPAL, GatewayBackend.COINBASE, GatewayBackend.BANK_TRANSFER}
)


class UnavailableGateway(PaymentGateway):
    """Gateway variant whose every operation is NOT_IMPLEMENTED."""

    def __init__(self, backend: GatewayBackend):
        if backend not in UNIMPLEMENTED_BACKENDS:
            raise ValueError(f"{backend.value} has a real implementation")
        self.backend = backend

    def process_payment(
        self,
        amount: Decimal,
        currency: str,
        payment_method_ref: str,
        order_ref: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        return GatewayResult.not_implemented(self.backend, "process_payment")

    def capture_payment(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        return GatewayResult.not_implemented(self.backend, "capture_payment")

    def refund_payment(
        self,
        transaction_id: str,
        amount: Decimal,
        idempotency_key: str | None = None,
        reason: str | None = None,
    ) -> GatewayResult:
        return GatewayResult.not_implemented(self.backend, "refund_payment")

    def release_funds(
        self,
        transaction_id: str,
        amount: Decimal,
        recipient_ref: str,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        return GatewayResult.not_implemented(self.backend, "release_funds")

    def get_transaction_status(self, transaction_id: str) -> GatewayResult:
        return GatewayResult.not_implemented(self.backend, "get_transaction_status")

    def validate_payment_method(self, payment_method_ref: str) -> PaymentMethodCheck:
        return PaymentMethodCheck(
            valid=False,
            reason=f"{self.backend.value} payments are not available yet",
        )
