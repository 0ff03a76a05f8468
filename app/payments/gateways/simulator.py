"""
Deterministic in-process payment backend.

The simulator is always constructible and is the fallback whenever a real
backend can't be built. Its behaviour is fully determined by its inputs so
tests and local environments can drive every outcome on purpose.

Scenarios (by card last-4):
    0002  declined, insufficient_funds
    0069  declined, card_declined
    3220  declined, authentication_required
    0119  error, network_error
    0127  error, processing_error

Scenarios (by amount):
    10000.00  declined, fraud_suspected

Stored test payment methods:
    pm_test_visa         4242, valid
    pm_test_mastercard   5555, valid
    pm_test_declined     0002, invalid

Raw card numbers (12-19 digits) are accepted when they pass the Luhn check.

Usage:
    gateway = SimulatorGateway()
    result = gateway.process_payment(
        amount=Decimal("21.58"),
        currency="usd",
        payment_method_ref="pm_test_visa",
        order_ref=str(order.id),
        idempotency_key="capture:...",
    )
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from payments.gateways.base import (
    GatewayBackend,
    GatewayOutcome,
    GatewayResult,
    PaymentGateway,
    PaymentMethodCheck,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Scenario Tables
# =============================================================================

TEST_PAYMENT_METHODS: dict[str, dict[str, Any]] = {
    "pm_test_visa": {"type": "card", "last4": "4242", "valid": True},
    "pm_test_mastercard": {"type": "card", "last4": "5555", "valid": True},
    "pm_test_declined": {"type": "card", "last4": "0002", "valid": False},
}

CARD_SCENARIOS: dict[str, tuple[GatewayOutcome, str, str]] = {
    "0002": (GatewayOutcome.DECLINED, "insufficient_funds", "Insufficient funds"),
    "0069": (GatewayOutcome.DECLINED, "card_declined", "Your card was declined"),
    "3220": (
        GatewayOutcome.DECLINED,
        "authentication_required",
        "This card requires authentication",
    ),
    "0119": (GatewayOutcome.ERROR, "network_error", "Network error, please retry"),
    "0127": (GatewayOutcome.ERROR, "processing_error", "Payment processor error"),
}

FRAUD_AMOUNT = Decimal("10000.00")


def luhn_valid(number: str) -> bool:
    """Return True if ``number`` passes the Luhn checksum."""
    if not number.isdigit():
        return False
    total = 0
    for index, char in enumerate(reversed(number)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


@dataclass
class _SimulatedTransaction:
    transaction_id: str
    amount: Decimal
    currency: str
    order_ref: str
    status: str = "completed"
    refunded: Decimal = Decimal("0.00")
    released: Decimal = Decimal("0.00")

    @property
    def remaining(self) -> Decimal:
        return self.amount - self.refunded - self.released


class SimulatorGateway(PaymentGateway):
    """
    In-memory backend with scripted outcomes and an idempotency cache.

    A result is cached per idempotency key, so repeating a call with the
    same key returns the first result without touching balances again.
    """

    backend = GatewayBackend.SIMULATOR

    def __init__(self):
        self._transactions: dict[str, _SimulatedTransaction] = {}
        self._idempotency_cache: dict[str, GatewayResult] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Payment Methods
    # =========================================================================

    def validate_payment_method(self, payment_method_ref: str) -> PaymentMethodCheck:
        ref = (payment_method_ref or "").strip()
        stored = TEST_PAYMENT_METHODS.get(ref)
        if stored is not None:
            return PaymentMethodCheck(
                valid=stored["valid"],
                method_type=stored["type"],
                last4=stored["last4"],
                reason=None if stored["valid"] else "Payment method is invalid",
            )

        digits = ref.replace(" ", "").replace("-", "")
        if digits.isdigit() and 12 <= len(digits) <= 19:
            if not luhn_valid(digits):
                return PaymentMethodCheck(
                    valid=False,
                    method_type="card",
                    last4=digits[-4:],
                    reason="Card number failed checksum",
                )
            return PaymentMethodCheck(valid=True, method_type="card", last4=digits[-4:])

        return PaymentMethodCheck(valid=False, reason="Unknown payment method")

    # =========================================================================
    # Money Movement
    # =========================================================================

    def process_payment(
        self,
        amount: Decimal,
        currency: str,
        payment_method_ref: str,
        order_ref: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        with self._lock:
            cached = self._cached(idempotency_key)
            if cached is not None:
                return cached

            result = self._charge(amount, currency, payment_method_ref, order_ref)
            logger.info(
                "Simulated payment processed",
                extra={
                    "order_ref": order_ref,
                    "amount": str(amount),
                    "outcome": result.outcome.value,
                    "error_code": result.error_code,
                    "idempotency_key": idempotency_key,
                },
            )
            return self._remember(idempotency_key, result)

    def capture_payment(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        # process_payment captures immediately; capture only confirms
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                return self._unknown_transaction(transaction_id)
            return GatewayResult(
                outcome=GatewayOutcome.SUCCEEDED,
                transaction_id=txn.transaction_id,
                status=txn.status,
                amount=txn.amount,
                raw={"transaction_id": txn.transaction_id, "captured": True},
            )

    def refund_payment(
        self,
        transaction_id: str,
        amount: Decimal,
        idempotency_key: str | None = None,
        reason: str | None = None,
    ) -> GatewayResult:
        with self._lock:
            cached = self._cached(idempotency_key)
            if cached is not None:
                return cached

            txn = self._transactions.get(transaction_id)
            if txn is None:
                return self._unknown_transaction(transaction_id)
            if amount <= 0 or amount > txn.remaining:
                result = GatewayResult(
                    outcome=GatewayOutcome.DECLINED,
                    status="failed",
                    error="Refund amount exceeds the refundable balance",
                    error_code="amount_exceeds_refundable",
                    raw={"transaction_id": transaction_id, "remaining": str(txn.remaining)},
                )
            else:
                txn.refunded += amount
                refund_id = f"ref_sim_{uuid.uuid4().hex[:16]}"
                result = GatewayResult(
                    outcome=GatewayOutcome.SUCCEEDED,
                    transaction_id=refund_id,
                    status="completed",
                    amount=amount,
                    raw={
                        "refund_id": refund_id,
                        "transaction_id": transaction_id,
                        "reason": reason,
                    },
                )
            return self._remember(idempotency_key, result)

    def release_funds(
        self,
        transaction_id: str,
        amount: Decimal,
        recipient_ref: str,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        with self._lock:
            cached = self._cached(idempotency_key)
            if cached is not None:
                return cached

            txn = self._transactions.get(transaction_id)
            if txn is None:
                return self._unknown_transaction(transaction_id)
            if amount < 0 or amount > txn.remaining:
                result = GatewayResult(
                    outcome=GatewayOutcome.DECLINED,
                    status="failed",
                    error="Release amount exceeds the held balance",
                    error_code="amount_exceeds_held",
                    raw={"transaction_id": transaction_id, "remaining": str(txn.remaining)},
                )
            else:
                txn.released += amount
                payout_id = f"po_sim_{uuid.uuid4().hex[:16]}"
                result = GatewayResult(
                    outcome=GatewayOutcome.SUCCEEDED,
                    transaction_id=payout_id,
                    status="completed",
                    amount=amount,
                    raw={
                        "payout_id": payout_id,
                        "transaction_id": transaction_id,
                        "recipient": recipient_ref,
                    },
                )
            return self._remember(idempotency_key, result)

    def get_transaction_status(self, transaction_id: str) -> GatewayResult:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                return self._unknown_transaction(transaction_id)
            status = "refunded" if txn.refunded >= txn.amount else txn.status
            return GatewayResult(
                outcome=GatewayOutcome.SUCCEEDED,
                transaction_id=txn.transaction_id,
                status=status,
                amount=txn.amount,
                raw={
                    "refunded": str(txn.refunded),
                    "released": str(txn.released),
                },
            )

    # =========================================================================
    # Internals
    # =========================================================================

    def _charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method_ref: str,
        order_ref: str,
    ) -> GatewayResult:
        check = self.validate_payment_method(payment_method_ref)
        if not check.valid:
            return GatewayResult(
                outcome=GatewayOutcome.DECLINED,
                status="failed",
                error=check.reason or "Invalid payment method",
                error_code="invalid_payment_method",
                raw={"payment_method": payment_method_ref},
            )

        scenario = CARD_SCENARIOS.get(check.last4 or "")
        if scenario is None and amount == FRAUD_AMOUNT:
            scenario = (
                GatewayOutcome.DECLINED,
                "fraud_suspected",
                "Transaction flagged as potentially fraudulent",
            )
        if scenario is not None:
            outcome, code, message = scenario
            return GatewayResult(
                outcome=outcome,
                status="failed",
                error=message,
                error_code=code,
                raw={"last4": check.last4, "amount": str(amount)},
            )

        transaction_id = f"txn_sim_{uuid.uuid4().hex[:16]}"
        self._transactions[transaction_id] = _SimulatedTransaction(
            transaction_id=transaction_id,
            amount=amount,
            currency=currency,
            order_ref=order_ref,
        )
        return GatewayResult(
            outcome=GatewayOutcome.SUCCEEDED,
            transaction_id=transaction_id,
            status="completed",
            amount=amount,
            raw={
                "transaction_id": transaction_id,
                "last4": check.last4,
                "currency": currency,
            },
        )

    def _cached(self, idempotency_key: str | None) -> GatewayResult | None:
        if not idempotency_key:
            return None
        return self._idempotency_cache.get(idempotency_key)

    def _remember(self, idempotency_key: str | None, result: GatewayResult) -> GatewayResult:
        # Transient errors are not cached so a retry can succeed
        if idempotency_key and result.outcome != GatewayOutcome.ERROR:
            self._idempotency_cache[idempotency_key] = result
        return result

    @staticmethod
    def _unknown_transaction(transaction_id: str) -> GatewayResult:
        return GatewayResult(
            outcome=GatewayOutcome.ERROR,
            status="failed",
            error=f"Transaction {transaction_id} not found",
            error_code="transaction_not_found",
            raw={"transaction_id": transaction_id},
        )
