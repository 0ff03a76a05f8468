"""
Recording gateway calls as PaymentTransaction rows.

Gateways answer with a GatewayResult; this module turns that answer into
an immutable transaction record and, for anything but success, into the
GatewayError the caller surfaces.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db.models import Sum
from django.utils import timezone

from core.services import BaseService

from payments.exceptions import GatewayError
from payments.gateways import GatewayOutcome
from payments.models import PaymentTransaction
from payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from payments.gateways import GatewayResult, PaymentGateway
    from payments.models import Order

OUTCOME_ERROR_CODES = {
    GatewayOutcome.DECLINED: "PAYMENT_DECLINED",
    GatewayOutcome.ERROR: "GATEWAY_ERROR",
    GatewayOutcome.NOT_IMPLEMENTED: "NOT_IMPLEMENTED",
}


@dataclass
class FailedCall:
    """A refused gateway call whose transaction row still has to be written."""

    order: Order
    transaction_type: str
    amount: Decimal
    gateway: PaymentGateway
    result: GatewayResult
    idempotency_key: str


def gateway_error(
    result: GatewayResult,
    operation: str,
    failed_call: FailedCall | None = None,
) -> GatewayError:
    """Build the GatewayError for a result that did not succeed."""
    error = GatewayError(
        result.error or f"Payment backend could not complete {operation}",
        error_code=OUTCOME_ERROR_CODES.get(result.outcome, "GATEWAY_ERROR"),
        details={
            "operation": operation,
            "outcome": result.outcome.value,
            "reason": result.error_code or "",
        },
    )
    error.failed_call = failed_call
    return error


class TransactionService(BaseService):
    """Persists gateway outcomes."""

    @classmethod
    def record(
        cls,
        order: Order,
        transaction_type: str,
        amount: Decimal,
        gateway: PaymentGateway,
        result: GatewayResult,
        idempotency_key: str,
        risk_score: int = 0,
    ) -> PaymentTransaction:
        """
        Write the transaction for one gateway call.

        Successful calls are COMPLETED, everything else FAILED with the
        backend's reason.
        """
        now = timezone.now()
        txn = PaymentTransaction.objects.create(
            order=order,
            transaction_type=transaction_type,
            amount=amount,
            currency=order.currency,
            backend=gateway.backend.value,
            backend_transaction_id=result.transaction_id or "",
            backend_response=result.raw,
            status=TransactionStatus.COMPLETED if result.success else TransactionStatus.FAILED,
            idempotency_key=idempotency_key,
            risk_score=risk_score,
            failure_reason="" if result.success else (result.error or result.error_code or ""),
            processed_at=now,
            settled_at=now if result.success else None,
        )

        log = cls.get_logger().info if result.success else cls.get_logger().warning
        log(
            f"Recorded {transaction_type} transaction",
            extra={
                "order_id": str(order.id),
                "transaction_id": txn.transaction_id,
                "backend": txn.backend,
                "status": txn.status,
                "amount": str(amount),
                "outcome": result.outcome.value,
            },
        )
        return txn

    @classmethod
    def record_failed_call(cls, error: GatewayError) -> PaymentTransaction | None:
        """Write the FAILED transaction an error carries, if it carries one."""
        call = error.failed_call
        if call is None:
            return None
        txn = cls.record(
            call.order,
            call.transaction_type,
            call.amount,
            call.gateway,
            call.result,
            call.idempotency_key,
        )
        error.failed_call = None
        return txn

    @classmethod
    def record_chargeback(
        cls,
        order: Order,
        amount: Decimal,
        backend: str,
        backend_ref: str,
        raw: dict,
    ) -> tuple[PaymentTransaction, bool]:
        """
        Write the transaction for funds the card issuer pulled back.

        Keyed on the backend's dispute reference, so a redelivered
        notification returns the existing row.

        Returns:
            (transaction, created)
        """
        now = timezone.now()
        txn, created = PaymentTransaction.objects.get_or_create(
            order=order,
            transaction_type=TransactionType.CHARGEBACK,
            backend_transaction_id=backend_ref,
            defaults={
                "amount": amount,
                "currency": order.currency,
                "backend": backend,
                "backend_response": raw,
                "status": TransactionStatus.COMPLETED,
                "idempotency_key": f"chargeback:{backend_ref}",
                "processed_at": now,
                "settled_at": now,
            },
        )
        if created:
            cls.get_logger().warning(
                "Recorded chargeback transaction",
                extra={
                    "order_id": str(order.id),
                    "transaction_id": txn.transaction_id,
                    "amount": str(amount),
                },
            )
        return txn, created

    @staticmethod
    def latest_payment(order: Order) -> PaymentTransaction | None:
        """Most recent completed payment transaction for the order."""
        return (
            order.transactions.filter(
                transaction_type=TransactionType.PAYMENT,
                status=TransactionStatus.COMPLETED,
            )
            .order_by("-created_at")
            .first()
        )

    @staticmethod
    def attempt_number(order: Order, transaction_type: str) -> int:
        """Next attempt number for idempotency keys of retried calls."""
        return order.transactions.filter(transaction_type=transaction_type).count() + 1

    @staticmethod
    def refunded_total(order: Order) -> Decimal:
        """Sum of completed refund transactions for the order."""
        total = order.transactions.filter(
            transaction_type=TransactionType.REFUND,
            status=TransactionStatus.COMPLETED,
        ).aggregate(total=Sum("amount"))["total"]
        return total or Decimal("0.00")
