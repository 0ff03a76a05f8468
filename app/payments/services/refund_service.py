"""
Refund service for returning money to buyers.

A refund is requested by either party and decided by the seller. Approval
moves the refund through approved and processing, calls the gateway
against the original payment and settles the escrow hold via
EscrowService.settle_refund.

Usage:
    from payments.services import RefundService

    result = RefundService.request_refund(
        order_id=order.id,
        caller=request.user,
        amount=Decimal("25.00"),
        reason="Item arrived damaged",
    )

    result = RefundService.resolve_refund(
        refund_id=result.data.id,
        caller=seller,
        decision="approved",
        gateway=registry.gateway,
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from payments.exceptions import (
    DomainRuleError,
    InvalidStateTransitionError,
    PaymentValidationError,
)
from payments.fees import to_decimal
from payments.gateways import IdempotencyKeyGenerator
from payments.locks import lock_custody_hold, lock_order, lock_refund
from payments.models import Refund
from payments.services.audit_service import AuditService
from payments.services.base import CustodyService
from payments.services.escrow_service import EscrowService
from payments.services.notification_service import NotificationService
from payments.services.order_service import require_party, require_seller
from payments.services.transaction_service import TransactionService
from payments.state_machines import (
    NotificationType,
    REFUNDABLE_ORDER_STATUSES,
    RefundStatus,
    RiskLevel,
)

if TYPE_CHECKING:
    from payments.gateways import PaymentGateway
    from payments.models import Order
    from payments.services.audit_service import AuditContext


class RefundDecision:
    APPROVED = "approved"
    REJECTED = "rejected"

    CHOICES = (APPROVED, REJECTED)


@dataclass
class RefundEligibility:
    """
    Result of a refund eligibility check.

    Attributes:
        eligible: Whether a refund can be requested now
        max_refundable: Total minus refunds already completed
        block_code: Error code when not eligible
        block_reason: Human-readable reason when not eligible
    """

    eligible: bool
    max_refundable: Decimal = Decimal("0.00")
    block_code: str | None = None
    block_reason: str | None = None


class RefundService(CustodyService):
    """
    Service for refund requests and seller decisions.

    Eligibility:
        - Order in paid, processing, delivered or completed
        - At most one pending refund per order
        - Amount > 0 and no more than what was not refunded yet
    """

    @classmethod
    def check_refund_eligibility(cls, order: Order) -> RefundEligibility:
        """Whether the order can take a refund request right now."""
        if order.status not in REFUNDABLE_ORDER_STATUSES:
            return RefundEligibility(
                eligible=False,
                block_code="ORDER_NOT_REFUNDABLE",
                block_reason=f"Orders in status {order.status} cannot be refunded",
            )
        if order.refunds.filter(status=RefundStatus.PENDING).exists():
            return RefundEligibility(
                eligible=False,
                block_code="REFUND_ALREADY_PENDING",
                block_reason="A refund request is already pending for this order",
            )
        return RefundEligibility(
            eligible=True,
            max_refundable=order.total_amount - TransactionService.refunded_total(order),
        )

    @classmethod
    def request_refund(
        cls,
        order_id,
        caller,
        reason: str,
        amount=None,
        notes: str | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Refund]:
        """
        Open a refund request; the amount defaults to the order total.

        Returns:
            ServiceResult with the pending Refund
        """
        missing = cls.validate_required(reason=reason)
        if missing is not None:
            return missing

        try:
            with cls.atomic():
                order = lock_order(order_id)

                if order.status not in REFUNDABLE_ORDER_STATUSES:
                    raise DomainRuleError(
                        f"Orders in status {order.status} cannot be refunded",
                        error_code="ORDER_NOT_REFUNDABLE",
                        details={"status": order.status},
                    )
                require_party(order, caller)

                eligibility = cls.check_refund_eligibility(order)
                if not eligibility.eligible:
                    raise DomainRuleError(
                        eligibility.block_reason,
                        error_code=eligibility.block_code,
                    )

                amount = order.total_amount if amount is None else to_decimal(amount)
                if amount <= 0:
                    raise PaymentValidationError(
                        "Refund amount must be positive",
                        error_code="INVALID_AMOUNT",
                        details={"amount": str(amount)},
                    )
                if amount > eligibility.max_refundable:
                    raise PaymentValidationError(
                        f"Refund amount exceeds the refundable {eligibility.max_refundable}",
                        error_code="AMOUNT_EXCEEDS_TOTAL",
                        details={
                            "amount": str(amount),
                            "max_refundable": str(eligibility.max_refundable),
                        },
                    )

                original = TransactionService.latest_payment(order)
                if original is None:
                    raise DomainRuleError(
                        "Order has no completed payment to refund",
                        error_code="NO_PAYMENT_TRANSACTION",
                    )

                refund = Refund.objects.create(
                    order=order,
                    original_transaction=original,
                    amount=amount,
                    currency=order.currency,
                    reason=reason,
                    requested_by=caller,
                    request_notes=notes or "",
                )

                NotificationService.notify_parties(
                    order,
                    NotificationType.REFUND_REQUESTED,
                    exclude=[caller.pk],
                    amount=amount,
                    reason=reason,
                    refund_id=refund.id,
                )
                AuditService.record(
                    actor=caller,
                    action="refund.request",
                    resource_type="refund",
                    resource_id=refund.id,
                    metadata={
                        "order_id": str(order.id),
                        "amount": str(amount),
                        "reason": reason,
                    },
                    risk_level=RiskLevel.MEDIUM,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "refund.request", order_id=order_id)
        except Exception as e:
            return cls.unexpected_failure(e, "refund.request", caller, "order", order_id, context=context)

        cls.get_logger().info(
            "Refund requested",
            extra={
                "refund_id": str(refund.id),
                "order_id": str(order.id),
                "amount": str(amount),
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def resolve_refund(
        cls,
        refund_id,
        caller,
        decision: str,
        gateway: PaymentGateway,
        notes: str | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Refund]:
        """
        Seller approves or rejects a pending refund.

        On approval the gateway refunds the original payment. If the
        gateway refuses, the refund is committed as rejected with the
        provider's reason and the gateway error is returned.
        If the refund goes through but paying the seller's remainder out
        does not, the refund still completes and the hold stays in custody
        (see EscrowService.settle_refund).
        """
        failure = None
        try:
            if decision not in RefundDecision.CHOICES:
                raise PaymentValidationError(
                    "Decision must be 'approved' or 'rejected'",
                    error_code="VALIDATION_ERROR",
                    details={"decision": [f"'{decision}' is not a valid choice."]},
                )

            with cls.atomic():
                order, refund = lock_refund(refund_id)
                require_seller(order, caller)

                if refund.status != RefundStatus.PENDING:
                    raise InvalidStateTransitionError(
                        f"Refund is {refund.status}",
                        error_code="REFUND_NOT_PENDING",
                        details={"status": refund.status},
                    )

                if decision == RefundDecision.REJECTED:
                    refund.reject(processed_by=caller, notes=notes or "")
                    refund.save()
                    notification = NotificationType.REFUND_REJECTED
                    reason = notes or ""
                else:
                    if order.status not in REFUNDABLE_ORDER_STATUSES:
                        raise DomainRuleError(
                            f"Orders in status {order.status} cannot be refunded",
                            error_code="ORDER_NOT_REFUNDABLE",
                            details={"status": order.status},
                        )
                    refund.approve(processed_by=caller, notes=notes or "")
                    refund.start_processing()

                    settlement = EscrowService.settle_refund(
                        order,
                        lock_custody_hold(order),
                        refund.amount,
                        gateway,
                        refund.original_transaction,
                        refund_key=IdempotencyKeyGenerator.generate("refund", order.id, refund.id),
                        release_key=IdempotencyKeyGenerator.generate("release", order.id, refund.id),
                        reason=refund.reason,
                        released_by=caller,
                    )
                    if settlement.success:
                        refund.complete(refund_transaction=settlement.refund_transaction)
                        notification = NotificationType.REFUND_COMPLETED
                        reason = refund.reason
                    else:
                        failure = settlement.failure
                        TransactionService.record_failed_call(failure)
                        refund.reject(failure_reason=failure.message)
                        notification = NotificationType.REFUND_REJECTED
                        reason = failure.message
                    refund.save()

                NotificationService.notify(
                    refund.requested_by,
                    notification,
                    order,
                    amount=refund.amount,
                    reason=reason,
                    refund_id=refund.id,
                )
                AuditService.record(
                    actor=caller,
                    action="refund.resolve",
                    resource_type="refund",
                    resource_id=refund.id,
                    metadata={
                        "order_id": str(order.id),
                        "decision": decision,
                        "status": refund.status,
                        "amount": str(refund.amount),
                        "failure_reason": refund.failure_reason,
                    },
                    risk_level=RiskLevel.MEDIUM,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "refund.resolve", refund_id=refund_id)
        except Exception as e:
            return cls.unexpected_failure(
                e, "refund.resolve", caller, "refund", refund_id, financial=True, context=context
            )

        if failure is not None:
            return cls.expected_failure(failure, "refund.resolve", refund_id=refund_id)

        cls.get_logger().info(
            "Refund resolved",
            extra={
                "refund_id": str(refund.id),
                "decision": decision,
                "status": refund.status,
            },
        )
        return ServiceResult.success(refund)
