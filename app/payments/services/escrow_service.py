"""
Escrow custody service.

An escrow hold is opened when a payment is captured and ends in exactly
one of two ways: the seller is paid out (release) or the buyer gets the
money back (refund). A partial refund returns part of the money and
moves the hold to partial_release. If the order was delivered the rest
of the seller's share is paid out right away; otherwise it stays in
custody until the buyer releases it or auto-release does.

The settlement helpers (settle_release, settle_refund) run inside the
caller's transaction on an already locked order and hold. Refund and
dispute resolution go through them so every path moves money the same way.

Money split on release:
    hold.amount      = order.total_amount (captured)
    seller payout    = order.seller_amount - hold.refunded_amount
    platform keeps   = the fees
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from payments.exceptions import DomainRuleError, GatewayError, PaymentValidationError
from payments.fees import to_decimal
from payments.gateways import IdempotencyKeyGenerator
from payments.locks import lock_custody_hold, lock_escrow
from payments.models import EscrowHold, Refund
from payments.services.audit_service import AuditService
from payments.services.base import CustodyService
from payments.services.notification_service import NotificationService
from payments.services.order_service import require_buyer, require_seller
from payments.services.transaction_service import (
    FailedCall,
    TransactionService,
    gateway_error,
)
from payments.state_machines import (
    ACTIVE_ESCROW_STATUSES,
    DeliveryStatus,
    NotificationType,
    OPEN_REFUND_STATUSES,
    OrderStatus,
    PaymentStatus,
    RiskLevel,
    TransactionType,
)

if TYPE_CHECKING:
    from payments.gateways import PaymentGateway
    from payments.models import Order, PaymentTransaction
    from payments.services.audit_service import AuditContext

AUTO_RELEASE_REASON = "auto_release"


@dataclass
class Settlement:
    """
    What a refund settlement moved.

    Attributes:
        refund_transaction: The completed refund transaction
        release_transaction: Payout of the seller's remainder, if any
        failure: Set when the gateway refused the refund itself
        payout_failure: Set when the refund went through but paying out
            the remainder did not; the hold stays in custody
    """

    refund_transaction: PaymentTransaction | None = None
    release_transaction: PaymentTransaction | None = None
    failure: GatewayError | None = None
    payout_failure: GatewayError | None = None

    @property
    def success(self) -> bool:
        return self.failure is None


def seller_payout(order: Order, hold: EscrowHold) -> Decimal:
    """Seller's share still owed from a hold."""
    return max(order.seller_amount - hold.refunded_amount, Decimal("0.00"))


class EscrowService(CustodyService):
    """
    Service for escrow holds.

    Methods:
        open_hold: Place a captured payment in custody
        release_escrow: Buyer releases funds to the seller
        dispute_escrow: Seller freezes the hold
        settle_release / settle_refund: Shared settlement steps
        process_auto_release: Sweep step for delivered orders past the deadline
    """

    @classmethod
    def open_hold(
        cls,
        order: Order,
        transaction: PaymentTransaction,
        auto_release_hours: int,
    ) -> EscrowHold:
        """
        Open the custody hold for a captured payment.

        Raises:
            DomainRuleError: The order already has funds in custody
        """
        if lock_custody_hold(order) is not None:
            raise DomainRuleError(
                "Order already has an escrow hold",
                error_code="ESCROW_ALREADY_EXISTS",
                details={"order_id": str(order.id)},
            )

        hold = EscrowHold.objects.create(
            order=order,
            transaction=transaction,
            amount=transaction.amount,
            currency=order.currency,
            auto_release_at=timezone.now() + timedelta(hours=auto_release_hours),
        )
        cls.get_logger().info(
            "Escrow hold opened",
            extra={
                "order_id": str(order.id),
                "escrow_id": str(hold.id),
                "amount": str(hold.amount),
                "auto_release_at": hold.auto_release_at.isoformat(),
            },
        )
        return hold

    # =========================================================================
    # Buyer / seller actions
    # =========================================================================

    @classmethod
    def release_escrow(
        cls,
        escrow_id,
        caller,
        gateway: PaymentGateway,
        reason: str = "",
        amount=None,
        context: AuditContext | None = None,
    ) -> ServiceResult[EscrowHold]:
        """
        Buyer confirms a delivered order; the seller is paid out.

        Only full releases are supported. A refused payout rolls the
        release back; the FAILED transaction is still recorded.
        """
        try:
            with cls.atomic():
                order, hold = lock_escrow(escrow_id)
                require_buyer(order, caller)
                cls._require_active(hold)

                if order.delivery_status != DeliveryStatus.DELIVERED:
                    raise DomainRuleError(
                        "Funds can only be released once the order is delivered",
                        error_code="NOT_DELIVERED",
                        details={"delivery_status": order.delivery_status},
                    )

                if amount is not None and to_decimal(amount) not in (
                    seller_payout(order, hold),
                    hold.remaining_amount,
                ):
                    raise PaymentValidationError(
                        "Partial releases are not supported",
                        error_code="PARTIAL_RELEASE_UNSUPPORTED",
                        details={"amount": str(amount), "releasable": str(seller_payout(order, hold))},
                    )

                release_txn = cls.settle_release(
                    order,
                    hold,
                    gateway,
                    IdempotencyKeyGenerator.generate("release", order.id),
                    reason=reason or "buyer_release",
                    released_by=caller,
                )
                AuditService.record(
                    actor=caller,
                    action="escrow.release",
                    resource_type="escrow",
                    resource_id=hold.id,
                    metadata={
                        "order_id": str(order.id),
                        "amount": str(hold.released_amount),
                        "transaction_id": release_txn.transaction_id if release_txn else None,
                    },
                    risk_level=RiskLevel.MEDIUM,
                    context=context,
                )
        except GatewayError as e:
            return cls.gateway_failure(e, "escrow.release", caller, "escrow", escrow_id, context=context)
        except BaseApplicationError as e:
            return cls.expected_failure(e, "escrow.release", escrow_id=escrow_id)
        except Exception as e:
            return cls.unexpected_failure(
                e, "escrow.release", caller, "escrow", escrow_id, financial=True, context=context
            )

        cls.get_logger().info(
            "Escrow released",
            extra={"escrow_id": str(hold.id), "amount": str(hold.released_amount)},
        )
        return ServiceResult.success(hold)

    @classmethod
    def dispute_escrow(
        cls,
        escrow_id,
        caller,
        reason: str,
        notes: str | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[EscrowHold]:
        """
        Seller freezes the hold; no money moves.

        The order goes to disputed. A Dispute record can be opened on it
        afterwards for mediation.
        """
        try:
            with cls.atomic():
                order, hold = lock_escrow(escrow_id)
                require_seller(order, caller)
                cls._require_active(hold)

                hold.freeze(reason)
                hold.save()

                order.transition_to(OrderStatus.DISPUTED)
                order.dispute_reason = reason
                if notes:
                    order.seller_notes = notes
                order.save()

                NotificationService.notify_parties(
                    order,
                    NotificationType.ESCROW_DISPUTED,
                    reason=reason,
                    escrow_id=hold.id,
                )
                AuditService.record(
                    actor=caller,
                    action="escrow.dispute",
                    resource_type="escrow",
                    resource_id=hold.id,
                    metadata={"order_id": str(order.id), "reason": reason},
                    risk_level=RiskLevel.HIGH,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "escrow.dispute", escrow_id=escrow_id)
        except Exception as e:
            return cls.unexpected_failure(e, "escrow.dispute", caller, "escrow", escrow_id, context=context)

        cls.get_logger().warning(
            "Escrow disputed",
            extra={"escrow_id": str(hold.id), "order_id": str(order.id)},
        )
        return ServiceResult.success(hold)

    # =========================================================================
    # Settlement helpers (caller holds the order lock)
    # =========================================================================

    @classmethod
    def settle_release(
        cls,
        order: Order,
        hold: EscrowHold,
        gateway: PaymentGateway,
        idempotency_key: str,
        reason: str = "",
        released_by=None,
    ) -> PaymentTransaction | None:
        """
        Pay the seller's remaining share out and complete the order.

        Raises:
            GatewayError: The payout failed; the caller's transaction rolls
                back and the caller records the failure (gateway_failure)
        """
        amount = seller_payout(order, hold)
        release_txn = cls._pay_out(order, hold, amount, gateway, idempotency_key)

        hold.release(amount, reason=reason, released_by=released_by)
        hold.save()
        order.transition_to(OrderStatus.COMPLETED)
        order.save()

        NotificationService.notify_parties(
            order,
            NotificationType.ESCROW_RELEASED,
            amount=amount,
            escrow_id=hold.id,
        )
        return release_txn

    @classmethod
    def settle_refund(
        cls,
        order: Order,
        hold: EscrowHold | None,
        amount: Decimal,
        gateway: PaymentGateway,
        original_transaction: PaymentTransaction,
        refund_key: str,
        release_key: str,
        reason: str = "",
        released_by=None,
    ) -> Settlement:
        """
        Return ``amount`` to the buyer and settle what remains.

        Full refund: hold refunded, order refunded. Partial refund: the
        hold moves to partial_release and the order is partially_refunded.
        A delivered order then has the seller's remaining share paid out
        and completes; an undelivered one stays on its fulfilment path with
        the remainder in custody. Without a hold in custody (already paid
        out) only the refund is made.

        A refused refund is returned in Settlement.failure with nothing
        written; its failed_call is recorded by the caller once it knows
        whether its transaction commits. A refused payout of the
        remainder does not undo the refund: it is recorded as a FAILED
        transaction, returned in Settlement.payout_failure, and the hold
        stays in partial_release for a later release.
        """
        refundable = order.total_amount - TransactionService.refunded_total(order)
        result = gateway.refund_payment(
            original_transaction.backend_transaction_id,
            amount,
            idempotency_key=refund_key,
            reason=reason or None,
        )
        settlement = Settlement()
        if not result.success:
            settlement.failure = gateway_error(
                result,
                "refund",
                FailedCall(
                    order=order,
                    transaction_type=TransactionType.REFUND,
                    amount=amount,
                    gateway=gateway,
                    result=result,
                    idempotency_key=refund_key,
                ),
            )
            return settlement
        settlement.refund_transaction = TransactionService.record(
            order, TransactionType.REFUND, amount, gateway, result, refund_key
        )

        if amount >= refundable:
            if hold is not None:
                hold.refund(amount)
                hold.save()
            order.transition_to(OrderStatus.REFUNDED)
            order.save()
        else:
            order.payment_status = PaymentStatus.PARTIALLY_REFUNDED
            order.save()
            if hold is not None:
                hold.record_refund(amount)
                hold.save()
                if order.delivery_status == DeliveryStatus.DELIVERED:
                    cls._release_remainder(
                        settlement, order, hold, gateway, release_key, reason, released_by
                    )

        cls.get_logger().info(
            "Refund settled",
            extra={
                "order_id": str(order.id),
                "amount": str(amount),
                "order_status": order.status,
                "escrow_status": hold.status if hold is not None else None,
            },
        )
        return settlement

    @classmethod
    def _release_remainder(
        cls,
        settlement: Settlement,
        order: Order,
        hold: EscrowHold,
        gateway: PaymentGateway,
        idempotency_key: str,
        reason: str,
        released_by,
    ) -> None:
        payout = seller_payout(order, hold)
        try:
            settlement.release_transaction = cls._pay_out(
                order, hold, payout, gateway, idempotency_key
            )
        except GatewayError as e:
            TransactionService.record_failed_call(e)
            settlement.payout_failure = e
            AuditService.record(
                actor=released_by,
                action="escrow.release.failed",
                resource_type="escrow",
                resource_id=hold.id,
                metadata={
                    "order_id": str(order.id),
                    "amount": str(payout),
                    "error_code": e.error_code,
                    "reason": e.details.get("reason", ""),
                },
                risk_level=RiskLevel.HIGH,
            )
            cls.get_logger().warning(
                "Remainder payout failed, hold stays in custody",
                extra={
                    "order_id": str(order.id),
                    "escrow_id": str(hold.id),
                    "amount": str(payout),
                    "error_code": e.error_code,
                },
            )
            return

        hold.release(payout, reason=reason or "partial_refund", released_by=released_by)
        hold.save()
        order.transition_to(OrderStatus.COMPLETED)
        order.save()

    @classmethod
    def _pay_out(
        cls,
        order: Order,
        hold: EscrowHold,
        amount: Decimal,
        gateway: PaymentGateway,
        idempotency_key: str,
    ) -> PaymentTransaction | None:
        """
        Pay ``amount`` out to the seller.

        Raises:
            GatewayError: The payout was refused. Nothing is written; the
                error's failed_call holds the FAILED transaction to record.
        """
        if amount <= 0:
            return None

        result = gateway.release_funds(
            hold.transaction.backend_transaction_id,
            amount,
            recipient_ref=f"seller_{order.seller_id}",
            idempotency_key=idempotency_key,
        )
        if not result.success:
            raise gateway_error(
                result,
                "release",
                FailedCall(
                    order=order,
                    transaction_type=TransactionType.ESCROW_RELEASE,
                    amount=amount,
                    gateway=gateway,
                    result=result,
                    idempotency_key=idempotency_key,
                ),
            )
        return TransactionService.record(
            order, TransactionType.ESCROW_RELEASE, amount, gateway, result, idempotency_key
        )

    # =========================================================================
    # Auto-release sweep
    # =========================================================================

    @staticmethod
    def due_for_release():
        """Holds the auto-release sweep should look at."""
        return EscrowHold.objects.filter(
            status__in=sorted(ACTIVE_ESCROW_STATUSES),
            auto_release_at__lte=timezone.now(),
            order__delivery_status=DeliveryStatus.DELIVERED,
        ).order_by("auto_release_at")

    @classmethod
    def process_auto_release(cls, escrow_id, gateway: PaymentGateway) -> ServiceResult[EscrowHold]:
        """
        Release an active, delivered hold past its deadline.

        Anything else is left untouched: the hold moved on, the deadline
        was pushed out, or a refund is open on the order. Safe to repeat.
        """
        try:
            with cls.atomic():
                order, hold = lock_escrow(escrow_id)

                due = (
                    hold.is_active
                    and hold.auto_release_at <= timezone.now()
                    and order.delivery_status == DeliveryStatus.DELIVERED
                    and not Refund.objects.filter(
                        order=order, status__in=OPEN_REFUND_STATUSES
                    ).exists()
                )
                if not due:
                    return ServiceResult.success(hold)

                release_txn = cls.settle_release(
                    order,
                    hold,
                    gateway,
                    IdempotencyKeyGenerator.generate("release", order.id),
                    reason=AUTO_RELEASE_REASON,
                )
                AuditService.record(
                    actor=None,
                    action="escrow.auto_release",
                    resource_type="escrow",
                    resource_id=hold.id,
                    metadata={
                        "order_id": str(order.id),
                        "amount": str(hold.released_amount),
                        "transaction_id": release_txn.transaction_id if release_txn else None,
                    },
                    risk_level=RiskLevel.MEDIUM,
                )
        except GatewayError as e:
            return cls.gateway_failure(e, "escrow.auto_release", None, "escrow", escrow_id)
        except BaseApplicationError as e:
            return cls.expected_failure(e, "escrow.auto_release", escrow_id=escrow_id)
        except Exception as e:
            return cls.unexpected_failure(
                e, "escrow.auto_release", None, "escrow", escrow_id, financial=True
            )

        cls.get_logger().info(
            "Escrow auto-released",
            extra={"escrow_id": str(hold.id), "order_id": str(order.id)},
        )
        return ServiceResult.success(hold)

    @staticmethod
    def _require_active(hold: EscrowHold) -> None:
        if not hold.is_active:
            raise DomainRuleError(
                f"Escrow is {hold.status}",
                error_code="ESCROW_NOT_ACTIVE",
                details={"status": hold.status},
            )
