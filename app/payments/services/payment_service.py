"""
Payment capture.

Charges the buyer through the configured gateway and, on success, places
the captured amount in escrow. The gateway call happens under the order's
row lock; a declined or failed call is still persisted as a FAILED
transaction before the error reaches the caller.

Usage:
    from payments.services import PaymentService

    registry = apps.get_app_config("payments").gateway_registry
    result = PaymentService.capture_payment(
        order_id=order.id,
        caller=request.user,
        payment_method_ref="pm_test_visa",
        gateway=registry.gateway,
        auto_release_hours=registry.profile.auto_release_hours,
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from listings.models import Listing
from payments.exceptions import DomainRuleError, InvalidStateTransitionError
from payments.gateways import IdempotencyKeyGenerator
from payments.locks import lock_order
from payments.models import Order
from payments.services.audit_service import AuditService
from payments.services.base import CustodyService
from payments.services.escrow_service import EscrowService
from payments.services.notification_service import NotificationService
from payments.services.order_service import OrderService, require_buyer
from payments.services.risk_service import RiskService
from payments.services.transaction_service import TransactionService, gateway_error
from payments.state_machines import (
    NotificationType,
    OrderStatus,
    PaymentStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from payments.gateways import PaymentGateway
    from payments.services.audit_service import AuditContext

DEFAULT_AUTO_RELEASE_HOURS = 72


class PaymentService(CustodyService):
    """Captures payments for pending orders."""

    @classmethod
    def capture_payment(
        cls,
        order_id,
        caller,
        payment_method_ref: str,
        gateway: PaymentGateway,
        auto_release_hours: int | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Order]:
        """
        Charge the buyer for a pending order and open its escrow hold.

        Args:
            order_id: Order to pay for
            caller: Must be the order's buyer
            payment_method_ref: Backend payment method reference
            gateway: Gateway to charge through
            auto_release_hours: Delay before a delivered order auto-releases
            context: Request origin for risk and audit

        Returns:
            ServiceResult with the paid Order. Gateway declines fail with
            PAYMENT_DECLINED (402); backend errors with GATEWAY_ERROR (502).
        """
        if auto_release_hours is None:
            auto_release_hours = getattr(
                settings, "ESCROW_AUTO_RELEASE_HOURS", None
            ) or DEFAULT_AUTO_RELEASE_HOURS

        cls.get_logger().info(
            "Capturing payment",
            extra={
                "order_id": str(order_id),
                "backend": gateway.backend.value,
            },
        )

        failure: BaseApplicationError | None = None
        try:
            risk = RiskService.assess_transaction(
                caller,
                Order.objects.filter(pk=order_id).values_list("total_amount", flat=True).first() or 0,
                RiskService.build_context(caller, context, payment_method_ref),
            )

            with cls.atomic():
                order = lock_order(order_id)
                require_buyer(order, caller)

                if order.status != OrderStatus.PENDING:
                    raise InvalidStateTransitionError(
                        f"Order is {order.status}, payment requires a pending order",
                        error_code="INVALID_ORDER_STATE",
                        details={"status": order.status},
                    )

                if order.is_expired:
                    OrderService.cancel_expired(order)
                    failure = DomainRuleError(
                        "Order has expired",
                        error_code="ORDER_EXPIRED",
                        details={"expires_at": order.expires_at.isoformat()},
                    )
                else:
                    listing = Listing.objects.select_for_update().get(pk=order.listing_id)
                    if order.quantity > listing.quantity:
                        raise DomainRuleError(
                            f"Only {listing.quantity} units available",
                            error_code="INSUFFICIENT_STOCK",
                            details={"available": listing.quantity, "requested": order.quantity},
                        )

                    attempt = TransactionService.attempt_number(order, TransactionType.PAYMENT)
                    idempotency_key = IdempotencyKeyGenerator.generate("capture", order.id, attempt)
                    result = gateway.process_payment(
                        amount=order.total_amount,
                        currency=order.currency,
                        payment_method_ref=payment_method_ref,
                        order_ref=order.order_number,
                        metadata={
                            "order_id": str(order.id),
                            "buyer_id": str(order.buyer_id),
                            "seller_id": str(order.seller_id),
                        },
                        idempotency_key=idempotency_key,
                    )
                    txn = TransactionService.record(
                        order,
                        TransactionType.PAYMENT,
                        order.total_amount,
                        gateway,
                        result,
                        idempotency_key,
                        risk_score=risk.score,
                    )

                    if result.success:
                        listing.consume_stock(order.quantity)
                        listing.save()
                        order.transition_to(OrderStatus.PAID)
                        order.save()
                        hold = EscrowService.open_hold(order, txn, auto_release_hours)
                        NotificationService.notify_parties(
                            order,
                            NotificationType.PAYMENT_RECEIVED,
                            escrow_id=hold.id,
                        )
                    else:
                        failure = gateway_error(result, "capture")
                        order.payment_status = PaymentStatus.FAILED
                        order.save()
                        NotificationService.notify(
                            order.buyer,
                            NotificationType.PAYMENT_FAILED,
                            order,
                            reason=result.error or result.error_code or "",
                        )

                    AuditService.record(
                        actor=caller,
                        action="payment.capture",
                        resource_type="order",
                        resource_id=order.id,
                        metadata={
                            "transaction_id": txn.transaction_id,
                            "status": txn.status,
                            "amount": str(order.total_amount),
                            "backend": gateway.backend.value,
                            "payment_method_ref": payment_method_ref,
                            "risk": risk.as_dict(),
                        },
                        risk_level=risk.level,
                        context=context,
                    )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "payment.capture", order_id=order_id)
        except Exception as e:
            return cls.unexpected_failure(
                e, "payment.capture", caller, "order", order_id, financial=True, context=context
            )

        if failure is not None:
            return cls.expected_failure(failure, "payment.capture", order_id=order_id)

        cls.get_logger().info(
            "Payment captured",
            extra={
                "order_id": str(order.id),
                "transaction_id": txn.transaction_id,
                "amount": str(order.total_amount),
            },
        )
        return ServiceResult.success(order)
