"""
Order lifecycle service.

Creates orders against listings and moves them through their non-financial
transitions: cancellation of unpaid orders, seller fulfilment updates and
expiry. Capture, release, refund and dispute live in their own services.

Usage:
    from payments.services import OrderService

    result = OrderService.create_order(
        buyer=request.user,
        listing_id=listing.id,
        quantity=2,
        fee_policy=registry.fee_policy,
    )
    if result.success:
        order = result.data
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.helpers import generate_reference
from core.services import ServiceResult

from listings.models import Listing, ListingStatus
from payments.exceptions import (
    DomainRuleError,
    InvalidStateTransitionError,
    PaymentNotFoundError,
    PaymentPermissionError,
    PaymentValidationError,
)
from payments.fees import FeePolicy
from payments.locks import lock_order
from payments.models import Order
from payments.services.audit_service import AuditService
from payments.services.base import CustodyService
from payments.services.notification_service import NotificationService
from payments.services.risk_service import RiskService
from payments.state_machines import (
    ACTIVE_DISPUTE_STATUSES,
    NotificationType,
    OrderStatus,
    RiskLevel,
)

if TYPE_CHECKING:
    from payments.services.audit_service import AuditContext

DEFAULT_ORDER_EXPIRY_HOURS = 24


def generate_order_number() -> str:
    """ORD-<YYYYMMDDHHMMSS>-<6 uppercase alphanumerics>"""
    stamp = timezone.now().strftime("%Y%m%d%H%M%S")
    return f"ORD-{stamp}-{generate_reference(6)}"


def require_buyer(order: Order, user) -> None:
    if user is None or user.pk != order.buyer_id:
        raise PaymentPermissionError(
            "Only the buyer can perform this action",
            error_code="NOT_ORDER_BUYER",
        )


def require_seller(order: Order, user) -> None:
    if user is None or user.pk != order.seller_id:
        raise PaymentPermissionError(
            "Only the seller can perform this action",
            error_code="NOT_ORDER_SELLER",
        )


def require_party(order: Order, user) -> None:
    if not order.is_party(user):
        raise PaymentPermissionError(
            "Only the buyer or the seller can perform this action",
            error_code="NOT_ORDER_PARTY",
        )


def require_not_disputed(order: Order) -> None:
    """Parties cannot move an order along while a dispute holds it."""
    if order.status == OrderStatus.DISPUTED or order.disputes.filter(
        status__in=sorted(ACTIVE_DISPUTE_STATUSES)
    ).exists():
        raise DomainRuleError(
            "Order is under dispute; it moves on once the dispute is resolved",
            error_code="ORDER_DISPUTED",
            details={"status": order.status},
        )


class OrderService(CustodyService):
    """
    Service for order creation and non-financial lifecycle steps.

    Financial steps (capture, release, refund, dispute resolution) are in
    PaymentService, EscrowService, RefundService and DisputeService. They
    call Order.transition_to() directly, the same table-checked method
    apply_transition() wraps. Only DisputeService takes an order out of
    disputed, through Order.settle_dispute().
    """

    # =========================================================================
    # Creation
    # =========================================================================

    @classmethod
    def create_order(
        cls,
        buyer,
        listing_id,
        quantity: int = 1,
        notes: str | None = None,
        fee_policy: FeePolicy | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Order]:
        """
        Create a pending order for ``quantity`` units of a listing.

        Checks, in order: quantity is at least 1, the listing exists, the
        buyer is not the seller, the listing is active, enough stock is
        left, and the subtotal fits the fee policy's transaction window.

        Returns:
            ServiceResult with the new Order
        """
        fee_policy = fee_policy or FeePolicy()
        cls.get_logger().info(
            "Creating order",
            extra={
                "buyer_id": buyer.pk,
                "listing_id": str(listing_id),
                "quantity": quantity,
            },
        )

        try:
            if quantity is None or int(quantity) < 1:
                raise PaymentValidationError(
                    "Quantity must be at least 1",
                    error_code="VALIDATION_ERROR",
                    details={"quantity": ["Ensure this value is greater than or equal to 1."]},
                )
            quantity = int(quantity)

            with cls.atomic():
                try:
                    listing = Listing.objects.get(pk=listing_id)
                except Listing.DoesNotExist:
                    raise PaymentNotFoundError(
                        f"Listing {listing_id} not found",
                        error_code="LISTING_NOT_FOUND",
                        details={"listing_id": str(listing_id)},
                    )

                if listing.seller_id == buyer.pk:
                    raise DomainRuleError(
                        "You cannot purchase your own listing",
                        error_code="SELF_PURCHASE",
                        details={"listing_id": str(listing.id)},
                    )

                if listing.status != ListingStatus.ACTIVE:
                    raise DomainRuleError(
                        "Listing is not available for purchase",
                        error_code="LISTING_NOT_ACTIVE",
                        details={"listing_status": listing.status},
                    )

                if quantity > listing.quantity:
                    raise DomainRuleError(
                        f"Only {listing.quantity} units available",
                        error_code="INSUFFICIENT_STOCK",
                        details={"available": listing.quantity, "requested": quantity},
                    )

                breakdown = fee_policy.compute(listing.price * quantity, listing.currency)
                risk = RiskService.assess_transaction(
                    buyer,
                    breakdown.total,
                    RiskService.build_context(buyer, context),
                )

                order = Order(
                    order_number=generate_order_number(),
                    buyer=buyer,
                    seller=listing.seller,
                    listing=listing,
                    quantity=quantity,
                    unit_price=listing.price,
                    subtotal=breakdown.subtotal,
                    platform_fee=breakdown.platform_fee,
                    processing_fee=breakdown.processing_fee,
                    total_amount=breakdown.total,
                    seller_amount=breakdown.seller_amount,
                    currency=breakdown.currency,
                    expires_at=timezone.now() + timedelta(hours=cls.expiry_hours()),
                    buyer_notes=notes or "",
                )
                order.clean()
                order.save()

                NotificationService.notify(
                    listing.seller, NotificationType.ORDER_CREATED, order
                )
                AuditService.record(
                    actor=buyer,
                    action="order.create",
                    resource_type="order",
                    resource_id=order.id,
                    metadata={**breakdown.as_dict(), "risk": risk.as_dict()},
                    risk_level=(
                        risk.level
                        if risk.level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
                        else RiskLevel.MEDIUM
                    ),
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "order.create", listing_id=listing_id)
        except Exception as e:
            return cls.unexpected_failure(e, "order.create", buyer, "listing", listing_id, context=context)

        cls.get_logger().info(
            "Order created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "total_amount": str(order.total_amount),
            },
        )
        return ServiceResult.success(order)

    # =========================================================================
    # Transitions
    # =========================================================================

    @staticmethod
    def apply_transition(order: Order, target: str) -> bool:
        """
        Table-checked status change on a locked order (no save).

        Raises:
            InvalidStateTransitionError: Move not allowed from the current status
        """
        return order.transition_to(target)

    @classmethod
    def transition_order(cls, order_id, target: str) -> ServiceResult[Order]:
        """Move an order to ``target`` (aliases accepted) under its row lock."""
        try:
            with cls.atomic():
                order = lock_order(order_id)
                previous = order.status
                if cls.apply_transition(order, target):
                    order.save()
                    cls.get_logger().info(
                        "Order transitioned",
                        extra={
                            "order_id": str(order.id),
                            "from_status": previous,
                            "to_status": order.status,
                        },
                    )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "order.transition", order_id=order_id, target=target)
        except Exception as e:
            return cls.unexpected_failure(e, "order.transition", None, "order", order_id)
        return ServiceResult.success(order)

    @classmethod
    def cancel_order(
        cls,
        order_id,
        caller,
        context: AuditContext | None = None,
    ) -> ServiceResult[Order]:
        """
        Cancel an order no money was captured for.

        Either party may cancel. A funded order fails with ORDER_FUNDED and
        has to go through a refund instead; a disputed one fails with
        ORDER_DISPUTED.
        """
        try:
            with cls.atomic():
                order = lock_order(order_id)
                require_party(order, caller)
                require_not_disputed(order)

                if order.is_funded:
                    raise DomainRuleError(
                        "A paid order cannot be cancelled; request a refund instead",
                        error_code="ORDER_FUNDED",
                        details={"status": order.status},
                    )

                if order.status == OrderStatus.CANCELLED:
                    raise InvalidStateTransitionError(
                        "Order is already cancelled",
                        error_code="INVALID_ORDER_STATE",
                        details={"status": order.status},
                    )

                cls.apply_transition(order, OrderStatus.CANCELLED)
                order.save()

                NotificationService.notify_parties(
                    order,
                    NotificationType.ORDER_CANCELLED,
                    exclude=[caller.pk],
                )
                AuditService.record(
                    actor=caller,
                    action="order.cancel",
                    resource_type="order",
                    resource_id=order.id,
                    risk_level=RiskLevel.LOW,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "order.cancel", order_id=order_id)
        except Exception as e:
            return cls.unexpected_failure(e, "order.cancel", caller, "order", order_id, context=context)

        cls.get_logger().info("Order cancelled", extra={"order_id": str(order.id)})
        return ServiceResult.success(order)

    @classmethod
    def mark_processing(
        cls,
        order_id,
        caller,
        context: AuditContext | None = None,
    ) -> ServiceResult[Order]:
        """Seller started fulfilling a paid order."""
        return cls._seller_update(order_id, caller, OrderStatus.PROCESSING, context=context)

    @classmethod
    def mark_delivered(
        cls,
        order_id,
        caller,
        notes: str | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Order]:
        """Seller delivered the goods; the buyer is notified."""
        return cls._seller_update(
            order_id, caller, OrderStatus.DELIVERED, notes=notes, context=context
        )

    @classmethod
    def _seller_update(
        cls,
        order_id,
        caller,
        target: str,
        notes: str | None = None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Order]:
        action = f"order.{target}"
        try:
            with cls.atomic():
                order = lock_order(order_id)
                require_seller(order, caller)
                require_not_disputed(order)

                if not cls.apply_transition(order, target):
                    raise InvalidStateTransitionError(
                        f"Order is already {target}",
                        error_code="INVALID_ORDER_STATE",
                        details={"status": order.status},
                    )
                if notes:
                    order.seller_notes = notes
                order.save()

                if target == OrderStatus.DELIVERED:
                    NotificationService.notify(
                        order.buyer, NotificationType.ORDER_DELIVERED, order
                    )
                AuditService.record(
                    actor=caller,
                    action=action,
                    resource_type="order",
                    resource_id=order.id,
                    metadata={"delivery_status": order.delivery_status},
                    risk_level=RiskLevel.LOW,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, action, order_id=order_id)
        except Exception as e:
            return cls.unexpected_failure(e, action, caller, "order", order_id, context=context)

        cls.get_logger().info(
            "Order fulfilment updated",
            extra={"order_id": str(order.id), "status": order.status},
        )
        return ServiceResult.success(order)

    # =========================================================================
    # Expiry
    # =========================================================================

    @classmethod
    def expire_order(cls, order_id) -> ServiceResult[Order]:
        """
        Cancel a pending order past its expiry.

        Idempotent: an order that is no longer pending, or not yet expired,
        is returned unchanged.
        """
        try:
            with cls.atomic():
                order = lock_order(order_id)
                if order.is_expired:
                    cls.cancel_expired(order)
        except BaseApplicationError as e:
            return cls.expected_failure(e, "order.expire", order_id=order_id)
        except Exception as e:
            return cls.unexpected_failure(e, "order.expire", None, "order", order_id)
        return ServiceResult.success(order)

    @classmethod
    def cancel_expired(cls, order: Order) -> None:
        """Cancel a locked, expired, pending order and tell both parties."""
        cls.apply_transition(order, OrderStatus.CANCELLED)
        order.save()
        NotificationService.notify_parties(
            order, NotificationType.ORDER_CANCELLED, reason="order expired"
        )
        AuditService.record(
            actor=None,
            action="order.expire",
            resource_type="order",
            resource_id=order.id,
            metadata={"expires_at": order.expires_at.isoformat()},
            risk_level=RiskLevel.LOW,
        )
        cls.get_logger().info(
            "Expired order cancelled",
            extra={"order_id": str(order.id), "order_number": order.order_number},
        )

    @staticmethod
    def expiry_hours() -> int:
        return int(getattr(settings, "ORDER_EXPIRY_HOURS", DEFAULT_ORDER_EXPIRY_HOURS))
