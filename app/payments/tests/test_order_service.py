"""
Tests for OrderService.

Covers order creation against listings, cancellation, seller fulfilment
updates, expiry and table-checked transitions.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from listings.models import ListingStatus
from payments.fees import FeePolicy
from payments.models import AuditLog, Dispute, Order, PaymentNotification
from payments.services import DisputeService, EscrowService, OrderService, RefundService
from payments.state_machines import (
    DeliveryStatus,
    DisputeReason,
    DisputeStatus,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    PaymentStatus,
    RiskLevel,
)
from payments.tests.factories import ListingFactory, hold_for, refetch


# =============================================================================
# create_order
# =============================================================================


@pytest.mark.django_db
class TestCreateOrder:
    """Tests for OrderService.create_order."""

    def test_creates_pending_order_with_fees(self, buyer, listing):
        result = OrderService.create_order(buyer, listing.id, quantity=2, notes="Gift")

        assert result.success
        order = result.data
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.seller == listing.seller
        assert order.unit_price == Decimal("20.00")
        assert order.subtotal == Decimal("40.00")
        assert order.platform_fee == Decimal("2.00")
        assert order.processing_fee == Decimal("1.16")
        assert order.total_amount == Decimal("43.16")
        assert order.seller_amount == Decimal("40.00")
        assert order.buyer_notes == "Gift"
        assert order.order_number.startswith("ORD-")

    def test_expires_after_configured_hours(self, buyer, listing, settings):
        settings.ORDER_EXPIRY_HOURS = 2
        before = timezone.now()

        order = OrderService.create_order(buyer, listing.id).data

        assert before + timedelta(hours=2) <= order.expires_at
        assert order.expires_at <= timezone.now() + timedelta(hours=2)

    def test_does_not_reserve_stock(self, buyer, listing):
        OrderService.create_order(buyer, listing.id, quantity=3)

        listing.refresh_from_db()
        assert listing.quantity == 5

    def test_uses_supplied_fee_policy(self, buyer, listing):
        policy = FeePolicy(platform_rate=Decimal("0.01"))

        order = OrderService.create_order(buyer, listing.id, fee_policy=policy).data

        assert order.platform_fee == Decimal("0.30")
        assert order.total_amount == Decimal("20.88")

    def test_notifies_seller_and_audits(self, buyer, seller, listing):
        order = OrderService.create_order(buyer, listing.id).data

        notification = PaymentNotification.objects.get(order=order)
        assert notification.recipient == seller
        assert notification.notification_type == NotificationType.ORDER_CREATED

        entry = AuditLog.objects.get(action="order.create")
        assert entry.actor == buyer
        assert entry.resource_id == str(order.id)
        assert entry.metadata["total"] == "21.58"
        assert entry.risk_level == RiskLevel.MEDIUM

    def test_unknown_listing(self, buyer):
        result = OrderService.create_order(buyer, uuid.uuid4())

        assert not result.success
        assert result.error_code == "LISTING_NOT_FOUND"
        assert result.status_code == 404

    def test_seller_cannot_buy_own_listing(self, seller, listing):
        result = OrderService.create_order(seller, listing.id)

        assert result.error_code == "SELF_PURCHASE"
        assert result.status_code == 409
        assert not Order.objects.exists()

    def test_inactive_listing(self, buyer, seller):
        listing = ListingFactory(seller=seller, status=ListingStatus.INACTIVE)

        result = OrderService.create_order(buyer, listing.id)

        assert result.error_code == "LISTING_NOT_ACTIVE"

    def test_insufficient_stock(self, buyer, listing):
        result = OrderService.create_order(buyer, listing.id, quantity=6)

        assert result.error_code == "INSUFFICIENT_STOCK"
        assert result.errors == {"available": 5, "requested": 6}

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_below_one(self, buyer, listing, quantity):
        result = OrderService.create_order(buyer, listing.id, quantity=quantity)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.status_code == 400
        assert "quantity" in result.errors

    def test_subtotal_outside_window(self, buyer, seller):
        listing = ListingFactory(seller=seller, price=Decimal("6000.00"))

        result = OrderService.create_order(buyer, listing.id, quantity=2)

        assert result.error_code == "AMOUNT_OUT_OF_RANGE"
        assert result.status_code == 400
        assert not Order.objects.exists()

    def test_no_side_effects_on_failure(self, seller, listing):
        OrderService.create_order(seller, listing.id)

        assert not PaymentNotification.objects.exists()
        assert not AuditLog.objects.exists()


# =============================================================================
# cancel_order
# =============================================================================


@pytest.mark.django_db
class TestCancelOrder:
    """Tests for OrderService.cancel_order."""

    def test_buyer_cancels_pending_order(self, pending_order, buyer, seller):
        result = OrderService.cancel_order(pending_order.id, buyer)

        assert result.success
        order = refetch(pending_order)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_at is not None

        notifications = PaymentNotification.objects.filter(
            notification_type=NotificationType.ORDER_CANCELLED
        )
        assert [n.recipient for n in notifications] == [seller]

    def test_seller_can_cancel(self, pending_order, seller):
        assert OrderService.cancel_order(pending_order.id, seller).success

    def test_outsider_cannot_cancel(self, pending_order, outsider):
        result = OrderService.cancel_order(pending_order.id, outsider)

        assert result.error_code == "NOT_ORDER_PARTY"
        assert result.status_code == 403
        assert refetch(pending_order).status == OrderStatus.PENDING

    def test_paid_order_needs_refund(self, paid_order, buyer):
        result = OrderService.cancel_order(paid_order.id, buyer)

        assert result.error_code == "ORDER_FUNDED"
        assert result.status_code == 409
        assert refetch(paid_order).status == OrderStatus.PAID

    def test_disputed_order_cannot_be_cancelled(self, pending_order, buyer, seller):
        DisputeService.create_dispute(
            pending_order.id, buyer, reason=DisputeReason.OTHER, description="Suspicious listing"
        )

        result = OrderService.cancel_order(pending_order.id, seller)

        assert result.error_code == "ORDER_DISPUTED"
        assert refetch(pending_order).status == OrderStatus.DISPUTED

    def test_cancel_twice(self, pending_order, buyer):
        OrderService.cancel_order(pending_order.id, buyer)

        result = OrderService.cancel_order(pending_order.id, buyer)

        assert result.error_code == "INVALID_ORDER_STATE"

    def test_unknown_order(self, buyer):
        result = OrderService.cancel_order(uuid.uuid4(), buyer)

        assert result.error_code == "ORDER_NOT_FOUND"
        assert result.status_code == 404


# =============================================================================
# Fulfilment
# =============================================================================


@pytest.mark.django_db
class TestFulfilment:
    """Tests for mark_processing and mark_delivered."""

    def test_processing_then_delivered(self, paid_order, seller, buyer):
        assert OrderService.mark_processing(paid_order.id, seller).success
        assert refetch(paid_order).delivery_status == DeliveryStatus.PROCESSING

        result = OrderService.mark_delivered(paid_order.id, seller, notes="Code: ABC-123")

        assert result.success
        order = refetch(paid_order)
        assert order.status == OrderStatus.DELIVERED
        assert order.delivery_status == DeliveryStatus.DELIVERED
        assert order.delivered_at is not None
        assert order.seller_notes == "Code: ABC-123"
        assert PaymentNotification.objects.filter(
            recipient=buyer, notification_type=NotificationType.ORDER_DELIVERED
        ).exists()

    def test_buyer_cannot_mark_delivered(self, paid_order, buyer):
        result = OrderService.mark_delivered(paid_order.id, buyer)

        assert result.error_code == "NOT_ORDER_SELLER"
        assert result.status_code == 403

    def test_unpaid_order_cannot_be_delivered(self, pending_order, seller):
        result = OrderService.mark_delivered(pending_order.id, seller)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.status_code == 409
        assert refetch(pending_order).status == OrderStatus.PENDING

    def test_deliver_twice(self, delivered_order, seller):
        result = OrderService.mark_delivered(delivered_order.id, seller)

        assert result.error_code == "INVALID_ORDER_STATE"

    def test_disputed_order_cannot_be_delivered(self, open_dispute, delivered_order, seller, buyer):
        result = OrderService.mark_delivered(delivered_order.id, seller, notes="Sent again")

        assert result.error_code == "ORDER_DISPUTED"
        assert result.status_code == 409
        order = refetch(delivered_order)
        assert order.status == OrderStatus.DISPUTED
        assert order.seller_notes != "Sent again"
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.OPEN
        assert hold_for(delivered_order).status == EscrowStatus.DISPUTED
        assert RefundService.request_refund(
            delivered_order.id, buyer, reason="x"
        ).error_code == "ORDER_NOT_REFUNDABLE"

    def test_frozen_order_cannot_be_processed(self, paid_order, seller):
        EscrowService.dispute_escrow(hold_for(paid_order).id, seller, reason="Buyer unreachable")

        result = OrderService.mark_processing(paid_order.id, seller)

        assert result.error_code == "ORDER_DISPUTED"
        assert refetch(paid_order).status == OrderStatus.DISPUTED

    def test_audit_entry(self, delivered_order, seller):
        entry = AuditLog.objects.get(action="order.delivered")

        assert entry.actor == seller
        assert entry.metadata == {"delivery_status": "delivered"}


# =============================================================================
# Expiry and transitions
# =============================================================================


@pytest.mark.django_db
class TestExpireOrder:
    def test_expired_order_is_cancelled(self, pending_order, buyer, seller):
        Order.objects.filter(pk=pending_order.pk).update(
            expires_at=timezone.now() - timedelta(minutes=5)
        )

        result = OrderService.expire_order(pending_order.id)

        assert result.success
        assert refetch(pending_order).status == OrderStatus.CANCELLED
        recipients = set(
            PaymentNotification.objects.filter(
                notification_type=NotificationType.ORDER_CANCELLED
            ).values_list("recipient_id", flat=True)
        )
        assert recipients == {buyer.id, seller.id}
        entry = AuditLog.objects.get(action="order.expire")
        assert entry.actor is None

    def test_unexpired_order_untouched(self, pending_order):
        result = OrderService.expire_order(pending_order.id)

        assert result.success
        assert result.data.status == OrderStatus.PENDING
        assert not AuditLog.objects.filter(action="order.expire").exists()

    def test_paid_order_untouched(self, paid_order):
        Order.objects.filter(pk=paid_order.pk).update(
            expires_at=timezone.now() - timedelta(minutes=5)
        )

        OrderService.expire_order(paid_order.id)

        assert refetch(paid_order).status == OrderStatus.PAID


@pytest.mark.django_db
class TestTransitionOrder:
    def test_alias_accepted(self, pending_order):
        result = OrderService.transition_order(pending_order.id, "confirmed")

        assert result.success
        assert refetch(pending_order).status == OrderStatus.PAID

    def test_same_status_is_noop(self, pending_order):
        result = OrderService.transition_order(pending_order.id, "pending")

        assert result.success
        assert refetch(pending_order).version == pending_order.version

    def test_illegal_move(self, pending_order):
        result = OrderService.transition_order(pending_order.id, "completed")

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.errors == {"current_state": "pending", "target_state": "completed"}

    def test_move_back_to_pending(self, delivered_order):
        result = OrderService.transition_order(delivered_order.id, "pending")

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.status_code == 409
        assert result.errors == {"current_state": "delivered", "target_state": "pending"}
        assert refetch(delivered_order).status == OrderStatus.DELIVERED
        assert not AuditLog.objects.filter(action="order.transition.failed").exists()

    def test_disputed_order_stays_disputed(self, open_dispute, delivered_order):
        result = OrderService.transition_order(delivered_order.id, "completed")

        assert result.error_code == "ORDER_DISPUTED"
        assert refetch(delivered_order).status == OrderStatus.DISPUTED
