"""
Serializers for the custody API.

This module provides serializers for:
- Orders and their transactions
- Escrow holds
- Refunds
- Disputes and dispute messages
- Payment notifications

Serializer Hierarchy:
    OrderSerializer: Order with amounts, states and escrow summary
    OrderCreateSerializer: Buy a listing
    PaySerializer: Capture payment for an order
    DeliverSerializer: Seller delivery / processing notes

    EscrowHoldSerializer: Hold with remaining amount
    EscrowReleaseSerializer: Buyer release request
    EscrowDisputeSerializer: Seller freeze request

    RefundSerializer / RefundRequestSerializer / RefundResolveSerializer

    DisputeSerializer / DisputeCreateSerializer / DisputeResolveSerializer
    DisputeMessageSerializer / DisputeMessageCreateSerializer
    DisputeEscalateSerializer

Design Decisions:
    - Read and write serializers are separate for clarity
    - Write serializers only validate shape; every business rule lives
      in the service layer so the API and tasks share one set of checks
    - Money is rendered as strings to keep full decimal precision
"""

from __future__ import annotations

from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import serializers

from payments.models import (
    Dispute,
    DisputeMessage,
    EscrowHold,
    Order,
    PaymentNotification,
    PaymentTransaction,
    Refund,
)
from payments.services import RefundDecision
from payments.state_machines import DisputeReason, DisputeResolution

User = get_user_model()


class PartySerializer(serializers.ModelSerializer):
    """Minimal user info for buyers, sellers and dispute participants."""

    class Meta:
        model = User
        fields = ["id", "username"]
        read_only_fields = fields


# =============================================================================
# Transaction Serializers
# =============================================================================


class PaymentTransactionSerializer(serializers.ModelSerializer):
    """Gateway call as shown to the order's parties (no raw backend payload)."""

    class Meta:
        model = PaymentTransaction
        fields = [
            "id",
            "transaction_id",
            "transaction_type",
            "amount",
            "currency",
            "backend",
            "status",
            "failure_reason",
            "processed_at",
            "created_at",
        ]
        read_only_fields = fields


# =============================================================================
# Escrow Serializers
# =============================================================================


class EscrowHoldSerializer(serializers.ModelSerializer):
    """
    Read serializer for escrow holds.

    remaining_amount is what is still in custody after partial refunds
    and releases.
    """

    remaining_amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True,
        help_text="Amount still held",
    )

    class Meta:
        model = EscrowHold
        fields = [
            "id",
            "order",
            "amount",
            "refunded_amount",
            "released_amount",
            "remaining_amount",
            "currency",
            "status",
            "auto_release_at",
            "release_reason",
            "dispute_reason",
            "released_at",
            "disputed_at",
            "refunded_at",
            "created_at",
        ]
        read_only_fields = fields


class EscrowReleaseSerializer(serializers.Serializer):
    """Buyer confirms delivery and releases the seller's payout."""

    reason = serializers.CharField(
        max_length=100,
        required=False,
        allow_blank=True,
        default="",
        help_text="Release reason (defaults to buyer_release)",
    )
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        required=False,
        allow_null=True,
        min_value=Decimal("0.01"),
        help_text="Optional amount; only the full payout is accepted",
    )


class EscrowDisputeSerializer(serializers.Serializer):
    """Seller freezes the hold."""

    reason = serializers.CharField(max_length=2000, help_text="Why the hold is disputed")
    notes = serializers.CharField(
        max_length=2000,
        required=False,
        allow_blank=True,
        help_text="Additional seller notes",
    )


# =============================================================================
# Order Serializers
# =============================================================================


class OrderSerializer(serializers.ModelSerializer):
    """
    Read serializer for orders.

    Includes both parties, the fee breakdown and the current escrow hold.
    """

    buyer = PartySerializer(read_only=True)
    seller = PartySerializer(read_only=True)
    escrow = serializers.SerializerMethodField(help_text="Current escrow hold, if any")
    transactions = PaymentTransactionSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "buyer",
            "seller",
            "listing",
            "quantity",
            "unit_price",
            "subtotal",
            "platform_fee",
            "processing_fee",
            "total_amount",
            "seller_amount",
            "currency",
            "status",
            "payment_status",
            "delivery_status",
            "expires_at",
            "buyer_notes",
            "seller_notes",
            "dispute_reason",
            "paid_at",
            "delivered_at",
            "completed_at",
            "cancelled_at",
            "escrow",
            "transactions",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_escrow(self, obj: Order) -> dict | None:
        hold = obj.escrow_holds.order_by("-created_at").first()
        if hold is None:
            return None
        return EscrowHoldSerializer(hold).data


class OrderCreateSerializer(serializers.Serializer):
    """Buy a listing."""

    listing_id = serializers.UUIDField(help_text="Listing to purchase")
    quantity = serializers.IntegerField(
        default=1,
        help_text="Units to purchase (at least 1)",
    )
    notes = serializers.CharField(
        max_length=2000,
        required=False,
        allow_blank=True,
        help_text="Notes for the seller",
    )


class PaySerializer(serializers.Serializer):
    """Capture payment for a pending order."""

    payment_method_ref = serializers.CharField(
        max_length=255,
        help_text="Stored payment method id or card number",
    )


class DeliverSerializer(serializers.Serializer):
    """Seller's delivery or progress notes."""

    notes = serializers.CharField(
        max_length=2000,
        required=False,
        allow_blank=True,
        help_text="Notes for the buyer",
    )


# =============================================================================
# Refund Serializers
# =============================================================================


class RefundSerializer(serializers.ModelSerializer):
    """Read serializer for refunds."""

    requested_by = PartySerializer(read_only=True)
    processed_by = PartySerializer(read_only=True, allow_null=True)

    class Meta:
        model = Refund
        fields = [
            "id",
            "order",
            "amount",
            "currency",
            "reason",
            "status",
            "requested_by",
            "request_notes",
            "requested_at",
            "processed_by",
            "processing_notes",
            "failure_reason",
            "processed_at",
            "completed_at",
            "refund_transaction",
        ]
        read_only_fields = fields


class RefundRequestSerializer(serializers.Serializer):
    """Request money back on a funded order."""

    reason = serializers.CharField(max_length=255, help_text="Reason for the refund")
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        required=False,
        allow_null=True,
        help_text="Amount to refund (defaults to everything refundable)",
    )
    notes = serializers.CharField(
        max_length=2000,
        required=False,
        allow_blank=True,
        help_text="Additional details",
    )


class RefundResolveSerializer(serializers.Serializer):
    """Seller's decision on a pending refund."""

    decision = serializers.ChoiceField(
        choices=RefundDecision.CHOICES,
        help_text="approved or rejected",
    )
    notes = serializers.CharField(
        max_length=2000,
        required=False,
        allow_blank=True,
        help_text="Notes for the requester",
    )


# =============================================================================
# Dispute Serializers
# =============================================================================


class DisputeMessageSerializer(serializers.ModelSerializer):
    """One entry of a dispute thread."""

    sender = PartySerializer(read_only=True, allow_null=True)

    class Meta:
        model = DisputeMessage
        fields = [
            "id",
            "sender",
            "message",
            "attachments",
            "is_internal",
            "is_system",
            "created_at",
        ]
        read_only_fields = fields


class DisputeMessageCreateSerializer(serializers.Serializer):
    """Post to a dispute thread. Only mediators may post internal notes."""

    message = serializers.CharField(max_length=10000, help_text="Message body")
    attachments = serializers.ListField(
        child=serializers.CharField(max_length=500),
        required=False,
        default=list,
        help_text="Attachment references",
    )
    internal = serializers.BooleanField(
        default=False,
        help_text="Visible to mediators only",
    )


class DisputeSerializer(serializers.ModelSerializer):
    """Read serializer for disputes."""

    created_by = PartySerializer(read_only=True)
    respondent = PartySerializer(read_only=True)
    resolved_by = PartySerializer(read_only=True, allow_null=True)

    class Meta:
        model = Dispute
        fields = [
            "id",
            "order",
            "escrow_hold",
            "reason",
            "description",
            "requested_amount",
            "evidence",
            "created_by",
            "initiated_by",
            "respondent",
            "status",
            "escalation_reason",
            "escalated_at",
            "resolution",
            "resolution_amount",
            "resolution_notes",
            "resolved_by",
            "resolved_at",
            "closed_at",
            "created_at",
        ]
        read_only_fields = fields


class DisputeCreateSerializer(serializers.Serializer):
    """Open a dispute on an order."""

    reason = serializers.ChoiceField(
        choices=DisputeReason.choices,
        help_text="Dispute reason",
    )
    description = serializers.CharField(max_length=5000, help_text="What went wrong")
    evidence = serializers.ListField(
        child=serializers.CharField(max_length=2000),
        required=False,
        default=list,
        help_text="Evidence entries (links, descriptions)",
    )
    requested_amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        required=False,
        allow_null=True,
        help_text="Amount the initiator asks for",
    )


class DisputeEscalateSerializer(serializers.Serializer):
    """Hand the dispute to a mediator."""

    reason = serializers.CharField(max_length=2000, help_text="Why mediation is needed")


class DisputeResolveSerializer(serializers.Serializer):
    """Mediator's ruling."""

    resolution = serializers.ChoiceField(
        choices=DisputeResolution.choices,
        help_text="Outcome",
    )
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        required=False,
        allow_null=True,
        help_text="Refund amount (partial_refund only)",
    )
    notes = serializers.CharField(
        max_length=5000,
        required=False,
        allow_blank=True,
        default="",
        help_text="Mediator's notes",
    )


# =============================================================================
# Notification Serializers
# =============================================================================


class PaymentNotificationSerializer(serializers.ModelSerializer):
    is_read = serializers.BooleanField(read_only=True)

    class Meta:
        model = PaymentNotification
        fields = [
            "id",
            "order",
            "notification_type",
            "title",
            "message",
            "metadata",
            "is_read",
            "read_at",
            "created_at",
        ]
        read_only_fields = fields
