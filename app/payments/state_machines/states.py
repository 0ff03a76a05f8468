"""
State enums for payment models.

This module defines the state enums used by the custody engine models with
django-fsm. These are Django TextChoices for database storage and admin
integration.

State Machines Overview:

Order Status:
    pending → paid → processing → delivered → completed
    pending → cancelled
    any non-terminal → disputed → completed / refunded / cancelled
    paid/processing/delivered/completed → refunded

Escrow Hold Status:
    held → released
    held → partial_release → released
    held → disputed → released / refunded / held (no-action resolution)
    held → expired
    held → refunded

Refund Status:
    pending → approved → processing → completed
    pending → rejected
    processing → rejected (gateway failure)

Dispute Status:
    open → under_review / awaiting_response → escalated → resolved → closed
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    Canonical order lifecycle states.

    Terminal states: COMPLETED, CANCELLED, REFUNDED

    Caller-facing aliases are accepted on input and normalised via
    normalize_order_status(): "confirmed" → PAID, "shipped" → DELIVERED.
    """

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    PROCESSING = "processing", "Processing"
    DELIVERED = "delivered", "Delivered"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    DISPUTED = "disputed", "Disputed"
    REFUNDED = "refunded", "Refunded"


class PaymentStatus(models.TextChoices):
    """Money-side status of an order, independent of fulfilment."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"


class DeliveryStatus(models.TextChoices):
    """Fulfilment status of an order as reported by the seller."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    DELIVERED = "delivered", "Delivered"
    FAILED = "failed", "Failed"


class TransactionType(models.TextChoices):
    """Kinds of money movement recorded against an order."""

    PAYMENT = "payment", "Payment"
    REFUND = "refund", "Refund"
    CHARGEBACK = "chargeback", "Chargeback"
    FEE = "fee", "Fee"
    ESCROW_RELEASE = "escrow_release", "Escrow Release"


class TransactionStatus(models.TextChoices):
    """
    States for PaymentTransaction.

    COMPLETED and FAILED are immutable; corrections are new transactions.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class EscrowStatus(models.TextChoices):
    """
    States for EscrowHold.

    Active states: HELD, PARTIAL_RELEASE
    Terminal states: RELEASED, EXPIRED, REFUNDED
    DISPUTED is frozen until a dispute resolution moves it on.
    """

    HELD = "held", "Held"
    PARTIAL_RELEASE = "partial_release", "Partially Released"
    RELEASED = "released", "Released"
    DISPUTED = "disputed", "Disputed"
    EXPIRED = "expired", "Expired"
    REFUNDED = "refunded", "Refunded"


class RefundStatus(models.TextChoices):
    """
    States for Refund.

    State Flow:
        PENDING → APPROVED → PROCESSING → COMPLETED
        PENDING → REJECTED (seller decision)
        PROCESSING → REJECTED (gateway failure)
    """

    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    REJECTED = "rejected", "Rejected"


class DisputeStatus(models.TextChoices):
    """
    States for Dispute.

    Active states: OPEN, UNDER_REVIEW, AWAITING_RESPONSE, ESCALATED
    """

    OPEN = "open", "Open"
    UNDER_REVIEW = "under_review", "Under Review"
    AWAITING_RESPONSE = "awaiting_response", "Awaiting Response"
    ESCALATED = "escalated", "Escalated"
    RESOLVED = "resolved", "Resolved"
    CLOSED = "closed", "Closed"


class DisputeReason(models.TextChoices):
    """Closed set of reasons a party may open a dispute for."""

    ITEM_NOT_RECEIVED = "item_not_received", "Item Not Received"
    ITEM_NOT_AS_DESCRIBED = "item_not_as_described", "Item Not As Described"
    DAMAGED_ITEM = "damaged_item", "Damaged Item"
    WRONG_ITEM = "wrong_item", "Wrong Item"
    SELLER_NOT_RESPONSIVE = "seller_not_responsive", "Seller Not Responsive"
    BUYER_NOT_RESPONSIVE = "buyer_not_responsive", "Buyer Not Responsive"
    PAYMENT_ISSUE = "payment_issue", "Payment Issue"
    SHIPPING_ISSUE = "shipping_issue", "Shipping Issue"
    QUALITY_ISSUE = "quality_issue", "Quality Issue"
    OTHER = "other", "Other"


class DisputeResolution(models.TextChoices):
    """
    Outcomes a mediator can choose when resolving a dispute.

    Financial outcomes: FULL_REFUND, FAVOR_BUYER, PARTIAL_REFUND, FAVOR_SELLER
    Non-financial outcomes: NO_ACTION, REPLACEMENT, STORE_CREDIT
    """

    FULL_REFUND = "full_refund", "Full Refund"
    PARTIAL_REFUND = "partial_refund", "Partial Refund"
    REPLACEMENT = "replacement", "Replacement"
    STORE_CREDIT = "store_credit", "Store Credit"
    NO_ACTION = "no_action", "No Action"
    FAVOR_SELLER = "favor_seller", "Favor Seller"
    FAVOR_BUYER = "favor_buyer", "Favor Buyer"


class DisputeParty(models.TextChoices):
    """Which side of the order opened a dispute."""

    BUYER = "buyer", "Buyer"
    SELLER = "seller", "Seller"


class RiskLevel(models.TextChoices):
    """Risk classification for audit entries and risk assessments."""

    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class NotificationType(models.TextChoices):
    """Typed events handed to the notification subsystem."""

    ORDER_CREATED = "order_created", "Order Created"
    ORDER_CANCELLED = "order_cancelled", "Order Cancelled"
    PAYMENT_RECEIVED = "payment_received", "Payment Received"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    ORDER_DELIVERED = "order_delivered", "Order Delivered"
    ESCROW_RELEASED = "escrow_released", "Escrow Released"
    ESCROW_DISPUTED = "escrow_disputed", "Escrow Disputed"
    REFUND_REQUESTED = "refund_requested", "Refund Requested"
    REFUND_COMPLETED = "refund_completed", "Refund Completed"
    REFUND_REJECTED = "refund_rejected", "Refund Rejected"
    DISPUTE_CREATED = "dispute_created", "Dispute Created"
    DISPUTE_MESSAGE = "dispute_message", "Dispute Message"
    DISPUTE_ESCALATED = "dispute_escalated", "Dispute Escalated"
    DISPUTE_RESOLVED = "dispute_resolved", "Dispute Resolved"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING -> PROCESSING -> PROCESSED
        PENDING -> PROCESSING -> FAILED (retried by Celery)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
