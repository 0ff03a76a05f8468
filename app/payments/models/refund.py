"""
Refund model for money returned to the buyer.

A Refund is requested by either party and decided by the seller. An
approved refund is sent through the gateway against the order's original
payment transaction; its outcome settles the escrow hold.

Usage:
    from payments.models import Refund

    refund = Refund.objects.create(
        order=order,
        original_transaction=payment_txn,
        amount=Decimal("25.00"),
        reason="Item not as described",
        requested_by=buyer,
    )

    refund.approve(processed_by=seller)   # pending -> approved
    refund.start_processing()             # approved -> processing
    refund.complete(refund_txn)           # processing -> completed
    refund.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import OPEN_REFUND_STATUSES, RefundStatus


class Refund(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Represents money going back to the buyer.

    State Flow:
        PENDING -> APPROVED -> PROCESSING -> COMPLETED
        PENDING -> REJECTED                 (seller declines)
        APPROVED | PROCESSING -> REJECTED   (gateway refused the refund)

    Fields:
        order: Order being refunded
        original_transaction: Payment transaction the money came from
        refund_transaction: Completed refund transaction, once processed
        amount: Requested refund amount (<= order total)
        reason / request_notes: Why the refund was requested
        requested_by / processed_by: Requester and deciding seller
        processing_notes: Seller's decision notes
        failure_reason: Gateway reason when processing failed

    Note:
        At most one PENDING refund exists per order.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "payments.Order",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Order being refunded",
    )

    original_transaction = models.ForeignKey(
        "payments.PaymentTransaction",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Payment transaction being refunded",
    )

    refund_transaction = models.OneToOneField(
        "payments.PaymentTransaction",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refund_record",
        help_text="Completed refund transaction",
    )

    # ==========================================================================
    # Request
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount to return to the buyer",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    reason = models.CharField(
        max_length=255,
        help_text="Reason for the refund",
    )

    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="requested_refunds",
        help_text="Party that requested the refund",
    )

    request_notes = models.TextField(
        blank=True,
        default="",
        help_text="Additional details from the requester",
    )

    requested_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the refund was requested",
    )

    # ==========================================================================
    # Decision & Processing
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Refund state (managed by FSM)",
    )

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_refunds",
        help_text="Seller who decided the refund",
    )

    processing_notes = models.TextField(
        blank=True,
        default="",
        help_text="Notes recorded with the decision",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Gateway reason if processing failed",
    )

    processed_at = models.DateTimeField(null=True, blank=True, help_text="When the seller decided")
    completed_at = models.DateTimeField(null=True, blank=True, help_text="When the money went back")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["order", "status"], name="refund_order_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="refund_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status=RefundStatus.PENDING),
                name="refund_one_pending_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.amount} {self.currency.upper()})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=RefundStatus.PENDING, target=RefundStatus.APPROVED)
    def approve(self, processed_by=None, notes: str = ""):
        self.processed_by = processed_by
        self.processing_notes = notes
        self.processed_at = timezone.now()

    @transition(field=status, source=RefundStatus.APPROVED, target=RefundStatus.PROCESSING)
    def start_processing(self):
        pass

    @transition(field=status, source=RefundStatus.PROCESSING, target=RefundStatus.COMPLETED)
    def complete(self, refund_transaction=None):
        self.refund_transaction = refund_transaction
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[RefundStatus.PENDING, RefundStatus.APPROVED, RefundStatus.PROCESSING],
        target=RefundStatus.REJECTED,
    )
    def reject(self, processed_by=None, notes: str = "", failure_reason: str = ""):
        """
        Close the refund without moving money.

        Used both for a seller's rejection and for a gateway failure
        after approval; ``failure_reason`` is only set for the latter.
        """
        if processed_by is not None:
            self.processed_by = processed_by
        if notes:
            self.processing_notes = notes
        self.failure_reason = failure_reason
        if self.processed_at is None:
            self.processed_at = timezone.now()

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REFUND_STATUSES
