"""
Order model: one buyer's purchase of a quantity of a listing.

The order's ``status`` is a protected FSMField. Every transition method
takes its ``source`` list from the order transition table, so the table
in payments.state_machines.transitions stays the single definition of
which moves are legal.

Usage:
    from payments.models import Order

    order = Order.objects.select_for_update().get(pk=order_id)
    order.transition_to("paid")   # or order.mark_paid()
    order.save()
"""

from __future__ import annotations

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, can_proceed, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.exceptions import InvalidStateTransitionError
from payments.state_machines import (
    DISPUTE_EXIT_STATUSES,
    FUNDED_ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    DeliveryStatus,
    OrderStatus,
    PaymentStatus,
    fulfilment_sources_for,
    normalize_order_status,
    sources_for,
    validate_order_status,
)


def _is_unfunded(order: Order) -> bool:
    return order.payment_status not in (
        PaymentStatus.PAID,
        PaymentStatus.PROCESSING,
        PaymentStatus.PARTIALLY_REFUNDED,
    )


class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A purchase held in custody by the engine.

    State Flow:
        PENDING -> PAID -> (PROCESSING) -> DELIVERED -> COMPLETED
        PENDING -> CANCELLED
        any funded state -> DISPUTED -> PAID | DELIVERED | COMPLETED | REFUNDED
            (only through settle_dispute)
        PAID | PROCESSING | DELIVERED | COMPLETED -> REFUNDED

    Fields:
        order_number: Human readable reference (ORD-<timestamp>-<suffix>)
        buyer / seller / listing: Parties and the purchased listing
        quantity, unit_price: What was bought
        subtotal, platform_fee, processing_fee, total_amount: Price breakdown
        seller_amount: What the seller receives when escrow is released
        status: Lifecycle state (FSM)
        payment_status / delivery_status: Money and fulfilment sub-states
        expires_at: Unpaid orders are cancelled after this
    """

    # ==========================================================================
    # Identity & Parties
    # ==========================================================================

    order_number = models.CharField(
        max_length=32,
        unique=True,
        help_text="Human readable order reference",
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
        help_text="User paying for the order",
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales",
        help_text="User fulfilling the order",
    )

    listing = models.ForeignKey(
        "listings.Listing",
        on_delete=models.PROTECT,
        related_name="orders",
        help_text="Listing being purchased",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    quantity = models.PositiveIntegerField(
        default=1,
        help_text="Number of units purchased",
    )

    unit_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Listing price per unit at order time",
    )

    subtotal = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="unit_price * quantity",
    )

    platform_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Marketplace fee charged to the buyer",
    )

    processing_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Payment processing fee charged to the buyer",
    )

    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount captured from the buyer",
    )

    seller_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount paid out to the seller on release",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=OrderStatus.PENDING,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
        help_text="Order lifecycle state (managed by FSM)",
    )

    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        help_text="Money-side status",
    )

    delivery_status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        help_text="Fulfilment status",
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text="Unpaid orders are cancelled after this time",
    )

    # ==========================================================================
    # Notes
    # ==========================================================================

    buyer_notes = models.TextField(
        blank=True,
        default="",
        help_text="Notes supplied by the buyer",
    )

    seller_notes = models.TextField(
        blank=True,
        default="",
        help_text="Notes supplied by the seller",
    )

    dispute_reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason given when the order entered dispute",
    )

    # ==========================================================================
    # Lifecycle Timestamps
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True, help_text="When payment was captured")
    delivered_at = models.DateTimeField(null=True, blank=True, help_text="When the seller delivered")
    completed_at = models.DateTimeField(null=True, blank=True, help_text="When the order completed")
    cancelled_at = models.DateTimeField(null=True, blank=True, help_text="When the order was cancelled")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["buyer", "status"], name="order_buyer_status_idx"),
            models.Index(fields=["seller", "status"], name="order_seller_status_idx"),
            models.Index(fields=["status", "expires_at"], name="order_status_expiry_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gt=0),
                name="order_total_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(seller_amount__lte=models.F("total_amount")),
                name="order_seller_amount_within_total",
            ),
        ]

    def __str__(self) -> str:
        return f"Order({self.order_number}, {self.status}, {self.total_amount} {self.currency.upper()})"

    def clean(self):
        super().clean()
        if self.subtotal != self.unit_price * self.quantity:
            raise DjangoValidationError({"subtotal": "Subtotal must equal unit price times quantity"})
        if self.total_amount != self.subtotal + self.platform_fee + self.processing_fee:
            raise DjangoValidationError({"total_amount": "Total must equal subtotal plus fees"})

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=fulfilment_sources_for(OrderStatus.PAID),
        target=OrderStatus.PAID,
    )
    def mark_paid(self):
        """Payment captured."""
        self.payment_status = PaymentStatus.PAID
        if self.paid_at is None:
            self.paid_at = timezone.now()

    @transition(
        field=status,
        source=fulfilment_sources_for(OrderStatus.PROCESSING),
        target=OrderStatus.PROCESSING,
    )
    def start_processing(self):
        self.delivery_status = DeliveryStatus.PROCESSING

    @transition(
        field=status,
        source=fulfilment_sources_for(OrderStatus.DELIVERED),
        target=OrderStatus.DELIVERED,
    )
    def mark_delivered(self):
        self.delivery_status = DeliveryStatus.DELIVERED
        if self.delivered_at is None:
            self.delivered_at = timezone.now()

    @transition(
        field=status,
        source=fulfilment_sources_for(OrderStatus.COMPLETED),
        target=OrderStatus.COMPLETED,
    )
    def complete(self):
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=fulfilment_sources_for(OrderStatus.CANCELLED),
        target=OrderStatus.CANCELLED,
        conditions=[_is_unfunded],
    )
    def cancel(self):
        """
        Cancel an order no money was captured for.

        Funded orders leave through a refund instead.
        """
        self.cancelled_at = timezone.now()

    @transition(
        field=status,
        source=sources_for(OrderStatus.DISPUTED),
        target=OrderStatus.DISPUTED,
    )
    def open_dispute(self, reason: str = ""):
        if reason:
            self.dispute_reason = reason

    @transition(
        field=status,
        source=fulfilment_sources_for(OrderStatus.REFUNDED),
        target=OrderStatus.REFUNDED,
    )
    def refund(self):
        self.payment_status = PaymentStatus.REFUNDED

    @transition(
        field=status,
        source=OrderStatus.DISPUTED,
        target=RETURN_VALUE(*sorted(DISPUTE_EXIT_STATUSES)),
    )
    def _leave_dispute(self, target: str) -> str:
        if target == OrderStatus.COMPLETED:
            self.completed_at = timezone.now()
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = timezone.now()
        elif target == OrderStatus.REFUNDED:
            self.payment_status = PaymentStatus.REFUNDED
        return target

    def settle_dispute(self, target: str) -> None:
        """
        Take a disputed order to the status its resolution decided.

        The only way out of disputed; transition_to() refuses it so a
        party cannot end a dispute by moving the order along.

        Raises:
            InvalidStateTransitionError: Not disputed, or not an exit of disputed
        """
        target = normalize_order_status(target)
        if (
            self.status != OrderStatus.DISPUTED
            or target not in DISPUTE_EXIT_STATUSES
            or (target == OrderStatus.CANCELLED and not _is_unfunded(self))
        ):
            raise self._illegal_move(target)
        self._leave_dispute(target)

    TRANSITION_METHODS = {
        OrderStatus.PAID: "mark_paid",
        OrderStatus.PROCESSING: "start_processing",
        OrderStatus.DELIVERED: "mark_delivered",
        OrderStatus.COMPLETED: "complete",
        OrderStatus.CANCELLED: "cancel",
        OrderStatus.DISPUTED: "open_dispute",
        OrderStatus.REFUNDED: "refund",
    }

    def transition_to(self, target: str) -> bool:
        """
        Move to ``target`` through the matching transition method.

        Accepts the caller-facing aliases. Staying in the current status
        is a no-op.

        Returns:
            True if the status changed, False for a no-op

        Raises:
            InvalidStateTransitionError: Move not in the transition table, or
                the order is disputed (see settle_dispute)
        """
        try:
            target = normalize_order_status(target)
        except ValueError as e:
            raise InvalidStateTransitionError(str(e), details={"target_state": target})

        if target == self.status:
            return False

        if self.status == OrderStatus.DISPUTED:
            raise InvalidStateTransitionError(
                "Order is under dispute and only moves on through its resolution",
                error_code="ORDER_DISPUTED",
                details={"current_state": self.status, "target_state": target},
            )

        method_name = self.TRANSITION_METHODS.get(target)
        if method_name is None or not validate_order_status(self.status, target):
            raise self._illegal_move(target)
        method = getattr(self, method_name)
        if not can_proceed(method):
            raise self._illegal_move(target)
        method()
        return True

    def _illegal_move(self, target: str) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            f"Cannot move order from '{self.status}' to '{target}'",
            details={"current_state": self.status, "target_state": target},
        )

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def is_funded(self) -> bool:
        return self.status in FUNDED_ORDER_STATUSES and not _is_unfunded(self)

    @property
    def is_expired(self) -> bool:
        return self.status == OrderStatus.PENDING and self.expires_at <= timezone.now()

    def is_party(self, user) -> bool:
        return user is not None and user.pk in (self.buyer_id, self.seller_id)
