"""
EscrowHold model: captured funds held in custody until release or refund.

A hold is opened exactly once per order, when payment is captured. While
it is HELD (or PARTIAL_RELEASE, or frozen in DISPUTED) the money belongs
to neither party; a release pays the seller, a refund returns it to the
buyer.

State Flow:
    HELD -> RELEASED                   buyer confirms, auto-release, favor_seller
    HELD -> PARTIAL_RELEASE            partial refund, remainder still in custody
    HELD | PARTIAL_RELEASE -> DISPUTED     seller flags a problem, dispute opened
    DISPUTED -> HELD | PARTIAL_RELEASE     dispute resolution unfreezes the hold
    HELD | PARTIAL_RELEASE -> REFUNDED     rest of the money refunded
    PARTIAL_RELEASE -> RELEASED        remainder paid out to the seller
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import (
    ACTIVE_ESCROW_STATUSES,
    CUSTODY_ESCROW_STATUSES,
    EscrowStatus,
)


class EscrowHold(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Funds captured for an order and not yet paid out or returned.

    Fields:
        order: Order the funds were captured for
        transaction: Payment transaction that funded the hold
        amount: Captured amount in custody
        refunded_amount / released_amount: What has left custody, and to whom
        status: Custody state (FSM)
        auto_release_at: When a delivered order's funds go to the seller
            without buyer confirmation
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "payments.Order",
        on_delete=models.PROTECT,
        related_name="escrow_holds",
        help_text="Order the funds were captured for",
    )

    transaction = models.ForeignKey(
        "payments.PaymentTransaction",
        on_delete=models.PROTECT,
        related_name="escrow_holds",
        help_text="Payment transaction that funded this hold",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount placed in custody",
    )

    refunded_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Amount returned to the buyer",
    )

    released_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Amount paid out to the seller",
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
        default=EscrowStatus.HELD,
        choices=EscrowStatus.choices,
        db_index=True,
        protected=True,
        help_text="Custody state (managed by FSM)",
    )

    auto_release_at = models.DateTimeField(
        db_index=True,
        help_text="Deadline after which a delivered order is released automatically",
    )

    release_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Why the funds were released",
    )

    released_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who released the funds (null for automatic release)",
    )

    dispute_reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason the hold was frozen",
    )

    released_at = models.DateTimeField(null=True, blank=True, help_text="When funds were released")
    disputed_at = models.DateTimeField(null=True, blank=True, help_text="When the hold was frozen")
    refunded_at = models.DateTimeField(null=True, blank=True, help_text="When funds went back to the buyer")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Escrow Hold"
        verbose_name_plural = "Escrow Holds"
        indexes = [
            models.Index(fields=["status", "auto_release_at"], name="escrow_status_release_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status__in=sorted(CUSTODY_ESCROW_STATUSES)),
                name="escrow_one_custody_hold_per_order",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="escrow_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowHold({self.id}, {self.status}, {self.amount} {self.currency.upper()})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[EscrowStatus.HELD, EscrowStatus.PARTIAL_RELEASE, EscrowStatus.DISPUTED],
        target=EscrowStatus.RELEASED,
    )
    def release(self, amount: Decimal, reason: str = "", released_by=None):
        self.released_amount += amount
        self.release_reason = reason
        self.released_by = released_by
        self.released_at = timezone.now()

    @transition(
        field=status,
        source=[EscrowStatus.HELD, EscrowStatus.PARTIAL_RELEASE],
        target=EscrowStatus.DISPUTED,
    )
    def freeze(self, reason: str = ""):
        self.dispute_reason = reason
        self.disputed_at = timezone.now()

    @transition(
        field=status,
        source=EscrowStatus.DISPUTED,
        target=RETURN_VALUE(EscrowStatus.HELD, EscrowStatus.PARTIAL_RELEASE),
    )
    def unfreeze(self) -> str:
        """Return a frozen hold to custody before its dispute is settled."""
        if self.refunded_amount > 0:
            return EscrowStatus.PARTIAL_RELEASE
        return EscrowStatus.HELD

    @transition(
        field=status,
        source=[EscrowStatus.HELD, EscrowStatus.PARTIAL_RELEASE, EscrowStatus.DISPUTED],
        target=EscrowStatus.REFUNDED,
    )
    def refund(self, amount: Decimal):
        self.refunded_amount += amount
        self.refunded_at = timezone.now()

    @transition(
        field=status,
        source=[EscrowStatus.HELD, EscrowStatus.PARTIAL_RELEASE],
        target=EscrowStatus.PARTIAL_RELEASE,
    )
    def record_refund(self, amount: Decimal):
        """Book a partial refund; the rest of the hold stays in custody."""
        self.refunded_amount += amount
        if self.refunded_at is None:
            self.refunded_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_ESCROW_STATUSES

    @property
    def in_custody(self) -> bool:
        return self.status in CUSTODY_ESCROW_STATUSES

    @property
    def remaining_amount(self) -> Decimal:
        return self.amount - self.refunded_amount - self.released_amount
