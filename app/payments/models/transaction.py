"""
PaymentTransaction model: one money movement attempted through a gateway.

Rows are written once the gateway call has returned, and are immutable
once they reach COMPLETED or FAILED. Corrections are new rows (a refund
transaction against a payment), never edits.

Usage:
    from payments.models import PaymentTransaction

    txn = PaymentTransaction.objects.create(
        order=order,
        transaction_type=TransactionType.PAYMENT,
        amount=order.total_amount,
        currency=order.currency,
        backend="simulator",
        backend_transaction_id=result.transaction_id,
        status=TransactionStatus.COMPLETED,
        idempotency_key=key,
    )
"""

from __future__ import annotations

import uuid

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import TransactionStatus, TransactionType

IMMUTABLE_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.FAILED}
)


def generate_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


class ImmutableTransactionError(ValueError):
    """Raised when saving a transaction that already reached a final status."""


class PaymentTransaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    Gateway call record.

    Fields:
        order: Order the money moved for
        transaction_id: Locally generated, globally unique reference
        transaction_type: payment, refund, chargeback, fee, escrow_release
        amount / currency: What the gateway acted on
        backend / backend_transaction_id: Which provider and its reference
        backend_response: Raw provider payload
        status: Final outcome of the call
        idempotency_key: Key sent to the provider for this call
        risk_score: Score from the risk assessment at the time of the call
        failure_reason: Provider reason for declined or failed calls
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "payments.Order",
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Order this money movement belongs to",
    )

    # ==========================================================================
    # Identity & Type
    # ==========================================================================

    transaction_id = models.CharField(
        max_length=64,
        unique=True,
        default=generate_transaction_id,
        editable=False,
        help_text="Locally generated transaction reference",
    )

    transaction_type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        db_index=True,
        help_text="Kind of money movement",
    )

    # ==========================================================================
    # Amount & Backend
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount moved",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    backend = models.CharField(
        max_length=20,
        help_text="Payment backend that processed the call",
    )

    backend_transaction_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Backend-assigned reference",
    )

    backend_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Raw backend response payload",
    )

    # ==========================================================================
    # Outcome
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.PENDING,
        db_index=True,
        help_text="Outcome of the gateway call",
    )

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Idempotency key sent with the gateway call",
    )

    risk_score = models.PositiveSmallIntegerField(
        default=0,
        help_text="Risk score (0-100) assessed for this call",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Why the backend declined or failed the call",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the backend answered",
    )

    settled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the funds settled",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Transaction"
        verbose_name_plural = "Payment Transactions"
        indexes = [
            models.Index(
                fields=["order", "transaction_type", "status"],
                name="txn_order_type_status_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="txn_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"PaymentTransaction({self.transaction_id}, {self.transaction_type}, "
            f"{self.status}, {self.amount} {self.currency.upper()})"
        )

    def save(self, *args, **kwargs):
        """
        Save, refusing to rewrite a transaction that already finished.

        Raises:
            ImmutableTransactionError: The stored row is COMPLETED or FAILED
        """
        if not self._state.adding:
            stored_status = (
                type(self)
                .objects.filter(pk=self.pk)
                .values_list("status", flat=True)
                .first()
            )
            if stored_status in IMMUTABLE_TRANSACTION_STATUSES:
                raise ImmutableTransactionError(
                    f"Transaction {self.transaction_id} is {stored_status} and cannot be modified"
                )
        super().save(*args, **kwargs)

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED
