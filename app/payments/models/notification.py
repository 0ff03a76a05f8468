"""
PaymentNotification model: in-app notices about custody events.

Rows are written inside the same transaction as the state change they
describe; delivery (push, email) hangs off the post_save signal once the
transaction commits.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import NotificationType


class PaymentNotification(UUIDPrimaryKeyMixin, BaseModel):
    """
    Notice addressed to one user about an order event.

    Fields:
        recipient: User being notified
        order: Order the event concerns
        notification_type: Event kind (see NotificationType)
        title / message: Display text
        metadata: Order id, escrow id, amount, currency...
        read_at: When the recipient read it
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payment_notifications",
        help_text="User being notified",
    )

    order = models.ForeignKey(
        "payments.Order",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
        help_text="Order the event concerns",
    )

    notification_type = models.CharField(
        max_length=32,
        choices=NotificationType.choices,
        db_index=True,
        help_text="Kind of event",
    )

    title = models.CharField(max_length=200, help_text="Short title")

    message = models.TextField(help_text="Notification body")

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Structured event context",
    )

    read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the recipient read the notification",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Notification"
        verbose_name_plural = "Payment Notifications"
        indexes = [
            models.Index(fields=["recipient", "read_at"], name="notification_unread_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentNotification({self.notification_type}, to={self.recipient_id})"

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def mark_read(self) -> None:
        if self.read_at is None:
            self.read_at = timezone.now()
            self.save(update_fields=["read_at", "updated_at"])
