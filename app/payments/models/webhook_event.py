"""
WebhookEvent model: one provider notification, stored for idempotent processing.

The unique ``event_id`` makes a redelivered notification a no-op: the
view finds the existing row and only queues it again if it has not been
processed yet.

Usage:
    from payments.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        event_id="evt_1234567890",
        defaults={"event_type": "payment_intent.succeeded", "payload": data},
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A verified notification from a payment backend.

    Fields:
        event_id: Backend's event id (evt_xxx), unique
        event_type: Backend event type, e.g. charge.dispute.created
        backend: Which backend sent it
        payload: The verified event body
        status: Processing status
        processed_at: When a handler finished with it
        error_message: Last handler failure
        attempts: Number of processing attempts
    """

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Backend event id; unique so redeliveries are detected",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Backend event type",
    )

    backend = models.CharField(
        max_length=32,
        default="stripe",
        help_text="Payment backend that sent the event",
    )

    payload = models.JSONField(help_text="Verified event body")

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was processed",
    )

    error_message = models.TextField(
        blank=True,
        default="",
        help_text="Last processing error",
    )

    attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type}, {self.status})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def data_object(self) -> dict:
        """The event's ``data.object``, or an empty dict for a malformed body."""
        data = self.payload.get("data") if isinstance(self.payload, dict) else None
        obj = data.get("object") if isinstance(data, dict) else None
        return obj if isinstance(obj, dict) else {}

    # Callers save after each of these.

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.attempts += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
