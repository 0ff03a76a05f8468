"""
Django signals for the payments app.

Provides handlers for:
- Handing committed notifications to delivery

Notifications are written inside the custody operation's transaction;
delivery waits for the commit so a rolled-back operation never reaches
anyone.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.db.models.signals import post_save

logger = logging.getLogger(__name__)


def connect_signals():
    """
    Connect all signal handlers.

    Called from PaymentsConfig.ready() once models are loaded.
    """
    from payments.models import PaymentNotification

    post_save.connect(
        queue_notification_delivery,
        sender=PaymentNotification,
        dispatch_uid="payments_notification_delivery",
    )

    logger.debug("Payments signals connected")


def queue_notification_delivery(sender, instance, created: bool, **kwargs) -> None:
    """Schedule delivery of a new notification after commit."""
    if not created:
        return

    notification_id = instance.pk
    transaction.on_commit(lambda: deliver_notification(notification_id))


def deliver_notification(notification_id) -> None:
    """
    Hand a committed notification to the delivery channel.

    The in-app record is the delivered form; this logs the hand-off.
    """
    from payments.models import PaymentNotification

    notification = (
        PaymentNotification.objects.filter(pk=notification_id)
        .only("id", "recipient_id", "notification_type", "order_id")
        .first()
    )
    if notification is None:
        logger.warning(
            "Notification vanished before delivery",
            extra={"notification_id": str(notification_id)},
        )
        return

    logger.info(
        f"Notification delivered: {notification.notification_type}",
        extra={
            "notification_id": str(notification.id),
            "recipient_id": notification.recipient_id,
            "order_id": str(notification.order_id) if notification.order_id else None,
        },
    )
