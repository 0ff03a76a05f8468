"""
Notification records for custody events.

Notifications are rows written in the same transaction as the event, so
a rolled-back operation never notifies anyone. Delivery happens on commit
(see payments.signals).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

from payments.models import PaymentNotification
from payments.state_machines import NotificationType

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from payments.models import Order


# (title, message) templates, formatted with the order's context
TEMPLATES: dict[str, tuple[str, str]] = {
    NotificationType.ORDER_CREATED: (
        "New order",
        "Order {order_number} was placed for {amount} {currency}.",
    ),
    NotificationType.ORDER_CANCELLED: (
        "Order cancelled",
        "Order {order_number} was cancelled.",
    ),
    NotificationType.PAYMENT_RECEIVED: (
        "Payment received",
        "Payment of {amount} {currency} for order {order_number} is held in escrow.",
    ),
    NotificationType.PAYMENT_FAILED: (
        "Payment failed",
        "Payment for order {order_number} failed: {reason}",
    ),
    NotificationType.ORDER_DELIVERED: (
        "Order delivered",
        "Order {order_number} was marked as delivered.",
    ),
    NotificationType.ESCROW_RELEASED: (
        "Funds released",
        "{amount} {currency} for order {order_number} was released to the seller.",
    ),
    NotificationType.ESCROW_DISPUTED: (
        "Escrow disputed",
        "Funds for order {order_number} are frozen: {reason}",
    ),
    NotificationType.REFUND_REQUESTED: (
        "Refund requested",
        "A refund of {amount} {currency} was requested for order {order_number}.",
    ),
    NotificationType.REFUND_COMPLETED: (
        "Refund completed",
        "{amount} {currency} for order {order_number} was refunded.",
    ),
    NotificationType.REFUND_REJECTED: (
        "Refund rejected",
        "The refund for order {order_number} was rejected: {reason}",
    ),
    NotificationType.DISPUTE_CREATED: (
        "Dispute opened",
        "A dispute was opened on order {order_number}: {reason}",
    ),
    NotificationType.DISPUTE_MESSAGE: (
        "New dispute message",
        "There is a new message in the dispute on order {order_number}.",
    ),
    NotificationType.DISPUTE_ESCALATED: (
        "Dispute escalated",
        "The dispute on order {order_number} was escalated: {reason}",
    ),
    NotificationType.DISPUTE_RESOLVED: (
        "Dispute resolved",
        "The dispute on order {order_number} was resolved: {reason}",
    ),
}


class NotificationService(BaseService):
    """Writes PaymentNotification rows."""

    @classmethod
    def notify(
        cls,
        recipient,
        notification_type: str,
        order: Order,
        amount=None,
        reason: str = "",
        **metadata: Any,
    ) -> PaymentNotification:
        amount = order.total_amount if amount is None else amount
        title, template = TEMPLATES[notification_type]
        message = template.format(
            order_number=order.order_number,
            amount=amount,
            currency=order.currency.upper(),
            reason=reason or "no reason given",
        )
        return PaymentNotification.objects.create(
            recipient=recipient,
            order=order,
            notification_type=notification_type,
            title=title,
            message=message,
            metadata={
                "order_id": str(order.id),
                "amount": str(amount),
                "currency": order.currency,
                **{key: str(value) for key, value in metadata.items()},
            },
        )

    @classmethod
    def notify_parties(
        cls,
        order: Order,
        notification_type: str,
        exclude: Iterable[int] = (),
        **kwargs: Any,
    ) -> list[PaymentNotification]:
        """Notify the buyer and the seller, skipping user ids in ``exclude``."""
        excluded = set(exclude)
        return [
            cls.notify(party, notification_type, order, **kwargs)
            for party in (order.buyer, order.seller)
            if party.pk not in excluded
        ]
