"""
Custody engine models.

This module contains all payment-related models:
- Order: A buyer's purchase of a listing, and its lifecycle
- PaymentTransaction: One gateway call and its outcome
- EscrowHold: Captured funds held until release or refund
- Refund: Money returned to the buyer
- Dispute / DisputeMessage: Mediated disagreements and their threads
- PaymentNotification: In-app notices about custody events
- AuditLog: Append-only record of every custody action
- WebhookEvent: Verified payment backend notifications
"""

from payments.models.audit import AuditLog
from payments.models.dispute import Dispute, DisputeMessage
from payments.models.escrow import EscrowHold
from payments.models.notification import PaymentNotification
from payments.models.order import Order
from payments.models.refund import Refund
from payments.models.transaction import (
    ImmutableTransactionError,
    PaymentTransaction,
)
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "AuditLog",
    "Dispute",
    "DisputeMessage",
    "EscrowHold",
    "ImmutableTransactionError",
    "Order",
    "PaymentNotification",
    "PaymentTransaction",
    "Refund",
    "WebhookEvent",
]
