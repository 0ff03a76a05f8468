"""
Handlers for Stripe webhook events.

Custody calls are synchronous, so by the time a payment or refund event
arrives its PaymentTransaction already exists. Those events confirm the
recorded outcome: a row still PENDING or PROCESSING takes the reported
status, a finished row that agrees is left alone, and a finished row that
disagrees is never rewritten but audited as a mismatch.

Card disputes are different: the buyer went to their card issuer, not to
us. A new card dispute freezes custody by opening a platform dispute on
the buyer's behalf, and withdrawn funds are recorded as a CHARGEBACK
transaction. Both take the order lock.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("payment_intent.canceled")
    def handle_intent_canceled(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from django.utils import timezone

from core.services import ServiceResult

from payments.apps import get_gateway_registry
from payments.gateways.stripe_gateway import from_minor_units
from payments.locks import lock_order
from payments.models import PaymentTransaction, WebhookEvent
from payments.services import AuditService, DisputeService, TransactionService
from payments.state_machines import (
    DisputeReason,
    RiskLevel,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}

# Refund object statuses that settle the refund one way or the other
REFUND_SUCCEEDED = frozenset({"succeeded"})
REFUND_FAILED = frozenset({"failed", "canceled"})


def register_handler(event_type: str) -> Callable:
    """Register the decorated function as the handler for ``event_type``."""

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Route an event to its handler.

    Event types nobody registered for succeed without doing anything, so
    the backend stops redelivering them.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)
    if handler is None:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_id": webhook_event.event_id},
    )
    return handler(webhook_event)


# =============================================================================
# Payment and Refund Confirmations
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    return _confirm(webhook_event, TransactionType.PAYMENT, succeeded=True)


@register_handler("payment_intent.payment_failed")
def handle_payment_failed(webhook_event: WebhookEvent) -> ServiceResult:
    error = webhook_event.data_object.get("last_payment_error") or {}
    return _confirm(
        webhook_event,
        TransactionType.PAYMENT,
        succeeded=False,
        reason=error.get("message", "") if isinstance(error, dict) else "",
    )


@register_handler("refund.updated")
def handle_refund_updated(webhook_event: WebhookEvent) -> ServiceResult:
    status = webhook_event.data_object.get("status")
    if status in REFUND_SUCCEEDED:
        return _confirm(webhook_event, TransactionType.REFUND, succeeded=True)
    if status in REFUND_FAILED:
        return handle_refund_failed(webhook_event)
    # Still pending at the backend
    return ServiceResult.success(None)


@register_handler("refund.failed")
def handle_refund_failed(webhook_event: WebhookEvent) -> ServiceResult:
    return _confirm(
        webhook_event,
        TransactionType.REFUND,
        succeeded=False,
        reason=webhook_event.data_object.get("failure_reason") or "",
    )


def _confirm(
    webhook_event: WebhookEvent,
    transaction_type: str,
    succeeded: bool,
    reason: str = "",
) -> ServiceResult:
    """Check a recorded transaction against the outcome the backend reports."""
    backend_ref = webhook_event.data_object.get("id")
    if not backend_ref:
        return ServiceResult.failure(
            "Event carries no object id",
            error_code="MALFORMED_EVENT",
        )

    known = (
        PaymentTransaction.objects.filter(
            transaction_type=transaction_type,
            backend_transaction_id=backend_ref,
        )
        .values_list("pk", "order_id")
        .first()
    )
    if known is None:
        logger.warning(
            f"No {transaction_type} transaction for webhook object",
            extra={"event_id": webhook_event.event_id, "backend_ref": backend_ref},
        )
        return ServiceResult.success(None)

    txn_pk, order_id = known
    lock_order(order_id)
    txn = PaymentTransaction.objects.select_for_update().get(pk=txn_pk)
    reported = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED

    if txn.status == reported:
        return ServiceResult.success(txn)

    if txn.status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING):
        previous = txn.status
        now = timezone.now()
        txn.status = reported
        txn.processed_at = now
        if succeeded:
            txn.settled_at = now
        else:
            txn.failure_reason = reason
        txn.save()
        AuditService.record(
            actor=None,
            action="webhook.transaction.updated",
            resource_type="transaction",
            resource_id=txn.id,
            metadata={
                "event_id": webhook_event.event_id,
                "transaction_id": txn.transaction_id,
                "from": previous,
                "to": reported,
            },
            risk_level=RiskLevel.MEDIUM,
        )
        return ServiceResult.success(txn)

    AuditService.record(
        actor=None,
        action="webhook.transaction.mismatch",
        resource_type="transaction",
        resource_id=txn.id,
        metadata={
            "event_id": webhook_event.event_id,
            "transaction_id": txn.transaction_id,
            "recorded": txn.status,
            "reported": reported,
            "backend_status": _backend_status(txn),
        },
        risk_level=RiskLevel.HIGH,
    )
    logger.warning(
        "Webhook outcome disagrees with recorded transaction",
        extra={
            "event_id": webhook_event.event_id,
            "transaction_id": txn.transaction_id,
            "recorded": txn.status,
            "reported": reported,
        },
    )
    return ServiceResult.success(txn)


def _backend_status(txn: PaymentTransaction) -> str | None:
    """Ask the backend that ran a payment what it now says about it."""
    gateway = get_gateway_registry().gateway
    if txn.transaction_type != TransactionType.PAYMENT or gateway.backend.value != txn.backend:
        return None
    result = gateway.get_transaction_status(txn.backend_transaction_id)
    return result.status if result.success else None


# =============================================================================
# Card Disputes
# =============================================================================


def _captured_payment(intent_ref: str | None) -> PaymentTransaction | None:
    if not intent_ref:
        return None
    return (
        PaymentTransaction.objects.select_related("order", "order__buyer")
        .filter(
            transaction_type=TransactionType.PAYMENT,
            status=TransactionStatus.COMPLETED,
            backend_transaction_id=intent_ref,
        )
        .first()
    )


@register_handler("charge.dispute.created")
def handle_card_dispute_created(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Freeze custody for an order the buyer disputed with their card issuer.

    Opens a platform dispute for the buyer. An order that is already
    disputed or already settled can't be frozen again; that is audited
    and the event still counts as handled.
    """
    card_dispute = webhook_event.data_object
    payment = _captured_payment(card_dispute.get("payment_intent"))
    if payment is None:
        logger.warning(
            "Card dispute for an unknown payment",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    order = payment.order
    issuer_reason = card_dispute.get("reason") or "unspecified"
    result = DisputeService.create_dispute(
        order.id,
        order.buyer,
        reason=DisputeReason.PAYMENT_ISSUE,
        description=f"Card dispute {card_dispute.get('id')} opened with the issuer ({issuer_reason})",
    )

    AuditService.record(
        actor=None,
        action="webhook.card_dispute",
        resource_type="order",
        resource_id=order.id,
        metadata={
            "event_id": webhook_event.event_id,
            "card_dispute": card_dispute.get("id"),
            "reason": issuer_reason,
            "frozen": result.success,
            "dispute_id": str(result.data.id) if result.success else None,
            "error_code": result.error_code,
        },
        risk_level=RiskLevel.HIGH,
    )
    return ServiceResult.success(result.data if result.success else None)


@register_handler("charge.dispute.funds_withdrawn")
def handle_chargeback(webhook_event: WebhookEvent) -> ServiceResult:
    """Record the funds the issuer pulled back as a CHARGEBACK transaction."""
    card_dispute = webhook_event.data_object
    payment = _captured_payment(card_dispute.get("payment_intent"))
    amount = from_minor_units(card_dispute.get("amount"))
    if payment is None or not amount:
        logger.warning(
            "Chargeback for an unknown payment",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    order = lock_order(payment.order_id)
    txn, created = TransactionService.record_chargeback(
        order,
        amount,
        backend=payment.backend,
        backend_ref=card_dispute.get("id") or webhook_event.event_id,
        raw=card_dispute,
    )
    if created:
        AuditService.record(
            actor=None,
            action="transaction.chargeback",
            resource_type="transaction",
            resource_id=txn.id,
            metadata={
                "event_id": webhook_event.event_id,
                "order_id": str(order.id),
                "transaction_id": txn.transaction_id,
                "amount": str(amount),
                "reason": card_dispute.get("reason") or "",
            },
            risk_level=RiskLevel.CRITICAL,
        )
    return ServiceResult.success(txn)
