"""
Celery tasks for the custody sweeps and webhook processing.

This module provides:
- Cancelling pending orders past their expiry (periodic)
- Auto-releasing delivered orders' escrow past the release deadline (periodic)
- Processing stored webhook events (queued by the webhook view)

Each sweep scans one batch and queues one task per order. The per-order
tasks lock the order and re-check its state, so a sweep racing a user
action, or running twice, changes nothing the second time.

Usage:
    # Typically called via celery-beat schedule (see migration 0002)
    from payments.tasks import release_due_escrows

    release_due_escrows.delay()

    # Release a specific hold
    from payments.tasks import release_single_escrow

    release_single_escrow.delay(str(hold.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from payments.apps import get_gateway_registry
from payments.exceptions import GatewayError
from payments.models import Order, WebhookEvent
from payments.services import EscrowService, OrderService
from payments.services.escrow_service import AUTO_RELEASE_REASON
from payments.state_machines import OrderStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_BATCH_SIZE = 100

# Failures worth another attempt; anything else is a settled outcome
RETRYABLE_ERROR_CODES = frozenset({"GATEWAY_ERROR", "INTERNAL_ERROR"})


def batch_size() -> int:
    return int(getattr(settings, "SWEEP_BATCH_SIZE", DEFAULT_BATCH_SIZE))


def _parse_id(value) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


# =============================================================================
# Order Expiry
# =============================================================================


@shared_task(bind=True)
def expire_stale_orders(self) -> dict:
    """
    Scan for pending orders past their expiry and queue cancellations.

    Returns:
        Dict with queued_count
    """
    logger.info("Starting stale order scan")

    stale_ids = list(
        Order.objects.filter(
            status=OrderStatus.PENDING,
            expires_at__lte=timezone.now(),
        )
        .order_by("expires_at")
        .values_list("id", flat=True)[: batch_size()]
    )

    queued_count = 0
    for order_id in stale_ids:
        try:
            expire_single_order.delay(str(order_id))
            queued_count += 1
        except Exception as e:
            logger.error(
                f"Failed to queue order for expiry: {e}",
                extra={"order_id": str(order_id)},
            )

    logger.info(
        f"Stale order scan complete: queued {queued_count} orders",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def expire_single_order(self, order_id: str) -> dict:
    """
    Cancel one expired pending order.

    Returns:
        Dict with status: "expired", "skipped", "not_found" or "failed"
    """
    order_uuid = _parse_id(order_id)
    if order_uuid is None:
        logger.error(f"Invalid order_id format: {order_id}")
        return {"status": "not_found", "order_id": str(order_id)}

    result = OrderService.expire_order(order_uuid)
    if not result.success:
        if result.error_code == "ORDER_NOT_FOUND":
            return {"status": "not_found", "order_id": str(order_id)}
        if result.error_code in RETRYABLE_ERROR_CODES:
            raise RuntimeError(result.error)
        return {"status": "failed", "order_id": str(order_id), "error_code": result.error_code}

    status = "expired" if result.data.status == OrderStatus.CANCELLED else "skipped"
    return {"status": status, "order_id": str(order_id)}


# =============================================================================
# Escrow Auto-Release
# =============================================================================


@shared_task(bind=True)
def release_due_escrows(self) -> dict:
    """
    Scan for held escrow on delivered orders past the release deadline.

    Returns:
        Dict with queued_count
    """
    logger.info("Starting escrow auto-release scan")

    due_ids = list(EscrowService.due_for_release().values_list("id", flat=True)[: batch_size()])

    queued_count = 0
    for escrow_id in due_ids:
        try:
            release_single_escrow.delay(str(escrow_id))
            queued_count += 1
        except Exception as e:
            logger.error(
                f"Failed to queue escrow for release: {e}",
                extra={"escrow_id": str(escrow_id)},
            )

    logger.info(
        f"Escrow auto-release scan complete: queued {queued_count} holds",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def release_single_escrow(self, escrow_id: str) -> dict:
    """
    Auto-release one escrow hold through the configured gateway.

    Returns:
        Dict with status: "released", "skipped", "not_found" or "failed"

    Raises:
        GatewayError: Backend error, to trigger the Celery retry
    """
    escrow_uuid = _parse_id(escrow_id)
    if escrow_uuid is None:
        logger.error(f"Invalid escrow_id format: {escrow_id}")
        return {"status": "not_found", "escrow_id": str(escrow_id)}

    gateway = get_gateway_registry().gateway
    result = EscrowService.process_auto_release(escrow_uuid, gateway)

    if not result.success:
        if result.error_code == "ESCROW_NOT_FOUND":
            return {"status": "not_found", "escrow_id": str(escrow_id)}
        if result.error_code in RETRYABLE_ERROR_CODES:
            raise GatewayError(result.error, error_code=result.error_code)
        logger.error(
            "Escrow auto-release failed",
            extra={"escrow_id": str(escrow_id), "error_code": result.error_code},
        )
        return {"status": "failed", "escrow_id": str(escrow_id), "error_code": result.error_code}

    status = "released" if result.data.release_reason == AUTO_RELEASE_REASON else "skipped"
    return {"status": status, "escrow_id": str(escrow_id)}


# =============================================================================
# Webhooks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Run the handler for one stored webhook event.

    The handler runs in a single transaction; a failure leaves the event
    FAILED with the error recorded.

    Returns:
        Dict with status: "processed", "already_processed", "handler_failed"
        or "not_found"

    Raises:
        Exception: Unexpected handler errors, to trigger the Celery retry
    """
    from payments.webhooks.handlers import dispatch_webhook

    event_uuid = _parse_id(webhook_event_id)
    webhook_event = (
        WebhookEvent.objects.filter(pk=event_uuid).first() if event_uuid else None
    )
    if webhook_event is None:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        return {"status": "already_processed", "webhook_event_id": str(webhook_event.id)}

    webhook_event.mark_processing()
    webhook_event.save()

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={"event_id": webhook_event.event_id},
        )
        raise

    if not result.success:
        webhook_event.mark_failed(result.error or "Handler returned failure")
        webhook_event.save()
        logger.warning(
            f"Webhook handler failed: {result.error}",
            extra={"event_id": webhook_event.event_id, "error_code": result.error_code},
        )
        return {
            "status": "handler_failed",
            "webhook_event_id": str(webhook_event.id),
            "error_code": result.error_code,
        }

    webhook_event.mark_processed()
    webhook_event.save()
    logger.info(
        "Webhook processed",
        extra={"event_id": webhook_event.event_id, "event_type": webhook_event.event_type},
    )
    return {"status": "processed", "webhook_event_id": str(webhook_event.id)}
