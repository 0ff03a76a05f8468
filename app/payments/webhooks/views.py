"""
Webhook endpoint for Stripe.

The view verifies the signature, stores the event once (keyed on the
Stripe event id) and queues it for processing, returning straight away.
Redelivered events that were already processed are acknowledged without
being queued again.

Usage:
    # In payments/urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.exceptions import GatewayConfigurationError, WebhookSignatureError
from payments.gateways.stripe_gateway import construct_webhook_event
from payments.models import WebhookEvent

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue a Stripe webhook event.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Missing or invalid signature, or unusable payload
        - 503: Webhook secret not configured
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = construct_webhook_event(request.body, signature)
    except WebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e), "error_code": e.error_code},
        )
        return HttpResponse("Invalid signature", status=400)
    except GatewayConfigurationError:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
        return HttpResponse("Webhooks not configured", status=503)

    event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={"event_id": event_id, "event_type": event_type},
    )

    webhook_event, created = WebhookEvent.objects.get_or_create(
        event_id=event_id,
        defaults={"event_type": event_type, "payload": event_data},
    )
    if not created and webhook_event.is_processed:
        logger.info("Webhook already processed", extra={"event_id": event_id})
        return HttpResponse("Already processed", status=200)

    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
    except Exception:
        # Stripe redelivers until it gets a 2xx, and the event row is kept
        logger.error(
            "Failed to queue webhook",
            extra={"event_id": event_id},
            exc_info=True,
        )
        return HttpResponse("Queueing failed", status=503)

    return HttpResponse("Accepted", status=200)
