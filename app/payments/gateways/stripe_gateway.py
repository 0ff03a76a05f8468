"""
Stripe-backed payment gateway.

Wraps the Stripe SDK behind the PaymentGateway contract. Every Stripe call
carries the caller's idempotency key, and every Stripe exception is
translated into a GatewayResult so the custody services never see SDK
types.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key (required)
- STRIPE_MAX_RETRIES: Network retries performed by the SDK (default: 2)
- STRIPE_WEBHOOK_SECRET: Signing secret for incoming webhooks

Usage:
    gateway = StripeGateway.from_settings()
    result = gateway.process_payment(
        amount=Decimal("21.58"),
        currency="usd",
        payment_method_ref="pm_card_visa",
        order_ref=str(order.id),
        idempotency_key=key,
    )
"""

from __future__ import annotations

import logging
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from django.conf import settings

from payments.exceptions import GatewayConfigurationError, WebhookSignatureError
from payments.gateways.base import (
    GatewayBackend,
    GatewayOutcome,
    GatewayResult,
    PaymentGateway,
    PaymentMethodCheck,
)

logger = logging.getLogger(__name__)

# PaymentIntent statuses that mean the money is ours
CAPTURED_STATUSES = frozenset({"succeeded"})
PENDING_STATUSES = frozenset({"processing", "requires_capture"})


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_cents: int | None) -> Decimal | None:
    if amount_cents is None:
        return None
    return (Decimal(amount_cents) / 100).quantize(Decimal("0.01"))


def construct_webhook_event(payload: bytes, signature: str) -> dict[str, Any]:
    """
    Verify a Stripe webhook and return the event as a dict.

    Raises:
        GatewayConfigurationError: STRIPE_WEBHOOK_SECRET is not set
        WebhookSignatureError: Bad signature or unparseable payload
    """
    secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise GatewayConfigurationError(
            "Stripe webhook secret is not configured",
            details={"setting": "STRIPE_WEBHOOK_SECRET"},
        )
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(
            "Invalid webhook signature",
            details={"error": str(e)},
        )
    except ValueError as e:
        raise WebhookSignatureError(
            "Webhook payload is not valid JSON",
            error_code="INVALID_WEBHOOK_PAYLOAD",
            details={"error": str(e)},
        )
    return event.to_dict()


class StripeGateway(PaymentGateway):
    """
    Gateway backed by Stripe PaymentIntents, Refunds and Transfers.

    Construct with from_settings(); a missing secret key raises
    GatewayConfigurationError so the factory can apply its fallback
    policy at startup.
    """

    backend = GatewayBackend.STRIPE

    def __init__(self, api_key: str, max_retries: int = 2):
        if not api_key:
            raise GatewayConfigurationError(
                "Stripe secret key is not configured",
                details={"setting": "STRIPE_SECRET_KEY"},
            )
        self.api_key = api_key
        self.max_retries = max_retries

    @classmethod
    def from_settings(cls) -> StripeGateway:
        return cls(
            api_key=getattr(settings, "STRIPE_SECRET_KEY", ""),
            max_retries=getattr(settings, "STRIPE_MAX_RETRIES", 2),
        )

    def _configure_stripe(self) -> None:
        """Configure the Stripe module with this gateway's credentials."""
        stripe.api_key = self.api_key
        stripe.max_network_retries = self.max_retries

    # =========================================================================
    # Core Operations
    # =========================================================================

    def process_payment(
        self,
        amount: Decimal,
        currency: str,
        payment_method_ref: str,
        order_ref: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        log_context = {
            "operation": "process_payment",
            "order_ref": order_ref,
            "amount": str(amount),
            "currency": currency,
            "idempotency_key": idempotency_key,
        }

        def call():
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency,
                payment_method=payment_method_ref,
                confirm=True,
                automatic_payment_methods={
                    "enabled": True,
                    "allow_redirects": "never",
                },
                metadata={"order_ref": order_ref, **(metadata or {})},
                idempotency_key=idempotency_key,
            )
            return self._intent_result(intent)

        return self._run(call, log_context)

    def capture_payment(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        log_context = {
            "operation": "capture_payment",
            "payment_intent_id": transaction_id,
            "idempotency_key": idempotency_key,
        }

        def call():
            capture_params: dict[str, Any] = {}
            if amount is not None:
                capture_params["amount_to_capture"] = to_minor_units(amount)
            intent = stripe.PaymentIntent.capture(
                transaction_id,
                idempotency_key=idempotency_key,
                **capture_params,
            )
            return self._intent_result(intent)

        return self._run(call, log_context)

    def refund_payment(
        self,
        transaction_id: str,
        amount: Decimal,
        idempotency_key: str | None = None,
        reason: str | None = None,
    ) -> GatewayResult:
        log_context = {
            "operation": "refund_payment",
            "payment_intent_id": transaction_id,
            "amount": str(amount),
            "idempotency_key": idempotency_key,
        }

        def call():
            refund = stripe.Refund.create(
                payment_intent=transaction_id,
                amount=to_minor_units(amount),
                metadata={"reason": reason or ""},
                idempotency_key=idempotency_key,
            )
            outcome = (
                GatewayOutcome.SUCCEEDED
                if refund.status in ("succeeded", "pending")
                else GatewayOutcome.DECLINED
            )
            return GatewayResult(
                outcome=outcome,
                transaction_id=refund.id,
                status="completed" if refund.status == "succeeded" else refund.status,
                amount=from_minor_units(refund.amount),
                error=None if outcome == GatewayOutcome.SUCCEEDED else refund.failure_reason,
                error_code=None if outcome == GatewayOutcome.SUCCEEDED else "refund_failed",
                raw=refund.to_dict(),
            )

        return self._run(call, log_context)

    def release_funds(
        self,
        transaction_id: str,
        amount: Decimal,
        recipient_ref: str,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        log_context = {
            "operation": "release_funds",
            "payment_intent_id": transaction_id,
            "amount": str(amount),
            "recipient": recipient_ref,
            "idempotency_key": idempotency_key,
        }

        if not recipient_ref or not recipient_ref.startswith("acct_"):
            # Sellers without a connected account are paid out manually
            return GatewayResult(
                outcome=GatewayOutcome.SUCCEEDED,
                status="completed",
                amount=amount,
                raw={"settlement": "manual", "recipient": recipient_ref},
            )

        def call():
            intent = stripe.PaymentIntent.retrieve(transaction_id)
            transfer = stripe.Transfer.create(
                amount=to_minor_units(amount),
                currency=intent.currency,
                destination=recipient_ref,
                source_transaction=intent.latest_charge,
                idempotency_key=idempotency_key,
            )
            return GatewayResult(
                outcome=GatewayOutcome.SUCCEEDED,
                transaction_id=transfer.id,
                status="completed",
                amount=from_minor_units(transfer.amount),
                raw=transfer.to_dict(),
            )

        return self._run(call, log_context)

    def get_transaction_status(self, transaction_id: str) -> GatewayResult:
        log_context = {
            "operation": "get_transaction_status",
            "payment_intent_id": transaction_id,
        }

        def call():
            intent = stripe.PaymentIntent.retrieve(transaction_id)
            return self._intent_result(intent)

        return self._run(call, log_context)

    def validate_payment_method(self, payment_method_ref: str) -> PaymentMethodCheck:
        self._configure_stripe()
        try:
            method = stripe.PaymentMethod.retrieve(payment_method_ref)
        except stripe.StripeError as e:
            logger.warning(
                "Stripe payment method lookup failed",
                extra={"payment_method": payment_method_ref, "error": str(e)},
            )
            return PaymentMethodCheck(valid=False, reason=str(e.user_message or e))
        card = getattr(method, "card", None)
        return PaymentMethodCheck(
            valid=True,
            method_type=method.type,
            last4=getattr(card, "last4", None),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _intent_result(intent) -> GatewayResult:
        if intent.status in CAPTURED_STATUSES:
            outcome = GatewayOutcome.SUCCEEDED
            status = "completed"
        elif intent.status in PENDING_STATUSES:
            outcome = GatewayOutcome.SUCCEEDED
            status = "processing"
        else:
            outcome = GatewayOutcome.DECLINED
            status = "failed"
        return GatewayResult(
            outcome=outcome,
            transaction_id=intent.id,
            status=status,
            amount=from_minor_units(intent.amount),
            error=None if outcome == GatewayOutcome.SUCCEEDED else f"Payment {intent.status}",
            error_code=None if outcome == GatewayOutcome.SUCCEEDED else intent.status,
            raw=intent.to_dict(),
        )

    def _run(self, call, log_context: dict[str, Any]) -> GatewayResult:
        """Run a Stripe call with timing, logging and error translation."""
        self._configure_stripe()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)
        try:
            result = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            return self._translate_error(e, log_context, duration_ms)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "transaction_id": result.transaction_id,
                "outcome": result.outcome.value,
                "duration_ms": duration_ms,
            },
        )
        return result

    @staticmethod
    def _translate_error(
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> GatewayResult:
        """
        Map Stripe SDK exceptions to gateway outcomes.

        Card errors are declines; everything else (rate limits, connection
        problems, auth failures, invalid requests) is an ERROR outcome.
        """
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None) or error.code
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            return GatewayResult(
                outcome=GatewayOutcome.DECLINED,
                status="failed",
                error=str(error.user_message or error),
                error_code=decline_code or "card_declined",
                raw={"stripe_code": error.code},
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            code = "invalid_request"
        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            code = "rate_limit"
        elif isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            code = "api_connection_error"
        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            code = "authentication_error"
        elif isinstance(error, stripe.StripeError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            code = "api_error"
        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            code = "unknown_error"

        return GatewayResult(
            outcome=GatewayOutcome.ERROR,
            status="failed",
            error="Payment provider error",
            error_code=code,
            raw={"error_type": type(error).__name__},
        )
