"""
Tests for the Stripe webhook endpoint and its handlers.

Signature checks go through stripe.Webhook.construct_event, patched to
accept or reject. Handler tests store a WebhookEvent and run the
processing task on it directly.
"""

import json
import uuid
from decimal import Decimal

import pytest
import stripe
from django.urls import reverse

from payments.models import AuditLog, Dispute, PaymentTransaction, WebhookEvent
from payments.services import TransactionService
from payments.state_machines import (
    DisputeReason,
    EscrowStatus,
    OrderStatus,
    RiskLevel,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)
from payments.tasks import process_webhook_event
from payments.tests.factories import PaymentTransactionFactory, hold_for, refetch


def stripe_event(event_type, obj, event_id=None):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def run_event(event_type, obj, event_id=None):
    """Store an event and process it; return the task result and the reloaded event."""
    payload = stripe_event(event_type, obj, event_id)
    webhook_event = WebhookEvent.objects.create(
        event_id=payload["id"],
        event_type=event_type,
        payload=payload,
    )
    result = process_webhook_event(str(webhook_event.id))
    webhook_event.refresh_from_db()
    return result, webhook_event


def intent_ref(order):
    return TransactionService.latest_payment(order).backend_transaction_id


def audits(action):
    return AuditLog.objects.filter(action=action)


@pytest.fixture
def webhook_secret(settings):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    return settings.STRIPE_WEBHOOK_SECRET


@pytest.fixture
def accept_signature(mocker, webhook_secret):
    """Make construct_event accept any signature and echo the posted body."""

    def construct(payload, signature, secret):
        assert secret == webhook_secret
        return stripe.Event.construct_from(json.loads(payload), "sk_test")

    return mocker.patch.object(stripe.Webhook, "construct_event", side_effect=construct)


def post_event(client, event, signature="t=1,v1=signed"):
    headers = {"HTTP_STRIPE_SIGNATURE": signature} if signature else {}
    return client.post(
        reverse("payments:stripe-webhook"),
        data=json.dumps(event),
        content_type="application/json",
        **headers,
    )


# =============================================================================
# Endpoint
# =============================================================================


@pytest.mark.django_db
class TestStripeWebhookView:
    def test_missing_signature(self, client, accept_signature):
        response = post_event(client, stripe_event("payment_intent.succeeded", {}), signature="")

        assert response.status_code == 400
        assert b"Missing signature" in response.content
        accept_signature.assert_not_called()
        assert not WebhookEvent.objects.exists()

    def test_invalid_signature(self, client, mocker, webhook_secret):
        mocker.patch.object(
            stripe.Webhook,
            "construct_event",
            side_effect=stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad"),
        )

        response = post_event(client, stripe_event("payment_intent.succeeded", {}))

        assert response.status_code == 400
        assert b"Invalid signature" in response.content
        assert not WebhookEvent.objects.exists()

    def test_unreadable_payload(self, client, mocker, webhook_secret):
        mocker.patch.object(stripe.Webhook, "construct_event", side_effect=ValueError("Expecting value"))

        response = post_event(client, stripe_event("payment_intent.succeeded", {}))

        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()

    def test_secret_not_configured(self, client, settings, mocker):
        settings.STRIPE_WEBHOOK_SECRET = ""
        construct = mocker.patch.object(stripe.Webhook, "construct_event")

        response = post_event(client, stripe_event("payment_intent.succeeded", {}))

        assert response.status_code == 503
        construct.assert_not_called()

    def test_only_post(self, client):
        response = client.get(reverse("payments:stripe-webhook"))

        assert response.status_code == 405

    def test_event_without_type(self, client, accept_signature):
        response = post_event(client, {"id": "evt_no_type", "data": {"object": {}}})

        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()

    def test_event_stored_and_processed(self, client, accept_signature, paid_order):
        event = stripe_event(
            "payment_intent.succeeded",
            {"id": intent_ref(paid_order), "object": "payment_intent", "status": "succeeded"},
            event_id="evt_confirm_1",
        )

        response = post_event(client, event)

        assert response.status_code == 200
        webhook_event = WebhookEvent.objects.get(event_id="evt_confirm_1")
        assert webhook_event.event_type == "payment_intent.succeeded"
        assert webhook_event.status == WebhookEventStatus.PROCESSED
        assert webhook_event.attempts == 1
        assert webhook_event.processed_at is not None

    def test_redelivery_is_acknowledged_once(self, client, accept_signature, delivered_order):
        event = stripe_event(
            "charge.dispute.funds_withdrawn",
            {"id": "dp_redelivered", "payment_intent": intent_ref(delivered_order), "amount": 2158},
            event_id="evt_redelivered",
        )
        post_event(client, event)

        response = post_event(client, event)

        assert response.status_code == 200
        assert b"Already processed" in response.content
        assert WebhookEvent.objects.filter(event_id="evt_redelivered").count() == 1
        assert WebhookEvent.objects.get(event_id="evt_redelivered").attempts == 1
        assert audits("transaction.chargeback").count() == 1

    def test_queue_failure_asks_for_redelivery(self, client, accept_signature, mocker):
        mocker.patch.object(process_webhook_event, "delay", side_effect=ConnectionError("broker down"))

        response = post_event(client, stripe_event("payment_intent.succeeded", {"id": "pi_x"}, "evt_q"))

        assert response.status_code == 503
        assert WebhookEvent.objects.get(event_id="evt_q").status == WebhookEventStatus.PENDING


# =============================================================================
# Dispatch and task bookkeeping
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_unregistered_type_is_processed(self):
        result, webhook_event = run_event("customer.created", {"id": "cus_1"})

        assert result["status"] == "processed"
        assert webhook_event.status == WebhookEventStatus.PROCESSED

    def test_malformed_event_fails(self):
        result, webhook_event = run_event("payment_intent.succeeded", {})

        assert result["status"] == "handler_failed"
        assert result["error_code"] == "MALFORMED_EVENT"
        assert webhook_event.status == WebhookEventStatus.FAILED
        assert webhook_event.error_message == "Event carries no object id"

    def test_already_processed_is_skipped(self, paid_order):
        _, webhook_event = run_event("payment_intent.succeeded", {"id": intent_ref(paid_order)})

        result = process_webhook_event(str(webhook_event.id))

        assert result["status"] == "already_processed"
        webhook_event.refresh_from_db()
        assert webhook_event.attempts == 1

    @pytest.mark.parametrize("webhook_event_id", ["not-a-uuid", str(uuid.uuid4())])
    def test_unknown_event(self, webhook_event_id):
        assert process_webhook_event(webhook_event_id)["status"] == "not_found"


# =============================================================================
# Payment and refund confirmations
# =============================================================================


@pytest.mark.django_db
class TestTransactionConfirmations:
    def test_matching_payment_left_alone(self, paid_order):
        payment = TransactionService.latest_payment(paid_order)

        result, _ = run_event("payment_intent.succeeded", {"id": payment.backend_transaction_id})

        assert result["status"] == "processed"
        payment.refresh_from_db()
        assert payment.status == TransactionStatus.COMPLETED
        assert not audits("webhook.transaction.mismatch").exists()
        assert not audits("webhook.transaction.updated").exists()

    def test_processing_payment_completed(self, paid_order):
        pending = PaymentTransactionFactory(
            order=paid_order,
            status=TransactionStatus.PROCESSING,
            backend_transaction_id="pi_processing_1",
            processed_at=None,
        )

        run_event("payment_intent.succeeded", {"id": "pi_processing_1"})

        pending.refresh_from_db()
        assert pending.status == TransactionStatus.COMPLETED
        assert pending.settled_at is not None
        entry = audits("webhook.transaction.updated").get()
        assert entry.metadata["from"] == TransactionStatus.PROCESSING
        assert entry.metadata["to"] == TransactionStatus.COMPLETED

    def test_processing_payment_failed(self, paid_order):
        pending = PaymentTransactionFactory(
            order=paid_order,
            status=TransactionStatus.PROCESSING,
            backend_transaction_id="pi_processing_2",
        )

        run_event(
            "payment_intent.payment_failed",
            {"id": "pi_processing_2", "last_payment_error": {"message": "Your card was declined."}},
        )

        pending.refresh_from_db()
        assert pending.status == TransactionStatus.FAILED
        assert pending.failure_reason == "Your card was declined."

    def test_disagreeing_outcome_is_audited_not_rewritten(self, paid_order, registry_gateway):
        payment = TransactionService.latest_payment(paid_order)

        result, _ = run_event(
            "payment_intent.payment_failed",
            {"id": payment.backend_transaction_id, "last_payment_error": {"message": "Declined"}},
        )

        assert result["status"] == "processed"
        payment.refresh_from_db()
        assert payment.status == TransactionStatus.COMPLETED
        entry = audits("webhook.transaction.mismatch").get()
        assert entry.risk_level == RiskLevel.HIGH
        assert entry.metadata["recorded"] == TransactionStatus.COMPLETED
        assert entry.metadata["reported"] == TransactionStatus.FAILED
        # The simulator that captured the payment still reports it captured
        assert entry.metadata["backend_status"] == "completed"

    def test_pending_refund_settled(self, paid_order):
        refund_txn = PaymentTransactionFactory(
            order=paid_order,
            transaction_type=TransactionType.REFUND,
            amount=Decimal("5.00"),
            status=TransactionStatus.PENDING,
            backend_transaction_id="re_pending_1",
        )

        run_event("refund.updated", {"id": "re_pending_1", "object": "refund", "status": "succeeded"})

        refund_txn.refresh_from_db()
        assert refund_txn.status == TransactionStatus.COMPLETED

    def test_refund_still_pending_at_backend(self, paid_order):
        refund_txn = PaymentTransactionFactory(
            order=paid_order,
            transaction_type=TransactionType.REFUND,
            amount=Decimal("5.00"),
            status=TransactionStatus.PENDING,
            backend_transaction_id="re_pending_2",
        )

        result, _ = run_event("refund.updated", {"id": "re_pending_2", "status": "pending"})

        assert result["status"] == "processed"
        refund_txn.refresh_from_db()
        assert refund_txn.status == TransactionStatus.PENDING

    def test_refund_failed(self, paid_order):
        refund_txn = PaymentTransactionFactory(
            order=paid_order,
            transaction_type=TransactionType.REFUND,
            amount=Decimal("5.00"),
            status=TransactionStatus.PENDING,
            backend_transaction_id="re_pending_3",
        )

        run_event(
            "refund.failed",
            {"id": "re_pending_3", "status": "failed", "failure_reason": "expired_or_canceled_card"},
        )

        refund_txn.refresh_from_db()
        assert refund_txn.status == TransactionStatus.FAILED
        assert refund_txn.failure_reason == "expired_or_canceled_card"

    def test_unknown_object_ignored(self, paid_order):
        result, _ = run_event("payment_intent.succeeded", {"id": "pi_from_another_system"})

        assert result["status"] == "processed"
        assert not audits("webhook.transaction.updated").exists()
        assert not audits("webhook.transaction.mismatch").exists()


# =============================================================================
# Card disputes and chargebacks
# =============================================================================


@pytest.mark.django_db
class TestCardDisputes:
    def test_card_dispute_freezes_custody(self, delivered_order, buyer):
        run_event(
            "charge.dispute.created",
            {
                "id": "dp_freeze",
                "payment_intent": intent_ref(delivered_order),
                "amount": 2158,
                "reason": "fraudulent",
            },
        )

        order = refetch(delivered_order)
        assert order.status == OrderStatus.DISPUTED
        assert hold_for(order).status == EscrowStatus.DISPUTED
        dispute = Dispute.objects.get(order=order)
        assert dispute.created_by == buyer
        assert dispute.reason == DisputeReason.PAYMENT_ISSUE
        assert "dp_freeze" in dispute.description
        entry = audits("webhook.card_dispute").get()
        assert entry.metadata["frozen"] is True
        assert entry.metadata["dispute_id"] == str(dispute.id)

    def test_card_dispute_on_disputed_order(self, open_dispute):
        order = open_dispute.order

        result, _ = run_event(
            "charge.dispute.created",
            {"id": "dp_second", "payment_intent": intent_ref(order), "reason": "fraudulent"},
        )

        assert result["status"] == "processed"
        assert Dispute.objects.filter(order=order).count() == 1
        entry = audits("webhook.card_dispute").get()
        assert entry.metadata["frozen"] is False
        assert entry.metadata["error_code"] == "DISPUTE_ALREADY_ACTIVE"

    def test_card_dispute_for_unknown_payment(self, delivered_order):
        result, _ = run_event("charge.dispute.created", {"id": "dp_x", "payment_intent": "pi_unknown"})

        assert result["status"] == "processed"
        assert not Dispute.objects.exists()
        assert refetch(delivered_order).status == OrderStatus.DELIVERED

    def test_chargeback_recorded(self, delivered_order):
        run_event(
            "charge.dispute.funds_withdrawn",
            {
                "id": "dp_withdrawn",
                "payment_intent": intent_ref(delivered_order),
                "amount": 2158,
                "reason": "fraudulent",
            },
        )

        chargeback = PaymentTransaction.objects.get(
            order=delivered_order, transaction_type=TransactionType.CHARGEBACK
        )
        assert chargeback.amount == Decimal("21.58")
        assert chargeback.status == TransactionStatus.COMPLETED
        assert chargeback.backend_transaction_id == "dp_withdrawn"
        assert chargeback.backend == "simulator"
        entry = audits("transaction.chargeback").get()
        assert entry.risk_level == RiskLevel.CRITICAL
        assert entry.metadata["transaction_id"] == chargeback.transaction_id

    def test_chargeback_recorded_once(self, delivered_order):
        obj = {"id": "dp_twice", "payment_intent": intent_ref(delivered_order), "amount": 2158}

        run_event("charge.dispute.funds_withdrawn", obj)
        run_event("charge.dispute.funds_withdrawn", obj)

        assert (
            PaymentTransaction.objects.filter(transaction_type=TransactionType.CHARGEBACK).count()
            == 1
        )
        assert audits("transaction.chargeback").count() == 1

    def test_chargeback_without_amount_ignored(self, delivered_order):
        result, _ = run_event(
            "charge.dispute.funds_withdrawn",
            {"id": "dp_no_amount", "payment_intent": intent_ref(delivered_order)},
        )

        assert result["status"] == "processed"
        assert not PaymentTransaction.objects.filter(
            transaction_type=TransactionType.CHARGEBACK
        ).exists()
