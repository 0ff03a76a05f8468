"""
Tests for DisputeService.

Covers opening disputes, the message thread, escalation, mediator review
and every resolution with its money movement.
"""

from decimal import Decimal

import pytest

from payments.gateways import GatewayOutcome, GatewayResult
from payments.models import (
    AuditLog,
    Dispute,
    DisputeMessage,
    PaymentNotification,
    PaymentTransaction,
)
from payments.services import DisputeService, OrderService
from payments.state_machines import (
    DisputeParty,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from payments.tests.factories import hold_for, refetch


def refund_error(*args, **kwargs):
    return GatewayResult(
        outcome=GatewayOutcome.ERROR,
        error="Refund service unavailable",
        error_code="processing_error",
    )


def payout_error(*args, **kwargs):
    return GatewayResult(
        outcome=GatewayOutcome.ERROR,
        error="Payout service unavailable",
        error_code="network_error",
    )


# =============================================================================
# create_dispute
# =============================================================================


@pytest.mark.django_db
class TestCreateDispute:
    def test_buyer_opens_dispute(self, open_dispute, delivered_order, buyer, seller):
        assert open_dispute.status == DisputeStatus.OPEN
        assert open_dispute.initiated_by == DisputeParty.BUYER
        assert open_dispute.created_by == buyer
        assert open_dispute.respondent == seller

        order = refetch(delivered_order)
        assert order.status == OrderStatus.DISPUTED
        assert order.dispute_reason == "The account was already banned"

        hold = hold_for(delivered_order)
        assert hold.status == EscrowStatus.DISPUTED
        assert open_dispute.escrow_hold == hold

    def test_system_message_and_notification(self, open_dispute, seller):
        message = DisputeMessage.objects.get(dispute=open_dispute)
        assert message.is_system
        assert message.sender is None
        assert message.message == "Dispute opened by the buyer: Item Not As Described"

        notification = PaymentNotification.objects.get(
            notification_type=NotificationType.DISPUTE_CREATED
        )
        assert notification.recipient == seller

    def test_seller_opens_dispute(self, paid_order, seller, buyer):
        result = DisputeService.create_dispute(
            paid_order.id,
            seller,
            reason=DisputeReason.PAYMENT_ISSUE,
            description="Chargeback filed",
            evidence=["chargeback.pdf"],
        )

        assert result.success
        assert result.data.initiated_by == DisputeParty.SELLER
        assert result.data.respondent == buyer
        assert result.data.evidence == ["chargeback.pdf"]

    def test_dispute_on_unpaid_order(self, pending_order, buyer):
        result = DisputeService.create_dispute(
            pending_order.id, buyer, reason=DisputeReason.OTHER, description="Seller asked to pay outside"
        )

        assert result.success
        assert result.data.escrow_hold is None
        assert refetch(pending_order).status == OrderStatus.DISPUTED

    def test_one_active_dispute(self, open_dispute, delivered_order, seller):
        result = DisputeService.create_dispute(
            delivered_order.id, seller, reason=DisputeReason.OTHER, description="me too"
        )

        assert result.error_code == "DISPUTE_ALREADY_ACTIVE"
        assert result.status_code == 409

    def test_terminal_order(self, pending_order, buyer):
        OrderService.cancel_order(pending_order.id, buyer)

        result = DisputeService.create_dispute(
            pending_order.id, buyer, reason=DisputeReason.OTHER, description="late"
        )

        assert result.error_code == "ORDER_TERMINAL"

    def test_outsider(self, paid_order, outsider):
        result = DisputeService.create_dispute(
            paid_order.id, outsider, reason=DisputeReason.OTHER, description="x"
        )

        assert result.error_code == "NOT_ORDER_PARTY"

    def test_unknown_reason(self, paid_order, buyer):
        result = DisputeService.create_dispute(paid_order.id, buyer, reason="bored", description="x")

        assert result.error_code == "VALIDATION_ERROR"
        assert "reason" in result.errors

    @pytest.mark.parametrize(
        "amount,code",
        [("0", "INVALID_AMOUNT"), ("21.59", "AMOUNT_EXCEEDS_TOTAL")],
    )
    def test_requested_amount_bounds(self, paid_order, buyer, amount, code):
        result = DisputeService.create_dispute(
            paid_order.id,
            buyer,
            reason=DisputeReason.ITEM_NOT_RECEIVED,
            description="x",
            requested_amount=amount,
        )

        assert result.error_code == code
        assert refetch(paid_order).status == OrderStatus.PAID
        assert hold_for(paid_order).status == EscrowStatus.HELD


# =============================================================================
# Messages
# =============================================================================


@pytest.mark.django_db
class TestDisputeMessages:
    def test_party_message_awaits_response(self, open_dispute, seller, buyer):
        result = DisputeService.add_dispute_message(
            open_dispute.id, seller, "Works on my side", attachments=["login.png"]
        )

        assert result.success
        assert result.data.sender == seller
        assert result.data.attachments == ["login.png"]
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.AWAITING_RESPONSE
        assert PaymentNotification.objects.filter(
            recipient=buyer, notification_type=NotificationType.DISPUTE_MESSAGE
        ).exists()

    def test_empty_message(self, open_dispute, buyer):
        result = DisputeService.add_dispute_message(open_dispute.id, buyer, "   ")

        assert result.error_code == "VALIDATION_ERROR"

    def test_outsider_cannot_post(self, open_dispute, outsider):
        result = DisputeService.add_dispute_message(open_dispute.id, outsider, "hi")

        assert result.error_code == "NOT_DISPUTE_PARTICIPANT"

    def test_internal_note_needs_mediator(self, open_dispute, buyer):
        result = DisputeService.add_dispute_message(
            open_dispute.id, buyer, "secret", internal=True
        )

        assert result.error_code == "NOT_MEDIATOR"

    def test_internal_note_hidden_from_parties(self, open_dispute, mediator, buyer):
        DisputeService.add_dispute_message(
            open_dispute.id, mediator, "Seller has prior disputes", internal=True
        )

        party_view = DisputeService.list_dispute_messages(open_dispute.id, buyer).data
        mediator_view = DisputeService.list_dispute_messages(open_dispute.id, mediator).data

        assert len(party_view) == 1
        assert len(mediator_view) == 2
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.OPEN

    def test_list_requires_participant(self, open_dispute, outsider):
        result = DisputeService.list_dispute_messages(open_dispute.id, outsider)

        assert result.error_code == "NOT_DISPUTE_PARTICIPANT"

    def test_escalated_dispute_stays_escalated(self, open_dispute, buyer, seller):
        DisputeService.escalate_dispute(open_dispute.id, buyer, reason="No answer")

        DisputeService.add_dispute_message(open_dispute.id, seller, "Sorry, was away")

        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.ESCALATED


# =============================================================================
# Escalation and review
# =============================================================================


@pytest.mark.django_db
class TestEscalationAndReview:
    def test_escalate(self, open_dispute, buyer, seller):
        result = DisputeService.escalate_dispute(open_dispute.id, buyer, reason="No answer")

        assert result.success
        assert result.data.status == DisputeStatus.ESCALATED
        assert result.data.escalation_reason == "No answer"
        assert DisputeMessage.objects.filter(dispute=open_dispute, is_internal=True).exists()
        assert PaymentNotification.objects.filter(
            recipient=seller, notification_type=NotificationType.DISPUTE_ESCALATED
        ).exists()

    def test_escalate_twice(self, open_dispute, buyer):
        DisputeService.escalate_dispute(open_dispute.id, buyer, reason="No answer")

        result = DisputeService.escalate_dispute(open_dispute.id, buyer, reason="Still nothing")

        assert result.error_code == "DISPUTE_ALREADY_ESCALATED"

    def test_mediator_is_not_a_party(self, open_dispute, mediator):
        result = DisputeService.escalate_dispute(open_dispute.id, mediator, reason="x")

        assert result.error_code == "NOT_ORDER_PARTY"

    def test_start_review(self, open_dispute, mediator):
        result = DisputeService.start_review(open_dispute.id, mediator)

        assert result.success
        assert result.data.status == DisputeStatus.UNDER_REVIEW

    def test_review_requires_mediator(self, open_dispute, buyer):
        assert DisputeService.start_review(open_dispute.id, buyer).error_code == "NOT_MEDIATOR"

    def test_mediator_reviews_escalated_dispute(self, open_dispute, buyer, mediator):
        DisputeService.escalate_dispute(open_dispute.id, buyer, reason="No reply in a week")

        result = DisputeService.start_review(open_dispute.id, mediator)

        assert result.success
        assert result.data.status == DisputeStatus.UNDER_REVIEW
        assert result.data.escalation_reason == "No reply in a week"

    def test_review_requires_open_or_escalated(self, open_dispute, mediator, gateway):
        DisputeService.resolve_dispute(open_dispute.id, mediator, DisputeResolution.NO_ACTION, gateway)

        result = DisputeService.start_review(open_dispute.id, mediator)

        assert result.error_code == "DISPUTE_NOT_OPEN"
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.RESOLVED


# =============================================================================
# Resolution
# =============================================================================


@pytest.mark.django_db
class TestResolveDispute:
    def test_full_refund(self, open_dispute, delivered_order, mediator, gateway):
        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.FULL_REFUND, gateway, notes="Seller at fault"
        )

        assert result.success
        dispute = result.data
        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.resolved_by == mediator
        assert dispute.resolution_amount == Decimal("21.58")
        assert dispute.resolution_notes == "Seller at fault"

        assert refetch(delivered_order).status == OrderStatus.REFUNDED
        hold = hold_for(delivered_order)
        assert hold.status == EscrowStatus.REFUNDED
        assert hold.refunded_amount == Decimal("21.58")

    def test_favor_buyer_refunds_everything(self, open_dispute, delivered_order, mediator, gateway):
        DisputeService.resolve_dispute(open_dispute.id, mediator, DisputeResolution.FAVOR_BUYER, gateway)

        refund = PaymentTransaction.objects.get(transaction_type=TransactionType.REFUND)
        assert refund.amount == Decimal("21.58")

    def test_partial_refund(self, open_dispute, delivered_order, mediator, gateway):
        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.PARTIAL_REFUND, gateway, amount="5.00"
        )

        assert result.success
        assert result.data.resolution_amount == Decimal("5.00")

        order = refetch(delivered_order)
        assert order.status == OrderStatus.COMPLETED
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED

        hold = hold_for(delivered_order)
        assert hold.status == EscrowStatus.RELEASED
        assert hold.released_amount == Decimal("15.00")

    @pytest.mark.parametrize("amount", [None, "0", "21.58", "30.00"])
    def test_partial_refund_amount_bounds(self, open_dispute, mediator, gateway, amount):
        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.PARTIAL_REFUND, gateway, amount=amount
        )

        assert result.error_code == "INVALID_AMOUNT"
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.OPEN

    def test_favor_seller(self, open_dispute, delivered_order, mediator, gateway):
        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.FAVOR_SELLER, gateway
        )

        assert result.success
        assert result.data.resolution_amount is None
        assert refetch(delivered_order).status == OrderStatus.COMPLETED
        hold = hold_for(delivered_order)
        assert hold.status == EscrowStatus.RELEASED
        assert hold.released_amount == Decimal("20.00")

    @pytest.mark.parametrize(
        "resolution",
        [
            DisputeResolution.NO_ACTION,
            DisputeResolution.REPLACEMENT,
            DisputeResolution.STORE_CREDIT,
        ],
    )
    def test_non_financial_returns_to_delivered(
        self, open_dispute, delivered_order, mediator, gateway, resolution
    ):
        result = DisputeService.resolve_dispute(open_dispute.id, mediator, resolution, gateway)

        assert result.success
        assert refetch(delivered_order).status == OrderStatus.DELIVERED
        assert hold_for(delivered_order).status == EscrowStatus.HELD
        assert not PaymentTransaction.objects.exclude(
            transaction_type=TransactionType.PAYMENT
        ).exists()

    def test_non_financial_before_delivery_returns_to_paid(self, paid_order, buyer, mediator, gateway):
        dispute = DisputeService.create_dispute(
            paid_order.id, buyer, reason=DisputeReason.ITEM_NOT_RECEIVED, description="Nothing yet"
        ).data

        DisputeService.resolve_dispute(dispute.id, mediator, DisputeResolution.NO_ACTION, gateway)

        assert refetch(paid_order).status == OrderStatus.PAID

    def test_unfunded_order_is_cancelled(self, pending_order, buyer, mediator, gateway):
        dispute = DisputeService.create_dispute(
            pending_order.id, buyer, reason=DisputeReason.OTHER, description="Scam attempt"
        ).data

        result = DisputeService.resolve_dispute(
            dispute.id, mediator, DisputeResolution.NO_ACTION, gateway
        )

        assert result.success
        assert refetch(pending_order).status == OrderStatus.CANCELLED

    def test_financial_resolution_needs_hold(self, pending_order, buyer, mediator, gateway):
        dispute = DisputeService.create_dispute(
            pending_order.id, buyer, reason=DisputeReason.OTHER, description="x"
        ).data

        result = DisputeService.resolve_dispute(
            dispute.id, mediator, DisputeResolution.FULL_REFUND, gateway
        )

        assert result.error_code == "ESCROW_NOT_ACTIVE"

    def test_only_mediator_resolves(self, open_dispute, buyer, gateway):
        result = DisputeService.resolve_dispute(
            open_dispute.id, buyer, DisputeResolution.FULL_REFUND, gateway
        )

        assert result.error_code == "NOT_MEDIATOR"
        assert result.status_code == 403

    def test_unknown_resolution(self, open_dispute, mediator, gateway):
        result = DisputeService.resolve_dispute(open_dispute.id, mediator, "coin_flip", gateway)

        assert result.error_code == "VALIDATION_ERROR"

    def test_resolved_dispute_is_not_active(self, open_dispute, mediator, gateway):
        DisputeService.resolve_dispute(open_dispute.id, mediator, DisputeResolution.NO_ACTION, gateway)

        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.FULL_REFUND, gateway
        )

        assert result.error_code == "DISPUTE_NOT_ACTIVE"

    def test_gateway_failure_rolls_back(self, open_dispute, delivered_order, mediator, gateway, mocker):
        mocker.patch.object(gateway, "refund_payment", side_effect=refund_error)

        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.FULL_REFUND, gateway
        )

        assert result.error_code == "GATEWAY_ERROR"
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.OPEN
        assert refetch(delivered_order).status == OrderStatus.DISPUTED
        assert hold_for(delivered_order).status == EscrowStatus.DISPUTED

        failed = PaymentTransaction.objects.get(transaction_type=TransactionType.REFUND)
        assert failed.status == TransactionStatus.FAILED
        assert failed.failure_reason == "Refund service unavailable"
        entry = AuditLog.objects.get(action="dispute.resolve.failed")
        assert entry.metadata["transaction_id"] == failed.transaction_id

    def test_refused_payout_is_recorded(self, open_dispute, delivered_order, mediator, gateway, mocker):
        mocker.patch.object(gateway, "release_funds", side_effect=payout_error)

        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.FAVOR_SELLER, gateway
        )

        assert result.error_code == "GATEWAY_ERROR"
        assert Dispute.objects.get(pk=open_dispute.pk).status == DisputeStatus.OPEN
        assert refetch(delivered_order).status == OrderStatus.DISPUTED
        assert hold_for(delivered_order).status == EscrowStatus.DISPUTED

        failed = PaymentTransaction.objects.get(transaction_type=TransactionType.ESCROW_RELEASE)
        assert failed.status == TransactionStatus.FAILED
        assert failed.amount == Decimal("20.00")

    def test_partial_refund_survives_refused_payout(
        self, open_dispute, delivered_order, mediator, gateway, mocker
    ):
        mocker.patch.object(gateway, "release_funds", side_effect=payout_error)

        result = DisputeService.resolve_dispute(
            open_dispute.id, mediator, DisputeResolution.PARTIAL_REFUND, gateway, amount="5.00"
        )

        assert result.success
        assert result.data.status == DisputeStatus.RESOLVED
        refund = PaymentTransaction.objects.get(transaction_type=TransactionType.REFUND)
        assert refund.status == TransactionStatus.COMPLETED
        captured = hold_for(delivered_order).transaction.backend_transaction_id
        assert gateway.get_transaction_status(captured).raw["refunded"] == "5.00"

        hold = hold_for(delivered_order)
        assert hold.status == EscrowStatus.PARTIAL_RELEASE
        assert hold.refunded_amount == Decimal("5.00")
        assert hold.released_amount == Decimal("0.00")
        order = refetch(delivered_order)
        assert order.status == OrderStatus.DELIVERED
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED

    def test_partial_refund_before_delivery_keeps_custody(self, paid_order, buyer, mediator, gateway):
        dispute = DisputeService.create_dispute(
            paid_order.id, buyer, reason=DisputeReason.ITEM_NOT_RECEIVED, description="Half missing"
        ).data

        result = DisputeService.resolve_dispute(
            dispute.id, mediator, DisputeResolution.PARTIAL_REFUND, gateway, amount="5.00"
        )

        assert result.success
        order = refetch(paid_order)
        assert order.status == OrderStatus.PAID
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED
        hold = hold_for(paid_order)
        assert hold.status == EscrowStatus.PARTIAL_RELEASE
        assert hold.remaining_amount == Decimal("16.58")
        assert not PaymentTransaction.objects.filter(
            transaction_type=TransactionType.ESCROW_RELEASE
        ).exists()

    def test_parties_notified(self, open_dispute, buyer, seller, mediator, gateway):
        DisputeService.resolve_dispute(open_dispute.id, mediator, DisputeResolution.NO_ACTION, gateway)

        recipients = set(
            PaymentNotification.objects.filter(
                notification_type=NotificationType.DISPUTE_RESOLVED
            ).values_list("recipient_id", flat=True)
        )
        assert recipients == {buyer.id, seller.id}


@pytest.mark.django_db
class TestCloseDispute:
    def test_close_resolved(self, open_dispute, mediator, gateway):
        DisputeService.resolve_dispute(open_dispute.id, mediator, DisputeResolution.NO_ACTION, gateway)

        result = DisputeService.close_dispute(open_dispute.id, mediator)

        assert result.success
        assert result.data.status == DisputeStatus.CLOSED

    def test_close_unresolved(self, open_dispute, mediator):
        result = DisputeService.close_dispute(open_dispute.id, mediator)

        assert result.error_code == "DISPUTE_NOT_RESOLVED"
