"""
Tests for EscrowService.

Covers buyer release, seller freeze, the auto-release sweep step and
rollback when the payout fails.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from payments.exceptions import DomainRuleError
from payments.gateways import GatewayOutcome, GatewayResult
from payments.models import AuditLog, EscrowHold, PaymentNotification, PaymentTransaction
from payments.services import EscrowService, RefundService
from payments.services.escrow_service import AUTO_RELEASE_REASON
from payments.state_machines import (
    EscrowStatus,
    NotificationType,
    OrderStatus,
    TransactionStatus,
    TransactionType,
)
from payments.tests.factories import hold_for, refetch


def payout_error(*args, **kwargs):
    return GatewayResult(
        outcome=GatewayOutcome.ERROR,
        error="Payout service unavailable",
        error_code="network_error",
    )


def make_due(hold):
    EscrowHold.objects.filter(pk=hold.pk).update(
        auto_release_at=timezone.now() - timedelta(minutes=1)
    )


# =============================================================================
# release_escrow
# =============================================================================


@pytest.mark.django_db
class TestReleaseEscrow:
    """Tests for the buyer's release of a delivered order."""

    def test_release_pays_seller_share(self, delivered_order, buyer, gateway):
        hold = hold_for(delivered_order)

        result = EscrowService.release_escrow(hold.id, buyer, gateway)

        assert result.success
        hold = result.data
        assert hold.status == EscrowStatus.RELEASED
        assert hold.released_amount == Decimal("20.00")
        assert hold.release_reason == "buyer_release"
        assert hold.released_by == buyer

        order = refetch(delivered_order)
        assert order.status == OrderStatus.COMPLETED
        assert order.completed_at is not None

    def test_payout_transaction(self, delivered_order, buyer, gateway):
        hold = hold_for(delivered_order)

        EscrowService.release_escrow(hold.id, buyer, gateway)

        payout = PaymentTransaction.objects.get(transaction_type=TransactionType.ESCROW_RELEASE)
        assert payout.amount == Decimal("20.00")
        assert payout.status == TransactionStatus.COMPLETED
        assert payout.backend_transaction_id.startswith("po_sim_")

        status = gateway.get_transaction_status(hold.transaction.backend_transaction_id)
        assert status.raw["released"] == "20.00"

    def test_notifies_and_audits(self, delivered_order, buyer, seller, gateway):
        hold = hold_for(delivered_order)

        EscrowService.release_escrow(hold.id, buyer, gateway)

        recipients = set(
            PaymentNotification.objects.filter(
                notification_type=NotificationType.ESCROW_RELEASED
            ).values_list("recipient_id", flat=True)
        )
        assert recipients == {buyer.id, seller.id}
        entry = AuditLog.objects.get(action="escrow.release")
        assert entry.metadata["amount"] == "20.00"

    def test_full_amount_accepted(self, delivered_order, buyer, gateway):
        hold = hold_for(delivered_order)

        result = EscrowService.release_escrow(hold.id, buyer, gateway, amount="20.00")

        assert result.success

    def test_partial_release_rejected(self, delivered_order, buyer, gateway):
        hold = hold_for(delivered_order)

        result = EscrowService.release_escrow(hold.id, buyer, gateway, amount=Decimal("10.00"))

        assert result.error_code == "PARTIAL_RELEASE_UNSUPPORTED"
        assert hold_for(delivered_order).status == EscrowStatus.HELD

    def test_requires_delivery(self, paid_order, buyer, gateway):
        hold = hold_for(paid_order)

        result = EscrowService.release_escrow(hold.id, buyer, gateway)

        assert result.error_code == "NOT_DELIVERED"
        assert result.status_code == 409

    def test_seller_cannot_release(self, delivered_order, seller, gateway):
        hold = hold_for(delivered_order)

        result = EscrowService.release_escrow(hold.id, seller, gateway)

        assert result.error_code == "NOT_ORDER_BUYER"
        assert result.status_code == 403

    def test_release_twice(self, delivered_order, buyer, gateway):
        hold = hold_for(delivered_order)
        EscrowService.release_escrow(hold.id, buyer, gateway)

        result = EscrowService.release_escrow(hold.id, buyer, gateway)

        assert result.error_code == "ESCROW_NOT_ACTIVE"
        assert PaymentTransaction.objects.filter(
            transaction_type=TransactionType.ESCROW_RELEASE
        ).count() == 1

    def test_unknown_escrow(self, buyer, gateway):
        result = EscrowService.release_escrow(uuid.uuid4(), buyer, gateway)

        assert result.status_code == 404

    def test_gateway_failure_rolls_back(self, delivered_order, buyer, gateway, mocker):
        mocker.patch.object(gateway, "release_funds", side_effect=payout_error)
        hold = hold_for(delivered_order)

        result = EscrowService.release_escrow(hold.id, buyer, gateway)

        assert result.error_code == "GATEWAY_ERROR"
        assert result.status_code == 502
        assert hold_for(delivered_order).status == EscrowStatus.HELD
        assert refetch(delivered_order).status == OrderStatus.DELIVERED
        assert not AuditLog.objects.filter(action="escrow.release").exists()

    def test_refused_payout_is_recorded(self, delivered_order, buyer, gateway, mocker):
        mocker.patch.object(gateway, "release_funds", side_effect=payout_error)
        hold = hold_for(delivered_order)

        EscrowService.release_escrow(hold.id, buyer, gateway)

        failed = PaymentTransaction.objects.get(transaction_type=TransactionType.ESCROW_RELEASE)
        assert failed.status == TransactionStatus.FAILED
        assert failed.amount == Decimal("20.00")
        assert failed.failure_reason == "Payout service unavailable"

        entry = AuditLog.objects.get(action="escrow.release.failed")
        assert entry.actor == buyer
        assert entry.metadata["error_code"] == "GATEWAY_ERROR"
        assert entry.metadata["reason"] == "network_error"
        assert entry.metadata["transaction_id"] == failed.transaction_id


# =============================================================================
# dispute_escrow
# =============================================================================


@pytest.mark.django_db
class TestDisputeEscrow:
    def test_seller_freezes_hold(self, paid_order, seller, buyer):
        hold = hold_for(paid_order)

        result = EscrowService.dispute_escrow(
            hold.id, seller, reason="Buyer is unreachable", notes="Tried twice"
        )

        assert result.success
        assert result.data.status == EscrowStatus.DISPUTED
        assert result.data.dispute_reason == "Buyer is unreachable"

        order = refetch(paid_order)
        assert order.status == OrderStatus.DISPUTED
        assert order.dispute_reason == "Buyer is unreachable"
        assert order.seller_notes == "Tried twice"
        assert PaymentNotification.objects.filter(
            recipient=buyer, notification_type=NotificationType.ESCROW_DISPUTED
        ).exists()

    def test_buyer_cannot_freeze(self, paid_order, buyer):
        result = EscrowService.dispute_escrow(hold_for(paid_order).id, buyer, reason="x")

        assert result.error_code == "NOT_ORDER_SELLER"

    def test_frozen_hold_cannot_be_released(self, delivered_order, seller, buyer, gateway):
        hold = hold_for(delivered_order)
        EscrowService.dispute_escrow(hold.id, seller, reason="Chargeback threat")

        result = EscrowService.release_escrow(hold.id, buyer, gateway)

        assert result.error_code == "ESCROW_NOT_ACTIVE"


# =============================================================================
# Auto-release
# =============================================================================


@pytest.mark.django_db
class TestAutoRelease:
    """Tests for due_for_release and process_auto_release."""

    def test_due_hold_is_released(self, delivered_order, gateway):
        hold = hold_for(delivered_order)
        make_due(hold)

        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.success
        assert result.data.status == EscrowStatus.RELEASED
        assert result.data.release_reason == AUTO_RELEASE_REASON
        assert refetch(delivered_order).status == OrderStatus.COMPLETED
        entry = AuditLog.objects.get(action="escrow.auto_release")
        assert entry.actor is None

    def test_due_for_release_query(self, delivered_order):
        hold = hold_for(delivered_order)
        assert list(EscrowService.due_for_release()) == []

        make_due(hold)

        assert list(EscrowService.due_for_release()) == [hold]

    def test_undelivered_hold_not_due(self, paid_order, gateway):
        hold = hold_for(paid_order)
        make_due(hold)

        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.success
        assert result.data.status == EscrowStatus.HELD
        assert list(EscrowService.due_for_release()) == []

    def test_deadline_not_reached(self, delivered_order, gateway):
        hold = hold_for(delivered_order)

        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.data.status == EscrowStatus.HELD
        assert refetch(delivered_order).status == OrderStatus.DELIVERED

    def test_open_refund_blocks_release(self, delivered_order, buyer, gateway):
        hold = hold_for(delivered_order)
        make_due(hold)
        RefundService.request_refund(delivered_order.id, buyer, reason="Code did not work")

        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.data.status == EscrowStatus.HELD

    def test_repeat_is_noop(self, delivered_order, gateway):
        hold = hold_for(delivered_order)
        make_due(hold)
        EscrowService.process_auto_release(hold.id, gateway)

        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.success
        assert PaymentTransaction.objects.filter(
            transaction_type=TransactionType.ESCROW_RELEASE
        ).count() == 1

    def test_gateway_failure_leaves_hold(self, delivered_order, gateway, mocker):
        mocker.patch.object(gateway, "release_funds", side_effect=payout_error)
        hold = hold_for(delivered_order)
        make_due(hold)

        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.error_code == "GATEWAY_ERROR"
        assert hold_for(delivered_order).status == EscrowStatus.HELD
        failed = PaymentTransaction.objects.get(transaction_type=TransactionType.ESCROW_RELEASE)
        assert failed.status == TransactionStatus.FAILED
        assert AuditLog.objects.filter(action="escrow.auto_release.failed").exists()

    def test_releases_remainder_after_refused_payout(
        self, delivered_order, buyer, seller, gateway, mocker
    ):
        refund = RefundService.request_refund(
            delivered_order.id, buyer, reason="One code was used", amount="5.00"
        ).data
        refused = mocker.patch.object(gateway, "release_funds", side_effect=payout_error)
        RefundService.resolve_refund(refund.id, seller, "approved", gateway)
        mocker.stop(refused)
        hold = hold_for(delivered_order)
        assert hold.status == EscrowStatus.PARTIAL_RELEASE
        make_due(hold)

        assert list(EscrowService.due_for_release()) == [hold]
        result = EscrowService.process_auto_release(hold.id, gateway)

        assert result.success
        assert result.data.status == EscrowStatus.RELEASED
        assert result.data.released_amount == Decimal("15.00")
        assert refetch(delivered_order).status == OrderStatus.COMPLETED


# =============================================================================
# open_hold
# =============================================================================


@pytest.mark.django_db
class TestOpenHold:
    def test_second_hold_rejected(self, paid_order):
        txn = PaymentTransaction.objects.get(order=paid_order)

        with pytest.raises(DomainRuleError) as exc_info:
            EscrowService.open_hold(paid_order, txn, 72)

        assert exc_info.value.error_code == "ESCROW_ALREADY_EXISTS"
