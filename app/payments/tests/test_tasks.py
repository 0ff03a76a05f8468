"""
Tests for the custody sweep tasks.

Tasks are called directly so their return values and exceptions are
visible; the sweeps queue per-order tasks with .delay(), which runs
inline under the eager test configuration.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from payments.exceptions import GatewayError
from payments.gateways import GatewayOutcome, GatewayResult
from payments.models import EscrowHold, Order
from payments.state_machines import EscrowStatus, OrderStatus
from payments.tasks import (
    expire_single_order,
    expire_stale_orders,
    release_due_escrows,
    release_single_escrow,
)
from payments.tests.factories import OrderFactory, hold_for, refetch


def expire(order):
    Order.objects.filter(pk=order.pk).update(expires_at=timezone.now() - timedelta(minutes=1))


def make_due(hold):
    EscrowHold.objects.filter(pk=hold.pk).update(
        auto_release_at=timezone.now() - timedelta(minutes=1)
    )


# =============================================================================
# Order expiry
# =============================================================================


@pytest.mark.django_db
class TestExpireStaleOrders:
    def test_queues_only_expired_orders(self, pending_order, buyer, listing):
        fresh = OrderFactory(buyer=buyer, listing=listing)
        expire(pending_order)

        result = expire_stale_orders()

        assert result == {"queued_count": 1}
        assert refetch(pending_order).status == OrderStatus.CANCELLED
        assert refetch(fresh).status == OrderStatus.PENDING

    def test_nothing_to_do(self, pending_order):
        assert expire_stale_orders() == {"queued_count": 0}

    def test_batch_size_setting(self, buyer, listing, settings):
        settings.SWEEP_BATCH_SIZE = 2
        for order in OrderFactory.create_batch(3, buyer=buyer, listing=listing):
            expire(order)

        result = expire_stale_orders()

        assert result["queued_count"] == 2
        assert Order.objects.filter(status=OrderStatus.CANCELLED).count() == 2


@pytest.mark.django_db
class TestExpireSingleOrder:
    def test_expired(self, pending_order):
        expire(pending_order)

        result = expire_single_order(str(pending_order.id))

        assert result["status"] == "expired"
        assert refetch(pending_order).status == OrderStatus.CANCELLED

    def test_not_yet_expired_is_skipped(self, pending_order):
        result = expire_single_order(str(pending_order.id))

        assert result["status"] == "skipped"
        assert refetch(pending_order).status == OrderStatus.PENDING

    def test_paid_order_is_skipped(self, paid_order):
        expire(paid_order)

        result = expire_single_order(str(paid_order.id))

        assert result["status"] == "skipped"
        assert refetch(paid_order).status == OrderStatus.PAID

    def test_unknown_order(self):
        assert expire_single_order(str(uuid.uuid4()))["status"] == "not_found"

    def test_invalid_id(self):
        assert expire_single_order("not-a-uuid")["status"] == "not_found"


# =============================================================================
# Escrow auto-release
# =============================================================================


@pytest.mark.django_db
class TestReleaseDueEscrows:
    def test_releases_due_holds(self, delivered_order, registry_gateway):
        make_due(hold_for(delivered_order))

        result = release_due_escrows()

        assert result == {"queued_count": 1}
        assert hold_for(delivered_order).status == EscrowStatus.RELEASED
        assert refetch(delivered_order).status == OrderStatus.COMPLETED

    def test_skips_undelivered(self, paid_order, registry_gateway):
        make_due(hold_for(paid_order))

        assert release_due_escrows() == {"queued_count": 0}
        assert hold_for(paid_order).status == EscrowStatus.HELD


@pytest.mark.django_db
class TestReleaseSingleEscrow:
    def test_released(self, delivered_order, registry_gateway):
        hold = hold_for(delivered_order)
        make_due(hold)

        result = release_single_escrow(str(hold.id))

        assert result["status"] == "released"

    def test_not_due_is_skipped(self, delivered_order, registry_gateway):
        hold = hold_for(delivered_order)

        result = release_single_escrow(str(hold.id))

        assert result["status"] == "skipped"
        assert hold_for(delivered_order).status == EscrowStatus.HELD

    def test_unknown_hold(self, registry_gateway):
        assert release_single_escrow(str(uuid.uuid4()))["status"] == "not_found"

    def test_invalid_id(self, registry_gateway):
        assert release_single_escrow("42")["status"] == "not_found"

    def test_gateway_error_raises_for_retry(self, delivered_order, registry_gateway, mocker):
        mocker.patch.object(
            registry_gateway,
            "release_funds",
            return_value=GatewayResult(
                outcome=GatewayOutcome.ERROR,
                error="Payout service unavailable",
                error_code="network_error",
            ),
        )
        hold = hold_for(delivered_order)
        make_due(hold)

        with pytest.raises(GatewayError):
            release_single_escrow(str(hold.id))

        assert hold_for(delivered_order).status == EscrowStatus.HELD
