"""
Pytest fixtures for custody tests.

Orders in later lifecycle states are produced by running the real
services against a fresh SimulatorGateway, so every fixture carries a
consistent trail of transactions, holds and audit entries.

Usage:
    def test_release(delivered_order, buyer, gateway):
        hold = EscrowHold.objects.get(order=delivered_order)
        result = EscrowService.release_escrow(hold.id, buyer, gateway)
        assert result.success
"""

import pytest

from payments.apps import get_gateway_registry
from payments.gateways import SimulatorGateway
from payments.services import DisputeService, OrderService, PaymentService
from payments.state_machines import DisputeReason
from payments.tests.factories import (
    ListingFactory,
    OrderFactory,
    StaffUserFactory,
    UserFactory,
    hold_for,
    refetch,
)


# =============================================================================
# Party Fixtures
# =============================================================================


@pytest.fixture
def buyer(db):
    """Create the buying user."""
    return UserFactory()


@pytest.fixture
def seller(db):
    """Create the selling user."""
    return UserFactory()


@pytest.fixture
def outsider(db):
    """A user who is party to nothing."""
    return UserFactory()


@pytest.fixture
def mediator(db):
    """Staff user allowed to resolve disputes."""
    return StaffUserFactory()


@pytest.fixture
def listing(db, seller):
    """Active listing with 5 units at 20.00."""
    return ListingFactory(seller=seller)


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def gateway():
    """Fresh simulator with empty balances and idempotency cache."""
    return SimulatorGateway()


@pytest.fixture
def registry_gateway(gateway, mocker):
    """Install the test simulator on the process registry used by views and tasks."""
    mocker.patch.object(get_gateway_registry(), "gateway", gateway)
    return gateway


# =============================================================================
# Order State Fixtures
# =============================================================================


@pytest.fixture
def pending_order(db, buyer, listing):
    """Unpaid order for one unit of ``listing``."""
    return OrderFactory(buyer=buyer, listing=listing)


@pytest.fixture
def paid_order(pending_order, buyer, gateway):
    """Order captured through the simulator; its escrow hold is HELD."""
    result = PaymentService.capture_payment(
        pending_order.id, buyer, "pm_test_visa", gateway
    )
    assert result.success, result.error
    return refetch(pending_order)


@pytest.fixture
def delivered_order(paid_order, seller):
    """Paid order the seller has marked delivered."""
    result = OrderService.mark_delivered(paid_order.id, seller, notes="Sent by email")
    assert result.success, result.error
    return refetch(paid_order)


@pytest.fixture
def escrow_hold(paid_order):
    return hold_for(paid_order)


@pytest.fixture
def open_dispute(delivered_order, buyer):
    """Buyer's dispute on a delivered order; the hold is frozen."""
    result = DisputeService.create_dispute(
        delivered_order.id,
        buyer,
        reason=DisputeReason.ITEM_NOT_AS_DESCRIBED,
        description="The account was already banned",
    )
    assert result.success, result.error
    return result.data
