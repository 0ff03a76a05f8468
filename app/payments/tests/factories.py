"""
Factory Boy factories for custody test data.

This module provides factories for creating test instances of payment models.
Order amounts follow the default fee policy (5% platform fee, 2.9%
processing fee) so factory orders pass Order.clean().

Usage:
    from payments.tests.factories import (
        ListingFactory,
        OrderFactory,
        UserFactory,
    )

    # Create a pending order for a 20.00 listing
    order = OrderFactory()

    # Create with a specific buyer
    order = OrderFactory(buyer=user)

Note:
    Order, EscrowHold, Refund and Dispute have protected FSM status
    fields. Pass ``status`` at construction only; move records on through
    their transition methods or the services.
"""

from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from listings.models import Listing, ListingStatus
from payments.models import (
    AuditLog,
    EscrowHold,
    Order,
    PaymentTransaction,
)
from payments.state_machines import (
    RiskLevel,
    TransactionStatus,
    TransactionType,
)


class UserFactory(factory.django.DjangoModelFactory):
    """Factory for buyers and sellers."""

    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class StaffUserFactory(UserFactory):
    """Staff user; acts as dispute mediator."""

    username = factory.Sequence(lambda n: f"mediator{n}")
    is_staff = True


class ListingFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Listing instances.

    Creates an active listing of 5 units at 20.00 USD.
    """

    class Meta:
        model = Listing
        skip_postgeneration_save = True

    seller = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Listing {n}")
    description = "Test listing"
    price = Decimal("20.00")
    currency = "usd"
    quantity = 5
    status = ListingStatus.ACTIVE


class OrderFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Order instances.

    Creates a pending order for one unit of a 20.00 listing:
    1.00 platform fee, 0.58 processing fee, 21.58 total.
    """

    class Meta:
        model = Order
        skip_postgeneration_save = True

    order_number = factory.Sequence(lambda n: f"ORD-TEST-{n:06d}")
    buyer = factory.SubFactory(UserFactory)
    listing = factory.SubFactory(ListingFactory)
    seller = factory.SelfAttribute("listing.seller")
    quantity = 1
    unit_price = Decimal("20.00")
    subtotal = Decimal("20.00")
    platform_fee = Decimal("1.00")
    processing_fee = Decimal("0.58")
    total_amount = Decimal("21.58")
    seller_amount = Decimal("20.00")
    currency = "usd"
    expires_at = factory.LazyFunction(lambda: timezone.now() + timedelta(hours=24))


class PaymentTransactionFactory(factory.django.DjangoModelFactory):
    """Completed simulator payment for an order."""

    class Meta:
        model = PaymentTransaction
        skip_postgeneration_save = True

    order = factory.SubFactory(OrderFactory)
    transaction_type = TransactionType.PAYMENT
    amount = factory.SelfAttribute("order.total_amount")
    currency = "usd"
    backend = "simulator"
    backend_transaction_id = factory.Sequence(lambda n: f"txn_sim_{n:016d}")
    status = TransactionStatus.COMPLETED
    idempotency_key = factory.Sequence(lambda n: f"capture:test:{n}")
    processed_at = factory.LazyFunction(timezone.now)


class EscrowHoldFactory(factory.django.DjangoModelFactory):
    """Held escrow for a payment transaction."""

    class Meta:
        model = EscrowHold
        skip_postgeneration_save = True

    transaction = factory.SubFactory(PaymentTransactionFactory)
    order = factory.SelfAttribute("transaction.order")
    amount = factory.SelfAttribute("transaction.amount")
    currency = "usd"
    auto_release_at = factory.LazyFunction(lambda: timezone.now() + timedelta(hours=72))


class AuditLogFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = AuditLog
        skip_postgeneration_save = True

    actor = factory.SubFactory(UserFactory)
    action = "order.create"
    resource_type = "order"
    resource_id = factory.Sequence(lambda n: f"resource-{n}")
    risk_level = RiskLevel.LOW


# =============================================================================
# Helpers
# =============================================================================


def refetch(order: Order) -> Order:
    """Reload an order; protected status fields can't be refreshed in place."""
    return Order.objects.get(pk=order.pk)


def hold_for(order: Order) -> EscrowHold | None:
    """Latest escrow hold of an order."""
    return EscrowHold.objects.filter(order=order).order_by("-created_at").first()
