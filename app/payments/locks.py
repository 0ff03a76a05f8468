"""
Row locking for custody operations.

The order row is the isolation key: every financial action locks the
order with SELECT ... FOR UPDATE before validating state, then locks the
escrow hold, refund or dispute it acts on. Locks are always taken in that
order (order first) so two actions on the same order can't deadlock.

Usage:
    from payments.locks import lock_order

    with transaction.atomic():
        order = lock_order(order_id)
        # state re-checked here is stable until commit

Note:
    Must be called inside transaction.atomic(). Backends without
    SELECT ... FOR UPDATE (SQLite) serialise writers at the database level
    instead, so the re-check still holds.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.exceptions import PaymentNotFoundError
from payments.models import Dispute, EscrowHold, Order, Refund
from payments.state_machines import CUSTODY_ESCROW_STATUSES

if TYPE_CHECKING:
    from typing import Any


def lock_order(order_id: Any) -> Order:
    """
    Lock and return an order, with its parties and listing loaded.

    Raises:
        PaymentNotFoundError: No such order (ORDER_NOT_FOUND)
    """
    try:
        return (
            Order.objects.select_for_update(of=("self",))
            .select_related("buyer", "seller", "listing")
            .get(pk=order_id)
        )
    except Order.DoesNotExist:
        raise PaymentNotFoundError(
            f"Order {order_id} not found",
            error_code="ORDER_NOT_FOUND",
            details={"order_id": str(order_id)},
        )


def _parent_order_id(model, pk: Any, error_code: str, label: str):
    order_id = model.objects.filter(pk=pk).values_list("order_id", flat=True).first()
    if order_id is None:
        raise PaymentNotFoundError(
            f"{label} {pk} not found",
            error_code=error_code,
            details={f"{label.lower()}_id": str(pk)},
        )
    return order_id


def lock_escrow(escrow_id: Any) -> tuple[Order, EscrowHold]:
    """
    Lock an escrow hold and its order.

    Raises:
        PaymentNotFoundError: No such hold (ESCROW_NOT_FOUND)
    """
    order = lock_order(_parent_order_id(EscrowHold, escrow_id, "ESCROW_NOT_FOUND", "Escrow"))
    hold = EscrowHold.objects.select_for_update().get(pk=escrow_id)
    return order, hold


def lock_refund(refund_id: Any) -> tuple[Order, Refund]:
    """
    Lock a refund and its order.

    Raises:
        PaymentNotFoundError: No such refund (REFUND_NOT_FOUND)
    """
    order = lock_order(_parent_order_id(Refund, refund_id, "REFUND_NOT_FOUND", "Refund"))
    refund = (
        Refund.objects.select_for_update(of=("self",))
        .select_related("original_transaction", "requested_by")
        .get(pk=refund_id)
    )
    return order, refund


def lock_dispute(dispute_id: Any) -> tuple[Order, Dispute]:
    """
    Lock a dispute and its order.

    Raises:
        PaymentNotFoundError: No such dispute (DISPUTE_NOT_FOUND)
    """
    order = lock_order(_parent_order_id(Dispute, dispute_id, "DISPUTE_NOT_FOUND", "Dispute"))
    dispute = Dispute.objects.select_for_update().get(pk=dispute_id)
    return order, dispute


def lock_custody_hold(order: Order) -> EscrowHold | None:
    """Lock the order's hold whose funds are still in custody, if any."""
    return (
        EscrowHold.objects.select_for_update()
        .filter(order=order, status__in=CUSTODY_ESCROW_STATUSES)
        .first()
    )
