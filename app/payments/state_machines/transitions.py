"""
Order transition table and state-group constants.

The table below is the single source of truth for order status legality.
The django-fsm transitions on Order derive their ``source`` lists from it
via sources_for(), and validate_order_status() answers ad-hoc checks.

Usage:
    from payments.state_machines.transitions import validate_order_status

    validate_order_status("pending", "paid")      # True
    validate_order_status("completed", "pending")  # False
    validate_order_status("delivered", "delivered")  # True (no-op)
"""

from __future__ import annotations

from payments.state_machines.states import (
    DisputeStatus,
    EscrowStatus,
    OrderStatus,
    RefundStatus,
)

# =============================================================================
# Order Transition Table
# =============================================================================

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.DISPUTED}
    ),
    OrderStatus.PAID: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.DELIVERED,
            OrderStatus.COMPLETED,
            OrderStatus.DISPUTED,
            OrderStatus.REFUNDED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {
            OrderStatus.DELIVERED,
            OrderStatus.COMPLETED,
            OrderStatus.DISPUTED,
            OrderStatus.REFUNDED,
        }
    ),
    OrderStatus.DELIVERED: frozenset(
        {OrderStatus.COMPLETED, OrderStatus.DISPUTED, OrderStatus.REFUNDED}
    ),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.DISPUTED: frozenset(
        {
            OrderStatus.PAID,
            OrderStatus.DELIVERED,
            OrderStatus.COMPLETED,
            OrderStatus.REFUNDED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Input vocabulary used by older clients
ORDER_STATUS_ALIASES: dict[str, str] = {
    "confirmed": OrderStatus.PAID,
    "shipped": OrderStatus.DELIVERED,
}


# =============================================================================
# State Groups
# =============================================================================

TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)

# Orders for which money has been captured and not yet returned
FUNDED_ORDER_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.DISPUTED,
    }
)

REFUNDABLE_ORDER_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
    }
)

ACTIVE_ESCROW_STATUSES = frozenset({EscrowStatus.HELD, EscrowStatus.PARTIAL_RELEASE})

# Holds whose funds are still in custody (frozen or not)
CUSTODY_ESCROW_STATUSES = ACTIVE_ESCROW_STATUSES | {EscrowStatus.DISPUTED}

ACTIVE_DISPUTE_STATUSES = frozenset(
    {
        DisputeStatus.OPEN,
        DisputeStatus.UNDER_REVIEW,
        DisputeStatus.AWAITING_RESPONSE,
        DisputeStatus.ESCALATED,
    }
)

OPEN_REFUND_STATUSES = frozenset(
    {RefundStatus.PENDING, RefundStatus.APPROVED, RefundStatus.PROCESSING}
)

# Where a mediator's resolution may leave a disputed order
DISPUTE_EXIT_STATUSES = ORDER_TRANSITIONS[OrderStatus.DISPUTED]


# =============================================================================
# Helpers
# =============================================================================


def normalize_order_status(status: str) -> str:
    """
    Map a caller-supplied status onto the canonical vocabulary.

    Raises:
        ValueError: If the value is neither canonical nor a known alias
    """
    value = (status or "").strip().lower()
    value = ORDER_STATUS_ALIASES.get(value, value)
    if value not in ORDER_TRANSITIONS:
        raise ValueError(f"Unknown order status: {status!r}")
    return value


def validate_order_status(current: str, target: str) -> bool:
    """
    Check whether an order may move from ``current`` to ``target``.

    Reflexive: staying in the same status is always allowed. Otherwise
    the target must be listed for the current status in ORDER_TRANSITIONS.
    Unknown statuses are never valid.
    """
    try:
        current = normalize_order_status(current)
        target = normalize_order_status(target)
    except ValueError:
        return False
    if current == target:
        return True
    return target in ORDER_TRANSITIONS[current]


def sources_for(target: str) -> list[str]:
    """Return every status from which ``target`` is reachable in one step."""
    return sorted(
        source
        for source, allowed in ORDER_TRANSITIONS.items()
        if target in allowed
    )


def fulfilment_sources_for(target: str) -> list[str]:
    """
    Sources of ``target`` for the ordinary lifecycle.

    Disputed is left out: a disputed order only moves on through dispute
    resolution (Order.settle_dispute).
    """
    return [source for source in sources_for(target) if source != OrderStatus.DISPUTED]
