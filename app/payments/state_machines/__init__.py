"""
State machine enums and helpers for payment models.

The enums are used as FSMField choices; the transition table and the
state groups live in payments.state_machines.transitions.
"""

from payments.state_machines.states import (
    DeliveryStatus,
    DisputeParty,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    RiskLevel,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)
from payments.state_machines.transitions import (
    ACTIVE_DISPUTE_STATUSES,
    ACTIVE_ESCROW_STATUSES,
    CUSTODY_ESCROW_STATUSES,
    DISPUTE_EXIT_STATUSES,
    FUNDED_ORDER_STATUSES,
    OPEN_REFUND_STATUSES,
    ORDER_STATUS_ALIASES,
    ORDER_TRANSITIONS,
    REFUNDABLE_ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    fulfilment_sources_for,
    normalize_order_status,
    sources_for,
    validate_order_status,
)

__all__ = [
    "ACTIVE_DISPUTE_STATUSES",
    "ACTIVE_ESCROW_STATUSES",
    "CUSTODY_ESCROW_STATUSES",
    "DISPUTE_EXIT_STATUSES",
    "DeliveryStatus",
    "DisputeParty",
    "DisputeReason",
    "DisputeResolution",
    "DisputeStatus",
    "EscrowStatus",
    "FUNDED_ORDER_STATUSES",
    "NotificationType",
    "OPEN_REFUND_STATUSES",
    "ORDER_STATUS_ALIASES",
    "ORDER_TRANSITIONS",
    "OrderStatus",
    "PaymentStatus",
    "REFUNDABLE_ORDER_STATUSES",
    "RefundStatus",
    "RiskLevel",
    "TERMINAL_ORDER_STATUSES",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
    "fulfilment_sources_for",
    "normalize_order_status",
    "sources_for",
    "validate_order_status",
]
