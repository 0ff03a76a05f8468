"""
Custody services for orders, payments, escrow, refunds and disputes.

This module provides:
- OrderService: Order creation and non-financial lifecycle steps
- PaymentService: Payment capture into escrow
- EscrowService: Release, seller dispute, settlement and auto-release
- RefundService: Refund requests and seller decisions
- DisputeService: Dispute mediation
- RiskService / AuditService: Risk scoring and the audit trail
- NotificationService: Notification records for custody events

Usage:
    from payments.services import OrderService, PaymentService

    registry = apps.get_app_config("payments").gateway_registry

    result = OrderService.create_order(
        buyer=user,
        listing_id=listing.id,
        quantity=1,
        fee_policy=registry.fee_policy,
    )

    result = PaymentService.capture_payment(
        order_id=result.data.id,
        caller=user,
        payment_method_ref="pm_test_visa",
        gateway=registry.gateway,
    )

    # Release funds once delivered
    from payments.services import EscrowService

    result = EscrowService.release_escrow(
        escrow_id=hold.id,
        caller=user,
        gateway=registry.gateway,
    )
"""

from payments.services.audit_service import SYSTEM_CONTEXT, AuditContext, AuditService
from payments.services.dispute_service import DisputeService
from payments.services.escrow_service import EscrowService, Settlement
from payments.services.notification_service import NotificationService
from payments.services.order_service import OrderService
from payments.services.payment_service import PaymentService
from payments.services.refund_service import RefundDecision, RefundEligibility, RefundService
from payments.services.risk_service import RiskAssessment, RiskService
from payments.services.transaction_service import TransactionService

__all__ = [
    "AuditContext",
    "AuditService",
    "DisputeService",
    "EscrowService",
    "NotificationService",
    "OrderService",
    "PaymentService",
    "RefundDecision",
    "RefundEligibility",
    "RefundService",
    "RiskAssessment",
    "RiskService",
    "SYSTEM_CONTEXT",
    "Settlement",
    "TransactionService",
]
