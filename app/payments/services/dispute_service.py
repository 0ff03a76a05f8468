"""
Dispute mediation service.

Either party can open a dispute on a non-terminal order. Opening one
freezes the escrow hold and moves the order to disputed. The parties and
staff mediators exchange messages; only a mediator resolves, and the
resolution's money movement runs in the same transaction as the status
change, so a gateway failure leaves the dispute exactly as it was.

Resolutions:
    full_refund / favor_buyer   Whole hold back to the buyer
    partial_refund              Amount back to the buyer, seller gets the rest
                                once the order is delivered
    favor_seller                Seller's share paid out
    no_action / replacement /
    store_credit                No transfer; hold goes back to custody and
                                the order to delivered or paid

A disputed order only leaves disputed here, through Order.settle_dispute.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from payments.exceptions import (
    DomainRuleError,
    GatewayError,
    InvalidStateTransitionError,
    PaymentNotFoundError,
    PaymentPermissionError,
    PaymentValidationError,
)
from payments.fees import to_decimal
from payments.gateways import IdempotencyKeyGenerator
from payments.locks import lock_custody_hold, lock_dispute, lock_order
from payments.models import Dispute, DisputeMessage
from payments.services.audit_service import AuditService
from payments.services.base import CustodyService
from payments.services.escrow_service import EscrowService
from payments.services.notification_service import NotificationService
from payments.services.order_service import require_party
from payments.state_machines import (
    ACTIVE_DISPUTE_STATUSES,
    DeliveryStatus,
    DisputeParty,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    RiskLevel,
)

if TYPE_CHECKING:
    from payments.gateways import PaymentGateway
    from payments.models import EscrowHold, Order
    from payments.services.audit_service import AuditContext

FULL_REFUND_RESOLUTIONS = frozenset(
    {DisputeResolution.FULL_REFUND, DisputeResolution.FAVOR_BUYER}
)

FINANCIAL_RESOLUTIONS = FULL_REFUND_RESOLUTIONS | {
    DisputeResolution.PARTIAL_REFUND,
    DisputeResolution.FAVOR_SELLER,
}

REVIEWABLE_DISPUTE_STATUSES = frozenset({DisputeStatus.OPEN, DisputeStatus.ESCALATED})


def is_mediator(user) -> bool:
    return bool(user is not None and user.is_staff)


def require_mediator(user) -> None:
    if not is_mediator(user):
        raise PaymentPermissionError(
            "Only a mediator can perform this action",
            error_code="NOT_MEDIATOR",
        )


def require_participant(dispute: Dispute, user) -> None:
    if user is None or (user.pk not in dispute.participant_ids and not is_mediator(user)):
        raise PaymentPermissionError(
            "You are not a participant in this dispute",
            error_code="NOT_DISPUTE_PARTICIPANT",
        )


def require_active(dispute: Dispute) -> None:
    if not dispute.is_active:
        raise InvalidStateTransitionError(
            f"Dispute is {dispute.status}",
            error_code="DISPUTE_NOT_ACTIVE",
            details={"status": dispute.status},
        )


class DisputeService(CustodyService):
    """Service for opening, discussing and resolving disputes."""

    @classmethod
    def create_dispute(
        cls,
        order_id,
        caller,
        reason: str,
        description: str,
        evidence: list | None = None,
        requested_amount=None,
        context: AuditContext | None = None,
    ) -> ServiceResult[Dispute]:
        """
        Open a dispute, freezing the order's escrow hold.

        Returns:
            ServiceResult with the open Dispute
        """
        try:
            if reason not in DisputeReason.values:
                raise PaymentValidationError(
                    f"Unknown dispute reason {reason!r}",
                    error_code="VALIDATION_ERROR",
                    details={"reason": [f"'{reason}' is not a valid choice."]},
                )

            with cls.atomic():
                order = lock_order(order_id)
                require_party(order, caller)

                if order.disputes.filter(status__in=sorted(ACTIVE_DISPUTE_STATUSES)).exists():
                    raise DomainRuleError(
                        "Order already has an active dispute",
                        error_code="DISPUTE_ALREADY_ACTIVE",
                    )
                if order.is_terminal:
                    raise DomainRuleError(
                        f"Order is {order.status} and can no longer be disputed",
                        error_code="ORDER_TERMINAL",
                        details={"status": order.status},
                    )

                if requested_amount is not None:
                    requested_amount = to_decimal(requested_amount)
                    if requested_amount <= 0:
                        raise PaymentValidationError(
                            "Requested amount must be positive",
                            error_code="INVALID_AMOUNT",
                            details={"requested_amount": str(requested_amount)},
                        )
                    if requested_amount > order.total_amount:
                        raise PaymentValidationError(
                            "Requested amount exceeds the order total",
                            error_code="AMOUNT_EXCEEDS_TOTAL",
                            details={
                                "requested_amount": str(requested_amount),
                                "total_amount": str(order.total_amount),
                            },
                        )

                hold = lock_custody_hold(order)
                if hold is not None and hold.is_active:
                    hold.freeze(description or reason)
                    hold.save()

                order.transition_to(OrderStatus.DISPUTED)
                order.dispute_reason = description or reason
                order.save()

                is_buyer = caller.pk == order.buyer_id
                respondent = order.seller if is_buyer else order.buyer
                dispute = Dispute.objects.create(
                    order=order,
                    escrow_hold=hold,
                    reason=reason,
                    description=description,
                    requested_amount=requested_amount,
                    evidence=evidence or [],
                    created_by=caller,
                    initiated_by=DisputeParty.BUYER if is_buyer else DisputeParty.SELLER,
                    respondent=respondent,
                )
                label = DisputeReason(reason).label
                DisputeMessage.objects.create(
                    dispute=dispute,
                    message=f"Dispute opened by the {dispute.initiated_by}: {label}",
                    is_system=True,
                )

                NotificationService.notify(
                    respondent,
                    NotificationType.DISPUTE_CREATED,
                    order,
                    reason=label,
                    dispute_id=dispute.id,
                )
                AuditService.record(
                    actor=caller,
                    action="dispute.create",
                    resource_type="dispute",
                    resource_id=dispute.id,
                    metadata={
                        "order_id": str(order.id),
                        "reason": reason,
                        "escrow_id": str(hold.id) if hold else None,
                        "requested_amount": str(requested_amount) if requested_amount else None,
                    },
                    risk_level=RiskLevel.MEDIUM,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.create", order_id=order_id)
        except Exception as e:
            return cls.unexpected_failure(e, "dispute.create", caller, "order", order_id, context=context)

        cls.get_logger().warning(
            "Dispute opened",
            extra={
                "dispute_id": str(dispute.id),
                "order_id": str(order.id),
                "reason": reason,
            },
        )
        return ServiceResult.success(dispute)

    @classmethod
    def add_dispute_message(
        cls,
        dispute_id,
        caller,
        message: str,
        attachments: list | None = None,
        internal: bool = False,
        context: AuditContext | None = None,
    ) -> ServiceResult[DisputeMessage]:
        """
        Post to a dispute's thread.

        Internal notes are for mediators only and don't notify the parties.
        """
        try:
            if not (message or "").strip():
                raise PaymentValidationError(
                    "Message cannot be empty",
                    error_code="VALIDATION_ERROR",
                    details={"message": ["This field may not be blank."]},
                )

            with cls.atomic():
                order, dispute = lock_dispute(dispute_id)
                require_participant(dispute, caller)
                if internal:
                    require_mediator(caller)
                require_active(dispute)

                entry = DisputeMessage.objects.create(
                    dispute=dispute,
                    sender=caller,
                    message=message,
                    attachments=attachments or [],
                    is_internal=internal,
                )

                if not internal:
                    if dispute.status != DisputeStatus.ESCALATED:
                        dispute.await_response()
                        dispute.save()
                    NotificationService.notify_parties(
                        order,
                        NotificationType.DISPUTE_MESSAGE,
                        exclude=[caller.pk],
                        dispute_id=dispute.id,
                    )

                AuditService.record(
                    actor=caller,
                    action="dispute.message",
                    resource_type="dispute",
                    resource_id=dispute.id,
                    metadata={"message_id": str(entry.id), "internal": internal},
                    risk_level=RiskLevel.LOW,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.message", dispute_id=dispute_id)
        except Exception as e:
            return cls.unexpected_failure(e, "dispute.message", caller, "dispute", dispute_id, context=context)

        return ServiceResult.success(entry)

    @classmethod
    def list_dispute_messages(cls, dispute_id, caller) -> ServiceResult[list[DisputeMessage]]:
        """Thread in posting order; internal notes only for mediators."""
        try:
            dispute = Dispute.objects.select_related("order").filter(pk=dispute_id).first()
            if dispute is None:
                raise PaymentNotFoundError(
                    f"Dispute {dispute_id} not found",
                    error_code="DISPUTE_NOT_FOUND",
                    details={"dispute_id": str(dispute_id)},
                )
            require_participant(dispute, caller)
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.messages", dispute_id=dispute_id)

        messages = dispute.messages.select_related("sender")
        if not is_mediator(caller):
            messages = messages.filter(is_internal=False)
        return ServiceResult.success(list(messages))

    @classmethod
    def escalate_dispute(
        cls,
        dispute_id,
        caller,
        reason: str,
        context: AuditContext | None = None,
    ) -> ServiceResult[Dispute]:
        """Either party asks for a mediator's attention."""
        try:
            with cls.atomic():
                order, dispute = lock_dispute(dispute_id)
                require_party(order, caller)
                if dispute.status == DisputeStatus.ESCALATED:
                    raise InvalidStateTransitionError(
                        "Dispute is already escalated",
                        error_code="DISPUTE_ALREADY_ESCALATED",
                    )
                require_active(dispute)

                dispute.escalate(reason)
                dispute.save()
                DisputeMessage.objects.create(
                    dispute=dispute,
                    message=f"Escalated: {reason}",
                    is_internal=True,
                    is_system=True,
                )

                NotificationService.notify_parties(
                    order,
                    NotificationType.DISPUTE_ESCALATED,
                    exclude=[caller.pk],
                    reason=reason,
                    dispute_id=dispute.id,
                )
                AuditService.record(
                    actor=caller,
                    action="dispute.escalate",
                    resource_type="dispute",
                    resource_id=dispute.id,
                    metadata={"order_id": str(order.id), "reason": reason},
                    risk_level=RiskLevel.HIGH,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.escalate", dispute_id=dispute_id)
        except Exception as e:
            return cls.unexpected_failure(e, "dispute.escalate", caller, "dispute", dispute_id, context=context)

        cls.get_logger().warning(
            "Dispute escalated",
            extra={"dispute_id": str(dispute.id), "order_id": str(order.id)},
        )
        return ServiceResult.success(dispute)

    @classmethod
    def start_review(
        cls,
        dispute_id,
        caller,
        context: AuditContext | None = None,
    ) -> ServiceResult[Dispute]:
        """Mediator picks up an open or escalated dispute."""
        try:
            require_mediator(caller)
            with cls.atomic():
                _, dispute = lock_dispute(dispute_id)
                if dispute.status not in REVIEWABLE_DISPUTE_STATUSES:
                    raise InvalidStateTransitionError(
                        "Only open or escalated disputes can be taken into review, "
                        f"this one is {dispute.status}",
                        error_code="DISPUTE_NOT_OPEN",
                        details={"status": dispute.status},
                    )
                dispute.start_review()
                dispute.save()
                AuditService.record(
                    actor=caller,
                    action="dispute.review",
                    resource_type="dispute",
                    resource_id=dispute.id,
                    risk_level=RiskLevel.LOW,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.review", dispute_id=dispute_id)
        except Exception as e:
            return cls.unexpected_failure(e, "dispute.review", caller, "dispute", dispute_id, context=context)
        return ServiceResult.success(dispute)

    @classmethod
    def resolve_dispute(
        cls,
        dispute_id,
        caller,
        resolution: str,
        gateway: PaymentGateway,
        amount=None,
        notes: str = "",
        context: AuditContext | None = None,
    ) -> ServiceResult[Dispute]:
        """
        Mediator decides the dispute and the money moves accordingly.

        A refused refund or payout rolls the resolution back, so the
        dispute, the hold and the order are left untouched; the FAILED
        transaction is still recorded. A refused payout of a partial
        refund's remainder does not: the refund stands and the remainder
        stays in custody.
        """
        try:
            require_mediator(caller)
            if resolution not in DisputeResolution.values:
                raise PaymentValidationError(
                    f"Unknown resolution {resolution!r}",
                    error_code="VALIDATION_ERROR",
                    details={"resolution": [f"'{resolution}' is not a valid choice."]},
                )

            with cls.atomic():
                order, dispute = lock_dispute(dispute_id)
                require_active(dispute)

                hold = lock_custody_hold(order)
                if resolution in FINANCIAL_RESOLUTIONS and hold is None:
                    raise DomainRuleError(
                        "No escrow in custody to settle",
                        error_code="ESCROW_NOT_ACTIVE",
                    )

                refunded = cls._settle(order, dispute, hold, resolution, amount, gateway, caller)

                dispute.resolve(resolution, resolved_by=caller, amount=refunded, notes=notes)
                dispute.save()

                label = DisputeResolution(resolution).label
                DisputeMessage.objects.create(
                    dispute=dispute,
                    sender=None,
                    message=f"Resolved by mediator: {label}",
                    is_system=True,
                )
                NotificationService.notify_parties(
                    order,
                    NotificationType.DISPUTE_RESOLVED,
                    amount=refunded if refunded is not None else order.total_amount,
                    reason=label,
                    dispute_id=dispute.id,
                )
                AuditService.record(
                    actor=caller,
                    action="dispute.resolve",
                    resource_type="dispute",
                    resource_id=dispute.id,
                    metadata={
                        "order_id": str(order.id),
                        "resolution": resolution,
                        "refunded": str(refunded) if refunded is not None else None,
                        "order_status": order.status,
                        "escrow_status": hold.status if hold else None,
                    },
                    risk_level=RiskLevel.MEDIUM,
                    context=context,
                )
        except GatewayError as e:
            return cls.gateway_failure(e, "dispute.resolve", caller, "dispute", dispute_id, context=context)
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.resolve", dispute_id=dispute_id)
        except Exception as e:
            return cls.unexpected_failure(
                e, "dispute.resolve", caller, "dispute", dispute_id, financial=True, context=context
            )

        cls.get_logger().info(
            "Dispute resolved",
            extra={
                "dispute_id": str(dispute.id),
                "resolution": resolution,
                "order_status": order.status,
            },
        )
        return ServiceResult.success(dispute)

    @classmethod
    def _settle(
        cls,
        order: Order,
        dispute: Dispute,
        hold: EscrowHold | None,
        resolution: str,
        amount,
        gateway: PaymentGateway,
        mediator,
    ):
        """Apply the resolution's money movement; returns the refunded amount."""
        refund_key = IdempotencyKeyGenerator.generate("refund", order.id, "dispute", dispute.id)
        release_key = IdempotencyKeyGenerator.generate("release", order.id, "dispute", dispute.id)
        reason = f"dispute_{resolution}"

        if resolution == DisputeResolution.PARTIAL_REFUND:
            amount = to_decimal(amount) if amount is not None else None
            if amount is None or not (0 < amount < hold.remaining_amount):
                raise PaymentValidationError(
                    "Partial refund needs an amount between 0 and the held amount",
                    error_code="INVALID_AMOUNT",
                    details={"amount": str(amount), "held": str(hold.remaining_amount)},
                )
        elif resolution in FULL_REFUND_RESOLUTIONS:
            amount = hold.remaining_amount

        cls._end_custody_freeze(order, hold)

        if resolution in FULL_REFUND_RESOLUTIONS or resolution == DisputeResolution.PARTIAL_REFUND:
            settlement = EscrowService.settle_refund(
                order,
                hold,
                amount,
                gateway,
                hold.transaction,
                refund_key=refund_key,
                release_key=release_key,
                reason=reason,
                released_by=mediator,
            )
            if not settlement.success:
                raise settlement.failure
            return amount

        if resolution == DisputeResolution.FAVOR_SELLER:
            EscrowService.settle_release(
                order, hold, gateway, release_key, reason=reason, released_by=mediator
            )
        return None

    @staticmethod
    def _end_custody_freeze(order: Order, hold: EscrowHold | None) -> None:
        """
        Unfreeze the hold and take the order out of disputed.

        The order goes back to where fulfilment left it (delivered or
        paid), or to cancelled if it was never funded. The resolution's
        money movement then starts from there.
        """
        if hold is not None and hold.status == EscrowStatus.DISPUTED:
            hold.unfreeze()
            hold.save()
        if order.status != OrderStatus.DISPUTED:
            return
        if not order.is_funded:
            target = OrderStatus.CANCELLED
        elif order.delivery_status == DeliveryStatus.DELIVERED:
            target = OrderStatus.DELIVERED
        else:
            target = OrderStatus.PAID
        order.settle_dispute(target)
        order.save()

    @classmethod
    def close_dispute(
        cls,
        dispute_id,
        caller,
        context: AuditContext | None = None,
    ) -> ServiceResult[Dispute]:
        """Mediator archives a resolved dispute."""
        try:
            require_mediator(caller)
            with cls.atomic():
                _, dispute = lock_dispute(dispute_id)
                if dispute.status != DisputeStatus.RESOLVED:
                    raise InvalidStateTransitionError(
                        f"Only resolved disputes can be closed, this one is {dispute.status}",
                        error_code="DISPUTE_NOT_RESOLVED",
                        details={"status": dispute.status},
                    )
                dispute.close()
                dispute.save()
                AuditService.record(
                    actor=caller,
                    action="dispute.close",
                    resource_type="dispute",
                    resource_id=dispute.id,
                    risk_level=RiskLevel.LOW,
                    context=context,
                )
        except BaseApplicationError as e:
            return cls.expected_failure(e, "dispute.close", dispute_id=dispute_id)
        except Exception as e:
            return cls.unexpected_failure(e, "dispute.close", caller, "dispute", dispute_id, context=context)
        return ServiceResult.success(dispute)
