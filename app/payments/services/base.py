"""
Shared failure handling for custody services.

Every custody operation follows the same shape:

    try:
        with cls.atomic():
            order = lock_order(order_id)
            ...                  # raise BaseApplicationError to roll back
    except BaseApplicationError as e:
        return cls.expected_failure(e, "refund.request", order_id=order_id)
    except Exception as e:
        return cls.unexpected_failure(e, "refund.request", caller, "order", order_id)
    return ServiceResult.success(refund)

Expected failures keep their error code and HTTP status. Unexpected ones
are logged with traceback, recorded in the audit trail after the rollback,
and reach the caller as an opaque INTERNAL_ERROR. A payout the gateway
refused is caught ahead of both (``except GatewayError``) so its FAILED
transaction survives the rollback.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from payments.services.audit_service import AuditService
from payments.services.transaction_service import TransactionService
from payments.state_machines import RiskLevel

if TYPE_CHECKING:
    from typing import Any

    from payments.exceptions import GatewayError
    from payments.services.audit_service import AuditContext


class CustodyService(BaseService):
    """Base class for services that act on orders held in custody."""

    @classmethod
    def expected_failure(
        cls,
        exc: BaseApplicationError,
        action: str,
        **log_context: Any,
    ) -> ServiceResult:
        cls.get_logger().warning(
            f"{action} rejected: {exc.message}",
            extra={
                "action": action,
                "error_code": exc.error_code,
                **{key: str(value) for key, value in log_context.items()},
            },
        )
        return ServiceResult.from_exception(exc)

    @classmethod
    def unexpected_failure(
        cls,
        exc: Exception,
        action: str,
        actor,
        resource_type: str,
        resource_id: Any,
        financial: bool = False,
        context: AuditContext | None = None,
    ) -> ServiceResult:
        AuditService.record_failure(
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            exc=exc,
            financial=financial,
            context=context,
        )
        return cls.handle_exception(
            exc,
            context=f"{action} failed for {resource_type} {resource_id}",
            log_level=logging.CRITICAL if financial else logging.ERROR,
        )

    @classmethod
    def gateway_failure(
        cls,
        exc: GatewayError,
        action: str,
        actor,
        resource_type: str,
        resource_id: Any,
        context: AuditContext | None = None,
    ) -> ServiceResult:
        """
        Record a refused gateway call after its operation rolled back.

        The FAILED transaction and a high-risk audit entry are written in
        a transaction of their own, then the error is returned like any
        expected failure.
        """
        with cls.atomic():
            txn = TransactionService.record_failed_call(exc)
            AuditService.record(
                actor=actor,
                action=f"{action}.failed",
                resource_type=resource_type,
                resource_id=resource_id,
                metadata={
                    "error_code": exc.error_code,
                    "reason": exc.details.get("reason", ""),
                    "transaction_id": txn.transaction_id if txn else None,
                },
                risk_level=RiskLevel.HIGH,
                context=context,
            )
        return cls.expected_failure(exc, action, **{f"{resource_type}_id": resource_id})
