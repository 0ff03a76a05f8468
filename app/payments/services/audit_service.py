"""
Audit trail for custody actions.

Every mutating operation writes one AuditLog row in the same transaction
as its state change. Unexpected failures are recorded afterwards, outside
the rolled-back transaction, so the attempt is still visible.

Usage:
    from payments.services import AuditContext, AuditService

    AuditService.record(
        actor=request.user,
        action="escrow.release",
        resource_type="escrow",
        resource_id=hold.id,
        metadata={"amount": str(hold.amount)},
        risk_level=RiskLevel.MEDIUM,
        context=AuditContext.from_request(request),
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.helpers import get_client_ip, get_user_agent
from core.services import BaseService

from payments.models import AuditLog
from payments.state_machines import RiskLevel

if TYPE_CHECKING:
    from typing import Any

    from django.http import HttpRequest

security_logger = logging.getLogger("payments.security")


@dataclass(frozen=True)
class AuditContext:
    """
    Request origin attached to audit entries and risk checks.

    Attributes:
        ip_address: Client IP, None for sweeps and tests
        user_agent: Client user agent
    """

    ip_address: str | None = None
    user_agent: str = ""

    @classmethod
    def from_request(cls, request: HttpRequest | None) -> AuditContext:
        return cls(
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )


SYSTEM_CONTEXT = AuditContext()


class AuditService(BaseService):
    """Writes append-only audit entries."""

    @classmethod
    def record(
        cls,
        actor,
        action: str,
        resource_type: str,
        resource_id: Any,
        metadata: dict[str, Any] | None = None,
        risk_level: str = RiskLevel.LOW,
        context: AuditContext | None = None,
    ) -> AuditLog:
        """
        Write one audit entry.

        Critical entries are also logged on the payments.security logger.
        """
        context = context or SYSTEM_CONTEXT
        entry = AuditLog.objects.create(
            actor=actor if getattr(actor, "pk", None) else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            metadata=metadata or {},
            risk_level=risk_level,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

        if risk_level == RiskLevel.CRITICAL:
            security_logger.critical(
                f"Critical custody action: {action}",
                extra={
                    "audit_id": str(entry.id),
                    "actor_id": entry.actor_id,
                    "resource_type": resource_type,
                    "resource_id": str(resource_id),
                    "ip_address": context.ip_address,
                },
            )
        return entry

    @classmethod
    def record_failure(
        cls,
        actor,
        action: str,
        resource_type: str,
        resource_id: Any,
        exc: Exception,
        financial: bool = False,
        context: AuditContext | None = None,
    ) -> AuditLog | None:
        """
        Record an operation that failed unexpectedly.

        Called after the operation's transaction rolled back. Failures of
        money-moving operations are recorded as critical, others as high.
        Never raises: a broken audit write must not mask the original error.
        """
        try:
            return cls.record(
                actor=actor,
                action=f"{action}.failed",
                resource_type=resource_type,
                resource_id=resource_id,
                metadata={
                    "error": str(exc),
                    "error_type": exc.__class__.__name__,
                },
                risk_level=RiskLevel.CRITICAL if financial else RiskLevel.HIGH,
                context=context,
            )
        except Exception:
            cls.get_logger().error(
                "Failed to write failure audit entry",
                extra={"action": action, "resource_id": str(resource_id)},
                exc_info=True,
            )
            return None
