"""
Transaction risk scoring.

Scores are additive and clamped to 0-100:

    amount > 10000              +30
    amount > 1000               +15
    more than 10 orders today   +25
    unusual_location            +20
    new_device                  +15
    new_payment_method          +10

Levels: >= 70 critical, >= 50 high, >= 25 medium, otherwise low.

The location, device and payment-method flags come from the caller's
context. RiskService.build_context() derives them from the user's audit
history: a value only counts as "new" once the user has history to
compare against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService

from payments.fees import to_decimal
from payments.models import AuditLog, Order
from payments.state_machines import RiskLevel

if TYPE_CHECKING:
    from typing import Any

    from payments.services.audit_service import AuditContext

HIGH_AMOUNT_THRESHOLD = Decimal("10000")
ELEVATED_AMOUNT_THRESHOLD = Decimal("1000")
DAILY_ORDER_THRESHOLD = 10

CONTEXT_WEIGHTS = {
    "unusual_location": 20,
    "new_device": 15,
    "new_payment_method": 10,
}


@dataclass
class RiskAssessment:
    """
    Result of a risk check.

    Attributes:
        score: 0-100
        level: low, medium, high, critical
        factors: Names of the rules that contributed
    """

    score: int
    level: str
    factors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"score": self.score, "level": self.level, "factors": list(self.factors)}


def level_for_score(score: int) -> str:
    if score >= 70:
        return RiskLevel.CRITICAL
    if score >= 50:
        return RiskLevel.HIGH
    if score >= 25:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RiskService(BaseService):
    """Scores buyer actions before money moves."""

    @classmethod
    def assess_transaction(
        cls,
        user,
        amount,
        context: dict[str, Any] | None = None,
    ) -> RiskAssessment:
        context = context or {}
        amount = to_decimal(amount)
        score = 0
        factors: list[str] = []

        if amount > HIGH_AMOUNT_THRESHOLD:
            score += 30
            factors.append("high_amount")
        elif amount > ELEVATED_AMOUNT_THRESHOLD:
            score += 15
            factors.append("elevated_amount")

        if cls._orders_today(user) > DAILY_ORDER_THRESHOLD:
            score += 25
            factors.append("high_velocity")

        for flag, weight in CONTEXT_WEIGHTS.items():
            if context.get(flag):
                score += weight
                factors.append(flag)

        score = max(0, min(score, 100))
        assessment = RiskAssessment(score=score, level=level_for_score(score), factors=factors)

        if assessment.level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            cls.get_logger().warning(
                "Elevated transaction risk",
                extra={
                    "user_id": getattr(user, "pk", None),
                    "amount": str(amount),
                    **assessment.as_dict(),
                },
            )
        return assessment

    @classmethod
    def build_context(
        cls,
        user,
        audit_context: AuditContext | None = None,
        payment_method_ref: str | None = None,
    ) -> dict[str, bool]:
        """Derive the location, device and payment-method flags from history."""
        history = AuditLog.objects.filter(actor=user)
        flags = {"unusual_location": False, "new_device": False, "new_payment_method": False}

        if audit_context is not None and audit_context.ip_address:
            seen_ips = history.exclude(ip_address__isnull=True)
            if seen_ips.exists():
                flags["unusual_location"] = not seen_ips.filter(
                    ip_address=audit_context.ip_address
                ).exists()

        if audit_context is not None and audit_context.user_agent:
            seen_agents = history.exclude(user_agent="")
            if seen_agents.exists():
                flags["new_device"] = not seen_agents.filter(
                    user_agent=audit_context.user_agent
                ).exists()

        if payment_method_ref:
            captures = history.filter(action="payment.capture")
            if captures.exists():
                flags["new_payment_method"] = not captures.filter(
                    metadata__payment_method_ref=payment_method_ref
                ).exists()

        return flags

    @staticmethod
    def _orders_today(user) -> int:
        if getattr(user, "pk", None) is None:
            return 0
        start_of_day = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
        return Order.objects.filter(buyer=user, created_at__gte=start_of_day).count()
