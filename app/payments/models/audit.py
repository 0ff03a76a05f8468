"""
AuditLog model: append-only record of every custody action.

Written by AuditService. Entries are never updated or deleted; a failed
operation gets its own entry after the rollback rather than an edit to
an earlier one.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import RiskLevel


class AuditLog(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
    """
    Who did what to which resource, and how risky it was.

    Fields:
        actor: Acting user (null for system sweeps)
        action: Dotted action name, e.g. "escrow.release"
        resource_type / resource_id: Target of the action
        metadata: Action context (amounts, outcome, error codes)
        risk_level: low, medium, high, critical
        ip_address / user_agent: Request origin when there was one
    """

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_entries",
        help_text="User who performed the action",
    )

    action = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Action name",
    )

    resource_type = models.CharField(
        max_length=32,
        help_text="Kind of resource acted on",
    )

    resource_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Identifier of the resource acted on",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Action context",
    )

    risk_level = models.CharField(
        max_length=10,
        choices=RiskLevel.choices,
        default=RiskLevel.LOW,
        db_index=True,
        help_text="Risk level of the action",
    )

    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="Client IP address",
    )

    user_agent = models.CharField(
        max_length=512,
        blank=True,
        default="",
        help_text="Client user agent",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Audit Log Entry"
        verbose_name_plural = "Audit Log"
        indexes = [
            models.Index(fields=["resource_type", "resource_id"], name="audit_resource_idx"),
        ]

    def __str__(self) -> str:
        return f"AuditLog({self.action}, {self.resource_type}:{self.resource_id}, {self.risk_level})"
