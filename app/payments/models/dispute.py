"""
Dispute and DisputeMessage models.

A dispute is a mediated disagreement about an order. While it is active
the order's escrow hold is frozen; a staff mediator resolves it, and the
resolution decides where the held funds go.

State Flow:
    OPEN -> UNDER_REVIEW -> AWAITING_RESPONSE -> RESOLVED -> CLOSED
    OPEN | UNDER_REVIEW | AWAITING_RESPONSE -> ESCALATED -> RESOLVED
    ESCALATED -> UNDER_REVIEW      a mediator picks the escalation up

Messages are an append-only thread. Internal messages are visible to
mediators only; system messages have no sender.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import (
    ACTIVE_DISPUTE_STATUSES,
    DisputeParty,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
)


class Dispute(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Mediated disagreement about an order.

    Fields:
        order / escrow_hold: Disputed order and the hold frozen for it
        reason / description / requested_amount: The complaint
        created_by / initiated_by / respondent: Who raised it against whom
        evidence: List of evidence entries supplied at creation
        status: Dispute state (FSM)
        resolution / resolution_amount / resolution_notes / resolved_by:
            Mediator's decision

    Note:
        At most one active dispute exists per order.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "payments.Order",
        on_delete=models.PROTECT,
        related_name="disputes",
        help_text="Disputed order",
    )

    escrow_hold = models.ForeignKey(
        "payments.EscrowHold",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="disputes",
        help_text="Escrow hold frozen by this dispute",
    )

    # ==========================================================================
    # Complaint
    # ==========================================================================

    reason = models.CharField(
        max_length=32,
        choices=DisputeReason.choices,
        help_text="Category of the complaint",
    )

    description = models.TextField(
        help_text="What went wrong, in the initiator's words",
    )

    requested_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Amount the initiator asks to get back",
    )

    evidence = models.JSONField(
        default=list,
        blank=True,
        help_text="Evidence entries (links, descriptions) supplied at creation",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="created_disputes",
        help_text="User who opened the dispute",
    )

    initiated_by = models.CharField(
        max_length=10,
        choices=DisputeParty.choices,
        help_text="Which side opened the dispute",
    )

    respondent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="responding_disputes",
        help_text="The other party",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=DisputeStatus.OPEN,
        choices=DisputeStatus.choices,
        db_index=True,
        protected=True,
        help_text="Dispute state (managed by FSM)",
    )

    escalation_reason = models.TextField(blank=True, default="", help_text="Why the dispute was escalated")
    escalated_at = models.DateTimeField(null=True, blank=True, help_text="When the dispute was escalated")

    # ==========================================================================
    # Resolution
    # ==========================================================================

    resolution = models.CharField(
        max_length=20,
        choices=DisputeResolution.choices,
        blank=True,
        default="",
        help_text="Mediator's outcome",
    )

    resolution_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Amount refunded by the resolution",
    )

    resolution_notes = models.TextField(blank=True, default="", help_text="Mediator's notes")

    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_disputes",
        help_text="Mediator who resolved the dispute",
    )

    resolved_at = models.DateTimeField(null=True, blank=True, help_text="When the dispute was resolved")
    closed_at = models.DateTimeField(null=True, blank=True, help_text="When the dispute was closed")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Dispute"
        verbose_name_plural = "Disputes"
        indexes = [
            models.Index(fields=["order", "status"], name="dispute_order_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status__in=sorted(ACTIVE_DISPUTE_STATUSES)),
                name="dispute_one_active_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.id}, {self.reason}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[DisputeStatus.OPEN, DisputeStatus.ESCALATED],
        target=DisputeStatus.UNDER_REVIEW,
    )
    def start_review(self):
        pass

    @transition(
        field=status,
        source=[DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW, DisputeStatus.AWAITING_RESPONSE],
        target=DisputeStatus.AWAITING_RESPONSE,
    )
    def await_response(self):
        pass

    @transition(
        field=status,
        source=[DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW, DisputeStatus.AWAITING_RESPONSE],
        target=DisputeStatus.ESCALATED,
    )
    def escalate(self, reason: str):
        self.escalation_reason = reason
        self.escalated_at = timezone.now()

    @transition(field=status, source=sorted(ACTIVE_DISPUTE_STATUSES), target=DisputeStatus.RESOLVED)
    def resolve(self, resolution: str, resolved_by=None, amount=None, notes: str = ""):
        self.resolution = resolution
        self.resolution_amount = amount
        self.resolution_notes = notes
        self.resolved_by = resolved_by
        self.resolved_at = timezone.now()

    @transition(field=status, source=DisputeStatus.RESOLVED, target=DisputeStatus.CLOSED)
    def close(self):
        self.closed_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DISPUTE_STATUSES

    @property
    def participant_ids(self) -> set:
        return {self.order.buyer_id, self.order.seller_id}


class DisputeMessage(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
    """
    One entry in a dispute's conversation thread.

    Fields:
        dispute: Thread the message belongs to
        sender: Author (null for system messages)
        message: Body text
        attachments: List of attachment references
        is_internal: Visible to mediators only
        is_system: Written by the engine, not a person
    """

    dispute = models.ForeignKey(
        Dispute,
        on_delete=models.PROTECT,
        related_name="messages",
        help_text="Dispute this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="dispute_messages",
        help_text="Author (null for system messages)",
    )

    message = models.TextField(help_text="Message body")

    attachments = models.JSONField(
        default=list,
        blank=True,
        help_text="Attachment references",
    )

    is_internal = models.BooleanField(
        default=False,
        help_text="Visible to mediators only",
    )

    is_system = models.BooleanField(
        default=False,
        help_text="Generated by the engine",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Dispute Message"
        verbose_name_plural = "Dispute Messages"

    def __str__(self) -> str:
        author = "system" if self.is_system else self.sender_id
        return f"DisputeMessage({self.id}, dispute={self.dispute_id}, from={author})"
