"""
Model mixins providing reusable persistence behaviour.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Monotonic version counter bumped on every update
    AppendOnlyMixin: Rows may be inserted but never updated

Usage:
    from core.models import BaseModel
    from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin

    class AuditLog(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
        action = models.CharField(max_length=100)

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Order, escrow and refund identifiers are handed to buyers and sellers
    in URLs, so they must not reveal record counts or be guessable.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Version counter incremented atomically on each update.

    The increment is an F() expression so concurrent writers never lose
    an increment, and only the version column is reloaded afterwards so
    protected FSM fields on the instance are left untouched.

    Fields:
        version: Starts at 1, +1 per update
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version counter - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """Save with version auto-increment."""
        is_update = (
            not self._state.adding
            and self.pk
            and not kwargs.get("force_insert", False)
        )
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class AppendOnlyMixin(models.Model):
    """
    Reject updates and deletes on persisted rows.

    Used for audit entries and dispute messages, which form a history
    that must not be rewritten after the fact.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(
                f"{self.__class__.__name__} records are append-only"
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"{self.__class__.__name__} records are append-only")
