"""
Tests for VersionedMixin and AppendOnlyMixin.

Exercised through concrete models: Listing is versioned, AuditLog is
append-only.
"""

from __future__ import annotations

import pytest

from payments.tests.factories import AuditLogFactory, ListingFactory


@pytest.mark.django_db
class TestVersionedMixin:
    def test_starts_at_one(self):
        assert ListingFactory().version == 1

    def test_each_update_increments(self):
        listing = ListingFactory()

        listing.title = "Renamed"
        listing.save()
        listing.quantity = 2
        listing.save()

        assert listing.version == 3
        listing.refresh_from_db()
        assert listing.version == 3
        assert listing.quantity == 2

    def test_stale_instances_do_not_lose_increments(self):
        listing = ListingFactory()
        stale = type(listing).objects.get(pk=listing.pk)

        listing.save()
        stale.save()

        listing.refresh_from_db()
        assert listing.version == 3


@pytest.mark.django_db
class TestAppendOnlyMixin:
    def test_update_rejected(self):
        entry = AuditLogFactory()
        entry.action = "order.rewritten"

        with pytest.raises(ValueError, match="append-only"):
            entry.save()

    def test_delete_rejected(self):
        entry = AuditLogFactory()

        with pytest.raises(ValueError, match="append-only"):
            entry.delete()
