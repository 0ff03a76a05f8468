"""
Listing model.

A Listing is a seller's offer of a digital good (account, item, currency,
boosting service...) at a fixed unit price with a finite quantity.

Usage:
    from listings.models import Listing, ListingStatus

    listing = Listing.objects.create(
        seller=user,
        title="Legendary skin bundle",
        price=Decimal("25.00"),
        quantity=3,
        status=ListingStatus.ACTIVE,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel


class ListingStatus(models.TextChoices):
    """
    Listing availability.

    Only ACTIVE listings can be purchased. SOLD is set automatically when
    the last unit is captured.
    """

    DRAFT = "draft", "Draft"
    ACTIVE = "active", "Active"
    SOLD = "sold", "Sold"
    INACTIVE = "inactive", "Inactive"


class Listing(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A seller's offer that buyers create orders against.

    Fields:
        seller: User offering the goods
        title: Short description shown to buyers
        description: Longer free-form description
        price: Unit price
        currency: ISO 4217 code (lowercase)
        quantity: Units still available
        status: Availability (see ListingStatus)
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="listings",
        help_text="User offering this listing",
    )

    # ==========================================================================
    # Offer Details
    # ==========================================================================

    title = models.CharField(
        max_length=200,
        help_text="Listing title",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Listing description",
    )

    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Unit price",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    quantity = models.PositiveIntegerField(
        default=1,
        help_text="Units still available",
    )

    status = models.CharField(
        max_length=20,
        choices=ListingStatus.choices,
        default=ListingStatus.DRAFT,
        db_index=True,
        help_text="Listing availability",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Listing"
        verbose_name_plural = "Listings"
        indexes = [
            models.Index(fields=["seller", "status"], name="listing_seller_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="listing_price_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Listing({self.id}, {self.title!r}, {self.price} {self.currency.upper()})"

    @property
    def is_purchasable(self) -> bool:
        return self.status == ListingStatus.ACTIVE and self.quantity > 0

    def consume_stock(self, quantity: int) -> None:
        """
        Take ``quantity`` units off the listing.

        Call on a row fetched with select_for_update(). Marks the listing
        SOLD when the last unit goes.

        Raises:
            ValueError: Not enough units left
        """
        if quantity > self.quantity:
            raise ValueError(
                f"Only {self.quantity} units left, cannot take {quantity}"
            )
        self.quantity -= quantity
        if self.quantity == 0:
            self.status = ListingStatus.SOLD
