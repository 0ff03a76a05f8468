"""
Listing admin configuration.
"""

from django.contrib import admin

from listings.models import Listing


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    """Admin configuration for Listing."""

    list_display = ["id", "title", "seller", "price", "currency", "quantity", "status"]
    list_filter = ["status", "currency"]
    search_fields = ["id", "title", "seller__username"]
    readonly_fields = ["id", "created_at", "updated_at", "version"]
    ordering = ["-created_at"]
