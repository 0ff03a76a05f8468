"""
Payment admin configuration.

Registers the custody models with the Django admin. Everything here is
read-mostly: state changes go through the service layer so they are
locked, audited and notified, never through admin edits.
"""

from django.contrib import admin

from payments.models import (
    AuditLog,
    Dispute,
    DisputeMessage,
    EscrowHold,
    Order,
    PaymentNotification,
    PaymentTransaction,
    Refund,
    WebhookEvent,
)

__all__ = [
    "AuditLogAdmin",
    "DisputeAdmin",
    "EscrowHoldAdmin",
    "OrderAdmin",
    "PaymentNotificationAdmin",
    "PaymentTransactionAdmin",
    "RefundAdmin",
    "WebhookEventAdmin",
]


class ReadOnlyAuditMixin:
    """No deletes from admin; the rows form the money trail."""

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class PaymentTransactionInline(admin.TabularInline):
    """Inline display of gateway transactions for an order."""

    model = PaymentTransaction
    extra = 0
    fields = [
        "transaction_id",
        "transaction_type",
        "amount",
        "status",
        "backend",
        "failure_reason",
        "processed_at",
    ]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class EscrowHoldInline(admin.TabularInline):
    """Inline display of escrow holds for an order."""

    model = EscrowHold
    fk_name = "order"
    extra = 0
    fields = ["id", "amount", "status", "auto_release_at", "released_amount", "refunded_amount"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Order)
class OrderAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """
    Admin configuration for Order.

    Provides visibility into orders, their money and their custody trail.
    """

    list_display = [
        "order_number",
        "buyer",
        "seller",
        "amount_display",
        "status",
        "payment_status",
        "delivery_status",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "delivery_status", "currency", "created_at"]
    search_fields = ["order_number", "id", "buyer__email", "seller__email"]
    readonly_fields = [
        "id",
        "order_number",
        "status",
        "version",
        "paid_at",
        "delivered_at",
        "completed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentTransactionInline, EscrowHoldInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "order_number", "buyer", "seller", "listing", "status"),
            },
        ),
        (
            "Amounts",
            {
                "fields": (
                    "quantity",
                    "unit_price",
                    "subtotal",
                    "platform_fee",
                    "processing_fee",
                    "total_amount",
                    "seller_amount",
                    "currency",
                ),
            },
        ),
        (
            "Progress",
            {
                "fields": (
                    "payment_status",
                    "delivery_status",
                    "expires_at",
                    "paid_at",
                    "delivered_at",
                    "completed_at",
                    "cancelled_at",
                ),
            },
        ),
        (
            "Notes",
            {
                "fields": ("buyer_notes", "seller_notes", "dispute_reason"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("version", "created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Order) -> str:
        """Display the total formatted with its currency."""
        return f"{obj.total_amount:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Total"


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """Gateway calls; completed and failed rows are immutable."""

    list_display = [
        "transaction_id",
        "order",
        "transaction_type",
        "amount",
        "status",
        "backend",
        "processed_at",
    ]
    list_filter = ["transaction_type", "status", "backend"]
    search_fields = ["transaction_id", "backend_transaction_id", "order__order_number"]
    readonly_fields = [
        "id",
        "transaction_id",
        "order",
        "transaction_type",
        "amount",
        "currency",
        "backend",
        "backend_transaction_id",
        "backend_response",
        "status",
        "idempotency_key",
        "risk_score",
        "failure_reason",
        "processed_at",
        "settled_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(EscrowHold)
class EscrowHoldAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """
    Admin configuration for EscrowHold.

    Holds are opened by payment capture and settled by the escrow,
    refund and dispute services.
    """

    list_display = [
        "id",
        "order",
        "amount",
        "status",
        "auto_release_at",
        "released_amount",
        "refunded_amount",
    ]
    list_filter = ["status", "currency"]
    search_fields = ["id", "order__order_number"]
    readonly_fields = [
        "id",
        "order",
        "transaction",
        "amount",
        "status",
        "released_amount",
        "refunded_amount",
        "released_by",
        "released_at",
        "disputed_at",
        "refunded_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(Refund)
class RefundAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """Refund requests and their outcomes."""

    list_display = ["id", "order", "amount", "status", "requested_by", "requested_at"]
    list_filter = ["status", "currency"]
    search_fields = ["id", "order__order_number", "reason"]
    readonly_fields = [
        "id",
        "order",
        "original_transaction",
        "refund_transaction",
        "amount",
        "status",
        "requested_by",
        "requested_at",
        "processed_by",
        "processed_at",
        "completed_at",
        "failure_reason",
        "version",
    ]
    ordering = ["-requested_at"]


class DisputeMessageInline(admin.TabularInline):
    """Read-only thread of a dispute."""

    model = DisputeMessage
    extra = 0
    fields = ["sender", "message", "is_internal", "is_system", "created_at"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Dispute)
class DisputeAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """Disputes; mediators resolve them through the API."""

    list_display = ["id", "order", "reason", "status", "initiated_by", "resolution", "created_at"]
    list_filter = ["status", "reason", "resolution", "initiated_by"]
    search_fields = ["id", "order__order_number", "description"]
    readonly_fields = [
        "id",
        "order",
        "escrow_hold",
        "status",
        "created_by",
        "respondent",
        "resolution",
        "resolution_amount",
        "resolved_by",
        "resolved_at",
        "escalated_at",
        "closed_at",
        "version",
        "created_at",
    ]
    ordering = ["-created_at"]
    inlines = [DisputeMessageInline]


@admin.register(PaymentNotification)
class PaymentNotificationAdmin(admin.ModelAdmin):
    list_display = ["id", "recipient", "notification_type", "title", "read_at", "created_at"]
    list_filter = ["notification_type"]
    search_fields = ["recipient__email", "title"]
    ordering = ["-created_at"]


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """Append-only audit trail."""

    list_display = ["created_at", "actor", "action", "resource_type", "resource_id", "risk_level"]
    list_filter = ["risk_level", "resource_type", "action"]
    search_fields = ["resource_id", "action", "actor__email"]
    readonly_fields = [
        "id",
        "actor",
        "action",
        "resource_type",
        "resource_id",
        "metadata",
        "risk_level",
        "ip_address",
        "user_agent",
        "created_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAuditMixin, admin.ModelAdmin):
    """Received backend notifications and how processing went."""

    list_display = ["event_id", "event_type", "status", "attempts", "created_at", "processed_at"]
    list_filter = ["status", "event_type"]
    search_fields = ["event_id"]
    readonly_fields = [
        "id",
        "event_id",
        "event_type",
        "backend",
        "payload",
        "status",
        "attempts",
        "error_message",
        "processed_at",
        "created_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False
