import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models

import payments.models.transaction


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


def _version():
    return (
        "version",
        models.PositiveIntegerField(
            default=1,
            help_text="Version counter - incremented on each save",
        ),
    )


def _money(help_text, **kwargs):
    return models.DecimalField(
        decimal_places=2, max_digits=12, help_text=help_text, **kwargs
    )


def _currency():
    return (
        "currency",
        models.CharField(
            default="usd",
            help_text="ISO 4217 currency code (lowercase)",
            max_length=3,
        ),
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                (
                    "order_number",
                    models.CharField(
                        help_text="Human readable order reference",
                        max_length=32,
                        unique=True,
                    ),
                ),
                (
                    "quantity",
                    models.PositiveIntegerField(
                        default=1, help_text="Number of units purchased"
                    ),
                ),
                ("unit_price", _money("Listing price per unit at order time")),
                ("subtotal", _money("unit_price * quantity")),
                ("platform_fee", _money("Marketplace fee charged to the buyer")),
                (
                    "processing_fee",
                    _money("Payment processing fee charged to the buyer"),
                ),
                ("total_amount", _money("Amount captured from the buyer")),
                (
                    "seller_amount",
                    _money("Amount paid out to the seller on release"),
                ),
                _currency(),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("processing", "Processing"),
                            ("delivered", "Delivered"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Order lifecycle state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        default="pending",
                        help_text="Money-side status",
                        max_length=20,
                    ),
                ),
                (
                    "delivery_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("delivered", "Delivered"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        help_text="Fulfilment status",
                        max_length=20,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(
                        db_index=True,
                        help_text="Unpaid orders are cancelled after this time",
                    ),
                ),
                (
                    "buyer_notes",
                    models.TextField(
                        blank=True, default="", help_text="Notes supplied by the buyer"
                    ),
                ),
                (
                    "seller_notes",
                    models.TextField(
                        blank=True, default="", help_text="Notes supplied by the seller"
                    ),
                ),
                (
                    "dispute_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Reason given when the order entered dispute",
                    ),
                ),
                (
                    "paid_at",
                    models.DateTimeField(
                        blank=True, help_text="When payment was captured", null=True
                    ),
                ),
                (
                    "delivered_at",
                    models.DateTimeField(
                        blank=True, help_text="When the seller delivered", null=True
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the order completed", null=True
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True, help_text="When the order was cancelled", null=True
                    ),
                ),
                (
                    "buyer",
                    models.ForeignKey(
                        help_text="User paying for the order",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchases",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "seller",
                    models.ForeignKey(
                        help_text="User fulfilling the order",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sales",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "listing",
                    models.ForeignKey(
                        help_text="Listing being purchased",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to="listings.listing",
                    ),
                ),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["buyer", "status"], name="order_buyer_status_idx"
                    ),
                    models.Index(
                        fields=["seller", "status"], name="order_seller_status_idx"
                    ),
                    models.Index(
                        fields=["status", "expires_at"],
                        name="order_status_expiry_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_amount__gt", 0)),
                        name="order_total_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("seller_amount__lte", models.F("total_amount"))
                        ),
                        name="order_seller_amount_within_total",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "transaction_id",
                    models.CharField(
                        default=payments.models.transaction.generate_transaction_id,
                        editable=False,
                        help_text="Locally generated transaction reference",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("payment", "Payment"),
                            ("refund", "Refund"),
                            ("chargeback", "Chargeback"),
                            ("fee", "Fee"),
                            ("escrow_release", "Escrow Release"),
                        ],
                        db_index=True,
                        help_text="Kind of money movement",
                        max_length=20,
                    ),
                ),
                ("amount", _money("Amount moved")),
                _currency(),
                (
                    "backend",
                    models.CharField(
                        help_text="Payment backend that processed the call",
                        max_length=20,
                    ),
                ),
                (
                    "backend_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Backend-assigned reference",
                        max_length=255,
                    ),
                ),
                (
                    "backend_response",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Raw backend response payload",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Outcome of the gateway call",
                        max_length=20,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Idempotency key sent with the gateway call",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "risk_score",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Risk score (0-100) assessed for this call",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Why the backend declined or failed the call",
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the backend answered", null=True
                    ),
                ),
                (
                    "settled_at",
                    models.DateTimeField(
                        blank=True, help_text="When the funds settled", null=True
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order this money movement belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="payments.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Transaction",
                "verbose_name_plural": "Payment Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["order", "transaction_type", "status"],
                        name="txn_order_type_status_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="txn_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowHold",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                ("amount", _money("Amount placed in custody")),
                (
                    "refunded_amount",
                    _money("Amount returned to the buyer", default=Decimal("0.00")),
                ),
                (
                    "released_amount",
                    _money("Amount paid out to the seller", default=Decimal("0.00")),
                ),
                _currency(),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("held", "Held"),
                            ("partial_release", "Partially Released"),
                            ("released", "Released"),
                            ("disputed", "Disputed"),
                            ("expired", "Expired"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="held",
                        help_text="Custody state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "auto_release_at",
                    models.DateTimeField(
                        db_index=True,
                        help_text="Deadline after which a delivered order is released automatically",
                    ),
                ),
                (
                    "release_reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Why the funds were released",
                        max_length=255,
                    ),
                ),
                (
                    "dispute_reason",
                    models.TextField(
                        blank=True, default="", help_text="Reason the hold was frozen"
                    ),
                ),
                (
                    "released_at",
                    models.DateTimeField(
                        blank=True, help_text="When funds were released", null=True
                    ),
                ),
                (
                    "disputed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the hold was frozen", null=True
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When funds went back to the buyer",
                        null=True,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order the funds were captured for",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_holds",
                        to="payments.order",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        help_text="Payment transaction that funded this hold",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_holds",
                        to="payments.paymenttransaction",
                    ),
                ),
                (
                    "released_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who released the funds (null for automatic release)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow Hold",
                "verbose_name_plural": "Escrow Holds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "auto_release_at"],
                        name="escrow_status_release_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("status__in", ["disputed", "held", "partial_release"])
                        ),
                        fields=("order",),
                        name="escrow_one_custody_hold_per_order",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="escrow_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                ("amount", _money("Amount to return to the buyer")),
                _currency(),
                (
                    "reason",
                    models.CharField(help_text="Reason for the refund", max_length=255),
                ),
                (
                    "request_notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Additional details from the requester",
                    ),
                ),
                (
                    "requested_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the refund was requested",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Refund state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "processing_notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Notes recorded with the decision",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Gateway reason if processing failed",
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the seller decided", null=True
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the money went back", null=True
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.order",
                    ),
                ),
                (
                    "original_transaction",
                    models.ForeignKey(
                        help_text="Payment transaction being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.paymenttransaction",
                    ),
                ),
                (
                    "refund_transaction",
                    models.OneToOneField(
                        blank=True,
                        help_text="Completed refund transaction",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_record",
                        to="payments.paymenttransaction",
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        help_text="Party that requested the refund",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="requested_refunds",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "processed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Seller who decided the refund",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processed_refunds",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["order", "status"], name="refund_order_status_idx"
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="refund_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "pending")),
                        fields=("order",),
                        name="refund_one_pending_per_order",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Dispute",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("item_not_received", "Item Not Received"),
                            ("item_not_as_described", "Item Not As Described"),
                            ("damaged_item", "Damaged Item"),
                            ("wrong_item", "Wrong Item"),
                            ("seller_not_responsive", "Seller Not Responsive"),
                            ("buyer_not_responsive", "Buyer Not Responsive"),
                            ("payment_issue", "Payment Issue"),
                            ("shipping_issue", "Shipping Issue"),
                            ("quality_issue", "Quality Issue"),
                            ("other", "Other"),
                        ],
                        help_text="Category of the complaint",
                        max_length=32,
                    ),
                ),
                (
                    "description",
                    models.TextField(
                        help_text="What went wrong, in the initiator's words"
                    ),
                ),
                (
                    "requested_amount",
                    _money(
                        "Amount the initiator asks to get back", blank=True, null=True
                    ),
                ),
                (
                    "evidence",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Evidence entries (links, descriptions) supplied at creation",
                    ),
                ),
                (
                    "initiated_by",
                    models.CharField(
                        choices=[("buyer", "Buyer"), ("seller", "Seller")],
                        help_text="Which side opened the dispute",
                        max_length=10,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("open", "Open"),
                            ("under_review", "Under Review"),
                            ("awaiting_response", "Awaiting Response"),
                            ("escalated", "Escalated"),
                            ("resolved", "Resolved"),
                            ("closed", "Closed"),
                        ],
                        db_index=True,
                        default="open",
                        help_text="Dispute state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "escalation_reason",
                    models.TextField(
                        blank=True, default="", help_text="Why the dispute was escalated"
                    ),
                ),
                (
                    "escalated_at",
                    models.DateTimeField(
                        blank=True, help_text="When the dispute was escalated", null=True
                    ),
                ),
                (
                    "resolution",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("full_refund", "Full Refund"),
                            ("partial_refund", "Partial Refund"),
                            ("replacement", "Replacement"),
                            ("store_credit", "Store Credit"),
                            ("no_action", "No Action"),
                            ("favor_seller", "Favor Seller"),
                            ("favor_buyer", "Favor Buyer"),
                        ],
                        default="",
                        help_text="Mediator's outcome",
                        max_length=20,
                    ),
                ),
                (
                    "resolution_amount",
                    _money(
                        "Amount refunded by the resolution", blank=True, null=True
                    ),
                ),
                (
                    "resolution_notes",
                    models.TextField(
                        blank=True, default="", help_text="Mediator's notes"
                    ),
                ),
                (
                    "resolved_at",
                    models.DateTimeField(
                        blank=True, help_text="When the dispute was resolved", null=True
                    ),
                ),
                (
                    "closed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the dispute was closed", null=True
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Disputed order",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes",
                        to="payments.order",
                    ),
                ),
                (
                    "escrow_hold",
                    models.ForeignKey(
                        blank=True,
                        help_text="Escrow hold frozen by this dispute",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes",
                        to="payments.escrowhold",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        help_text="User who opened the dispute",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="created_disputes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "respondent",
                    models.ForeignKey(
                        help_text="The other party",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="responding_disputes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "resolved_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Mediator who resolved the dispute",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="resolved_disputes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Dispute",
                "verbose_name_plural": "Disputes",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["order", "status"], name="dispute_order_status_idx"
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            (
                                "status__in",
                                [
                                    "awaiting_response",
                                    "escalated",
                                    "open",
                                    "under_review",
                                ],
                            )
                        ),
                        fields=("order",),
                        name="dispute_one_active_per_order",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DisputeMessage",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("message", models.TextField(help_text="Message body")),
                (
                    "attachments",
                    models.JSONField(
                        blank=True, default=list, help_text="Attachment references"
                    ),
                ),
                (
                    "is_internal",
                    models.BooleanField(
                        default=False, help_text="Visible to mediators only"
                    ),
                ),
                (
                    "is_system",
                    models.BooleanField(
                        default=False, help_text="Generated by the engine"
                    ),
                ),
                (
                    "dispute",
                    models.ForeignKey(
                        help_text="Dispute this message belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="messages",
                        to="payments.dispute",
                    ),
                ),
                (
                    "sender",
                    models.ForeignKey(
                        blank=True,
                        help_text="Author (null for system messages)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="dispute_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Dispute Message",
                "verbose_name_plural": "Dispute Messages",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentNotification",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "notification_type",
                    models.CharField(
                        choices=[
                            ("order_created", "Order Created"),
                            ("order_cancelled", "Order Cancelled"),
                            ("payment_received", "Payment Received"),
                            ("payment_failed", "Payment Failed"),
                            ("order_delivered", "Order Delivered"),
                            ("escrow_released", "Escrow Released"),
                            ("escrow_disputed", "Escrow Disputed"),
                            ("refund_requested", "Refund Requested"),
                            ("refund_completed", "Refund Completed"),
                            ("refund_rejected", "Refund Rejected"),
                            ("dispute_created", "Dispute Created"),
                            ("dispute_message", "Dispute Message"),
                            ("dispute_escalated", "Dispute Escalated"),
                            ("dispute_resolved", "Dispute Resolved"),
                        ],
                        db_index=True,
                        help_text="Kind of event",
                        max_length=32,
                    ),
                ),
                ("title", models.CharField(help_text="Short title", max_length=200)),
                ("message", models.TextField(help_text="Notification body")),
                (
                    "metadata",
                    models.JSONField(
                        blank=True, default=dict, help_text="Structured event context"
                    ),
                ),
                (
                    "read_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the recipient read the notification",
                        null=True,
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        help_text="User being notified",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        help_text="Order the event concerns",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="payments.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Notification",
                "verbose_name_plural": "Payment Notifications",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["recipient", "read_at"], name="notification_unread_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "action",
                    models.CharField(
                        db_index=True, help_text="Action name", max_length=64
                    ),
                ),
                (
                    "resource_type",
                    models.CharField(
                        help_text="Kind of resource acted on", max_length=32
                    ),
                ),
                (
                    "resource_id",
                    models.CharField(
                        db_index=True,
                        help_text="Identifier of the resource acted on",
                        max_length=64,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True, default=dict, help_text="Action context"
                    ),
                ),
                (
                    "risk_level",
                    models.CharField(
                        choices=[
                            ("low", "Low"),
                            ("medium", "Medium"),
                            ("high", "High"),
                            ("critical", "Critical"),
                        ],
                        db_index=True,
                        default="low",
                        help_text="Risk level of the action",
                        max_length=10,
                    ),
                ),
                (
                    "ip_address",
                    models.GenericIPAddressField(
                        blank=True, help_text="Client IP address", null=True
                    ),
                ),
                (
                    "user_agent",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Client user agent",
                        max_length=512,
                    ),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who performed the action",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Audit Log Entry",
                "verbose_name_plural": "Audit Log",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["resource_type", "resource_id"],
                        name="audit_resource_idx",
                    )
                ],
            },
        ),
    ]
