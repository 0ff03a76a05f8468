"""
URL configuration for the payments app.

Routes:
    - orders/         - Orders and lifecycle actions
    - escrow/         - Escrow release and dispute
    - refunds/        - Refund decisions
    - disputes/       - Dispute threads and mediation
    - notifications/  - The caller's notifications
    - webhooks/stripe/ - Signed Stripe webhook events (no user auth)

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from payments.views import (
    DisputeViewSet,
    EscrowViewSet,
    NotificationViewSet,
    OrderViewSet,
    RefundViewSet,
)
from payments.webhooks.views import stripe_webhook

app_name = "payments"

router = DefaultRouter()
router.register(r"orders", OrderViewSet, basename="order")
router.register(r"escrow", EscrowViewSet, basename="escrow")
router.register(r"refunds", RefundViewSet, basename="refund")
router.register(r"disputes", DisputeViewSet, basename="dispute")
router.register(r"notifications", NotificationViewSet, basename="notification")

urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    path("", include(router.urls)),
]
