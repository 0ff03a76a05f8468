"""
URL configuration for the custody engine.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair (POST)
    /api/v1/auth/token/refresh/    - Refresh access token (POST)
    /api/v1/payments/              - Custody endpoints
        orders/                    - Order list/create
        orders/{id}/               - Order detail
        orders/{id}/pay/           - Capture payment into escrow
        orders/{id}/cancel/        - Cancel a pending order
        orders/{id}/processing/    - Seller marks the order in progress
        orders/{id}/deliver/       - Seller marks the order delivered
        orders/{id}/refunds/       - Request a refund
        orders/{id}/disputes/      - Open a dispute
        escrow/{id}/release/       - Buyer releases escrow
        escrow/{id}/dispute/       - Seller disputes escrow
        refunds/{id}/resolve/      - Seller approves or rejects a refund
        disputes/{id}/             - Dispute detail
        disputes/{id}/messages/    - Dispute thread list/post
        disputes/{id}/escalate/    - Escalate to mediation
        disputes/{id}/review/      - Mediator starts review
        disputes/{id}/resolve/     - Mediator resolves
        disputes/{id}/close/       - Mediator closes

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simple JWT)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Payments
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Custody Admin"
admin.site.site_title = "Custody Portal"
admin.site.index_title = "Orders, escrow and disputes"
