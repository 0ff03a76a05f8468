"""
Payments app configuration.

Builds the process's GatewayRegistry (payment profile, fee policy and
gateway) once at startup; services receive it explicitly from the views
and tasks that call them.
"""

from __future__ import annotations

from django.apps import AppConfig, apps


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    gateway_registry = None

    def ready(self) -> None:
        """Build the gateway registry and connect signal handlers."""
        from payments.gateways import GatewayRegistry
        from payments.signals import connect_signals

        self.gateway_registry = GatewayRegistry.from_settings()
        connect_signals()


def get_gateway_registry():
    """The registry built by PaymentsConfig.ready()."""
    return apps.get_app_config("payments").gateway_registry
