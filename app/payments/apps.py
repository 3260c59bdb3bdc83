"""
Payments app configuration.

This app provides Stripe payment set reconciliation:
- Stripe adapter (async, typed results)
- Payment set amounts and reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
