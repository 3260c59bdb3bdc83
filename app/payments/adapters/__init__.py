"""
Payment adapters for external services.

This module provides the adapter for Stripe. All external payment API
calls should go through it to ensure consistent error handling, timeouts,
and observability.

Usage:
    from payments.adapters import StripeAdapter

    session = await StripeAdapter.retrieve_checkout_session(
        "cs_xxx",
        expand=["payment_intent", "payment_intent.latest_charge"],
    )
"""

from payments.adapters.base import PaymentGateway
from payments.adapters.stripe_adapter import (
    ChargeResult,
    CheckoutSessionResult,
    CreatePaymentIntentParams,
    PaymentIntentResult,
    RefundResult,
    Resolved,
    StripeAdapter,
    Unresolved,
)

__all__ = [
    "ChargeResult",
    "CheckoutSessionResult",
    "CreatePaymentIntentParams",
    "PaymentGateway",
    "PaymentIntentResult",
    "RefundResult",
    "Resolved",
    "StripeAdapter",
    "Unresolved",
]
