"""
Payment gateway protocol definition.

Defines the interface a payment set needs from its gateway.
Uses Python Protocol for structural subtyping, so the StripeAdapter
class (all async classmethods) and test doubles both satisfy it
without inheriting from anything.

Usage:
    from payments.adapters.base import PaymentGateway

    class InMemoryGateway:
        async def retrieve_payment_intent(self, payment_intent_id, expand=None):
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import (
        CheckoutSessionResult,
        CreatePaymentIntentParams,
        PaymentIntentResult,
        RefundResult,
    )


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Protocol for the gateway operations a payment set issues.

    Every call is a single network round trip. Implementations translate
    their own failures to payments.exceptions.StripeError subclasses and
    never retry on their own.
    """

    async def retrieve_checkout_session(
        self,
        checkout_session_id: str,
        expand: list[str] | None = None,
    ) -> CheckoutSessionResult: ...

    async def retrieve_payment_intent(
        self,
        payment_intent_id: str,
        expand: list[str] | None = None,
    ) -> PaymentIntentResult: ...

    async def cancel_payment_intent(
        self,
        payment_intent_id: str,
        cancellation_reason: str | None = None,
    ) -> PaymentIntentResult: ...

    async def capture_payment_intent(
        self,
        payment_intent_id: str,
        amount_to_capture: int | None = None,
    ) -> PaymentIntentResult: ...

    async def create_payment_intent(
        self,
        params: CreatePaymentIntentParams,
    ) -> PaymentIntentResult: ...

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int | None = None,
    ) -> RefundResult: ...

    async def retrieve_refund(self, refund_id: str) -> RefundResult: ...
