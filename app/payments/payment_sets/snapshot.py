"""
Immutable snapshot of a payment set's Stripe state.

A PaymentSetSnapshot holds one Checkout Session and the explicitly tracked
PaymentIntents. It is never patched in place: a refetch builds a new
snapshot and swaps it in, and a newly created PaymentIntent produces a
new snapshot with the intent appended.

This module is also the only place that turns Unresolved/Resolved fields
into plain values. Anything downstream asks for resolved data through
latest_charge_of() and linked_payment_intent_of(), which fail fast when
Stripe did not expand what was requested.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from payments.adapters import (
    ChargeResult,
    CheckoutSessionResult,
    PaymentIntentResult,
    Resolved,
    Unresolved,
)
from payments.exceptions import DuplicatePaymentIntentError, UnexpandedFieldError


def latest_charge_of(payment_intent: PaymentIntentResult) -> ChargeResult | None:
    """
    Return the PaymentIntent's latest charge, or None if it has none.

    A PaymentIntent has at most one successful charge in its lifetime,
    so the latest charge is the only one worth looking at.

    Raises:
        UnexpandedFieldError: latest_charge came back as a bare id
    """
    charge = payment_intent.latest_charge
    if charge is None:
        return None
    if isinstance(charge, Resolved):
        return charge.value
    raise UnexpandedFieldError(
        f"paymentIntent.latest_charge is not expanded: {charge.id}",
        details={"payment_intent_id": payment_intent.id, "charge_id": charge.id},
    )


def linked_payment_intent_of(
    checkout_session: CheckoutSessionResult,
) -> PaymentIntentResult | None:
    """
    Return the Checkout Session's PaymentIntent, or None before checkout completes.

    Raises:
        UnexpandedFieldError: payment_intent came back as a bare id
    """
    payment_intent = checkout_session.payment_intent
    if payment_intent is None:
        return None
    if isinstance(payment_intent, Resolved):
        return payment_intent.value
    raise UnexpandedFieldError(
        "checkoutSession.payment_intent is not expanded",
        details={
            "checkout_session_id": checkout_session.id,
            "payment_intent_id": payment_intent.id,
        },
    )


def assert_latest_charge_expanded(
    payment_intent: PaymentIntentResult,
) -> PaymentIntentResult:
    """Check a freshly fetched PaymentIntent and return it unchanged."""
    if isinstance(payment_intent.latest_charge, Unresolved):
        raise UnexpandedFieldError(
            "paymentIntent.latest_charge is not expanded",
            details={
                "payment_intent_id": payment_intent.id,
                "charge_id": payment_intent.latest_charge.id,
            },
        )
    return payment_intent


def assert_payment_intent_expanded(
    checkout_session: CheckoutSessionResult,
) -> CheckoutSessionResult:
    """Check a freshly fetched Checkout Session and return it unchanged."""
    linked = linked_payment_intent_of(checkout_session)
    if linked is not None:
        assert_latest_charge_expanded(linked)
    return checkout_session


@dataclass(frozen=True)
class PaymentSetSnapshot:
    """
    One consistent view of a payment set.

    Attributes:
        checkout_session: The Checkout Session, payment_intent expanded
        payment_intents: Explicitly tracked PaymentIntents, discovery order
        version: Bumped on every replacement, for logging and debugging
    """

    checkout_session: CheckoutSessionResult
    payment_intents: tuple[PaymentIntentResult, ...] = field(default_factory=tuple)
    version: int = 0

    def __post_init__(self) -> None:
        linked = linked_payment_intent_of(self.checkout_session)
        if linked is None:
            return
        explicit_ids = [pi.id for pi in self.payment_intents]
        if linked.id in explicit_ids:
            raise DuplicatePaymentIntentError(
                "The checkout session's payment intent is also tracked explicitly",
                details={
                    "checkout_session_id": self.checkout_session.id,
                    "payment_intent_id": linked.id,
                    "payment_intent_ids": explicit_ids,
                },
            )

    @property
    def effective_payment_intents(self) -> tuple[PaymentIntentResult, ...]:
        """The session's PaymentIntent (if any) followed by the explicit ones."""
        linked = linked_payment_intent_of(self.checkout_session)
        if linked is None:
            return self.payment_intents
        return (linked, *self.payment_intents)

    @property
    def payment_intent_ids(self) -> list[str]:
        """Ids of the explicitly tracked PaymentIntents, for refetching."""
        return [pi.id for pi in self.payment_intents]

    def with_payment_intent(
        self, payment_intent: PaymentIntentResult
    ) -> PaymentSetSnapshot:
        """Return a new snapshot with payment_intent appended."""
        return PaymentSetSnapshot(
            checkout_session=self.checkout_session,
            payment_intents=(*self.payment_intents, payment_intent),
            version=self.version + 1,
        )

    def replaced_by(
        self,
        checkout_session: CheckoutSessionResult,
        payment_intents: tuple[PaymentIntentResult, ...],
    ) -> PaymentSetSnapshot:
        """Return a freshly fetched snapshot that succeeds this one."""
        return PaymentSetSnapshot(
            checkout_session=checkout_session,
            payment_intents=payment_intents,
            version=self.version + 1,
        )
