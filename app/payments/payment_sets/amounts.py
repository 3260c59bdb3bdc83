"""
Derived amounts of a payment set.

Pure functions over a snapshot. Nothing here talks to Stripe and nothing
is cached: every read recomputes from the PaymentIntents it is given.

Stripe's terms, for reference:

Checkout Session:
- amount_total: amount originally intended

PaymentIntent:
- amount: amount originally intended
- amount_received: captured amount (refunds included)
- amount_capturable: amount that can still be captured

Charge:
- amount: amount originally intended
- amount_captured: captured amount (refunds included)
- amount_refunded: refunded amount (uncaptured amounts released by a
  cancel are counted too)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from payments.adapters import CheckoutSessionResult, PaymentIntentResult
from payments.payment_sets.snapshot import latest_charge_of


def amount_capturable(payment_intents: Sequence[PaymentIntentResult]) -> int:
    """Sum of amount_capturable over all PaymentIntents."""
    return sum(pi.amount_capturable_cents for pi in payment_intents)


def amount_refunded(payment_intents: Sequence[PaymentIntentResult]) -> int:
    """Sum of each latest charge's amount_refunded."""
    total = 0
    for payment_intent in payment_intents:
        charge = latest_charge_of(payment_intent)
        total += charge.amount_refunded_cents if charge else 0
    return total


def amount_net(payment_intents: Sequence[PaymentIntentResult]) -> int:
    """Captured amount, net of refunds, over all PaymentIntents."""
    total = 0
    for payment_intent in payment_intents:
        charge = latest_charge_of(payment_intent)
        if charge and charge.captured:
            total += charge.amount_cents - charge.amount_refunded_cents
    return total


def amount(
    checkout_session: CheckoutSessionResult,
    payment_intents: Sequence[PaymentIntentResult],
) -> int:
    """
    The currently pledged total.

    Before the buyer completes checkout this is the session's amount_total.
    Afterwards it is the sum of every PaymentIntent's amount minus
    amount_refunded. Refunding one PaymentIntent therefore lowers the total
    even while another PaymentIntent's pledge is untouched.
    """
    if checkout_session.payment_intent is None:
        return checkout_session.amount_total or 0

    return sum(pi.amount_cents for pi in payment_intents) - amount_refunded(
        payment_intents
    )


@dataclass(frozen=True)
class PaymentSetAmounts:
    """All four derived amounts, read from one snapshot."""

    amount: int
    amount_capturable: int
    amount_net: int
    amount_refunded: int

    @classmethod
    def compute(
        cls,
        checkout_session: CheckoutSessionResult,
        payment_intents: Sequence[PaymentIntentResult],
    ) -> PaymentSetAmounts:
        return cls(
            amount=amount(checkout_session, payment_intents),
            amount_capturable=amount_capturable(payment_intents),
            amount_net=amount_net(payment_intents),
            amount_refunded=amount_refunded(payment_intents),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "amount": self.amount,
            "amount_capturable": self.amount_capturable,
            "amount_net": self.amount_net,
            "amount_refunded": self.amount_refunded,
        }
