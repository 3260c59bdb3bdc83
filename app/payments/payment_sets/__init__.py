"""
Payment set reconciliation.

Moves the authorized and captured amounts of one purchase (a Checkout
Session plus follow-up PaymentIntents) toward target values through Stripe.

Usage:
    from payments.payment_sets import PaymentSet

    payment_set = await PaymentSet.from_ids("cus_xxx", "cs_xxx", [])
    await payment_set.change_amounts(amount_capturable=0, amount_net=500)
"""

from payments.payment_sets.amounts import PaymentSetAmounts
from payments.payment_sets.payment_set import PaymentSet
from payments.payment_sets.refund_polling import RefundPoller, RefundState
from payments.payment_sets.selection import AllocationQueue
from payments.payment_sets.snapshot import PaymentSetSnapshot

__all__ = [
    "AllocationQueue",
    "PaymentSet",
    "PaymentSetAmounts",
    "PaymentSetSnapshot",
    "RefundPoller",
    "RefundState",
]
