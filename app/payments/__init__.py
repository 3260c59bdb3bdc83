"""
Payments app for Stripe payment set reconciliation.

This app handles:
- Reading a Checkout Session and its PaymentIntents from Stripe
- Deriving authorized, captured and refunded amounts
- Canceling, capturing, refunding and re-authorizing toward target amounts

Usage:
    from payments.payment_sets import PaymentSet

    payment_set = await PaymentSet.from_ids(customer_id, checkout_session_id, [])
    await payment_set.change_amount_capturable(400)
    await payment_set.refetch()
"""
