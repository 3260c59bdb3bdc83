"""
Pytest fixtures for payment set tests.

This module provides an in-memory Stripe double and helpers to seed it.
FakeStripeGateway keeps Checkout Sessions, PaymentIntents, Charges and
Refunds as mutable records and moves amounts the way Stripe does:

- Cancel releases the uncaptured amount; the charge reports it as refunded
- Partial capture reports the uncaptured rest as refunded
- A refund counts once it has succeeded
- Expandable fields are returned as objects only when asked for

Every call is recorded in ``calls`` so tests can assert on the exact
mutations a reconciliation issued.

Sections:
    - Fake Gateway
    - Gateway Fixtures
    - Result Factories
"""

from __future__ import annotations

from dataclasses import dataclass, field
from unittest.mock import AsyncMock

import pytest

from payments.adapters import (
    ChargeResult,
    CheckoutSessionResult,
    CreatePaymentIntentParams,
    PaymentIntentResult,
    RefundResult,
    Resolved,
    Unresolved,
)
from payments.exceptions import StripeCardDeclinedError, StripeInvalidRequestError
from payments.payment_sets import PaymentSet, RefundPoller

MUTATIONS = {
    "cancel_payment_intent",
    "capture_payment_intent",
    "create_payment_intent",
    "create_refund",
}


# =============================================================================
# Fake Gateway
# =============================================================================


@dataclass
class _Charge:
    id: str
    amount: int
    amount_captured: int = 0
    amount_refunded: int = 0
    captured: bool = False


@dataclass
class _PaymentIntent:
    id: str
    amount: int
    status: str
    payment_method: str | None
    amount_capturable: int = 0
    amount_received: int = 0
    charge: _Charge | None = None


@dataclass
class _CheckoutSession:
    id: str
    amount_total: int | None
    payment_intent_id: str | None = None


@dataclass
class _Refund:
    id: str
    amount: int
    payment_intent_id: str
    status: str
    pending_polls: int
    final_status: str
    failure_reason: str | None = None


@dataclass
class FakeStripeGateway:
    """
    In-memory stand-in for StripeAdapter.

    Attributes:
        calls: Every call made, as dicts with a "method" key
        capture_statuses: PaymentIntent id -> status a capture answers with
            instead of succeeding (the intent is left untouched)
        cancel_errors: PaymentIntent id -> exception its cancel raises
        retrieve_errors: Object id -> exception its retrieval raises
        declined_payment_methods: Payment methods new intents fail on
        refund_pending_polls: Retrievals a new refund stays pending for
        refund_final_status: Status a refund settles in
        refund_failure_reason: failure_reason of a failed refund
        ignore_expand: Return expandable fields as bare ids regardless
    """

    calls: list[dict] = field(default_factory=list)
    capture_statuses: dict[str, str] = field(default_factory=dict)
    cancel_errors: dict[str, Exception] = field(default_factory=dict)
    retrieve_errors: dict[str, Exception] = field(default_factory=dict)
    declined_payment_methods: set[str] = field(default_factory=set)
    refund_pending_polls: int = 0
    refund_final_status: str = "succeeded"
    refund_failure_reason: str | None = None
    ignore_expand: bool = False

    _sessions: dict[str, _CheckoutSession] = field(default_factory=dict)
    _intents: dict[str, _PaymentIntent] = field(default_factory=dict)
    _refunds: dict[str, _Refund] = field(default_factory=dict)
    _sequence: int = 0

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        self._sequence += 1
        return f"{prefix}_fake{self._sequence}"

    def open_checkout_session(self, amount_total: int | None = 500) -> str:
        """Create a Checkout Session the buyer has not completed yet."""
        session_id = self._next_id("cs")
        self._sessions[session_id] = _CheckoutSession(session_id, amount_total)
        return session_id

    def complete_checkout(
        self, checkout_session_id: str, payment_method: str | None = "pm_card_visa"
    ) -> str:
        """Complete checkout: authorize amount_total on a manual PaymentIntent."""
        session = self._sessions[checkout_session_id]
        payment_intent_id = self.add_payment_intent(
            session.amount_total or 0, payment_method=payment_method
        )
        session.payment_intent_id = payment_intent_id
        return payment_intent_id

    def add_payment_intent(
        self,
        amount: int,
        status: str = "requires_capture",
        payment_method: str | None = "pm_card_visa",
    ) -> str:
        """Seed a confirmed PaymentIntent, authorized or already captured."""
        payment_intent_id = self._next_id("pi")
        charge = _Charge(self._next_id("ch"), amount)
        intent = _PaymentIntent(
            payment_intent_id, amount, status, payment_method, charge=charge
        )
        if status == "requires_capture":
            intent.amount_capturable = amount
        elif status == "succeeded":
            intent.amount_received = amount
            charge.captured = True
            charge.amount_captured = amount
        self._intents[payment_intent_id] = intent
        return payment_intent_id

    def mutations(self) -> list[dict]:
        """Recorded calls that change state on Stripe."""
        return [call for call in self.calls if call["method"] in MUTATIONS]

    # -------------------------------------------------------------------------
    # Result building
    # -------------------------------------------------------------------------

    def _charge_field(self, intent: _PaymentIntent, expand: bool):
        charge = intent.charge
        if charge is None:
            return None
        if not expand or self.ignore_expand:
            return Unresolved(charge.id)
        return Resolved(
            ChargeResult(
                id=charge.id,
                amount_cents=charge.amount,
                amount_captured_cents=charge.amount_captured,
                amount_refunded_cents=charge.amount_refunded,
                captured=charge.captured,
            )
        )

    def _intent_result(
        self, intent: _PaymentIntent, expand_charge: bool
    ) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            amount_capturable_cents=intent.amount_capturable,
            amount_received_cents=intent.amount_received,
            currency="jpy",
            payment_method_id=intent.payment_method,
            latest_charge=self._charge_field(intent, expand_charge),
        )

    def _refund_result(self, refund: _Refund) -> RefundResult:
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency="jpy",
            status=refund.status,
            payment_intent_id=refund.payment_intent_id,
            failure_reason=refund.failure_reason,
        )

    def _intent(self, payment_intent_id: str) -> _PaymentIntent:
        try:
            return self._intents[payment_intent_id]
        except KeyError:
            raise StripeInvalidRequestError(
                f"No such payment_intent: '{payment_intent_id}'",
                stripe_code="resource_missing",
            ) from None

    def _settle(self, refund: _Refund) -> None:
        refund.status = refund.final_status
        if refund.status == "succeeded":
            self._intents[refund.payment_intent_id].charge.amount_refunded += (
                refund.amount
            )
        else:
            refund.failure_reason = self.refund_failure_reason

    # -------------------------------------------------------------------------
    # PaymentGateway
    # -------------------------------------------------------------------------

    async def retrieve_checkout_session(self, checkout_session_id, expand=None):
        self.calls.append(
            {
                "method": "retrieve_checkout_session",
                "checkout_session_id": checkout_session_id,
                "expand": expand,
            }
        )
        if checkout_session_id in self.retrieve_errors:
            raise self.retrieve_errors[checkout_session_id]
        session = self._sessions[checkout_session_id]
        expand = expand or []

        payment_intent = None
        if session.payment_intent_id is not None:
            if "payment_intent" in expand and not self.ignore_expand:
                payment_intent = Resolved(
                    self._intent_result(
                        self._intents[session.payment_intent_id],
                        "payment_intent.latest_charge" in expand,
                    )
                )
            else:
                payment_intent = Unresolved(session.payment_intent_id)

        return CheckoutSessionResult(
            id=session.id,
            amount_total=session.amount_total,
            payment_intent=payment_intent,
        )

    async def retrieve_payment_intent(self, payment_intent_id, expand=None):
        self.calls.append(
            {
                "method": "retrieve_payment_intent",
                "payment_intent_id": payment_intent_id,
                "expand": expand,
            }
        )
        if payment_intent_id in self.retrieve_errors:
            raise self.retrieve_errors[payment_intent_id]
        return self._intent_result(
            self._intent(payment_intent_id), "latest_charge" in (expand or [])
        )

    async def cancel_payment_intent(self, payment_intent_id, cancellation_reason=None):
        self.calls.append(
            {
                "method": "cancel_payment_intent",
                "payment_intent_id": payment_intent_id,
                "cancellation_reason": cancellation_reason,
            }
        )
        if payment_intent_id in self.cancel_errors:
            raise self.cancel_errors[payment_intent_id]
        intent = self._intent(payment_intent_id)
        if intent.status != "requires_capture":
            raise StripeInvalidRequestError(
                "You cannot cancel this PaymentIntent because it has a status "
                f"of {intent.status}.",
                stripe_code="payment_intent_unexpected_state",
            )
        intent.status = "canceled"
        intent.amount_capturable = 0
        intent.charge.amount_refunded = intent.charge.amount
        return self._intent_result(intent, False)

    async def capture_payment_intent(self, payment_intent_id, amount_to_capture=None):
        self.calls.append(
            {
                "method": "capture_payment_intent",
                "payment_intent_id": payment_intent_id,
                "amount_to_capture": amount_to_capture,
            }
        )
        intent = self._intent(payment_intent_id)
        if intent.status != "requires_capture":
            raise StripeInvalidRequestError(
                "This PaymentIntent could not be captured because it has a "
                f"status of {intent.status}.",
                stripe_code="payment_intent_unexpected_state",
            )
        if payment_intent_id in self.capture_statuses:
            result = self._intent_result(intent, False)
            result.status = self.capture_statuses[payment_intent_id]
            return result

        amount = (
            intent.amount_capturable if amount_to_capture is None else amount_to_capture
        )
        if amount > intent.amount_capturable:
            raise StripeInvalidRequestError(
                "amount_to_capture is greater than amount_capturable",
                stripe_code="amount_too_large",
            )
        intent.status = "succeeded"
        intent.amount_received = amount
        intent.amount_capturable = 0
        intent.charge.captured = True
        intent.charge.amount_captured = amount
        intent.charge.amount_refunded = intent.charge.amount - amount
        return self._intent_result(intent, False)

    async def create_payment_intent(self, params: CreatePaymentIntentParams):
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": params.amount_cents,
                "currency": params.currency,
                "customer_id": params.customer_id,
                "payment_method_id": params.payment_method_id,
                "capture_method": params.capture_method,
                "expand": params.expand,
            }
        )
        if params.payment_method_id in self.declined_payment_methods:
            raise StripeCardDeclinedError(
                "Your card was declined.",
                stripe_code="card_declined",
                decline_code="generic_decline",
            )
        status = "requires_capture" if params.capture_method == "manual" else "succeeded"
        payment_intent_id = self.add_payment_intent(
            params.amount_cents, status=status, payment_method=params.payment_method_id
        )
        return self._intent_result(
            self._intents[payment_intent_id], "latest_charge" in params.expand
        )

    async def create_refund(self, payment_intent_id, amount_cents=None):
        self.calls.append(
            {
                "method": "create_refund",
                "payment_intent_id": payment_intent_id,
                "amount": amount_cents,
            }
        )
        intent = self._intent(payment_intent_id)
        refundable = intent.amount_received - intent.charge.amount_refunded
        amount = refundable if amount_cents is None else amount_cents
        if intent.status != "succeeded" or amount > refundable:
            raise StripeInvalidRequestError(
                f"Refund amount ({amount}) is greater than unrefunded amount",
                stripe_code="charge_already_refunded",
            )
        refund = _Refund(
            id=self._next_id("re"),
            amount=amount,
            payment_intent_id=payment_intent_id,
            status="pending",
            pending_polls=self.refund_pending_polls,
            final_status=self.refund_final_status,
        )
        self._refunds[refund.id] = refund
        if refund.pending_polls == 0:
            self._settle(refund)
        return self._refund_result(refund)

    async def retrieve_refund(self, refund_id):
        self.calls.append({"method": "retrieve_refund", "refund_id": refund_id})
        refund = self._refunds[refund_id]
        if refund.status == "pending":
            refund.pending_polls -= 1
            if refund.pending_polls <= 0:
                self._settle(refund)
        return self._refund_result(refund)


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def gateway():
    """A fresh in-memory Stripe."""
    return FakeStripeGateway()


@pytest.fixture
def sleep():
    """Recorded, instant replacement for asyncio.sleep."""
    return AsyncMock(return_value=None)


@pytest.fixture
def refund_poller(gateway, sleep):
    """Refund poller over the fake gateway that never really sleeps."""
    return RefundPoller(
        gateway, initial_delay=0.1, max_delay=1.0, max_attempts=5, sleep=sleep
    )


@pytest.fixture
def load_payment_set(gateway, refund_poller):
    """Fetch a PaymentSet through the fake gateway."""

    async def _load(checkout_session_id, payment_intent_ids=()):
        return await PaymentSet.from_ids(
            "cus_fake",
            checkout_session_id,
            payment_intent_ids,
            gateway=gateway,
            refund_poller=refund_poller,
            currency="jpy",
        )

    return _load


# =============================================================================
# Result Factories
# =============================================================================


@pytest.fixture
def make_charge():
    """Create a ChargeResult."""

    def _create(
        amount: int = 500,
        amount_refunded: int = 0,
        captured: bool = False,
        id: str = "ch_test",
    ) -> ChargeResult:
        return ChargeResult(
            id=id,
            amount_cents=amount,
            amount_captured_cents=amount if captured else 0,
            amount_refunded_cents=amount_refunded,
            captured=captured,
        )

    return _create


@pytest.fixture
def make_payment_intent(make_charge):
    """
    Create a PaymentIntentResult.

    The charge defaults to an expanded one matching the status; pass
    ``latest_charge`` to override it.
    """

    def _create(
        id: str = "pi_test",
        status: str = "requires_capture",
        amount: int = 500,
        amount_capturable: int | None = None,
        amount_received: int | None = None,
        amount_refunded: int = 0,
        payment_method_id: str | None = "pm_card_visa",
        latest_charge="default",
    ) -> PaymentIntentResult:
        captured = status == "succeeded"
        if amount_capturable is None:
            amount_capturable = amount if status == "requires_capture" else 0
        if amount_received is None:
            amount_received = amount if captured else 0
        if latest_charge == "default":
            latest_charge = Resolved(
                make_charge(
                    amount=amount,
                    amount_refunded=amount_refunded,
                    captured=captured,
                    id=f"ch_{id}",
                )
            )
        return PaymentIntentResult(
            id=id,
            status=status,
            amount_cents=amount,
            amount_capturable_cents=amount_capturable,
            amount_received_cents=amount_received,
            currency="jpy",
            payment_method_id=payment_method_id,
            latest_charge=latest_charge,
        )

    return _create


@pytest.fixture
def make_checkout_session():
    """Create a CheckoutSessionResult, linked to an intent when one is given."""

    def _create(
        payment_intent: PaymentIntentResult | None = None,
        amount_total: int | None = 500,
        id: str = "cs_test",
    ) -> CheckoutSessionResult:
        return CheckoutSessionResult(
            id=id,
            amount_total=amount_total,
            payment_intent=Resolved(payment_intent) if payment_intent else None,
        )

    return _create
