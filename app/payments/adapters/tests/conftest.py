"""
Pytest fixtures for Stripe adapter tests.

This module provides fixtures for testing the Stripe adapter, including
mock Stripe API responses, error conditions, and test data.

Sections:
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import stripe


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


class MockStripeObject(dict):
    """
    Mock Stripe API object.

    Behaves like stripe.StripeObject: a dict whose keys are also readable
    as attributes, raising AttributeError for keys the response omits.
    """

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def to_dict(self) -> dict[str, Any]:
        return dict(self)


@pytest.fixture
def mock_charge():
    """Create a mock Charge response."""

    def _create(
        id: str = "ch_test123456",
        amount: int = 500,
        amount_captured: int = 0,
        amount_refunded: int = 0,
        captured: bool = False,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "charge",
                "amount": amount,
                "amount_captured": amount_captured,
                "amount_refunded": amount_refunded,
                "captured": captured,
            }
        )

    return _create


@pytest.fixture
def mock_payment_intent(mock_charge):
    """
    Create a mock PaymentIntent response.

    latest_charge defaults to an expanded charge; pass a string for an
    unexpanded one or None for an intent that was never confirmed.
    """

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_capture",
        amount: int = 500,
        amount_capturable: int = 500,
        amount_received: int = 0,
        currency: str = "jpy",
        payment_method: Any = "pm_test123456",
        latest_charge: Any = "default",
    ) -> MockStripeObject:
        if latest_charge == "default":
            latest_charge = mock_charge(amount=amount)
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "amount_capturable": amount_capturable,
                "amount_received": amount_received,
                "currency": currency,
                "payment_method": payment_method,
                "latest_charge": latest_charge,
            }
        )

    return _create


@pytest.fixture
def mock_checkout_session(mock_payment_intent):
    """Create a mock Checkout Session response."""

    def _create(
        id: str = "cs_test123456",
        amount_total: int | None = 500,
        payment_intent: Any = "default",
    ) -> MockStripeObject:
        if payment_intent == "default":
            payment_intent = mock_payment_intent()
        return MockStripeObject(
            {
                "id": id,
                "object": "checkout.session",
                "amount_total": amount_total,
                "payment_intent": payment_intent,
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """
    Create a mock Refund response.

    Stripe only sends failure_reason on failed refunds, so the key is
    left out unless one is given.
    """

    def _create(
        id: str = "re_test123456",
        amount: int = 100,
        currency: str = "jpy",
        status: str = "pending",
        payment_intent: str = "pi_test123456",
        failure_reason: str | None = None,
    ) -> MockStripeObject:
        refund = MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_intent": payment_intent,
            }
        )
        if failure_reason is not None:
            refund["failure_reason"] = failure_reason
        return refund

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(
            message=message,
            param=None,
            code=code,
        )
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def insufficient_funds_error(card_error):
    """Create a Stripe CardError for insufficient funds."""
    return card_error(
        message="Your card has insufficient funds.",
        decline_code="insufficient_funds",
    )


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such payment_intent: 'pi_missing'",
        param: str | None = "intent",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(
            message=message,
            param=param,
            code=code,
        )

    return _create


@pytest.fixture
def rate_limit_error():
    """Create a Stripe RateLimitError."""
    return stripe.RateLimitError(
        message="Too many requests hit the API too quickly.",
    )


@pytest.fixture
def api_connection_error():
    """Create a Stripe APIConnectionError."""
    return stripe.APIConnectionError(
        message="Could not connect to Stripe.",
    )


@pytest.fixture
def api_timeout_error():
    """Create a Stripe APIConnectionError caused by a timeout."""
    return stripe.APIConnectionError(
        message="Request to Stripe timed out.",
    )


@pytest.fixture
def api_error():
    """Create a Stripe APIError."""
    return stripe.APIError(
        message="Something went wrong on Stripe's end.",
    )


@pytest.fixture
def authentication_error():
    """Create a Stripe AuthenticationError."""
    return stripe.AuthenticationError(
        message="Invalid API Key provided.",
    )


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_http_client():
    """Mock stripe.HTTPXClient so no real client is built."""
    from payments.adapters import StripeAdapter

    StripeAdapter._http_clients.clear()
    with patch("stripe.HTTPXClient") as mock:
        yield mock
    StripeAdapter._http_clients.clear()


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent async API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.retrieve_async = AsyncMock(return_value=mock_payment_intent())
        mock.create_async = AsyncMock(return_value=mock_payment_intent())
        mock.capture_async = AsyncMock(
            return_value=mock_payment_intent(
                status="succeeded", amount_capturable=0, amount_received=500
            )
        )
        mock.cancel_async = AsyncMock(
            return_value=mock_payment_intent(status="canceled", amount_capturable=0)
        )
        yield mock


@pytest.fixture
def mock_stripe_checkout_session(mock_checkout_session):
    """Mock stripe.checkout.Session async API."""
    with patch("stripe.checkout.Session") as mock:
        mock.retrieve_async = AsyncMock(return_value=mock_checkout_session())
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    """Mock stripe.Refund async API."""
    with patch("stripe.Refund") as mock:
        mock.create_async = AsyncMock(return_value=mock_refund())
        mock.retrieve_async = AsyncMock(return_value=mock_refund(status="succeeded"))
        yield mock
