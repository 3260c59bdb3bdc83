"""
Stripe API adapter for payment set operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions needed to reconcile a payment set. All Stripe
calls should go through this adapter to ensure consistent error handling,
timeouts, and observability.

Features:
- Async calls through stripe-python's ``*_async`` methods (HTTPX client)
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Typed results; expandable fields are ``Unresolved(id)`` or ``Resolved(obj)``

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 3)

Usage:
    from payments.adapters import StripeAdapter, CreatePaymentIntentParams

    # Retrieve a PaymentIntent with its latest charge
    intent = await StripeAdapter.retrieve_payment_intent(
        "pi_xxx", expand=["latest_charge"]
    )

    # Create and confirm a manual-capture PaymentIntent
    intent = await StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=400,
            currency="jpy",
            customer_id="cus_xxx",
            payment_method_id="pm_xxx",
            capture_method="manual",
        )
    )
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import stripe
from django.conf import settings

from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInsufficientFundsError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

T = TypeVar("T")


# =============================================================================
# Expandable Fields
# =============================================================================


@dataclass(frozen=True)
class Unresolved:
    """An expandable Stripe field that came back as a bare id."""

    id: str


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """An expandable Stripe field that came back as a full object."""

    value: T


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating and confirming a Stripe PaymentIntent.

    Attributes:
        amount_cents: Amount in smallest currency unit (yen for JPY)
        currency: ISO 4217 currency code
        customer_id: Stripe Customer ID the payment method belongs to
        payment_method_id: Saved Stripe PaymentMethod ID (pm_xxx)
        capture_method: 'automatic' or 'manual'
        confirm: Confirm immediately (default: True)
        automatic_payment_methods: Stripe automatic_payment_methods hash
        expand: Fields to expand on the response
    """

    amount_cents: int
    currency: str
    customer_id: str
    payment_method_id: str
    capture_method: str = "automatic"
    confirm: bool = True
    automatic_payment_methods: dict[str, Any] = field(
        default_factory=lambda: {"enabled": True, "allow_redirects": "never"}
    )
    expand: list[str] = field(default_factory=lambda: ["latest_charge"])

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.currency:
            raise ValueError("currency is required")
        if self.capture_method not in ("automatic", "manual"):
            raise ValueError("capture_method must be 'automatic' or 'manual'")


@dataclass
class ChargeResult:
    """
    A Stripe Charge, as seen through a PaymentIntent's latest_charge.

    Attributes:
        id: Charge ID (ch_xxx)
        amount_cents: Amount originally intended
        amount_captured_cents: Captured amount (refunds included)
        amount_refunded_cents: Refunded amount, including uncaptured
            amounts released by a cancel or a partial capture
        captured: Whether the charge has been captured
    """

    id: str
    amount_cents: int
    amount_captured_cents: int = 0
    amount_refunded_cents: int = 0
    captured: bool = False
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_capture, succeeded, canceled, etc.)
        amount_cents: Amount originally intended
        amount_capturable_cents: Amount still capturable (0 once captured or canceled)
        amount_received_cents: Amount captured so far (not reduced by refunds)
        currency: Currency code
        payment_method_id: PaymentMethod ID, normalised from id or object
        latest_charge: Unresolved/Resolved ChargeResult, or None
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    status: str
    amount_cents: int
    amount_capturable_cents: int = 0
    amount_received_cents: int = 0
    currency: str = ""
    payment_method_id: str | None = None
    latest_charge: Unresolved | Resolved[ChargeResult] | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutSessionResult:
    """
    Result from Stripe Checkout Session retrieval.

    Attributes:
        id: Checkout Session ID (cs_xxx)
        amount_total: Amount the session was created for (may be None)
        payment_intent: Unresolved/Resolved PaymentIntentResult, or None
            before the buyer completes checkout
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    amount_total: int | None = None
    payment_intent: Unresolved | Resolved[PaymentIntentResult] | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount
        currency: Currency code
        status: Refund status (pending, succeeded, failed, canceled, requires_action)
        payment_intent_id: Original PaymentIntent ID
        failure_reason: Stripe failure_reason when the refund failed
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str | None = None
    failure_reason: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Response Conversion
# =============================================================================


def _object_id(value: Any) -> str | None:
    """Return the id of a Stripe field that may be an id or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.id


def _to_dict(obj: Any) -> dict[str, Any]:
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else {}


def charge_from_stripe(charge: Any) -> ChargeResult:
    """Convert a Stripe Charge object to a ChargeResult."""
    return ChargeResult(
        id=charge.id,
        amount_cents=charge.amount,
        amount_captured_cents=charge.get("amount_captured") or 0,
        amount_refunded_cents=charge.get("amount_refunded") or 0,
        captured=bool(charge.get("captured")),
        raw_response=_to_dict(charge),
    )


def payment_intent_from_stripe(intent: Any) -> PaymentIntentResult:
    """Convert a Stripe PaymentIntent object to a PaymentIntentResult."""
    raw_charge = intent.get("latest_charge")
    latest_charge: Unresolved | Resolved[ChargeResult] | None
    if raw_charge is None:
        latest_charge = None
    elif isinstance(raw_charge, str):
        latest_charge = Unresolved(raw_charge)
    else:
        latest_charge = Resolved(charge_from_stripe(raw_charge))

    return PaymentIntentResult(
        id=intent.id,
        status=intent.status,
        amount_cents=intent.amount,
        amount_capturable_cents=intent.get("amount_capturable") or 0,
        amount_received_cents=intent.get("amount_received") or 0,
        currency=intent.get("currency") or "",
        payment_method_id=_object_id(intent.get("payment_method")),
        latest_charge=latest_charge,
        raw_response=_to_dict(intent),
    )


def checkout_session_from_stripe(session: Any) -> CheckoutSessionResult:
    """Convert a Stripe Checkout Session object to a CheckoutSessionResult."""
    raw_intent = session.get("payment_intent")
    payment_intent: Unresolved | Resolved[PaymentIntentResult] | None
    if raw_intent is None:
        payment_intent = None
    elif isinstance(raw_intent, str):
        payment_intent = Unresolved(raw_intent)
    else:
        payment_intent = Resolved(payment_intent_from_stripe(raw_intent))

    return CheckoutSessionResult(
        id=session.id,
        amount_total=session.get("amount_total"),
        payment_intent=payment_intent,
        raw_response=_to_dict(session),
    )


def refund_from_stripe(refund: Any) -> RefundResult:
    """
    Convert a Stripe Refund object to a RefundResult.

    Stripe omits failure_reason unless the refund failed, so optional
    fields are read with .get().
    """
    return RefundResult(
        id=refund.id,
        amount_cents=refund.amount,
        currency=refund.get("currency") or "",
        status=refund.status,
        payment_intent_id=_object_id(refund.get("payment_intent")),
        failure_reason=refund.get("failure_reason"),
        raw_response=_to_dict(refund),
    )


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are async classmethods - no instance state is maintained,
    so the class itself can be passed wherever a PaymentGateway is expected.

    Features:
    - Configurable timeouts on all API calls
    - Automatic error translation to domain exceptions
    - Structured logging with timing metrics

    Configuration (via settings):
    - STRIPE_SECRET_KEY: Stripe API secret key
    - STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
    - STRIPE_MAX_RETRIES: SDK network retries (default: 3)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    # One HTTPX client per timeout, shared by every call
    _http_clients: dict[float, stripe.HTTPXClient] = {}

    @classmethod
    def _configure_stripe(cls) -> None:
        """Configure Stripe client with API key, timeout and network retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        client = cls._http_clients.get(timeout)
        if client is None:
            # HTTPX serves the *_async methods
            client = stripe.HTTPXClient(timeout=timeout)
            cls._http_clients[timeout] = client
        stripe.default_http_client = client

    @classmethod
    async def close_http_clients(cls) -> None:
        """Close the cached HTTP clients, e.g. on application shutdown."""
        clients = list(cls._http_clients.values())
        cls._http_clients.clear()
        for client in clients:
            await client.close_async()

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Retrieval
    # =========================================================================

    @classmethod
    async def retrieve_checkout_session(
        cls,
        checkout_session_id: str,
        expand: list[str] | None = None,
    ) -> CheckoutSessionResult:
        """
        Retrieve a Checkout Session by ID.

        Args:
            checkout_session_id: Stripe Checkout Session ID (cs_xxx)
            expand: Fields to expand, e.g. ["payment_intent", "payment_intent.latest_charge"]

        Returns:
            CheckoutSessionResult

        Raises:
            StripeInvalidRequestError: Checkout Session not found
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_checkout_session",
            "checkout_session_id": checkout_session_id,
            "expand": expand,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            session = await stripe.checkout.Session.retrieve_async(
                checkout_session_id,
                expand=expand or [],
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={**log_context, "duration_ms": duration_ms},
            )

            return checkout_session_from_stripe(session)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise  # Never reached, but satisfies type checker

    @classmethod
    async def retrieve_payment_intent(
        cls,
        payment_intent_id: str,
        expand: list[str] | None = None,
    ) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            expand: Fields to expand, e.g. ["latest_charge"]

        Returns:
            PaymentIntentResult

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
            "expand": expand,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = await stripe.PaymentIntent.retrieve_async(
                payment_intent_id,
                expand=expand or [],
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return payment_intent_from_stripe(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    async def retrieve_refund(
        cls,
        refund_id: str,
    ) -> RefundResult:
        """
        Retrieve a Refund by ID.

        Used to poll a pending refund until it settles.

        Args:
            refund_id: Stripe Refund ID (re_xxx)

        Returns:
            RefundResult
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_refund",
            "refund_id": refund_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            refund = await stripe.Refund.retrieve_async(refund_id)

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": refund.status,
                    "duration_ms": duration_ms,
                },
            )

            return refund_from_stripe(refund)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Mutations
    # =========================================================================

    @classmethod
    async def create_payment_intent(
        cls,
        params: CreatePaymentIntentParams,
    ) -> PaymentIntentResult:
        """
        Create and confirm a Stripe PaymentIntent.

        Args:
            params: Parameters for creating the PaymentIntent

        Returns:
            PaymentIntentResult (latest_charge expanded per params.expand)

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "capture_method": params.capture_method,
            "customer_id": params.customer_id,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=params.amount_cents,
                currency=params.currency,
                customer=params.customer_id,
                payment_method=params.payment_method_id,
                capture_method=params.capture_method,
                confirm=params.confirm,
                automatic_payment_methods=params.automatic_payment_methods,
                expand=params.expand,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "payment_intent_id": intent.id,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return payment_intent_from_stripe(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    async def capture_payment_intent(
        cls,
        payment_intent_id: str,
        amount_to_capture: int | None = None,
    ) -> PaymentIntentResult:
        """
        Capture a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            amount_to_capture: Optional amount (for partial capture)

        Returns:
            PaymentIntentResult; status is 'succeeded' on success

        Raises:
            StripeInvalidRequestError: PaymentIntent not capturable
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "capture_payment_intent",
            "payment_intent_id": payment_intent_id,
            "amount_to_capture": amount_to_capture,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            capture_params: dict[str, Any] = {}
            if amount_to_capture is not None:
                capture_params["amount_to_capture"] = amount_to_capture

            intent = await stripe.PaymentIntent.capture_async(
                payment_intent_id,
                **capture_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "amount_captured": intent.get("amount_received"),
                    "duration_ms": duration_ms,
                },
            )

            return payment_intent_from_stripe(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    async def cancel_payment_intent(
        cls,
        payment_intent_id: str,
        cancellation_reason: str | None = None,
    ) -> PaymentIntentResult:
        """
        Cancel an uncaptured PaymentIntent, releasing its authorization.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            cancellation_reason: Optional reason (abandoned, duplicate, ...)

        Returns:
            PaymentIntentResult with status 'canceled'

        Raises:
            StripeInvalidRequestError: PaymentIntent already captured or canceled
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "cancel_payment_intent",
            "payment_intent_id": payment_intent_id,
            "cancellation_reason": cancellation_reason,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            cancel_params: dict[str, Any] = {}
            if cancellation_reason:
                cancel_params["cancellation_reason"] = cancellation_reason

            intent = await stripe.PaymentIntent.cancel_async(
                payment_intent_id,
                **cancel_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return payment_intent_from_stripe(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    async def create_refund(
        cls,
        payment_intent_id: str,
        amount_cents: int | None = None,
    ) -> RefundResult:
        """
        Create a refund for a PaymentIntent.

        The returned refund may still be 'pending'; use retrieve_refund
        to follow it to a terminal status.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            amount_cents: Amount to refund (None for full refund)

        Returns:
            RefundResult with refund details

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund_params: dict[str, Any] = {"payment_intent": payment_intent_id}
            if amount_cents is not None:
                refund_params["amount"] = amount_cents

            refund = await stripe.Refund.create_async(**refund_params)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "refund_id": refund.id,
                    "status": refund.status,
                    "duration_ms": duration_ms,
                },
            )

            return refund_from_stripe(refund)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Args:
            error: The Stripe exception
            log_context: Logging context dict
            duration_ms: Operation duration for logging

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeAPIUnavailableError: API unavailable
            StripeTimeoutError: Request timed out
        """
        logger = cls.get_logger()

        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                ) from error

            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Refetch before retrying.",
                    stripe_code="timeout",
                ) from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            # Invalid API key - permanent, operational issue
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error
