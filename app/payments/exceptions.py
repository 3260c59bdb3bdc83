"""
Payment-specific exceptions for payment set reconciliation.

This module provides a hierarchy of exceptions for payment operations,
including caller errors, reconciliation invariant violations, and
Stripe-specific errors.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentValidationError - Invalid caller arguments (never retried)
    ├── PaymentSetInvariantError - Reconciliation logic violations (bugs)
    │   ├── AllocationExhaustedError - No candidate left to cancel/refund/capture
    │   ├── UnexpandedFieldError - Stripe field arrived as a bare id
    │   ├── MissingPaymentMethodError - No payment method to re-authorize with
    │   └── DuplicatePaymentIntentError - Linked intent also listed explicitly
    └── PaymentProcessingError - Payment processing failures
        ├── RefundFailedError - Refund settled in a non-success status
        ├── RefundPollingTimeoutError - Refund still pending after polling
        ├── CancellationBatchError - One or more parallel cancels failed
        └── StripeError - Base for all Stripe errors
            ├── StripeCardDeclinedError - Card declined (permanent)
            ├── StripeInsufficientFundsError - Insufficient funds (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeRateLimitError - Rate limited (transient, retry)
            ├── StripeAPIUnavailableError - API unavailable (transient, retry)
            └── StripeTimeoutError - Request timeout (transient, retry)

Usage:
    from payments.exceptions import (
        PaymentValidationError,
        RefundFailedError,
    )

    if amount < 0:
        raise PaymentValidationError(
            f"Negative amount is specified: {amount}",
            details={"amount": amount},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent error payloads.

    Example:
        try:
            await payment_set.change_amounts(400, 0)
        except PaymentError as e:
            logger.error("Payment set reconciliation failed", extra=e.to_dict())
            raise
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentValidationError(PaymentError):
    """
    Raised when a caller passes invalid arguments.

    Use for:
    - Negative target amounts
    - Capture amounts above the current capturable total

    These are contract errors: they are surfaced immediately and never retried.
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class PaymentProcessingError(PaymentError):
    """
    Raised when payment processing fails at the gateway.

    Use for:
    - Stripe API errors
    - Refunds that settle as a failure
    - Partial failures of a parallel batch
    """

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


# =============================================================================
# Reconciliation Invariant Exceptions
# =============================================================================


class PaymentSetInvariantError(PaymentError):
    """
    Raised when a payment set reaches a state its logic assumes impossible.

    These indicate an inconsistency between derived totals and what Stripe
    reported per payment intent, or a broken contract with Stripe (a field
    requested with ``expand`` came back unexpanded). Treat them as bugs:
    ``details`` always carries the amounts and candidate ids involved.
    """

    default_error_code: str = "PAYMENT_SET_INVARIANT_VIOLATED"


class AllocationExhaustedError(PaymentSetInvariantError):
    """
    No candidate payment intent is left while an amount is still outstanding.

    Example:
        raise AllocationExhaustedError(
            "Logic Error: can't find the payment intent to cancel",
            details={
                "amount": 100,
                "payment_intent_ids": ["pi_1", "pi_2"],
                "remaining_candidate_ids": [],
            },
        )
    """

    default_error_code: str = "ALLOCATION_EXHAUSTED"


class UnexpandedFieldError(PaymentSetInvariantError):
    """Stripe returned a bare id for a field that was requested expanded."""

    default_error_code: str = "UNEXPANDED_FIELD"


class MissingPaymentMethodError(PaymentSetInvariantError):
    """
    None of the payment intents carries a payment method.

    A new payment intent can only be created from a payment method the
    customer already used; onboarding a fresh one is out of scope.
    """

    default_error_code: str = "MISSING_PAYMENT_METHOD"


class DuplicatePaymentIntentError(PaymentSetInvariantError):
    """The checkout session's payment intent was also supplied explicitly."""

    default_error_code: str = "DUPLICATE_PAYMENT_INTENT"


# =============================================================================
# Processing Exceptions
# =============================================================================


class RefundFailedError(PaymentProcessingError):
    """
    A refund left the ``pending`` status with anything but ``succeeded``.

    Attributes:
        refund_id: Stripe Refund ID (re_xxx)
        failure_reason: Stripe-reported ``failure_reason`` (may be None)
    """

    default_error_code: str = "REFUND_FAILED"

    def __init__(
        self,
        refund_id: str,
        failure_reason: str | None,
        status: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = {
            **(details or {}),
            "refund_id": refund_id,
            "failure_reason": failure_reason,
            "status": status,
        }
        super().__init__(
            f"Failed to refund: id: {refund_id}, failure_reason: {failure_reason}",
            details=details,
        )
        self.refund_id = refund_id
        self.failure_reason = failure_reason
        self.status = status


class RefundPollingTimeoutError(PaymentProcessingError):
    """
    A refund was still ``pending`` when the polling budget ran out.

    The refund may still settle on Stripe's side. Callers should refetch
    the payment set before deciding what to do next.
    """

    default_error_code: str = "REFUND_POLLING_TIMEOUT"


class CancellationBatchError(PaymentProcessingError):
    """
    One or more cancels in a parallel cancel batch failed.

    Every cancel in the batch is attempted before this is raised.

    Attributes:
        errors: The original exceptions, in candidate order
    """

    default_error_code: str = "CANCELLATION_BATCH_FAILED"

    def __init__(
        self,
        errors: list[BaseException],
        payment_intent_ids: list[str] | None = None,
    ):
        super().__init__(
            f"{len(errors)} payment intent cancellation(s) failed",
            details={
                "payment_intent_ids": payment_intent_ids or [],
                "errors": [str(error) for error in errors],
            },
        )
        self.errors = errors


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's internal error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: Whether the operation can be retried

    Payment sets never retry on their own; is_retryable is kept so that
    callers wrapping a reconciliation in their own retry loop can decide.
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """
    Card was declined by the issuing bank.

    Raised when re-authorizing against the customer's saved payment method
    fails. The decline_code attribute contains the specific reason.
    """

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInsufficientFundsError(StripeError):
    """Insufficient funds on the payment method."""

    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Possible causes:
    - Unknown payment intent, checkout session or refund id
    - Canceling a payment intent that is already captured
    - Refunding more than the captured amount

    Note:
        This usually indicates a bug in our code, not a user error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    This covers network connectivity issues and Stripe server errors (5xx).
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side.
    Refetch the payment set before acting again.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentValidationError",
    "PaymentProcessingError",
    # Invariants
    "PaymentSetInvariantError",
    "AllocationExhaustedError",
    "UnexpandedFieldError",
    "MissingPaymentMethodError",
    "DuplicatePaymentIntentError",
    # Processing
    "RefundFailedError",
    "RefundPollingTimeoutError",
    "CancellationBatchError",
    # Stripe-specific
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
]
