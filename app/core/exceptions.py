"""
Base exception classes for application-wide error handling.

This module provides the root of the exception hierarchy that enables:
- Consistent error payloads across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    └── payments.exceptions.PaymentError - Payment domain errors

Usage:
    from core.exceptions import BaseApplicationError

    # Raise with message only
    raise BaseApplicationError("Something went wrong")

    # Raise with error code and additional details
    raise BaseApplicationError(
        "Amount mismatch",
        error_code="AMOUNT_MISMATCH",
        details={"expected": 500, "actual": 400}
    )

    # Convert to dict for logging or API responses
    try:
        ...
    except BaseApplicationError as e:
        logger.error("Operation failed", extra=e.to_dict())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Provides a consistent interface for error handling across the application.
    All custom exceptions should inherit from this class.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (amounts, ids, metadata, etc.)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Payment intent not found",
                "error_code": "INVALID_STRIPE_REQUEST",
                "details": {"stripe_code": "resource_missing"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )
