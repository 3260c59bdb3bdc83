"""
Waiting for a Stripe refund to settle.

A refund is created 'pending' more often than not. RefundPoller follows
it until it leaves that status, sleeping with exponential backoff between
retrievals: the first delay is short, each next one doubles, and no delay
exceeds the configured cap. The number of retrievals is bounded too; a
refund still pending after that raises RefundPollingTimeoutError.

Settlement is modelled as RefundState:
- PENDING: keep polling
- SUCCEEDED: done
- FAILED: raise RefundFailedError with Stripe's failure_reason

Configuration (via settings):
- PAYMENT_SET_REFUND_POLL_INITIAL_DELAY_SECONDS (default: 0.1)
- PAYMENT_SET_REFUND_POLL_MAX_DELAY_SECONDS (default: 5.0)
- PAYMENT_SET_REFUND_POLL_MAX_ATTEMPTS (default: 20)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings

from payments.exceptions import RefundFailedError, RefundPollingTimeoutError

if TYPE_CHECKING:
    from payments.adapters import PaymentGateway, RefundResult

logger = logging.getLogger(__name__)


class RefundState(str, Enum):
    """Where a refund is in its settlement."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def of(cls, refund: RefundResult) -> RefundState:
        # Anything other than pending/succeeded (failed, canceled,
        # requires_action) counts as a failed settlement
        if refund.status == "pending":
            return cls.PENDING
        if refund.status == "succeeded":
            return cls.SUCCEEDED
        return cls.FAILED


class RefundPoller:
    """
    Polls a refund until it settles.

    Attributes:
        gateway: Gateway used to re-retrieve the refund
        initial_delay: Seconds slept before the first retrieval
        max_delay: Upper bound for a single sleep
        max_attempts: Upper bound for the number of retrievals
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        initial_delay: float | None = None,
        max_delay: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.initial_delay = (
            initial_delay
            if initial_delay is not None
            else getattr(settings, "PAYMENT_SET_REFUND_POLL_INITIAL_DELAY_SECONDS", 0.1)
        )
        self.max_delay = (
            max_delay
            if max_delay is not None
            else getattr(settings, "PAYMENT_SET_REFUND_POLL_MAX_DELAY_SECONDS", 5.0)
        )
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else getattr(settings, "PAYMENT_SET_REFUND_POLL_MAX_ATTEMPTS", 20)
        )
        self._sleep = sleep

    def delays(self):
        """Yield the sleep before each retrieval, capped at max_delay."""
        delay = self.initial_delay
        for _ in range(self.max_attempts):
            yield min(delay, self.max_delay)
            delay *= 2

    async def wait_for_settlement(self, refund: RefundResult) -> RefundResult:
        """
        Return the refund once it has succeeded.

        Args:
            refund: The refund as returned by create_refund

        Returns:
            The settled refund

        Raises:
            RefundFailedError: The refund settled in a non-success status
            RefundPollingTimeoutError: Still pending after max_attempts retrievals
        """
        attempts = 0
        delays = self.delays()
        while RefundState.of(refund) is RefundState.PENDING:
            delay = next(delays, None)
            if delay is None:
                raise RefundPollingTimeoutError(
                    f"Refund {refund.id} is still pending after {attempts} polls",
                    details={
                        "refund_id": refund.id,
                        "payment_intent_id": refund.payment_intent_id,
                        "attempts": attempts,
                    },
                )
            await self._sleep(delay)
            refund = await self.gateway.retrieve_refund(refund.id)
            attempts += 1
            logger.debug(
                "Polled pending refund",
                extra={
                    "refund_id": refund.id,
                    "status": refund.status,
                    "attempt": attempts,
                    "delay": delay,
                },
            )

        if RefundState.of(refund) is RefundState.FAILED:
            raise RefundFailedError(
                refund.id,
                refund.failure_reason,
                status=refund.status,
                details={"payment_intent_id": refund.payment_intent_id},
            )
        return refund
