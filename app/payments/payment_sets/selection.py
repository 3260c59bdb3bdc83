"""
Allocation of an amount across PaymentIntents.

AllocationQueue decides which PaymentIntents a reconciliation step acts
on and in what order. Candidates are filtered by the status the action
requires and sorted ascending by amount; pop() always hands out the
largest remaining one, so the fewest PaymentIntents are touched. The
ascending sort is stable, which keeps the order deterministic for equal
amounts.

Running out of candidates while an amount is still outstanding means
the derived totals disagree with what Stripe reported per PaymentIntent.
That is a bug, and pop() raises AllocationExhaustedError with enough
context to diagnose it.

Usage:
    queue = AllocationQueue(
        payment_intents,
        status=REQUIRES_CAPTURE,
        action="cancel",
        amount=diff,
    )
    while remains > 0:
        payment_intent = queue.pop()
        ...
"""

from __future__ import annotations

from collections.abc import Sequence

from payments.adapters import PaymentIntentResult
from payments.exceptions import AllocationExhaustedError

# PaymentIntent statuses the reconciliation cares about
REQUIRES_CAPTURE = "requires_capture"
SUCCEEDED = "succeeded"


class AllocationQueue:
    """
    Largest-first queue of PaymentIntents in one status.

    Attributes:
        status: Status every candidate had when the queue was built
        action: What the caller does with popped intents (for error messages)
        amount: Amount the caller is trying to free or capture
    """

    def __init__(
        self,
        payment_intents: Sequence[PaymentIntentResult],
        status: str,
        action: str,
        amount: int,
    ):
        self.status = status
        self.action = action
        self.amount = amount
        self._payment_intents = list(payment_intents)
        # Sorted by priority; the tail is handed out first
        self._candidates = sorted(
            (pi for pi in payment_intents if pi.status == status),
            key=lambda pi: pi.amount_cents,
        )

    def __len__(self) -> int:
        return len(self._candidates)

    @property
    def remaining(self) -> list[PaymentIntentResult]:
        """Candidates not handed out yet, largest first."""
        return list(reversed(self._candidates))

    def pop(self) -> PaymentIntentResult:
        """
        Hand out the largest remaining candidate.

        Raises:
            AllocationExhaustedError: No candidate is left
        """
        if not self._candidates:
            raise AllocationExhaustedError(
                f"Logic Error: can't find the payment intent to {self.action}; "
                f"amount: {self.amount}",
                details={
                    "action": self.action,
                    "status": self.status,
                    "amount": self.amount,
                    "payment_intents": [
                        {
                            "id": pi.id,
                            "status": pi.status,
                            "amount": pi.amount_cents,
                            "amount_capturable": pi.amount_capturable_cents,
                            "amount_received": pi.amount_received_cents,
                        }
                        for pi in self._payment_intents
                    ],
                },
            )
        return self._candidates.pop()
