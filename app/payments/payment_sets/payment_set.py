"""
Payment set reconciliation against Stripe.

A payment set is one purchase seen through Stripe: a Checkout Session
plus any PaymentIntents created later to authorize or charge more. The
PaymentSet class reads how much is authorized (capturable) and captured
(net of refunds), and moves those amounts toward caller-given targets
with the fewest cancels, captures, refunds and new PaymentIntents.

Stripe is the only source of truth. Every method works on the in-memory
snapshot and issues mutations from it; after a mutation, call refetch()
before trusting the derived amounts again.

A PaymentSet takes no locks and checks nothing against Stripe before
acting. Do not share one instance between concurrent callers, and
serialise reconciliations of the same Checkout Session externally.

Usage:
    from payments.payment_sets import PaymentSet

    payment_set = await PaymentSet.from_ids(
        customer_id="cus_xxx",
        checkout_session_id="cs_xxx",
        payment_intent_ids=order.extra_payment_intent_ids,
    )

    # Hold 400 instead of 500
    new_id = await payment_set.change_amount_capturable(400)
    if new_id:
        order.extra_payment_intent_ids.append(new_id)

    await payment_set.refetch()
    await payment_set.capture()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from django.conf import settings

from payments.adapters import (
    CheckoutSessionResult,
    CreatePaymentIntentParams,
    PaymentGateway,
    PaymentIntentResult,
    StripeAdapter,
)
from payments.exceptions import (
    CancellationBatchError,
    MissingPaymentMethodError,
    PaymentValidationError,
)
from payments.payment_sets import amounts as derived_amounts
from payments.payment_sets.amounts import PaymentSetAmounts
from payments.payment_sets.refund_polling import RefundPoller
from payments.payment_sets.selection import (
    REQUIRES_CAPTURE,
    SUCCEEDED,
    AllocationQueue,
)
from payments.payment_sets.snapshot import (
    PaymentSetSnapshot,
    assert_latest_charge_expanded,
    assert_payment_intent_expanded,
    latest_charge_of,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CHECKOUT_SESSION_EXPAND = ["payment_intent", "payment_intent.latest_charge"]
PAYMENT_INTENT_EXPAND = ["latest_charge"]

# Reason sent with the cancels that follow a capture
REMAINING_AUTHORIZATION_CANCELLATION_REASON = "abandoned"


class PaymentSet:
    """
    A Checkout Session and its PaymentIntents, reconciled as one purchase.

    Attributes:
        customer_id: Stripe Customer new PaymentIntents are created for
        gateway: Where Stripe calls go (StripeAdapter by default)
        currency: Currency of new PaymentIntents
    """

    def __init__(
        self,
        customer_id: str,
        checkout_session: CheckoutSessionResult,
        payment_intents: Sequence[PaymentIntentResult] = (),
        gateway: PaymentGateway = StripeAdapter,
        refund_poller: RefundPoller | None = None,
        currency: str | None = None,
    ):
        self.customer_id = customer_id
        self.gateway = gateway
        self.refund_poller = refund_poller or RefundPoller(gateway)
        self.currency = currency or getattr(settings, "PAYMENT_SET_CURRENCY", "jpy")
        self._snapshot = PaymentSetSnapshot(
            checkout_session=assert_payment_intent_expanded(checkout_session),
            payment_intents=tuple(
                assert_latest_charge_expanded(pi) for pi in payment_intents
            ),
        )

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    async def from_ids(
        cls,
        customer_id: str,
        checkout_session_id: str,
        payment_intent_ids: Sequence[str] = (),
        gateway: PaymentGateway = StripeAdapter,
        **kwargs,
    ) -> PaymentSet:
        """
        Fetch a payment set from Stripe.

        Args:
            customer_id: Stripe Customer ID (cus_xxx)
            checkout_session_id: Stripe Checkout Session ID (cs_xxx)
            payment_intent_ids: PaymentIntents created after checkout.
                Must not contain the Checkout Session's own PaymentIntent.
            gateway: Gateway to use (StripeAdapter by default)
            **kwargs: Passed through to the constructor

        Returns:
            A PaymentSet over freshly fetched data

        Raises:
            UnexpandedFieldError: Stripe ignored an expand
            DuplicatePaymentIntentError: The session's PaymentIntent was listed
        """
        checkout_session, payment_intents = await cls._fetch(
            gateway, checkout_session_id, payment_intent_ids
        )
        return cls(customer_id, checkout_session, payment_intents, gateway, **kwargs)

    async def refetch(self) -> None:
        """
        Re-fetch the Checkout Session and every tracked PaymentIntent.

        The snapshot is replaced only once everything was fetched and
        checked; on any failure the previous snapshot stays in place.
        """
        checkout_session, payment_intents = await self._fetch(
            self.gateway,
            self._snapshot.checkout_session.id,
            self._snapshot.payment_intent_ids,
        )
        self._snapshot = self._snapshot.replaced_by(checkout_session, payment_intents)
        logger.debug(
            "Payment set refetched",
            extra={
                "checkout_session_id": checkout_session.id,
                "snapshot_version": self._snapshot.version,
                **self.amounts.to_dict(),
            },
        )

    @staticmethod
    async def _fetch(
        gateway: PaymentGateway,
        checkout_session_id: str,
        payment_intent_ids: Sequence[str],
    ) -> tuple[CheckoutSessionResult, tuple[PaymentIntentResult, ...]]:
        checkout_session, *payment_intents = await asyncio.gather(
            gateway.retrieve_checkout_session(
                checkout_session_id, expand=CHECKOUT_SESSION_EXPAND
            ),
            *(
                gateway.retrieve_payment_intent(pi_id, expand=PAYMENT_INTENT_EXPAND)
                for pi_id in payment_intent_ids
            ),
        )
        return (
            assert_payment_intent_expanded(checkout_session),
            tuple(assert_latest_charge_expanded(pi) for pi in payment_intents),
        )

    # =========================================================================
    # Derived Amounts
    # =========================================================================

    @property
    def checkout_session(self) -> CheckoutSessionResult:
        return self._snapshot.checkout_session

    @property
    def payment_intents(self) -> tuple[PaymentIntentResult, ...]:
        """The Checkout Session's PaymentIntent (if any), then the tracked ones."""
        return self._snapshot.effective_payment_intents

    @property
    def payment_intent_ids(self) -> list[str]:
        """Ids of the tracked PaymentIntents, including ones created here."""
        return self._snapshot.payment_intent_ids

    @property
    def amount(self) -> int:
        """Currently pledged total, including amounts not yet authorized or captured."""
        return derived_amounts.amount(self.checkout_session, self.payment_intents)

    @property
    def amount_capturable(self) -> int:
        """Authorized and still capturable."""
        return derived_amounts.amount_capturable(self.payment_intents)

    @property
    def amount_net(self) -> int:
        """Captured, refunds excluded."""
        return derived_amounts.amount_net(self.payment_intents)

    @property
    def amount_refunded(self) -> int:
        """Refunded, including uncaptured amounts released by cancels."""
        return derived_amounts.amount_refunded(self.payment_intents)

    @property
    def amounts(self) -> PaymentSetAmounts:
        """All four derived amounts from the current snapshot."""
        return PaymentSetAmounts.compute(
            self.checkout_session, self.payment_intents
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def change_amount_capturable(self, amount: int) -> str | None:
        """
        Change the authorized (capturable) amount to `amount`.

        Lowering cancels uncaptured PaymentIntents, largest first, until
        enough is released. Canceling can release more than needed; the
        excess, like any increase, is re-authorized with one new
        manual-capture PaymentIntent on an existing payment method.

        Args:
            amount: Target capturable amount

        Returns:
            Id of the PaymentIntent created, or None

        Raises:
            PaymentValidationError: amount is negative
            AllocationExhaustedError: Nothing left to cancel
            MissingPaymentMethodError: No payment method to re-authorize with
        """
        self._validate_target(amount, "amount_capturable")
        payment_intents = self.payment_intents
        diff = self.amount_capturable - amount
        if diff == 0:
            return None

        queue = AllocationQueue(
            payment_intents, status=REQUIRES_CAPTURE, action="cancel", amount=diff
        )

        diff_remains = diff
        while diff_remains > 0:
            payment_intent = queue.pop()

            await self.gateway.cancel_payment_intent(payment_intent.id)
            logger.info(
                "Payment intent is canceled",
                extra={
                    "payment_intent_id": payment_intent.id,
                    "amount_capturable": payment_intent.amount_capturable_cents,
                },
            )

            diff_remains -= payment_intent.amount_capturable_cents

        if diff_remains < 0:
            return await self._create_payment_intent(-diff_remains, "manual")
        return None

    async def change_amount_net(self, amount: int) -> str | None:
        """
        Change the captured amount (net of refunds) to `amount`.

        Lowering refunds captured PaymentIntents, largest first, waiting
        for each refund to settle before moving on. Raising creates one
        new PaymentIntent that is captured automatically.

        Args:
            amount: Target net amount

        Returns:
            Id of the PaymentIntent created, or None

        Raises:
            PaymentValidationError: amount is negative
            AllocationExhaustedError: Nothing left to refund
            RefundFailedError: A refund settled as a failure
            RefundPollingTimeoutError: A refund stayed pending
            MissingPaymentMethodError: No payment method to charge
        """
        self._validate_target(amount, "amount_net")
        payment_intents = self.payment_intents
        diff = self.amount_net - amount
        if diff == 0:
            return None

        queue = AllocationQueue(
            payment_intents, status=SUCCEEDED, action="refund", amount=diff
        )

        diff_remains = diff
        while diff_remains > 0:
            payment_intent = queue.pop()

            charge = latest_charge_of(payment_intent)
            refundable_amount = payment_intent.amount_received_cents - (
                charge.amount_refunded_cents if charge else 0
            )
            refund_amount = min(diff_remains, refundable_amount)
            if refund_amount <= 0:
                logger.warning(
                    "Payment intent has nothing left to refund; skipping",
                    extra={
                        "payment_intent_id": payment_intent.id,
                        "refundable_amount": refundable_amount,
                    },
                )
                continue

            refund = await self.gateway.create_refund(
                payment_intent.id, amount_cents=refund_amount
            )
            await self.refund_poller.wait_for_settlement(refund)
            logger.info(
                "Refund created",
                extra={
                    "payment_intent_id": payment_intent.id,
                    "refund_id": refund.id,
                    "amount": refund_amount,
                },
            )

            diff_remains -= refund_amount

        if diff_remains < 0:
            return await self._create_payment_intent(-diff_remains, "automatic")
        return None

    async def capture(
        self,
        amount: int | None = None,
        cancel_remaining_authorization: bool = True,
    ) -> None:
        """
        Capture `amount` from uncaptured PaymentIntents, largest first.

        Each PaymentIntent captures what it can up to what is still needed.
        A capture that comes back with a non-success status is logged and
        skipped, so the result may be partial.

        Args:
            amount: Amount to capture (default: everything capturable)
            cancel_remaining_authorization: Cancel, in parallel, every
                uncaptured PaymentIntent the capture did not touch

        Raises:
            PaymentValidationError: amount is negative or above amount_capturable
            CancellationBatchError: Some of the remaining cancels failed
        """
        payment_intents = self.payment_intents
        capturable = self.amount_capturable
        if amount is not None:
            if amount == 0:
                return
            if amount < 0:
                raise PaymentValidationError(
                    f"Negative amount is specified: {amount}",
                    details={"amount": amount},
                )
            if amount > capturable:
                raise PaymentValidationError(
                    "Specified amount is bigger than amountCapturable. "
                    f"amount: {amount} amountCapturable: {capturable}",
                    details={"amount": amount, "amount_capturable": capturable},
                )
        else:
            amount = capturable

        queue = AllocationQueue(
            payment_intents, status=REQUIRES_CAPTURE, action="capture", amount=amount
        )

        amount_remains = amount
        failed_ids: list[str] = []
        while amount_remains:
            if not queue and failed_ids:
                logger.warning(
                    "Capture finished partially",
                    extra={
                        "amount": amount,
                        "amount_remains": amount_remains,
                        "failed_payment_intent_ids": failed_ids,
                    },
                )
                break
            payment_intent = queue.pop()

            amount_to_capture = min(
                payment_intent.amount_capturable_cents, amount_remains
            )
            captured = await self.gateway.capture_payment_intent(
                payment_intent.id, amount_to_capture=amount_to_capture
            )

            # Stripe answers 'succeeded' or an erroneous status
            if captured.status != SUCCEEDED:
                logger.error(
                    "The payment intent can't be captured",
                    extra={
                        "payment_intent_id": payment_intent.id,
                        "status": captured.status,
                        "amount_to_capture": amount_to_capture,
                    },
                )
                failed_ids.append(payment_intent.id)
                continue

            logger.info(
                "Payment intent is captured",
                extra={
                    "payment_intent_id": payment_intent.id,
                    "amount": amount_to_capture,
                },
            )
            amount_remains -= amount_to_capture

        if cancel_remaining_authorization:
            await self._cancel_all(queue.remaining)

    async def change_amounts(self, amount_capturable: int, amount_net: int) -> None:
        """
        Move both the capturable and the net amount to their targets.

        When net goes up while capturable goes down, the overlap is captured
        from the existing authorizations first, so money that would be
        released is charged instead of being refunded and re-authorized.
        The payment set is refetched after that capture, since the captured
        PaymentIntents are no longer uncaptured. Then capturable is adjusted,
        then net.

        Args:
            amount_capturable: Target capturable amount
            amount_net: Target net amount
        """
        self._validate_target(amount_capturable, "amount_capturable")
        self._validate_target(amount_net, "amount_net")

        capturable_amount_diff = amount_capturable - self.amount_capturable
        net_amount_diff = amount_net - self.amount_net
        if net_amount_diff > 0 and capturable_amount_diff < 0:
            await self.capture(
                min(net_amount_diff, -capturable_amount_diff),
                cancel_remaining_authorization=False,
            )
            await self.refetch()
        await self.change_amount_capturable(amount_capturable)
        await self.change_amount_net(amount_net)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validate_target(amount: int, name: str) -> None:
        if amount < 0:
            raise PaymentValidationError(
                f"Negative {name} is specified: {amount}",
                details={name: amount},
            )

    async def _create_payment_intent(self, amount: int, capture_method: str) -> str:
        """Create, confirm and start tracking a new PaymentIntent."""
        payment_intents = self.payment_intents
        payment_method_id = next(
            (pi.payment_method_id for pi in payment_intents if pi.payment_method_id),
            None,
        )
        if not payment_method_id:
            ids = [pi.id for pi in payment_intents]
            raise MissingPaymentMethodError(
                f"These payment intents has no payment methods: {ids}",
                details={"payment_intent_ids": ids, "amount": amount},
            )

        payment_intent = await self.gateway.create_payment_intent(
            CreatePaymentIntentParams(
                amount_cents=amount,
                currency=self.currency,
                customer_id=self.customer_id,
                payment_method_id=payment_method_id,
                capture_method=capture_method,
                expand=list(PAYMENT_INTENT_EXPAND),
            )
        )
        logger.info(
            "New payment intent is created",
            extra={
                "payment_intent_id": payment_intent.id,
                "amount": amount,
                "capture_method": capture_method,
            },
        )
        self._snapshot = self._snapshot.with_payment_intent(
            assert_latest_charge_expanded(payment_intent)
        )
        return payment_intent.id

    async def _cancel_all(self, payment_intents: Sequence[PaymentIntentResult]) -> None:
        """Cancel every uncaptured PaymentIntent in parallel; fail together."""
        # A 'succeeded' PaymentIntent can't be canceled even with amount_capturable left
        targets = [pi for pi in payment_intents if pi.status == REQUIRES_CAPTURE]
        if not targets:
            return

        results = await asyncio.gather(
            *(
                self.gateway.cancel_payment_intent(
                    pi.id,
                    cancellation_reason=REMAINING_AUTHORIZATION_CANCELLATION_REASON,
                )
                for pi in targets
            ),
            return_exceptions=True,
        )

        errors: list[BaseException] = []
        failed_ids: list[str] = []
        for payment_intent, result in zip(targets, results):
            if isinstance(result, BaseException):
                errors.append(result)
                failed_ids.append(payment_intent.id)
                continue
            logger.info(
                "Payment intent is canceled",
                extra={
                    "payment_intent_id": payment_intent.id,
                    "cancellation_reason": REMAINING_AUTHORIZATION_CANCELLATION_REASON,
                },
            )

        if errors:
            raise CancellationBatchError(errors, payment_intent_ids=failed_ids)
