"""Stripe adapter for the payment collaborator.

Wraps `stripe.StripeClient` so the rest of the app only sees
`create_payment_intent` and `CollaboratorError`.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from flowbench.common.errors import CollaboratorError
from flowbench.common.logging import logger


def to_minor_units(amount: float) -> int:
    """Convert a major-unit amount (25.5) to Stripe's integer minor units (2550)."""

    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentProvider:
    """Creates payment intents for marketplace orders."""

    def __init__(
        self,
        api_key: str,
        currency: str = "usd",
        capture_method: str = "manual",
        client: Any = None,
    ) -> None:
        self.client = client if client is not None else stripe.StripeClient(api_key)
        self.currency = currency
        self.capture_method = capture_method

    def create_payment_intent(self, amount: float, order_id: str) -> Any:
        """Create one intent tagged with the order id; returns the Stripe object."""

        params = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "metadata": {"orderId": order_id},
            "capture_method": self.capture_method,
        }
        try:
            intent = self.client.payment_intents.create(params=params)
        except stripe.StripeError as exc:
            logger.warning(
                "stripe payment intent failed order_id=%s error=%s code=%s",
                order_id,
                type(exc).__name__,
                getattr(exc, "code", None),
            )
            raise CollaboratorError("stripe", "payment intent creation failed") from exc
        logger.info("payment intent created order_id=%s payment_intent_id=%s", order_id, intent["id"])
        return intent
