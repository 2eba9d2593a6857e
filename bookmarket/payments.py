"""
Hosted checkout through Stripe.

The broker only creates checkout sessions and reports whether a session
settled; order state changes happen in the order routes.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Union

import stripe
import structlog
from fastapi.concurrency import run_in_threadpool

from bookmarket.errors import UpstreamFailure

logger = structlog.get_logger(__name__)


def to_minor_units(amount: Union[float, int, str, Decimal]) -> int:
    """
    Convert a decimal currency amount to integer minor units.

    Rounds half up, so 19.99 becomes 1999 and 0.125 becomes 13.
    """
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_checkout_params(
    order: Mapping[str, Any], customer_email: str, client_domain: str, currency: str
) -> Dict[str, Any]:
    """
    Build the checkout session parameters for a stored order.

    Name, unit price and quantity come from the order, and the order id is
    sent as `client_reference_id` so a settled session can be matched back
    to the order it paid for.
    """
    order_id = order["_id"]
    return {
        "line_items": [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": order["bookTitle"]},
                    "unit_amount": to_minor_units(order["price"]),
                },
                "quantity": order.get("quantity", 1),
            }
        ],
        "customer_email": customer_email,
        "client_reference_id": order_id,
        "mode": "payment",
        "success_url": (
            f"{client_domain}/payment/{order_id}"
            "?status=success&session_id={CHECKOUT_SESSION_ID}"
        ),
        "cancel_url": (
            f"{client_domain}/dashboard/my-orders?status=cancelled&orderId={order_id}"
        ),
    }


class StripePaymentBroker:
    """Creates and inspects Stripe checkout sessions."""

    def __init__(self, secret_key: str, client_domain: str, currency: str = "usd"):
        self.secret_key = secret_key
        self.client_domain = client_domain
        self.currency = currency

    async def create_session(self, order: Mapping[str, Any], customer_email: str) -> str:
        """
        Create a hosted checkout session for a stored order.

        Args:
            order: Stored order document, with `_id` as a hex string
            customer_email: Email prefilled on the checkout page

        Returns:
            URL of the hosted checkout page

        Raises:
            UpstreamFailure: If Stripe rejects the request or is unreachable
        """
        params = build_checkout_params(order, customer_email, self.client_domain, self.currency)
        try:
            session = await run_in_threadpool(
                stripe.checkout.Session.create, api_key=self.secret_key, **params
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout error", order_id=order["_id"], error=str(e))
            raise UpstreamFailure("Failed to create checkout session") from e

        logger.info("Checkout session created", order_id=order["_id"], session_id=session.id)
        return session.url

    async def is_session_settled(self, session_id: str, order_id: str) -> bool:
        """Return True if the session paid for `order_id` and its payment has been captured."""
        try:
            session = await run_in_threadpool(
                stripe.checkout.Session.retrieve, session_id, api_key=self.secret_key
            )
        except stripe.StripeError as e:
            logger.error("Stripe session lookup failed", session_id=session_id, error=str(e))
            raise UpstreamFailure("Failed to verify payment session") from e
        if session.client_reference_id != order_id:
            logger.warning(
                "Payment session belongs to another order",
                session_id=session_id,
                order_id=order_id,
                session_order_id=session.client_reference_id,
            )
            return False
        return session.payment_status == "paid"
