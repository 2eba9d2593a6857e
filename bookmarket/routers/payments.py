"""Hosted checkout session creation."""

from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends

from bookmarket.auth import BoundIdentity, ensure_self
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.deps import get_db_service, get_payment_broker, require_user
from bookmarket.errors import InvalidInput
from bookmarket.models import CheckoutRequest, CheckoutSessionResponse, PaymentStatus
from bookmarket.payments import StripePaymentBroker, to_minor_units

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Payments"])


def checkout_mismatches(checkout: CheckoutRequest, order: Dict[str, Any]) -> List[str]:
    """Names of the echoed checkout fields that disagree with the stored order."""
    mismatches = []
    if checkout.book_title is not None and checkout.book_title != order.get("bookTitle"):
        mismatches.append("bookTitle")
    if checkout.price is not None and to_minor_units(checkout.price) != to_minor_units(order.get("price", 0)):
        mismatches.append("price")
    if checkout.quantity is not None and checkout.quantity != order.get("quantity", 1):
        mismatches.append("quantity")
    return mismatches


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    checkout: CheckoutRequest,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
    payment_broker: StripePaymentBroker = Depends(get_payment_broker),
):
    """
    Obtain a hosted checkout URL for one of the caller's unpaid orders.

    The amount charged is the stored order's price and quantity. Creating
    the session does not change the order; payment is recorded by the
    payment-success route.
    """
    ensure_self(identity, checkout.email)
    order = await db_service.get_order(checkout.order_id)
    ensure_self(identity, order.get("email"))
    if order.get("payment_status") != PaymentStatus.UNPAID.value:
        raise InvalidInput("Order is not awaiting payment.")

    mismatches = checkout_mismatches(checkout, order)
    if mismatches:
        logger.warning("Checkout details differ from order", order_id=checkout.order_id, fields=mismatches)
        raise InvalidInput("Checkout details do not match the order.", fields=mismatches)

    url = await payment_broker.create_session(order, checkout.email)
    return CheckoutSessionResponse(url=url)
