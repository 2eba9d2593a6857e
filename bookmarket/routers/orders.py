"""Order placement, history and lifecycle transitions."""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends

from bookmarket.auth import BoundIdentity, ensure_self
from bookmarket.database import ORDER_DETAIL_PROJECTION, MarketplaceDatabaseService
from bookmarket.deps import (
    get_db_service, get_payment_broker, require_admin, require_librarian, require_user
)
from bookmarket.errors import InvalidInput, PaymentNotSettled
from bookmarket.models import (
    InsertResponse, OrderCreate, OrderStatusUpdate, PaymentConfirmation,
    PaymentStatus, PaymentSuccessResponse, UpdateResponse
)
from bookmarket.payments import StripePaymentBroker

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Orders"])


async def get_owned_order(
    db_service: MarketplaceDatabaseService, order_id: str, identity: BoundIdentity
) -> Dict[str, Any]:
    """Fetch an order and make sure the caller placed it."""
    order = await db_service.get_order(order_id)
    ensure_self(identity, order.get("email"))
    return order


@router.post("/orders", response_model=InsertResponse)
async def create_order(
    order: OrderCreate,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Place an order; title and price are taken from the stored book."""
    ensure_self(identity, order.email)
    book = await db_service.get_book(order.book_id)

    document = order.model_dump(by_alias=True, exclude_none=True)
    document["bookTitle"] = book.get("title")
    document["price"] = book.get("price")
    inserted_id = await db_service.create_order(document)
    return InsertResponse(inserted_id=inserted_id)


@router.get("/orders", response_model=List[Dict[str, Any]])
async def get_all_orders(
    identity: BoundIdentity = Depends(require_admin),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.get_all_orders()


@router.get("/orders/{order_id}", response_model=Dict[str, Any])
async def get_order(
    order_id: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    order = await db_service.get_order(order_id, ORDER_DETAIL_PROJECTION)
    ensure_self(identity, order.get("email"))
    return order


@router.get("/my-orders/{email}", response_model=List[Dict[str, Any]])
async def get_my_orders(
    email: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    ensure_self(identity, email)
    return await db_service.get_orders_for_user(email)


@router.get("/my-invoices/{email}", response_model=List[Dict[str, Any]])
async def get_my_invoices(
    email: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    ensure_self(identity, email)
    return await db_service.get_invoices_for_user(email)


@router.get("/librarian-orders/{email}", response_model=List[Dict[str, Any]])
async def get_librarian_orders(
    email: str,
    identity: BoundIdentity = Depends(require_librarian),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Orders placed for books owned by the librarian."""
    ensure_self(identity, email, allow_admin=True)
    return await db_service.get_orders_for_librarian(email)


@router.patch("/orders/update-status/{order_id}", response_model=UpdateResponse)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    identity: BoundIdentity = Depends(require_librarian),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Set the fulfillment status; any allowed status may follow any other."""
    modified = await db_service.update_order_status(order_id, update.new_status.value)
    return UpdateResponse(modified_count=modified)


@router.patch("/orders/cancel/{order_id}", response_model=UpdateResponse)
async def cancel_order(
    order_id: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Cancel an order from any state, including delivered."""
    await get_owned_order(db_service, order_id, identity)
    modified = await db_service.cancel_order(order_id)
    return UpdateResponse(modified_count=modified)


@router.patch("/orders/payment-success/{order_id}", response_model=PaymentSuccessResponse)
async def confirm_payment(
    order_id: str,
    confirmation: Optional[PaymentConfirmation] = None,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
    payment_broker: StripePaymentBroker = Depends(get_payment_broker),
):
    """
    Mark an order paid.

    With a session id the payment provider must report that session as
    settled for this order; without one the client's claim is accepted.
    An order that is already paid is rejected.
    """
    order = await get_owned_order(db_service, order_id, identity)
    if order.get("payment_status") == PaymentStatus.PAID.value:
        raise InvalidInput("Order is already paid.")
    session_id = confirmation.session_id if confirmation else None

    if session_id:
        if not await payment_broker.is_session_settled(session_id, order_id):
            logger.info("Payment session not settled", order_id=order_id, session_id=session_id)
            raise PaymentNotSettled()
    else:
        logger.warning("No session ID provided, accepting client payment claim", order_id=order_id)

    await db_service.mark_order_paid(order_id, session_id)
    return PaymentSuccessResponse(message="Order updated to paid.")
