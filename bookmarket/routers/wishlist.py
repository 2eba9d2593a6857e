"""Wishlist routes."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from bookmarket.auth import BoundIdentity, ensure_self
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.deps import get_db_service, require_user
from bookmarket.models import InsertResponse, WishlistCreate

router = APIRouter(tags=["Wishlist"])


@router.post("/wishlist", response_model=InsertResponse)
async def add_to_wishlist(
    entry: WishlistCreate,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    ensure_self(identity, entry.email)
    book = await db_service.get_book(entry.book_id)

    document = {
        "email": entry.email,
        "bookId": entry.book_id,
        "bookTitle": book.get("title"),
        "author": book.get("author"),
        "image": book.get("image"),
        "price": book.get("price"),
    }
    inserted_id = await db_service.add_wishlist_entry(document)
    return InsertResponse(inserted_id=inserted_id)


@router.get("/wishlist/{email}", response_model=List[Dict[str, Any]])
async def get_wishlist(
    email: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    ensure_self(identity, email)
    return await db_service.get_wishlist(email)


@router.delete("/wishlist/{entry_id}")
async def remove_from_wishlist(
    entry_id: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Remove one of the caller's own wishlist entries."""
    entry = await db_service.get_wishlist_entry(entry_id)
    ensure_self(identity, entry.get("email"))
    deleted = await db_service.delete_wishlist_entry(entry_id)
    return {"acknowledged": True, "deletedCount": deleted}
