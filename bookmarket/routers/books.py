"""Book catalog routes."""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from bookmarket.auth import BoundIdentity, ensure_self
from bookmarket.config import MarketplaceConfig
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.deps import get_db_service, get_settings, require_admin, require_librarian
from bookmarket.errors import Forbidden, InvalidInput
from bookmarket.models import (
    BookCreate, BookListResponse, BookQueryParams, BookStatusUpdate, BookUpdate,
    DeleteBookResponse, InsertResponse, UpdateResponse
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Books"])


async def _ensure_book_owner(
    db_service: MarketplaceDatabaseService, book_id: str, identity: BoundIdentity
) -> None:
    """Only the owning librarian or an admin may modify a book."""
    book = await db_service.get_book(book_id)
    if identity.is_admin or book.get("librarianEmail") == identity.email:
        return
    logger.warning("Book ownership check failed", book_id=book_id, caller=identity.email)
    raise Forbidden("Only the owning librarian or an admin may modify this book.")


@router.post("/books", response_model=InsertResponse)
async def create_book(
    book: BookCreate,
    identity: BoundIdentity = Depends(require_librarian),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Create a book owned by the calling librarian."""
    document = book.model_dump(by_alias=True, exclude_none=True, mode="json")
    inserted_id = await db_service.create_book(document, identity.email)
    return InsertResponse(inserted_id=inserted_id)


@router.get("/books", response_model=BookListResponse)
async def get_books(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_rating: Optional[float] = Query(None, alias="minRating", ge=0, le=5),
    page: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1, le=100),
    settings: MarketplaceConfig = Depends(get_settings),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """
    Get published books with filtering and pagination.

    - **search**: Case-insensitive substring of title or author
    - **category**: Exact category
    - **minRating**: Minimum average rating (inclusive)
    - **page**: Page number (starts from 0)
    - **size**: Items per page
    """
    query_params = BookQueryParams(
        search=search,
        category=category,
        min_rating=min_rating,
        page=page,
        size=min(size or settings.default_page_size, settings.max_page_size),
    )
    return await db_service.get_books(query_params)


@router.get("/latest-books", response_model=List[Dict[str, Any]])
async def get_latest_books(
    settings: MarketplaceConfig = Depends(get_settings),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.get_latest_books(settings.latest_books_limit)


# Must be registered before /books/{book_id}
@router.get("/books/all", response_model=List[Dict[str, Any]])
async def get_all_books(
    identity: BoundIdentity = Depends(require_admin),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.get_all_books()


@router.get("/books/{book_id}", response_model=Dict[str, Any])
async def get_book(
    book_id: str,
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.get_book(book_id)


@router.get("/my-books/{email}", response_model=List[Dict[str, Any]])
async def get_my_books(
    email: str,
    identity: BoundIdentity = Depends(require_librarian),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    ensure_self(identity, email, allow_admin=True)
    return await db_service.get_books_by_librarian(email)


@router.patch("/books/status/{book_id}", response_model=UpdateResponse)
async def update_book_status(
    book_id: str,
    update: BookStatusUpdate,
    identity: BoundIdentity = Depends(require_librarian),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    await _ensure_book_owner(db_service, book_id, identity)
    modified = await db_service.update_book(book_id, {"status": update.status.value})
    return UpdateResponse(modified_count=modified)


@router.patch("/books/{book_id}", response_model=UpdateResponse)
async def update_book(
    book_id: str,
    update: BookUpdate,
    identity: BoundIdentity = Depends(require_librarian),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    fields = update.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    if not fields:
        raise InvalidInput("No editable fields provided.")
    await _ensure_book_owner(db_service, book_id, identity)
    modified = await db_service.update_book(book_id, fields)
    return UpdateResponse(modified_count=modified)


@router.delete("/books/delete/{book_id}", response_model=DeleteBookResponse)
async def delete_book(
    book_id: str,
    identity: BoundIdentity = Depends(require_admin),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """Delete a book and every order that references it."""
    book_deleted, orders_deleted = await db_service.delete_book_cascade(book_id)
    return DeleteBookResponse(
        book_deleted=book_deleted,
        orders_deleted=orders_deleted,
        message=f"Book and {orders_deleted} associated orders deleted successfully.",
    )
