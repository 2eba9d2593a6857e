"""
API models and schemas for the marketplace.

Field aliases follow the JSON names the frontend sends and reads
(`bookId`, `reviewCount`, `insertedId`, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Stored user roles."""
    USER = "user"
    LIBRARIAN = "librarian"
    ADMIN = "admin"


class BookStatus(str, Enum):
    """Publication status of a book."""
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"


class OrderStatus(str, Enum):
    """Fulfillment status of an order."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class FulfillmentStatus(str, Enum):
    """Statuses a librarian or admin may set on an order."""
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status of an order."""
    UNPAID = "unpaid"
    PAID = "paid"
    CANCELLED = "cancelled"


class ReviewIneligibility(str, Enum):
    """Why a user may not review a book."""
    NOT_ORDERED = "NOT_ORDERED"
    ALREADY_REVIEWED = "ALREADY_REVIEWED"


class MarketplaceModel(BaseModel):
    """Base model accepting both field names and JSON aliases."""

    class Config:
        populate_by_name = True


# Users

class UserCreate(MarketplaceModel):
    """Self-registration payload."""
    email: str = Field(..., min_length=1, description="User email, unique")
    name: Optional[str] = Field(None, description="Display name")
    photo_url: Optional[str] = Field(None, alias="photoURL", description="Avatar URL")


class RoleResponse(MarketplaceModel):
    role: Role


# Books

class BookCreate(MarketplaceModel):
    """Payload for creating a book."""
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Book author")
    price: float = Field(..., gt=0, description="Unit price")
    category: Optional[str] = Field(None, description="Book category")
    description: Optional[str] = Field(None, description="Book description")
    image: Optional[str] = Field(None, description="Cover image URL")
    status: BookStatus = Field(BookStatus.PUBLISHED, description="Publication status")
    librarian_name: Optional[str] = Field(None, alias="librarianName", description="Owner display name")


class BookUpdate(MarketplaceModel):
    """Partial update of the editable book fields."""
    title: Optional[str] = None
    author: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    status: Optional[BookStatus] = None


class BookStatusUpdate(MarketplaceModel):
    status: BookStatus


class BookQueryParams(MarketplaceModel):
    """Query parameters for the public book listing."""
    search: Optional[str] = Field(None, description="Substring of title or author")
    category: Optional[str] = Field(None, description="Exact category")
    min_rating: Optional[float] = Field(None, ge=0, le=5, alias="minRating", description="Minimum rating")
    page: int = Field(0, ge=0, description="Zero-based page number")
    size: int = Field(10, ge=1, le=100, description="Items per page")


class BookListResponse(MarketplaceModel):
    """Response model for book list with pagination."""
    books: List[Dict[str, Any]] = Field(..., description="Books on this page")
    count: int = Field(..., description="Total number of matching books")
    page: int = Field(..., description="Current page number")
    size: int = Field(..., description="Page size")
    total_pages: int = Field(..., alias="totalPages", description="Total number of pages")


class DeleteBookResponse(MarketplaceModel):
    acknowledged: bool = True
    book_deleted: int = Field(..., alias="bookDeleted")
    orders_deleted: int = Field(..., alias="ordersDeleted")
    message: str


# Orders

class OrderCreate(MarketplaceModel):
    """Payload for placing an order."""
    book_id: str = Field(..., min_length=1, alias="bookId")
    email: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderStatusUpdate(MarketplaceModel):
    new_status: FulfillmentStatus = Field(..., alias="newStatus")


class PaymentConfirmation(MarketplaceModel):
    session_id: Optional[str] = Field(None, alias="sessionId")


class PaymentSuccessResponse(MarketplaceModel):
    acknowledged: bool = True
    message: str


# Payments

class CheckoutRequest(MarketplaceModel):
    """
    Payload for obtaining a hosted checkout URL.

    The line item is built from the stored order; `bookTitle`, `price` and
    `quantity` are optional echoes that must match it when sent.
    """
    order_id: str = Field(..., min_length=1, alias="orderId")
    email: str = Field(..., min_length=1)
    book_title: Optional[str] = Field(None, alias="bookTitle")
    price: Optional[float] = Field(None, gt=0)
    quantity: Optional[int] = Field(None, ge=1)


class CheckoutSessionResponse(MarketplaceModel):
    url: str


# Wishlist

class WishlistCreate(MarketplaceModel):
    book_id: str = Field(..., min_length=1, alias="bookId")
    email: str = Field(..., min_length=1)


# Reviews

class ReviewCreate(MarketplaceModel):
    """Payload for submitting a review."""
    book_id: str = Field(..., min_length=1, alias="bookId")
    user_email: str = Field(..., min_length=1, alias="userEmail")
    user_name: Optional[str] = Field(None, alias="userName")
    rating: int = Field(..., ge=1, le=5)
    review_text: str = Field("", alias="reviewText")


class ReviewCreateResponse(MarketplaceModel):
    acknowledged: bool = True
    inserted_id: str = Field(..., alias="insertedId")
    new_average_rating: float = Field(..., alias="newAverageRating")
    review_count: int = Field(..., alias="reviewCount")


class ReviewEligibility(MarketplaceModel):
    """Result of the review eligibility probe."""
    can_review: bool = Field(..., alias="canReview")
    reason: Optional[ReviewIneligibility] = None
    existing_review: Optional[Dict[str, Any]] = Field(None, alias="existingReview")


# Generic responses

class InsertResponse(MarketplaceModel):
    acknowledged: bool = True
    inserted_id: Optional[str] = Field(None, alias="insertedId")
    message: Optional[str] = None


class UpdateResponse(MarketplaceModel):
    acknowledged: bool = True
    modified_count: int = Field(..., alias="modifiedCount")


class ErrorResponse(BaseModel):
    """Error response model."""
    message: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
