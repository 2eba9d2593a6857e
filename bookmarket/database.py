"""
Database service layer for the marketplace API.

Owns the five collections (users, books, orders, wishlist, reviews) and
every query the routes need. Persistence failures are logged here and
re-raised as `UpstreamFailure`; malformed ids become `InvalidInput`.
"""

import math
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from bookmarket.errors import AlreadyExists, InvalidInput, NotFound, UpstreamFailure
from bookmarket.models import (
    BookListResponse, BookQueryParams, BookStatus, OrderStatus, PaymentStatus,
    ReviewEligibility, ReviewIneligibility, Role
)

logger = structlog.get_logger(__name__)

# Fields a purchaser sees on the order detail route
ORDER_DETAIL_PROJECTION = {
    "_id": 1, "bookId": 1, "bookTitle": 1, "price": 1, "quantity": 1, "email": 1,
    "status": 1, "payment_status": 1, "orderDate": 1, "paidAt": 1,
}


def to_object_id(value: str, label: str = "id") -> ObjectId:
    """
    Convert a hex string to an ObjectId.

    Raises:
        InvalidInput: If the value is not a valid ObjectId
    """
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidInput(f"Invalid {label}: {value!r}")


def serialize_document(value: Any) -> Any:
    """Convert ObjectIds and datetimes in a document to JSON-safe values."""
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def build_book_filter(query_params: BookQueryParams) -> Dict[str, Any]:
    """
    Build the filter for the public book listing.

    Always restricted to published books, optionally ANDed with a
    case-insensitive title/author substring, an exact category and an
    inclusive minimum rating.
    """
    filter_query: Dict[str, Any] = {"status": BookStatus.PUBLISHED.value}

    if query_params.search:
        pattern = re.escape(query_params.search.strip())
        filter_query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"author": {"$regex": pattern, "$options": "i"}},
        ]

    if query_params.category:
        filter_query["category"] = query_params.category

    if query_params.min_rating is not None:
        filter_query["rating"] = {"$gte": query_params.min_rating}

    return filter_query


def compute_average_rating(ratings: Iterable[int]) -> float:
    """Mean of the ratings rounded half up to one decimal place; 0.0 when empty."""
    ratings = list(ratings)
    if not ratings:
        return 0.0
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class MarketplaceDatabaseService:
    """Database service for marketplace operations."""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.database = database
        self.users_collection = database.users
        self.books_collection = database.books
        self.orders_collection = database.orders
        self.wishlist_collection = database.wishlist
        self.reviews_collection = database.reviews

    async def create_indexes(self) -> None:
        """Create the indexes the uniqueness rules and common queries rely on."""
        try:
            await self.users_collection.create_index("email", unique=True)
            await self.books_collection.create_index([("status", ASCENDING), ("category", ASCENDING)])
            await self.books_collection.create_index("librarianEmail")
            await self.orders_collection.create_index("email")
            await self.orders_collection.create_index("bookId")
            await self.wishlist_collection.create_index(
                [("email", ASCENDING), ("bookId", ASCENDING)], unique=True
            )
            await self.reviews_collection.create_index(
                [("bookId", ASCENDING), ("userEmail", ASCENDING)], unique=True
            )
            logger.info("Successfully created MongoDB indexes")
        except PyMongoError as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    # Users

    async def register_user(self, user: Dict[str, Any]) -> Optional[str]:
        """
        Insert a user unless one with the same email exists.

        Args:
            user: User fields; `email` is required

        Returns:
            Inserted id, or None if the email is already registered
        """
        try:
            existing = await self.users_collection.find_one({"email": user["email"]})
            if existing:
                return None

            document = dict(user)
            document["role"] = Role.USER.value
            document["createdAt"] = datetime.utcnow()
            result = await self.users_collection.insert_one(document)
            logger.info("User registered", email=user["email"])
            return str(result.inserted_id)

        except DuplicateKeyError:
            return None
        except PyMongoError as e:
            logger.error("Failed to register user", email=user.get("email"), error=str(e))
            raise UpstreamFailure("Failed to register user") from e

    async def get_user_role(self, email: str) -> Optional[str]:
        """Return the stored role for an email, None when no user exists."""
        try:
            user = await self.users_collection.find_one({"email": email}, {"role": 1})
        except PyMongoError as e:
            logger.error("Failed to look up user role", email=email, error=str(e))
            raise UpstreamFailure("Failed to look up user role") from e
        if not user:
            return None
        return user.get("role", Role.USER.value)

    async def list_users(self) -> List[Dict[str, Any]]:
        try:
            cursor = self.users_collection.find({}).sort("_id", DESCENDING)
            users = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to list users", error=str(e))
            raise UpstreamFailure("Failed to fetch users") from e
        return serialize_document(users)

    async def update_user_role(self, user_id: str, role: Role) -> int:
        """
        Change a user's role.

        Returns:
            Modified count (0 when the user already had the role)

        Raises:
            NotFound: If no user has the id
        """
        object_id = to_object_id(user_id, "user id")
        try:
            result = await self.users_collection.update_one(
                {"_id": object_id},
                {"$set": {"role": role.value, "lastRoleUpdate": datetime.utcnow()}},
            )
        except PyMongoError as e:
            logger.error("Failed to update user role", user_id=user_id, error=str(e))
            raise UpstreamFailure("Failed to update user role") from e

        if result.matched_count == 0:
            raise NotFound("User not found.")
        logger.info("User role updated", user_id=user_id, role=role.value)
        return result.modified_count

    # Books

    async def get_books(self, query_params: BookQueryParams) -> BookListResponse:
        """
        Get published books with filtering and pagination.

        The count is taken with the same filter as the page, so the
        pagination metadata always describes the returned slice.
        """
        filter_query = build_book_filter(query_params)
        skip = query_params.page * query_params.size

        try:
            total = await self.books_collection.count_documents(filter_query)
            cursor = (
                self.books_collection.find(filter_query)
                .sort("_id", DESCENDING)
                .skip(skip)
                .limit(query_params.size)
            )
            books = await cursor.to_list(length=query_params.size)
        except PyMongoError as e:
            logger.error("Failed to get books", error=str(e), filter=str(filter_query))
            raise UpstreamFailure("Failed to fetch books") from e

        return BookListResponse(
            books=serialize_document(books),
            count=total,
            page=query_params.page,
            size=query_params.size,
            total_pages=math.ceil(total / query_params.size),
        )

    async def get_latest_books(self, limit: int) -> List[Dict[str, Any]]:
        try:
            cursor = (
                self.books_collection.find({"status": BookStatus.PUBLISHED.value})
                .sort("_id", DESCENDING)
                .limit(limit)
            )
            books = await cursor.to_list(length=limit)
        except PyMongoError as e:
            logger.error("Failed to get latest books", error=str(e))
            raise UpstreamFailure("Failed to fetch books") from e
        return serialize_document(books)

    async def get_all_books(self) -> List[Dict[str, Any]]:
        """All books regardless of status, newest first."""
        try:
            cursor = self.books_collection.find({}).sort("_id", DESCENDING)
            books = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to fetch all books", error=str(e))
            raise UpstreamFailure("Failed to fetch all books.") from e
        return serialize_document(books)

    async def get_books_by_librarian(self, email: str) -> List[Dict[str, Any]]:
        try:
            cursor = self.books_collection.find({"librarianEmail": email}).sort("_id", DESCENDING)
            books = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to fetch librarian books", librarian=email, error=str(e))
            raise UpstreamFailure("Failed to fetch books.") from e
        return serialize_document(books)

    async def get_book(self, book_id: str) -> Dict[str, Any]:
        """
        Get a single book by id.

        Raises:
            InvalidInput: If the id is malformed
            NotFound: If no book has the id
        """
        object_id = to_object_id(book_id, "book id")
        try:
            book = await self.books_collection.find_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to get book", book_id=book_id, error=str(e))
            raise UpstreamFailure("Failed to fetch book") from e
        if not book:
            raise NotFound("Book not found.")
        return serialize_document(book)

    async def create_book(self, book: Dict[str, Any], librarian_email: str) -> str:
        """Insert a book owned by `librarian_email` with empty rating aggregates."""
        document = dict(book)
        document["librarianEmail"] = librarian_email
        document["rating"] = 0.0
        document["reviewCount"] = 0
        document["createdAt"] = datetime.utcnow()
        try:
            result = await self.books_collection.insert_one(document)
        except PyMongoError as e:
            logger.error("Failed to create book", librarian=librarian_email, error=str(e))
            raise UpstreamFailure("Failed to create book") from e
        logger.info("Book created", book_id=str(result.inserted_id), librarian=librarian_email)
        return str(result.inserted_id)

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> int:
        """
        Apply a partial update to a book.

        Returns:
            Modified count

        Raises:
            NotFound: If no book has the id
        """
        object_id = to_object_id(book_id, "book id")
        try:
            result = await self.books_collection.update_one({"_id": object_id}, {"$set": fields})
        except PyMongoError as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise UpstreamFailure("Failed to update book.") from e
        if result.matched_count == 0:
            raise NotFound("Book not found.")
        return result.modified_count

    async def delete_book_cascade(self, book_id: str) -> Tuple[int, int]:
        """
        Delete a book, then every order that references it.

        The two deletes are sequential, not atomic: a failure between them
        leaves orders pointing at a deleted book.

        Returns:
            (books deleted, orders deleted)

        Raises:
            NotFound: If no book has the id; orders are left untouched
        """
        object_id = to_object_id(book_id, "book id")
        try:
            book_result = await self.books_collection.delete_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise UpstreamFailure("Failed to delete book and associated orders.") from e

        if book_result.deleted_count == 0:
            raise NotFound("Book not found.")

        try:
            orders_result = await self.orders_collection.delete_many({"bookId": book_id})
        except PyMongoError as e:
            logger.error("Book deleted but its orders were not", book_id=book_id, error=str(e))
            raise UpstreamFailure("Book deleted but associated orders could not be removed.") from e

        logger.info("Book deleted", book_id=book_id, orders_deleted=orders_result.deleted_count)
        return book_result.deleted_count, orders_result.deleted_count

    # Orders

    async def create_order(self, order: Dict[str, Any]) -> str:
        """Insert an order in the (pending, unpaid) state."""
        document = dict(order)
        document["status"] = OrderStatus.PENDING.value
        document["payment_status"] = PaymentStatus.UNPAID.value
        document["orderDate"] = datetime.utcnow()
        try:
            result = await self.orders_collection.insert_one(document)
        except PyMongoError as e:
            logger.error("Failed to create order", email=order.get("email"), error=str(e))
            raise UpstreamFailure("Failed to create order") from e
        logger.info("Order created", order_id=str(result.inserted_id), book_id=order.get("bookId"))
        return str(result.inserted_id)

    async def get_order(self, order_id: str, projection: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Get a single order by id.

        Raises:
            InvalidInput: If the id is malformed
            NotFound: If no order has the id
        """
        object_id = to_object_id(order_id, "order id")
        try:
            order = await self.orders_collection.find_one({"_id": object_id}, projection)
        except PyMongoError as e:
            logger.error("Failed to get order", order_id=order_id, error=str(e))
            raise UpstreamFailure("Error fetching order") from e
        if not order:
            raise NotFound("Order not found")
        return serialize_document(order)

    async def _find_orders(self, filter_query: Dict[str, Any], sort_field: str = "orderDate") -> List[Dict[str, Any]]:
        try:
            cursor = self.orders_collection.find(filter_query).sort(sort_field, DESCENDING)
            orders = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to fetch orders", error=str(e))
            raise UpstreamFailure("Failed to fetch orders.") from e
        return serialize_document(orders)

    async def get_orders_for_user(self, email: str) -> List[Dict[str, Any]]:
        return await self._find_orders({"email": email})

    async def get_invoices_for_user(self, email: str) -> List[Dict[str, Any]]:
        """Paid orders of a user."""
        return await self._find_orders(
            {"email": email, "payment_status": PaymentStatus.PAID.value}, sort_field="paidAt"
        )

    async def get_all_orders(self) -> List[Dict[str, Any]]:
        return await self._find_orders({})

    async def get_orders_for_librarian(self, email: str) -> List[Dict[str, Any]]:
        """
        Orders for books owned by a librarian.

        Collects the librarian's book ids first, then filters orders by
        membership in that set.
        """
        try:
            cursor = self.books_collection.find({"librarianEmail": email}, {"_id": 1})
            books = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to fetch librarian books", librarian=email, error=str(e))
            raise UpstreamFailure("Failed to fetch orders.") from e

        book_ids = [str(book["_id"]) for book in books]
        if not book_ids:
            return []
        return await self._find_orders({"bookId": {"$in": book_ids}})

    async def _update_order(
        self,
        order_id: str,
        fields: Dict[str, Any],
        condition: Optional[Dict[str, Any]] = None,
        missing_message: str = "Order not found.",
    ) -> int:
        object_id = to_object_id(order_id, "order id")
        filter_query = {"_id": object_id, **(condition or {})}
        try:
            result = await self.orders_collection.update_one(filter_query, {"$set": fields})
        except PyMongoError as e:
            logger.error("Failed to update order", order_id=order_id, error=str(e))
            raise UpstreamFailure("Failed to update order status.") from e
        if result.matched_count == 0:
            raise NotFound(missing_message)
        logger.info("Order updated", order_id=order_id, **{k: v for k, v in fields.items() if k != "paidAt"})
        return result.modified_count

    async def update_order_status(self, order_id: str, new_status: str) -> int:
        """Set the fulfillment status; payment status is left alone."""
        return await self._update_order(order_id, {"status": new_status})

    async def cancel_order(self, order_id: str) -> int:
        """Move an order to (cancelled, cancelled) whatever its current state."""
        return await self._update_order(order_id, {
            "status": OrderStatus.CANCELLED.value,
            "payment_status": PaymentStatus.CANCELLED.value,
        })

    async def mark_order_paid(self, order_id: str, session_id: Optional[str]) -> int:
        """
        Move an order to (processing, paid) and record the payment session.

        Only an order that is not yet paid matches, so a repeated
        confirmation cannot overwrite the recorded session or payment time.

        Raises:
            NotFound: If no unpaid order has the id
        """
        return await self._update_order(
            order_id,
            {
                "status": OrderStatus.PROCESSING.value,
                "payment_status": PaymentStatus.PAID.value,
                "stripeSessionId": session_id,
                "paidAt": datetime.utcnow(),
            },
            condition={"payment_status": {"$ne": PaymentStatus.PAID.value}},
            missing_message="Order not found or already paid.",
        )

    async def has_paid_order(self, email: str, book_id: str) -> bool:
        try:
            order = await self.orders_collection.find_one({
                "bookId": book_id,
                "email": email,
                "payment_status": PaymentStatus.PAID.value,
            })
        except PyMongoError as e:
            logger.error("Failed to look up paid order", email=email, book_id=book_id, error=str(e))
            raise UpstreamFailure("Failed to check review eligibility.") from e
        return order is not None

    # Wishlist

    async def add_wishlist_entry(self, entry: Dict[str, Any]) -> str:
        """
        Add a (user, book) pair to the wishlist.

        Raises:
            AlreadyExists: If the pair is already on the wishlist
        """
        try:
            existing = await self.wishlist_collection.find_one(
                {"email": entry["email"], "bookId": entry["bookId"]}
            )
            if existing:
                raise AlreadyExists("Book already in wishlist")

            document = dict(entry)
            document["addedAt"] = datetime.utcnow()
            result = await self.wishlist_collection.insert_one(document)
            return str(result.inserted_id)

        except DuplicateKeyError:
            raise AlreadyExists("Book already in wishlist")
        except PyMongoError as e:
            logger.error("Failed to add wishlist entry", email=entry.get("email"), error=str(e))
            raise UpstreamFailure("Failed to add to wishlist") from e

    async def get_wishlist(self, email: str) -> List[Dict[str, Any]]:
        try:
            cursor = self.wishlist_collection.find({"email": email}).sort("addedAt", DESCENDING)
            entries = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to fetch wishlist", email=email, error=str(e))
            raise UpstreamFailure("Failed to fetch wishlist") from e
        return serialize_document(entries)

    async def get_wishlist_entry(self, entry_id: str) -> Dict[str, Any]:
        object_id = to_object_id(entry_id, "wishlist id")
        try:
            entry = await self.wishlist_collection.find_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to get wishlist entry", entry_id=entry_id, error=str(e))
            raise UpstreamFailure("Failed to fetch wishlist entry") from e
        if not entry:
            raise NotFound("Wishlist item not found")
        return serialize_document(entry)

    async def delete_wishlist_entry(self, entry_id: str) -> int:
        object_id = to_object_id(entry_id, "wishlist id")
        try:
            result = await self.wishlist_collection.delete_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to delete wishlist entry", entry_id=entry_id, error=str(e))
            raise UpstreamFailure("Failed to remove from wishlist") from e
        if result.deleted_count == 0:
            raise NotFound("Wishlist item not found")
        return result.deleted_count

    # Reviews

    async def find_review(self, book_id: str, email: str) -> Optional[Dict[str, Any]]:
        try:
            review = await self.reviews_collection.find_one({"bookId": book_id, "userEmail": email})
        except PyMongoError as e:
            logger.error("Failed to look up review", book_id=book_id, email=email, error=str(e))
            raise UpstreamFailure("Failed to check review eligibility.") from e
        return serialize_document(review) if review else None

    async def check_review_eligibility(self, book_id: str, email: str) -> ReviewEligibility:
        """
        Decide whether a user may review a book.

        A paid order for the book is required, and at most one review per
        (book, user) pair is allowed.
        """
        to_object_id(book_id, "book id")
        if not await self.has_paid_order(email, book_id):
            return ReviewEligibility(can_review=False, reason=ReviewIneligibility.NOT_ORDERED)

        existing = await self.find_review(book_id, email)
        if existing:
            return ReviewEligibility(
                can_review=False,
                reason=ReviewIneligibility.ALREADY_REVIEWED,
                existing_review=existing,
            )
        return ReviewEligibility(can_review=True)

    async def insert_review(self, review: Dict[str, Any]) -> str:
        """
        Insert a review.

        Raises:
            AlreadyExists: If the user already reviewed the book
        """
        document = dict(review)
        document["createdAt"] = datetime.utcnow()
        try:
            result = await self.reviews_collection.insert_one(document)
        except DuplicateKeyError:
            existing = await self.find_review(review["bookId"], review["userEmail"])
            raise AlreadyExists(
                "You have already reviewed this book.",
                reason=ReviewIneligibility.ALREADY_REVIEWED.value,
                existingReview=existing,
            )
        except PyMongoError as e:
            logger.error("Failed to insert review", book_id=review.get("bookId"), error=str(e))
            raise UpstreamFailure("Failed to submit review.") from e
        return str(result.inserted_id)

    async def refresh_book_rating(self, book_id: str) -> Tuple[float, int]:
        """
        Recompute a book's rating and review count from all of its reviews.

        Reads every review of the book, so the cost grows with the review
        count. Both derived fields are rewritten from the same read.

        Returns:
            (average rating, review count)
        """
        object_id = to_object_id(book_id, "book id")
        try:
            cursor = self.reviews_collection.find({"bookId": book_id}, {"rating": 1})
            reviews = await cursor.to_list(length=None)
            ratings = [review["rating"] for review in reviews]
            average = compute_average_rating(ratings)
            await self.books_collection.update_one(
                {"_id": object_id},
                {"$set": {"rating": average, "reviewCount": len(ratings)}},
            )
        except PyMongoError as e:
            logger.error("Failed to refresh book rating", book_id=book_id, error=str(e))
            raise UpstreamFailure("Failed to update book rating.") from e

        logger.info("Book rating refreshed", book_id=book_id, rating=average, review_count=len(ratings))
        return average, len(ratings)

    async def get_reviews_for_book(self, book_id: str) -> List[Dict[str, Any]]:
        to_object_id(book_id, "book id")
        try:
            cursor = self.reviews_collection.find({"bookId": book_id}).sort("createdAt", DESCENDING)
            reviews = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to fetch reviews", book_id=book_id, error=str(e))
            raise UpstreamFailure("Failed to fetch reviews.") from e
        return serialize_document(reviews)

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            return {"status": "healthy"}
        except PyMongoError as e:
            logger.error("Database health check failed", error=str(e))
            return {"status": "unhealthy"}
