"""
Shared test data and mock builders.
"""

from unittest.mock import AsyncMock, MagicMock

READER = "reader@example.com"
OTHER_READER = "other@example.com"
LIBRARIAN = "librarian@example.com"
OTHER_LIBRARIAN = "shelves@example.com"
ADMIN = "admin@example.com"
STRANGER = "stranger@example.com"

BOOK_ID = "65a1f0c2e4b0a1b2c3d4e5f6"
ORDER_ID = "65a1f0c2e4b0a1b2c3d4e5f7"
REVIEW_ID = "65a1f0c2e4b0a1b2c3d4e5f8"
WISHLIST_ID = "65a1f0c2e4b0a1b2c3d4e5f9"
USER_ID = "65a1f0c2e4b0a1b2c3d4e5fa"


def auth_headers(email: str) -> dict:
    """The fake verifier accepts the email itself as the bearer token."""
    return {"Authorization": f"Bearer {email}"}


def make_cursor(documents):
    """Create a mock motor cursor whose chain methods return itself."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=documents)
    return cursor


def make_collection():
    """Create a mock motor collection."""
    collection = MagicMock()
    for name in (
        "find_one", "insert_one", "update_one", "delete_one",
        "delete_many", "count_documents", "create_index",
    ):
        setattr(collection, name, AsyncMock())
    collection.find.return_value = make_cursor([])
    return collection
