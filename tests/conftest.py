"""
Pytest configuration and shared fixtures.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from bookmarket.auth import FirebaseIdentityVerifier
from bookmarket.config import MarketplaceConfig
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.errors import Unauthenticated
from bookmarket.main import create_app
from bookmarket.payments import StripePaymentBroker
from helpers import (
    ADMIN, BOOK_ID, LIBRARIAN, ORDER_ID, OTHER_LIBRARIAN, OTHER_READER, READER, make_collection
)


@pytest.fixture
def settings():
    """Configuration isolated from the process environment."""
    return MarketplaceConfig(
        _env_file=None,
        client_domain="http://localhost:5173",
        stripe_secret_key="sk_test_123",
        mongodb_database="booksDB_test",
    )


@pytest.fixture
def roles():
    """Stored roles keyed by email; missing emails have no user record."""
    return {
        READER: "user",
        OTHER_READER: "user",
        LIBRARIAN: "librarian",
        OTHER_LIBRARIAN: "librarian",
        ADMIN: "admin",
    }


@pytest.fixture
def mock_db_service(roles):
    """Mock database service with role lookups backed by `roles`."""
    service = AsyncMock(spec=MarketplaceDatabaseService)
    service.get_user_role.side_effect = lambda email: roles.get(email)
    service.health_check.return_value = {"status": "healthy"}
    return service


@pytest.fixture
def mock_identity_verifier():
    """Identity verifier that treats the token as the verified email."""
    verifier = AsyncMock(spec=FirebaseIdentityVerifier)

    def verify(token):
        if "@" not in token:
            raise Unauthenticated()
        return token

    verifier.verify.side_effect = verify
    return verifier


@pytest.fixture
def mock_payment_broker():
    broker = AsyncMock(spec=StripePaymentBroker)
    broker.create_session.return_value = "https://checkout.stripe.com/c/pay/cs_test_123"
    broker.is_session_settled.return_value = True
    return broker


@pytest.fixture
def client(settings, mock_db_service, mock_identity_verifier, mock_payment_broker):
    """Create test client with all external services replaced by mocks."""
    app = create_app(
        settings=settings,
        db_service=mock_db_service,
        identity_verifier=mock_identity_verifier,
        payment_broker=mock_payment_broker,
    )
    return TestClient(app)


@pytest.fixture
def mock_database():
    """Mock motor database exposing the five marketplace collections."""
    database = MagicMock()
    database.users = make_collection()
    database.books = make_collection()
    database.orders = make_collection()
    database.wishlist = make_collection()
    database.reviews = make_collection()
    database.command = AsyncMock(return_value={"ok": 1.0})
    return database


@pytest.fixture
def db_service(mock_database):
    """Real database service over the mock motor database."""
    return MarketplaceDatabaseService(mock_database)


@pytest.fixture
def sample_book():
    return {
        "_id": BOOK_ID,
        "title": "The Left Hand of Darkness",
        "author": "Ursula K. Le Guin",
        "category": "Science Fiction",
        "price": 19.99,
        "status": "published",
        "librarianEmail": LIBRARIAN,
        "rating": 0.0,
        "reviewCount": 0,
    }


@pytest.fixture
def sample_order():
    return {
        "_id": ORDER_ID,
        "bookId": BOOK_ID,
        "bookTitle": "The Left Hand of Darkness",
        "price": 19.99,
        "quantity": 1,
        "email": READER,
        "status": "pending",
        "payment_status": "unpaid",
        "orderDate": "2025-01-12T10:00:00",
    }
