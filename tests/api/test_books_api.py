"""
Tests for the book catalog routes.
"""

import pytest

from bookmarket.errors import NotFound
from bookmarket.models import BookListResponse, BookStatus
from helpers import ADMIN, BOOK_ID, LIBRARIAN, OTHER_LIBRARIAN, READER, auth_headers


@pytest.fixture
def empty_page():
    return BookListResponse(books=[], count=0, page=0, size=10, total_pages=0)


def test_books_listing_is_public(client, mock_db_service, sample_book):
    mock_db_service.get_books.return_value = BookListResponse(
        books=[sample_book], count=1, page=0, size=10, total_pages=1
    )

    response = client.get("/books")

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["totalPages"] == 1
    assert data["books"][0]["title"] == sample_book["title"]


def test_books_query_params(client, mock_db_service, empty_page):
    mock_db_service.get_books.return_value = empty_page

    response = client.get("/books?search=dune&category=Fiction&minRating=4&page=2&size=5")

    assert response.status_code == 200
    query_params = mock_db_service.get_books.call_args.args[0]
    assert query_params.search == "dune"
    assert query_params.category == "Fiction"
    assert query_params.min_rating == 4
    assert query_params.page == 2
    assert query_params.size == 5


def test_books_default_page_size(client, mock_db_service, empty_page):
    mock_db_service.get_books.return_value = empty_page

    client.get("/books")

    query_params = mock_db_service.get_books.call_args.args[0]
    assert query_params.page == 0
    assert query_params.size == 10


@pytest.mark.parametrize("query", ["page=-1", "size=0", "size=101", "minRating=6", "page=abc"])
def test_books_invalid_query(client, mock_db_service, query):
    response = client.get(f"/books?{query}")
    assert response.status_code == 400
    mock_db_service.get_books.assert_not_called()


def test_latest_books(client, mock_db_service, sample_book):
    mock_db_service.get_latest_books.return_value = [sample_book]

    response = client.get("/latest-books")

    assert response.status_code == 200
    assert len(response.json()) == 1
    mock_db_service.get_latest_books.assert_awaited_once_with(6)


def test_get_book(client, mock_db_service, sample_book):
    mock_db_service.get_book.return_value = sample_book

    response = client.get(f"/books/{BOOK_ID}")

    assert response.status_code == 200
    assert response.json()["_id"] == BOOK_ID


def test_get_book_not_found(client, mock_db_service):
    mock_db_service.get_book.side_effect = NotFound("Book not found.")

    response = client.get(f"/books/{BOOK_ID}")

    assert response.status_code == 404
    assert response.json() == {"message": "Book not found.", "status_code": 404}


def test_all_books_route_not_shadowed_by_book_id(client, mock_db_service):
    mock_db_service.get_all_books.return_value = []

    response = client.get("/books/all", headers=auth_headers(ADMIN))

    assert response.status_code == 200
    mock_db_service.get_book.assert_not_called()


def test_create_book_as_librarian(client, mock_db_service):
    mock_db_service.create_book.return_value = BOOK_ID

    response = client.post("/books", headers=auth_headers(LIBRARIAN), json={
        "title": "Dune",
        "author": "Frank Herbert",
        "price": 12.5,
        "category": "Science Fiction",
        "librarianName": "Libby",
    })

    assert response.status_code == 200
    assert response.json()["insertedId"] == BOOK_ID
    document, owner = mock_db_service.create_book.call_args.args
    assert owner == LIBRARIAN
    assert document["status"] == "published"
    assert document["librarianName"] == "Libby"
    assert "librarianEmail" not in document


def test_create_book_as_user_forbidden(client, mock_db_service):
    response = client.post("/books", headers=auth_headers(READER), json={
        "title": "Dune", "author": "Frank Herbert", "price": 12.5,
    })
    assert response.status_code == 403
    mock_db_service.create_book.assert_not_called()


@pytest.mark.parametrize("payload", [
    {"author": "Frank Herbert", "price": 12.5},
    {"title": "", "author": "Frank Herbert", "price": 12.5},
    {"title": "Dune", "author": "Frank Herbert", "price": 0},
    {"title": "Dune", "author": "Frank Herbert", "price": 12.5, "status": "draft"},
])
def test_create_book_invalid_payload(client, mock_db_service, payload):
    response = client.post("/books", headers=auth_headers(LIBRARIAN), json=payload)
    assert response.status_code == 400
    mock_db_service.create_book.assert_not_called()


def test_my_books(client, mock_db_service, sample_book):
    mock_db_service.get_books_by_librarian.return_value = [sample_book]

    response = client.get(f"/my-books/{LIBRARIAN}", headers=auth_headers(LIBRARIAN))

    assert response.status_code == 200
    mock_db_service.get_books_by_librarian.assert_awaited_once_with(LIBRARIAN)


def test_my_books_of_other_librarian_forbidden(client, mock_db_service):
    response = client.get(f"/my-books/{LIBRARIAN}", headers=auth_headers(OTHER_LIBRARIAN))
    assert response.status_code == 403


def test_update_book_by_owner(client, mock_db_service, sample_book):
    mock_db_service.get_book.return_value = sample_book
    mock_db_service.update_book.return_value = 1

    response = client.patch(
        f"/books/{BOOK_ID}", headers=auth_headers(LIBRARIAN), json={"price": 9.99, "title": "New Title"}
    )

    assert response.status_code == 200
    assert response.json()["modifiedCount"] == 1
    mock_db_service.update_book.assert_awaited_once_with(BOOK_ID, {"price": 9.99, "title": "New Title"})


def test_update_book_by_other_librarian_forbidden(client, mock_db_service, sample_book):
    mock_db_service.get_book.return_value = sample_book

    response = client.patch(f"/books/{BOOK_ID}", headers=auth_headers(OTHER_LIBRARIAN), json={"price": 9.99})

    assert response.status_code == 403
    mock_db_service.update_book.assert_not_called()


def test_update_book_by_admin(client, mock_db_service, sample_book):
    mock_db_service.get_book.return_value = sample_book
    mock_db_service.update_book.return_value = 1

    response = client.patch(f"/books/{BOOK_ID}", headers=auth_headers(ADMIN), json={"category": "Classics"})

    assert response.status_code == 200


def test_update_book_without_fields(client, mock_db_service):
    response = client.patch(f"/books/{BOOK_ID}", headers=auth_headers(LIBRARIAN), json={})
    assert response.status_code == 400
    assert response.json()["message"] == "No editable fields provided."


def test_update_book_status(client, mock_db_service, sample_book):
    mock_db_service.get_book.return_value = sample_book
    mock_db_service.update_book.return_value = 1

    response = client.patch(
        f"/books/status/{BOOK_ID}", headers=auth_headers(LIBRARIAN), json={"status": "unpublished"}
    )

    assert response.status_code == 200
    mock_db_service.update_book.assert_awaited_once_with(BOOK_ID, {"status": BookStatus.UNPUBLISHED.value})


def test_update_book_status_rejects_unknown_value(client, mock_db_service):
    response = client.patch(
        f"/books/status/{BOOK_ID}", headers=auth_headers(LIBRARIAN), json={"status": "archived"}
    )
    assert response.status_code == 400


def test_delete_book_cascades(client, mock_db_service):
    mock_db_service.delete_book_cascade.return_value = (1, 3)

    response = client.delete(f"/books/delete/{BOOK_ID}", headers=auth_headers(ADMIN))

    assert response.status_code == 200
    data = response.json()
    assert data["bookDeleted"] == 1
    assert data["ordersDeleted"] == 3
    assert data["message"] == "Book and 3 associated orders deleted successfully."


def test_delete_missing_book(client, mock_db_service):
    mock_db_service.delete_book_cascade.side_effect = NotFound("Book not found.")

    response = client.delete(f"/books/delete/{BOOK_ID}", headers=auth_headers(ADMIN))

    assert response.status_code == 404


def test_delete_book_requires_admin(client, mock_db_service):
    response = client.delete(f"/books/delete/{BOOK_ID}", headers=auth_headers(LIBRARIAN))
    assert response.status_code == 403
    mock_db_service.delete_book_cascade.assert_not_called()
