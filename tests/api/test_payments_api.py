"""
Tests for checkout session creation.
"""

import pytest

from bookmarket.errors import UpstreamFailure
from helpers import ORDER_ID, OTHER_READER, READER, auth_headers


def checkout_payload(**overrides):
    payload = {
        "orderId": ORDER_ID,
        "bookTitle": "The Left Hand of Darkness",
        "price": 19.99,
        "email": READER,
        "quantity": 1,
    }
    payload.update(overrides)
    return payload


def test_create_checkout_session(client, mock_db_service, mock_payment_broker, sample_order):
    mock_db_service.get_order.return_value = sample_order

    response = client.post("/create-checkout-session", headers=auth_headers(READER), json=checkout_payload())

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.com/c/pay/cs_test_123"}
    mock_payment_broker.create_session.assert_awaited_once_with(sample_order, READER)
    mock_db_service.get_order.assert_awaited_once_with(ORDER_ID)


def test_checkout_does_not_touch_order_state(client, mock_db_service, sample_order):
    mock_db_service.get_order.return_value = sample_order

    client.post("/create-checkout-session", headers=auth_headers(READER), json=checkout_payload())

    mock_db_service.mark_order_paid.assert_not_called()
    mock_db_service.update_order_status.assert_not_called()


def test_checkout_for_someone_else_forbidden(client, mock_db_service, mock_payment_broker):
    response = client.post(
        "/create-checkout-session", headers=auth_headers(OTHER_READER), json=checkout_payload()
    )
    assert response.status_code == 403
    mock_payment_broker.create_session.assert_not_called()


def test_checkout_for_order_placed_by_someone_else(client, mock_db_service, mock_payment_broker, sample_order):
    mock_db_service.get_order.return_value = dict(sample_order, email=OTHER_READER)

    response = client.post("/create-checkout-session", headers=auth_headers(READER), json=checkout_payload())

    assert response.status_code == 403
    mock_payment_broker.create_session.assert_not_called()


def test_checkout_for_paid_order_rejected(client, mock_db_service, mock_payment_broker, sample_order):
    mock_db_service.get_order.return_value = dict(sample_order, payment_status="paid")

    response = client.post("/create-checkout-session", headers=auth_headers(READER), json=checkout_payload())

    assert response.status_code == 400
    assert response.json()["message"] == "Order is not awaiting payment."
    mock_payment_broker.create_session.assert_not_called()


def test_checkout_rejects_non_positive_price(client, mock_payment_broker):
    response = client.post(
        "/create-checkout-session", headers=auth_headers(READER), json=checkout_payload(price=0)
    )
    assert response.status_code == 400
    mock_payment_broker.create_session.assert_not_called()


def test_checkout_provider_failure(client, mock_db_service, mock_payment_broker, sample_order):
    mock_db_service.get_order.return_value = sample_order
    mock_payment_broker.create_session.side_effect = UpstreamFailure("Failed to create checkout session")

    response = client.post("/create-checkout-session", headers=auth_headers(READER), json=checkout_payload())

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to create checkout session"


def test_checkout_without_echoed_details(client, mock_db_service, mock_payment_broker, sample_order):
    mock_db_service.get_order.return_value = sample_order

    response = client.post(
        "/create-checkout-session", headers=auth_headers(READER), json={"orderId": ORDER_ID, "email": READER}
    )

    assert response.status_code == 200
    mock_payment_broker.create_session.assert_awaited_once_with(sample_order, READER)


@pytest.mark.parametrize("overrides,field", [
    ({"price": 0.01}, "price"),
    ({"quantity": 50}, "quantity"),
    ({"bookTitle": "Anything"}, "bookTitle"),
])
def test_checkout_rejects_details_differing_from_order(
    client, mock_db_service, mock_payment_broker, sample_order, overrides, field
):
    """The amount charged is never taken from the request body."""
    mock_db_service.get_order.return_value = sample_order

    response = client.post(
        "/create-checkout-session", headers=auth_headers(READER), json=checkout_payload(**overrides)
    )

    assert response.status_code == 400
    data = response.json()
    assert data["message"] == "Checkout details do not match the order."
    assert data["fields"] == [field]
    mock_payment_broker.create_session.assert_not_called()
