from unittest.mock import patch

from fastapi import status
from jose import jwt

from splitpay.models import Order, User

SUCCEEDED_INTENT = {
    "id": "pi_123",
    "status": "succeeded",
    "latest_charge": {
        "id": "ch_123",
        "balance_transaction": {"fee": 88, "currency": "usd"},
        "payment_method_details": {"card": {"fingerprint": "fp_abc"}},
    },
}
ACTION_INTENT = {"id": "pi_456", "status": "requires_action", "client_secret": "pi_456_secret_x"}


def _order_body(*items, **overrides):
    body = {
        "email": "buyer@example.com",
        "line_items": [{"uid": uid, "permalink": permalink, "perceived_price_cents": price} for uid, permalink, price in items],
        "payment_method": {"processor": "stripe", "payment_method_id": "pm_card_visa"},
        "browser_guid": "guid-1",
    }
    body.update(overrides)
    return body


def test_create_order_charges_each_seller(client, ebook, album, course):
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = SUCCEEDED_INTENT

        response = client.post(
            "/api/orders", json=_order_body(("a", "ebook", 500), ("b", "album", 1000), ("c", "course", 1500))
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert list(data["line_items"]) == ["a", "b", "c"]
        assert all(item["success"] for item in data["line_items"].values())
        assert mock_create.call_count == 2
        amounts = [call.kwargs["amount"] for call in mock_create.call_args_list]
        assert amounts == [2000, 1000]


def test_create_order_merges_rejected_line_items(client, ebook):
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = SUCCEEDED_INTENT

        response = client.post("/api/orders", json=_order_body(("a", "missing", 100), ("b", "ebook", 500)))

    data = response.json()
    assert list(data["line_items"]) == ["a", "b"]
    assert data["line_items"]["a"]["success"] is False
    assert data["line_items"]["a"]["error_code"] == "product_not_found"
    assert data["line_items"]["b"]["success"] is True


def test_create_order_rejects_duplicate_uids(client, ebook):
    response = client.post("/api/orders", json=_order_body(("a", "ebook", 500), ("a", "ebook", 500)))

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_create_order_with_unconfigured_processor(client, ebook, monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "")

    response = client.post("/api/orders", json=_order_body(("a", "ebook", 500)))

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


def test_create_order_without_exchange_rate(client, db, seller, platform_accounts, monkeypatch):
    from splitpay.models import Product
    from splitpay.services import currency

    monkeypatch.delenv("EXCHANGE_RATE_URL", raising=False)
    currency.clear_rate_cache()
    db.add(Product(seller_id=seller.id, permalink="poster", name="Poster", price_cents=900, price_currency="gbp"))
    db.commit()

    response = client.post("/api/orders", json=_order_body(("a", "poster", 900)))

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


def test_signed_in_buyer_is_recorded(client, db, buyer, ebook):
    token = jwt.encode({"sub": str(buyer.id), "type": "access"}, "test-secret-key-for-testing-only", algorithm="HS256")
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = SUCCEEDED_INTENT

        response = client.post(
            "/api/orders",
            json=_order_body(("a", "ebook", 500)),
            headers={"Authorization": f"Bearer {token}"},
        )

    order = db.query(Order).filter(Order.external_id == response.json()["order_id"]).one()
    assert order.purchaser_id == buyer.id
    assert order.purchases[0].purchaser_id == buyer.id


def test_card_action_then_confirm(client, db, seller, ebook):
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = ACTION_INTENT

        response = client.post("/api/orders", json=_order_body(("a", "ebook", 500)))

    data = response.json()
    item = data["line_items"]["a"]
    assert item["requires_card_action"] is True
    assert item["client_secret"] == "pi_456_secret_x"
    assert item["order"]["id"] == data["order_id"]

    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.retrieve") as mock_retrieve:
        mock_retrieve.return_value = dict(SUCCEEDED_INTENT, id="pi_456")

        confirm = client.post(
            f"/api/orders/{data['order_id']}/confirm", json={"client_secret": "pi_456_secret_x"}
        )

    assert confirm.status_code == status.HTTP_200_OK
    assert confirm.json()["line_items"]["a"]["success"] is True
    assert confirm.json()["offer_codes"] == []
    assert db.get(User, seller.id).balance_cents == 400


def test_confirm_reports_client_error(client, ebook):
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = ACTION_INTENT
        order_id = client.post("/api/orders", json=_order_body(("a", "ebook", 500))).json()["order_id"]

    confirm = client.post(
        f"/api/orders/{order_id}/confirm",
        json={"client_secret": "pi_456_secret_x", "error": {"code": "payment_intent_authentication_failure"}},
    )

    assert confirm.json()["line_items"]["a"]["error_code"] == "payment_intent_authentication_failure"


def test_confirm_unknown_order(client):
    response = client.post("/api/orders/nope/confirm", json={"client_secret": "pi_1_secret_x"})

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_confirm_unknown_client_secret(client, ebook):
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = SUCCEEDED_INTENT
        order_id = client.post("/api/orders", json=_order_body(("a", "ebook", 500))).json()["order_id"]

    response = client.post(f"/api/orders/{order_id}/confirm", json={"client_secret": "pi_1_secret_x"})

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_get_order(client, seller, ebook):
    with patch("splitpay.services.stripe_service.stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = SUCCEEDED_INTENT
        order_id = client.post("/api/orders", json=_order_body(("a", "ebook", 500))).json()["order_id"]

    response = client.get(f"/api/orders/{order_id}")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["id"] == order_id
    assert data["line_items"]["a"]["purchase_state"] == "successful"
    assert data["charges"] == [
        {
            "id": data["charges"][0]["id"],
            "seller_id": seller.id,
            "amount_cents": 500,
            "gumroad_amount_cents": 100,
            "processor_transaction_id": "ch_123",
            "processor_fee_cents": 88,
            "processor_fee_currency": "usd",
        }
    ]


def test_get_unknown_order(client):
    response = client.get("/api/orders/missing")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_payment_methods(client, monkeypatch):
    monkeypatch.setenv("PAYPAL_CLIENT_ID", "")

    response = client.get("/api/payment-methods")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"available_methods": ["stripe", "paypal"], "enabled_methods": ["stripe"]}
