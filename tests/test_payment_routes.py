"""Tests for the /api/payments routes."""

from sqlalchemy.exc import OperationalError

from pixelgrid.models.pixel_models import dump_item

from factories import image_item

PAYER = {
    "email": "test_user_123@test.com",
    "first_name": "Comprador",
    "last_name": "Ficticio",
    "identification": {"type": "CPF", "number": "19119119100"},
}


def charge(client, pixel_id=None, amount=12.0):
    body = {
        "transaction_amount": amount,
        "description": f"Pixel Grid - Payment for Pixel {pixel_id}",
        "payer": PAYER,
    }
    if pixel_id:
        body["pixel_id"] = pixel_id
    return client.post("/api/payments/pix", json=body)


def created(client, store):
    item = image_item()
    assert client.post("/api/pixels", json=dump_item(item)).status_code == 201
    return item


def webhook(client, payment_id, action="payment.updated"):
    return client.post("/api/payments/webhook", json={"action": action, "type": "payment", "data": {"id": payment_id}})


class TestCreateCharge:
    def test_links_charge_to_item(self, client, store, provider):
        item = created(client, store)
        response = charge(client, item.id)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["qr_code"].startswith("00020126")
        assert body["qr_code_base64"]
        assert store.get(item.id).payment_id == body["id"]

        sent = provider.created_bodies()[0]
        assert sent["payment_method_id"] == "pix"
        assert sent["external_reference"] == item.id
        assert sent["transaction_amount"] == 12.0
        assert "notification_url" not in sent

    def test_notification_url_for_public_backend(self, client, store, provider, settings):
        settings.backend_url = "https://pixels.example.com/"
        charge(client, created(client, store).id)
        assert provider.created_bodies()[0]["notification_url"] == "https://pixels.example.com/api/payments/webhook"

    def test_localhost_backend_gets_no_notifications(self, client, store, provider, settings):
        settings.backend_url = "http://localhost:3001"
        charge(client, created(client, store).id)
        assert "notification_url" not in provider.created_bodies()[0]

    def test_without_item(self, client, provider):
        response = charge(client)
        assert response.status_code == 200
        assert provider.created_bodies()[0]["external_reference"] is None

    def test_provider_failure(self, client, store, provider):
        provider.fail_create = True
        item = created(client, store)
        response = charge(client, item.id)
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to create PIX payment"
        assert "400" in body["details"]
        assert store.get(item.id).payment_id is None

    def test_rejects_non_positive_amount(self, client):
        assert charge(client, amount=0).status_code == 422


class TestWebhook:
    def test_approves_by_external_reference(self, client, store, provider):
        item = created(client, store)
        payment_id = charge(client, item.id).json()["id"]
        provider.approve(payment_id)

        assert webhook(client, int(payment_id)).status_code == 200
        assert store.get(item.id).status == "approved"

    def test_delivered_twice(self, client, store, provider):
        item = created(client, store)
        payment_id = charge(client, item.id).json()["id"]
        provider.approve(payment_id)

        assert webhook(client, payment_id).status_code == 200
        assert webhook(client, payment_id).status_code == 200
        assert store.get(item.id).status == "approved"
        assert [row["id"] for row in client.get("/api/pixels").json()] == [item.id]

    def test_falls_back_to_payment_id(self, client, store, provider):
        item = created(client, store)
        store.attach_payment(item.id, "777")
        provider.add_payment(777, status="approved", external_reference=None)

        assert webhook(client, 777).status_code == 200
        assert store.get(item.id).status == "approved"

    def test_pending_payment_changes_nothing(self, client, store, provider):
        item = created(client, store)
        charge(client, item.id)
        payment_id = store.get(item.id).payment_id

        assert webhook(client, payment_id).status_code == 200
        assert store.get(item.id).status == "pending"

    def test_other_actions_ignored(self, client, store, provider):
        item = created(client, store)
        payment_id = charge(client, item.id).json()["id"]
        provider.approve(payment_id)
        lookups = len(provider.requests)

        assert webhook(client, payment_id, action="payment.created").status_code == 200
        assert len(provider.requests) == lookups
        assert store.get(item.id).status == "pending"

    def test_unknown_payment(self, client):
        assert webhook(client, 123456).status_code == 200

    def test_unreadable_body(self, client):
        response = client.post(
            "/api/payments/webhook", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200

    def test_store_failure_still_acknowledged(self, client, store, provider, monkeypatch):
        item = created(client, store)
        payment_id = charge(client, item.id).json()["id"]
        provider.approve(payment_id)

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE pixels", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "approve", broken)
        monkeypatch.setattr(store, "approve_by_payment", broken)

        response = webhook(client, payment_id)
        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert store.get(item.id).status == "pending"
