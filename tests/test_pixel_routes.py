"""Tests for the /api/pixels routes."""

import io

from PIL import Image

from pixelgrid.models.pixel_models import dump_item

from factories import image_item, png_data_url, text_item


def post_item(client, item, **extra):
    payload = dump_item(item)
    payload.update(extra)
    return client.post("/api/pixels", json=payload)


class TestListAndCreate:
    def test_empty_board(self, client):
        response = client.get("/api/pixels")
        assert response.status_code == 200
        assert response.json() == []

    def test_create_is_pending_regardless_of_input(self, client, store):
        item = image_item()
        response = post_item(client, item, status="approved", paymentId="999")
        assert response.status_code == 201
        body = response.json()
        assert body["id"] == item.id
        assert body["status"] == "pending"
        assert body["paymentId"] is None
        assert store.get(item.id).status == "pending"

    def test_pending_hidden_until_approved(self, client, store):
        item = text_item()
        post_item(client, item)
        assert client.get("/api/pixels").json() == []

        store.approve(item.id)
        listed = client.get("/api/pixels").json()
        assert [row["id"] for row in listed] == [item.id]
        assert listed[0]["type"] == "text"
        assert listed[0]["bgColor"] == "#ff0000"
        assert "status" not in listed[0]

    def test_invalid_payload(self, client):
        payload = dump_item(image_item())
        payload["w"] = 0
        response = client.post("/api/pixels", json=payload)
        assert response.status_code == 422
        assert "error" in response.json()

    def test_rectangle_past_board(self, client):
        payload = dump_item(image_item())
        payload.update(x=999, w=2)
        assert client.post("/api/pixels", json=payload).status_code == 422

    def test_duplicate_id(self, client):
        item = image_item()
        assert post_item(client, item).status_code == 201
        response = post_item(client, item)
        assert response.status_code == 409
        assert response.json() == {"error": "Pixel already exists"}


class TestOverlapCheck:
    def test_allowed_by_default(self, client, store):
        first = image_item(x=0, y=0, w=4, h=4)
        post_item(client, first)
        store.approve(first.id)
        assert post_item(client, image_item(x=2, y=2, w=4, h=4)).status_code == 201

    def test_rejected_when_enabled(self, client, store, settings):
        settings.reject_overlap = True
        first = image_item(x=0, y=0, w=4, h=4)
        post_item(client, first)
        store.approve(first.id)

        response = post_item(client, image_item(x=2, y=2, w=4, h=4))
        assert response.status_code == 409
        assert response.json() == {"error": "Area already occupied"}
        assert post_item(client, image_item(x=4, y=0, w=2, h=2)).status_code == 201


class TestStatus:
    def test_unknown(self, client):
        response = client.get("/api/pixels/missing/status")
        assert response.status_code == 404
        assert response.json() == {"error": "Pixel not found"}

    def test_pending_without_charge(self, client, provider):
        item = image_item()
        post_item(client, item)
        assert client.get(f"/api/pixels/{item.id}/status").json() == {"status": "pending"}
        assert provider.requests == []

    def test_provider_status_passed_through(self, client, store, provider):
        item = image_item()
        post_item(client, item)
        provider.add_payment(42, status="in_process", external_reference=item.id)
        store.attach_payment(item.id, "42")
        assert client.get(f"/api/pixels/{item.id}/status").json() == {"status": "in_process"}

    def test_provider_approval_is_persisted(self, client, store, provider):
        item = image_item()
        post_item(client, item)
        provider.add_payment(42, status="approved", external_reference=item.id)
        store.attach_payment(item.id, "42")

        assert client.get(f"/api/pixels/{item.id}/status").json() == {"status": "approved"}
        assert store.get(item.id).status == "approved"

        # short-circuit: no second provider lookup
        lookups = len(provider.requests)
        assert client.get(f"/api/pixels/{item.id}/status").json() == {"status": "approved"}
        assert len(provider.requests) == lookups

    def test_provider_failure(self, client, store):
        item = image_item()
        post_item(client, item)
        store.attach_payment(item.id, "404404")
        response = client.get(f"/api/pixels/{item.id}/status")
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to check status"}


class TestDiscard:
    def test_pending_is_deleted_for_good(self, client, store):
        item = image_item()
        post_item(client, item)
        response = client.delete(f"/api/pixels/{item.id}")
        assert response.status_code == 200
        assert response.json() == {"message": "Pixel discarded"}

        store.approve(item.id)
        assert client.get("/api/pixels").json() == []
        assert client.get(f"/api/pixels/{item.id}/status").status_code == 404

    def test_approved_is_kept(self, client, store):
        item = image_item()
        post_item(client, item)
        store.approve(item.id)

        response = client.delete(f"/api/pixels/{item.id}")
        assert response.status_code == 400
        assert response.json() == {"error": "Pixel not found or already approved"}
        assert [row["id"] for row in client.get("/api/pixels").json()] == [item.id]

    def test_unknown(self, client):
        assert client.delete("/api/pixels/missing").status_code == 400


class TestSnapshot:
    def test_png_of_requested_size(self, client, store):
        item = image_item(x=1, y=1, w=2, h=2, src=png_data_url((0, 0, 255, 255)))
        post_item(client, item)
        store.approve(item.id)

        response = client.get("/api/pixels/snapshot.png", params={"x": 0, "y": 0, "scale": 1, "width": 100, "height": 80})
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        image = Image.open(io.BytesIO(response.content)).convert("RGB")
        assert image.size == (100, 80)
        assert image.getpixel((40, 40)) == (0, 0, 255)

    def test_size_limit(self, client):
        assert client.get("/api/pixels/snapshot.png", params={"width": 100000}).status_code == 422


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
