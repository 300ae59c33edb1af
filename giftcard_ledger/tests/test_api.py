import pytest
from fastapi.testclient import TestClient

from giftcard_ledger.api import create_app


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def issue(client, purchase_id="order-1", amount="50.00", quantity=1):
    return client.post(f"/purchases/{purchase_id}/gift-cards", json={
        "line_items": [{
            "line_item_id": "1",
            "quantity": quantity,
            "spec": {"is_gift_card": True, "per_unit_amount": amount},
        }],
        "purchaser_contact": "buyer@example.com",
        "currency": "EUR",
    })


class TestGiftCardApi:
    """Tests for the HTTP adapter over the service."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_issue_and_list(self, client):
        response = issue(client, quantity=2)

        assert response.status_code == 201
        codes = response.json()["codes"]
        assert len(codes) == 1

        listing = client.get("/gift-cards", params={"status": "active", "search": "buyer"}).json()
        assert listing["total_count"] == 1
        assert listing["items"][0]["code"] == codes[0]
        assert float(listing["items"][0]["remaining_amount"]) == 100.0

        cards = client.get("/purchases/order-1/gift-cards").json()
        assert [c["code"] for c in cards] == codes

    def test_list_rejects_invalid_paging(self, client):
        issue(client)

        assert client.get("/gift-cards", params={"page_size": -1}).status_code == 422
        assert client.get("/gift-cards", params={"page": 0}).status_code == 422
        assert client.get("/gift-cards", params={"page_size": 1}).status_code == 200

    def test_purchase_cards_unknown_purchase(self, client):
        assert client.get("/purchases/nope/gift-cards").status_code == 404

    def test_apply_attach_finalize(self, client):
        code = issue(client, amount="100.00").json()["codes"][0]

        applied = client.post("/redemptions/apply", json={"code": code, "purchase_total": "30", "currency": "EUR"})
        assert applied.status_code == 200
        body = applied.json()
        assert body["success"] is True
        assert float(body["usable_amount"]) == 30.0

        recomputed = client.post("/redemptions/recompute", json={
            "pending": body["pending"], "purchase_total": "20", "currency": "EUR",
        }).json()
        assert float(recomputed["pending"]["amount"]) == 20.0

        attached = client.put("/purchases/order-9/redemption", json=recomputed["pending"], params={"currency": "EUR"})
        assert attached.status_code == 200

        finalized = client.post("/purchases/order-9/finalize")
        assert finalized.status_code == 200
        assert float(finalized.json()["new_remaining"]) == 80.0

        # second call is a no-op
        again = client.post("/purchases/order-9/finalize")
        assert again.status_code == 200
        assert again.json() is None

    def test_apply_invalid_code(self, client):
        body = client.post("/redemptions/apply", json={"code": "GC-NOPE", "purchase_total": "10"}).json()

        assert body["success"] is False
        assert body["pending"] is None

    def test_finalize_unknown_purchase(self, client):
        assert client.post("/purchases/nope/finalize").status_code == 404

    def test_cancel(self, client):
        code = issue(client).json()["codes"][0]

        response = client.post(f"/gift-cards/{code}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert client.post("/gift-cards/GC-NOPE/cancel").status_code == 404
