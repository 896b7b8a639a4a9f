"""
API tests for inventory, transactions, the parser endpoint and health.

Verifies:
- Business errors map to stable status codes and error codes
- Response envelopes the frontend depends on
"""

import pytest

from flowershop.models import AuditLog


@pytest.fixture
def rosa(client, owner_headers):
    resp = client.post(
        "/api/inventory",
        json={"name": "Rosa", "quality": "Premium", "quantity": 50, "unit_price": "2.50"},
        headers=owner_headers,
    )
    assert resp.status_code == 201
    return resp.json["item"]


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventoryRoutes:

    def test_create_and_get(self, client, owner_headers, rosa):
        assert rosa["unit_price"] == "2.50"
        resp = client.get(f"/api/inventory/{rosa['id']}", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json["item"]["quantity"] == 50
        assert resp.json["item"]["losses"] == []

    def test_create_missing_field(self, client, owner_headers):
        resp = client.post("/api/inventory", json={"name": "Rosa"}, headers=owner_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"

    def test_create_unknown_field(self, client, owner_headers):
        resp = client.post(
            "/api/inventory",
            json={"name": "Rosa", "quality": "P", "quantity": 1, "unit_price": 1, "is_active": False},
            headers=owner_headers,
        )
        assert resp.status_code == 400

    def test_duplicate_is_conflict(self, client, owner_headers, rosa):
        resp = client.post(
            "/api/inventory",
            json={"name": "Rosa", "quality": "Premium", "quantity": 1, "unit_price": 1},
            headers=owner_headers,
        )
        assert resp.status_code == 409
        assert resp.json["code"] == "CONFLICT"

    def test_list_envelope(self, client, staff_headers, rosa):
        resp = client.get("/api/inventory?is_active=true&limit=10", headers=staff_headers)
        assert resp.status_code == 200
        assert set(resp.json) == {"data", "total", "page", "limit", "total_pages"}
        assert resp.json["total"] == 1

    def test_bad_pagination(self, client, staff_headers):
        resp = client.get("/api/inventory?limit=500", headers=staff_headers)
        assert resp.status_code == 400

    def test_unknown_item_is_404(self, client, staff_headers):
        resp = client.get("/api/inventory/9999", headers=staff_headers)
        assert resp.status_code == 404
        assert resp.json["code"] == "NOT_FOUND"

    def test_loss_round_trip(self, client, staff_headers, rosa):
        resp = client.post(
            f"/api/inventory/{rosa['id']}/loss",
            json={"quantity": 5, "reason": "Expired", "notes": "weekend"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        loss = resp.json["loss"]
        assert loss["recorded_at"] is not None
        assert loss["inventory_item"]["name"] == "Rosa"

        resp = client.get(f"/api/inventory/{rosa['id']}/losses", headers=staff_headers)
        assert len(resp.json["losses"]) == 1

        resp = client.delete(f"/api/inventory/losses/{loss['id']}", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json == {"success": True, "restored_quantity": 50}

    def test_loss_over_stock(self, client, staff_headers, rosa):
        resp = client.post(
            f"/api/inventory/{rosa['id']}/loss",
            json={"quantity": 51, "reason": "Expired"},
            headers=staff_headers,
        )
        assert resp.status_code == 409
        assert resp.json["code"] == "INSUFFICIENT_STOCK"
        assert resp.json["details"]["available"] == 50

    def test_archive_and_delete_with_history(self, client, staff_headers, rosa):
        client.post(
            "/api/transactions",
            json={"type": "SALE", "items": [{"inventory_item_id": rosa["id"], "quantity": 1}]},
            headers=staff_headers,
        )

        resp = client.delete(f"/api/inventory/{rosa['id']}", headers=staff_headers)
        assert resp.status_code == 409
        assert resp.json["code"] == "HAS_HISTORY"

        resp = client.patch(f"/api/inventory/{rosa['id']}/archive", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["item"]["is_active"] is False


# =============================================================================
# TRANSACTIONS
# =============================================================================


class TestTransactionRoutes:

    def test_sale_then_delete(self, client, staff_headers, rosa):
        resp = client.post(
            "/api/transactions",
            json={"type": "SALE", "items": [{"inventory_item_id": rosa["id"], "quantity": 12}]},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        tx = resp.json["transaction"]
        assert tx["total_amount"] == "30.00"
        assert tx["items"][0]["quantity"] == 12

        item = client.get(f"/api/inventory/{rosa['id']}", headers=staff_headers).json["item"]
        assert item["quantity"] == 38

        resp = client.delete(f"/api/transactions/{tx['id']}", headers=staff_headers)
        assert resp.status_code == 200

        item = client.get(f"/api/inventory/{rosa['id']}", headers=staff_headers).json["item"]
        assert item["quantity"] == 50
        assert client.get(f"/api/transactions/{tx['id']}", headers=staff_headers).status_code == 404

    def test_insufficient_stock(self, client, staff_headers, rosa):
        resp = client.post(
            "/api/transactions",
            json={"type": "SALE", "items": [{"inventory_item_id": rosa["id"], "quantity": 51}]},
            headers=staff_headers,
        )
        assert resp.status_code == 409
        assert resp.json["details"] == {
            "item_id": rosa["id"],
            "item": "Rosa (Premium)",
            "requested": 51,
            "available": 50,
            "deficit": 1,
        }

    def test_put_rejects_items(self, client, staff_headers, rosa):
        tx = client.post(
            "/api/transactions",
            json={"type": "SALE", "items": [{"inventory_item_id": rosa["id"], "quantity": 1}]},
            headers=staff_headers,
        ).json["transaction"]

        resp = client.put(f"/api/transactions/{tx['id']}", json={"items": []}, headers=staff_headers)
        assert resp.status_code == 400

        resp = client.put(
            f"/api/transactions/{tx['id']}",
            json={"message_sent": True, "customer_name": "Ana"},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.json["transaction"]["message_sent"] is True

    def test_summary_and_analytics(self, client, staff_headers, rosa):
        client.post(
            "/api/transactions",
            json={"type": "SALE", "items": [{"inventory_item_id": rosa["id"], "quantity": 2}]},
            headers=staff_headers,
        )

        summary = client.get("/api/transactions/summary", headers=staff_headers).json
        assert summary["total_sales"] == "5.00"
        assert summary["sales_count"] == 1

        resp = client.get("/api/transactions/analytics?period=week", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["top_items"][0]["item"] == "Rosa (Premium)"

        resp = client.get("/api/transactions/analytics?period=century", headers=staff_headers)
        assert resp.status_code == 400

    def test_list_with_bad_date(self, client, staff_headers):
        resp = client.get("/api/transactions?start_date=yesterday", headers=staff_headers)
        assert resp.status_code == 400

    def test_mutation_is_audited_with_request_context(self, client, db_session, staff_headers, rosa):
        client.post(
            "/api/transactions",
            json={"type": "SALE", "items": [{"inventory_item_id": rosa["id"], "quantity": 1}]},
            headers={**staff_headers, "User-Agent": "flowershop-tests"},
        )
        entry = db_session.query(AuditLog).filter_by(action="CREATE_TRANSACTION").one()
        assert entry.actor_id == "staff@flowershop.test"
        assert entry.user_agent == "flowershop-tests"


# =============================================================================
# PARSER / HEALTH
# =============================================================================


class TestParserRoute:

    def test_fallback_draft(self, client, staff_headers, rosa):
        resp = client.post(
            "/api/ai/parse-transaction",
            json={"prompt": "12 rosas total $30 Juan", "language": "es"},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        draft = resp.json["draft"]
        assert draft["items"][0]["inventory_item_id"] == rosa["id"]
        assert draft["total_amount"] == "30.00"

    def test_empty_prompt(self, client, staff_headers, rosa):
        resp = client.post("/api/ai/parse-transaction", json={"prompt": ""}, headers=staff_headers)
        assert resp.status_code == 400

    def test_no_inventory(self, client, staff_headers):
        resp = client.post("/api/ai/parse-transaction", json={"prompt": "2 rosas"}, headers=staff_headers)
        assert resp.status_code == 400


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json["status"] == "ok"
    assert resp.json["checks"]["database"]["status"] == "healthy"
