"""
Product catalog API tests.

Verifies:
- CRUD over /api/products with 3-decimal quantity strings
- Names are unique case-insensitively
- Stock columns cannot be patched directly
- Units freeze and hard delete is refused once a product has history
"""

from decimal import Decimal

from stockledger.models import Product
from stockledger.services import stock_service


class TestProductCrud:

    def test_create_and_fetch(self, client, handler_headers, reload):
        resp = client.post(
            "/api/products",
            json={"name": "Rice", "unit": "Kilograms", "opening_stock": "12.5"},
            headers=handler_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["unit"] == "kg"
        assert body["opening_stock"] == "12.500"
        assert body["current_stock"] == "12.500"

        fetched = client.get(f"/api/products/{body['id']}", headers=handler_headers)
        assert fetched.status_code == 200
        assert fetched.get_json()["name"] == "Rice"
        assert reload(Product, body["id"]).current_stock == Decimal("12.5")

    def test_missing_fields(self, client, handler_headers):
        resp = client.post("/api/products", json={"name": "Rice"}, headers=handler_headers)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "unit"

    def test_unknown_unit(self, client, handler_headers):
        resp = client.post("/api/products", json={"name": "Rice", "unit": "bushel"}, headers=handler_headers)
        assert resp.status_code == 400

    def test_negative_opening_stock(self, client, handler_headers):
        resp = client.post(
            "/api/products",
            json={"name": "Rice", "unit": "kg", "opening_stock": -1},
            headers=handler_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "opening_stock"

    def test_duplicate_name_case_insensitive(self, client, handler_headers, milk):
        resp = client.post("/api/products", json={"name": "MILK", "unit": "l"}, headers=handler_headers)
        assert resp.status_code == 409

    def test_current_stock_not_writable(self, client, handler_headers, milk):
        resp = client.post(
            "/api/products",
            json={"name": "Rice", "unit": "kg", "current_stock": 5},
            headers=handler_headers,
        )
        assert resp.status_code == 400

        resp = client.put(f"/api/products/{milk.id}", json={"current_stock": 99}, headers=handler_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Field not allowed: current_stock"

    def test_list_search_and_inactive(self, client, handler_headers, milk, flour):
        client.put(f"/api/products/{flour.id}", json={"is_active": False}, headers=handler_headers)

        active = client.get("/api/products", headers=handler_headers).get_json()
        assert [p["name"] for p in active["items"]] == ["Milk"]

        everything = client.get("/api/products?include_inactive=true", headers=handler_headers).get_json()
        assert everything["count"] == 2

        found = client.get("/api/products?q=lou&include_inactive=1", headers=handler_headers).get_json()
        assert [p["name"] for p in found["items"]] == ["Flour"]

    def test_unknown_product(self, client, handler_headers):
        assert client.get("/api/products/9999", headers=handler_headers).status_code == 404
        assert client.put("/api/products/9999", json={"name": "X"}, headers=handler_headers).status_code == 404


class TestHistoryRules:

    def test_rename_allowed_after_history(self, client, handler_headers, flour):
        stock_service.stock_in(flour.id, Decimal("1"), "kg")
        resp = client.put(f"/api/products/{flour.id}", json={"name": "Wheat Flour"}, headers=handler_headers)
        assert resp.status_code == 200
        assert resp.get_json()["name"] == "Wheat Flour"

    def test_unit_change_refused_after_history(self, client, handler_headers, flour):
        stock_service.stock_in(flour.id, Decimal("1"), "kg")
        resp = client.put(f"/api/products/{flour.id}", json={"unit": "g"}, headers=handler_headers)
        assert resp.status_code == 409

    def test_unit_change_allowed_without_history(self, client, handler_headers, milk):
        resp = client.put(f"/api/products/{milk.id}", json={"unit": "ml"}, headers=handler_headers)
        assert resp.status_code == 200
        assert resp.get_json()["unit"] == "ml"

    def test_unit_change_restates_stock(self, client, handler_headers, reload):
        created = client.post(
            "/api/products",
            json={"name": "Rice", "unit": "kg", "opening_stock": "5"},
            headers=handler_headers,
        ).get_json()

        resp = client.put(f"/api/products/{created['id']}", json={"unit": "g"}, headers=handler_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["unit"] == "g"
        assert body["opening_stock"] == "5000.000"
        assert body["current_stock"] == "5000.000"

        stored = reload(Product, created["id"])
        assert stored.current_stock == Decimal("5000")

    def test_unit_change_across_families_refused(self, client, handler_headers, flour, reload):
        resp = client.put(f"/api/products/{flour.id}", json={"unit": "l"}, headers=handler_headers)
        assert resp.status_code == 400
        stored = reload(Product, flour.id)
        assert stored.unit == "kg"
        assert stored.current_stock == Decimal("10")

    def test_unit_change_refused_when_stock_would_round(self, client, handler_headers):
        created = client.post(
            "/api/products",
            json={"name": "Saffron", "unit": "g", "opening_stock": "0.5"},
            headers=handler_headers,
        ).get_json()

        resp = client.put(f"/api/products/{created['id']}", json={"unit": "kg"}, headers=handler_headers)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "unit"

    def test_delete_without_history(self, client, handler_headers, milk, reload):
        resp = client.delete(f"/api/products/{milk.id}", headers=handler_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"deleted": True, "id": milk.id}
        assert reload(Product, milk.id) is None

    def test_delete_with_history_refused(self, client, handler_headers, flour, reload):
        stock_service.stock_out(flour.id, Decimal("1"), "kg")
        resp = client.delete(f"/api/products/{flour.id}", headers=handler_headers)
        assert resp.status_code == 409
        assert reload(Product, flour.id) is not None
