"""
Stock movement API tests.

Verifies:
- stock-in / stock-out record the session user and convert units
- Insufficient stock is a 409 with available/requested figures
- Batch endpoints stop at the first failing item
- Ledger listing, per-user listing and weekly stock-out summaries
"""

from decimal import Decimal

from stockledger.models import Product, StockTransaction


class TestSingleMovements:

    def test_stock_in_records_user_and_reference(self, client, stock_in_headers, stock_in_user, milk, reload):
        resp = client.post(
            "/api/stock/stock-in",
            json={"product_id": milk.id, "quantity": "50", "unit": "l", "po_number": "PO-100"},
            headers=stock_in_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["type"] == "stock_in"
        assert body["user_id"] == stock_in_user.id
        assert body["previous_stock"] == "0.000"
        assert body["new_stock"] == "50.000"
        assert body["po_number"] == "PO-100"
        assert body["transaction_date"].endswith("Z")

        assert reload(Product, milk.id).current_stock == Decimal("50")

    def test_stock_out_converts_units(self, client, stock_out_headers, flour):
        resp = client.post(
            "/api/stock/stock-out",
            json={"product_id": flour.id, "quantity": 2500, "unit": "g", "so_number": "SO-1"},
            headers=stock_out_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["quantity"] == "2.500"
        assert body["unit"] == "kg"
        assert body["original_quantity"] == "2500.000"
        assert body["original_unit"] == "g"
        assert body["new_stock"] == "7.500"

    def test_insufficient_stock_is_conflict(self, client, stock_out_headers, flour, reload):
        resp = client.post(
            "/api/stock/stock-out",
            json={"product_id": flour.id, "quantity": 11, "unit": "kg"},
            headers=stock_out_headers,
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["available"] == "10.000"
        assert body["requested"] == "11.000"

        assert reload(Product, flour.id).current_stock == Decimal("10")
        assert StockTransaction.query.count() == 0

    def test_user_id_in_body_rejected(self, client, stock_in_headers, admin_user, milk):
        resp = client.post(
            "/api/stock/stock-in",
            json={"product_id": milk.id, "quantity": 1, "unit": "l", "user_id": admin_user.id},
            headers=stock_in_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "user_id"

    def test_so_number_not_accepted_on_stock_in(self, client, stock_in_headers, milk):
        resp = client.post(
            "/api/stock/stock-in",
            json={"product_id": milk.id, "quantity": 1, "unit": "l", "so_number": "SO-1"},
            headers=stock_in_headers,
        )
        assert resp.status_code == 400

    def test_zero_quantity(self, client, stock_in_headers, milk):
        resp = client.post(
            "/api/stock/stock-in",
            json={"product_id": milk.id, "quantity": 0, "unit": "l"},
            headers=stock_in_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "quantity"

    def test_unknown_product(self, client, stock_in_headers):
        resp = client.post(
            "/api/stock/stock-in",
            json={"product_id": 9999, "quantity": 1, "unit": "kg"},
            headers=stock_in_headers,
        )
        assert resp.status_code == 404

    def test_wrong_unit_family(self, client, stock_in_headers, milk):
        resp = client.post(
            "/api/stock/stock-in",
            json={"product_id": milk.id, "quantity": 1, "unit": "kg"},
            headers=stock_in_headers,
        )
        assert resp.status_code == 400


class TestBatchMovements:

    def test_batch_stock_in(self, client, stock_in_headers, milk, flour):
        resp = client.post(
            "/api/stock/stock-in/batch",
            json={
                "po_number": "PO-55",
                "items": [
                    {"product_id": milk.id, "quantity": 10, "unit": "l"},
                    {"product_id": flour.id, "quantity": 500, "unit": "g"},
                ],
            },
            headers=stock_in_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["count"] == 2
        assert {tx["po_number"] for tx in body["transactions"]} == {"PO-55"}

    def test_batch_partial_failure(self, client, stock_out_headers, milk, flour, reload):
        resp = client.post(
            "/api/stock/stock-out/batch",
            json={
                "so_number": "SO-9",
                "items": [
                    {"product_id": flour.id, "quantity": 3, "unit": "kg"},
                    {"product_id": milk.id, "quantity": 1, "unit": "l"},
                    {"product_id": flour.id, "quantity": 1, "unit": "kg"},
                ],
            },
            headers=stock_out_headers,
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["failed_index"] == 1
        assert body["count"] == 1
        assert body["transactions"][0]["new_stock"] == "7.000"

        assert reload(Product, flour.id).current_stock == Decimal("7")

    def test_batch_unexpected_failure_returns_committed_rows(self, client, stock_in_headers, milk, flour, monkeypatch):
        from stockledger.services import stock_service

        real_inner = stock_service._apply_movement_inner
        calls = {"n": 0}

        def broken_second(**kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disk on fire")
            return real_inner(**kwargs)

        monkeypatch.setattr(stock_service, "_apply_movement_inner", broken_second)

        resp = client.post(
            "/api/stock/stock-in/batch",
            json={
                "po_number": "PO-56",
                "items": [
                    {"product_id": milk.id, "quantity": 2, "unit": "l"},
                    {"product_id": flour.id, "quantity": 1, "unit": "kg"},
                ],
            },
            headers=stock_in_headers,
        )
        assert resp.status_code == 500
        body = resp.get_json()
        assert body["error"] == "Internal server error"
        assert body["failed_index"] == 1
        assert body["count"] == 1
        assert body["transactions"][0]["new_stock"] == "2.000"

    def test_invalid_item_rejected_before_any_write(self, client, stock_in_headers, milk):
        resp = client.post(
            "/api/stock/stock-in/batch",
            json={
                "items": [
                    {"product_id": milk.id, "quantity": 1, "unit": "l"},
                    {"product_id": milk.id, "quantity": -1, "unit": "l"},
                ],
            },
            headers=stock_in_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["failed_index"] == 1
        assert StockTransaction.query.count() == 0

    def test_empty_items(self, client, stock_in_headers):
        resp = client.post("/api/stock/stock-in/batch", json={"items": []}, headers=stock_in_headers)
        assert resp.status_code == 400

    def test_unknown_batch_field(self, client, stock_in_headers, milk):
        resp = client.post(
            "/api/stock/stock-in/batch",
            json={"items": [{"product_id": milk.id, "quantity": 1, "unit": "l"}], "so_number": "SO-1"},
            headers=stock_in_headers,
        )
        assert resp.status_code == 400


class TestLedgerViews:

    def _seed(self, client, in_headers, out_headers, product_id):
        client.post(
            "/api/stock/stock-in",
            json={"product_id": product_id, "quantity": 5, "unit": "kg"},
            headers=in_headers,
        )
        client.post(
            "/api/stock/stock-out",
            json={"product_id": product_id, "quantity": 2, "unit": "kg"},
            headers=out_headers,
        )

    def test_full_ledger_and_filters(self, client, handler_headers, stock_in_headers, stock_out_headers, flour):
        self._seed(client, stock_in_headers, stock_out_headers, flour.id)

        body = client.get("/api/stock/transactions", headers=handler_headers).get_json()
        assert body["count"] == 2
        assert [tx["type"] for tx in body["items"]] == ["stock_out", "stock_in"]

        outs = client.get("/api/stock/transactions?type=stock_out", headers=handler_headers).get_json()
        assert outs["count"] == 1

    def test_bad_filter_values(self, client, handler_headers):
        assert client.get("/api/stock/transactions?from_date=01/02/2024", headers=handler_headers).status_code == 400
        assert client.get("/api/stock/transactions?product_id=abc", headers=handler_headers).status_code == 400
        assert client.get("/api/stock/transactions?type=transfer", headers=handler_headers).status_code == 400

    def test_mine_only_shows_own_movements(self, client, stock_in_headers, stock_out_headers, stock_out_user, flour):
        self._seed(client, stock_in_headers, stock_out_headers, flour.id)

        body = client.get("/api/stock/transactions/mine", headers=stock_out_headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["user_id"] == stock_out_user.id

    def test_balance_report(self, client, handler_headers, stock_in_headers, stock_out_headers, flour):
        self._seed(client, stock_in_headers, stock_out_headers, flour.id)

        body = client.get(f"/api/stock/products/{flour.id}/balance", headers=handler_headers).get_json()
        assert body["balanced"] is True
        assert body["ledger_balance"] == "13.000"
        assert client.get("/api/stock/products/9999/balance", headers=handler_headers).status_code == 404

    def test_weekly_stock_outs(self, client, planner_headers, stock_in_headers, stock_out_headers, flour):
        self._seed(client, stock_in_headers, stock_out_headers, flour.id)

        body = client.get(f"/api/stock/stock-outs?product_id={flour.id}", headers=planner_headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["out_quantity"] == "2.000"
