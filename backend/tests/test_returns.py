"""
Returns tests: returnable quantities, completion side effects and the
outbound webhook.
"""

import json

import httpx
import pytest

from tiendapos.models import Product, CashMovement, InventoryMovement
from tiendapos.services import external_sync_service


@pytest.fixture
def sale_a(client, headers_a, product_a, open_session_a):
    """Cash sale of 3 x product_a (3000 cents)."""
    resp = client.post("/api/sales", headers=headers_a, json={
        "items": [{"product_id": product_a.id, "quantity": 3, "unit_price_cents": 1000}],
        "payment_method": "CASH",
    })
    assert resp.status_code == 201
    return resp.get_json()["sale"]


def _return(client, headers, sale, quantity=1, **extra):
    line = sale["items"][0]
    body = {
        "original_sale_id": sale["id"],
        "reason": "Producto defectuoso",
        "items": [{
            "original_sale_item_id": line["id"],
            "product_id": line["product_id"],
            "quantity": quantity,
            "unit_price_cents": line["unit_price_cents"],
        }],
    }
    body.update(extra)
    return client.post("/api/returns", headers=headers, json=body)


class TestCreateReturn:

    def test_create_pending_return(self, client, headers_a, sale_a):
        resp = _return(client, headers_a, sale_a, quantity=2)
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["return"]["status"] == "PENDING"
        assert data["return"]["total_cents"] == 2000
        assert data["summary"] == {"total_items": 1, "total_quantity": 2, "total_cents": 2000}

    def test_cannot_return_more_than_sold(self, client, headers_a, sale_a):
        assert _return(client, headers_a, sale_a, quantity=2).status_code == 201
        resp = _return(client, headers_a, sale_a, quantity=2)
        assert resp.status_code == 400
        assert "1 remaining" in resp.get_json()["error"]

    def test_rejected_returns_free_the_quantity(self, client, headers_a, sale_a):
        first = _return(client, headers_a, sale_a, quantity=3).get_json()["return"]
        client.patch(f"/api/returns/{first['id']}/status", headers=headers_a, json={"status": "REJECTED"})

        assert _return(client, headers_a, sale_a, quantity=3).status_code == 201

    def test_reason_required(self, client, headers_a, sale_a):
        assert _return(client, headers_a, sale_a, reason="  ").status_code == 400

    def test_line_from_other_sale_rejected(self, client, headers_a, sale_a, product_a):
        other = client.post("/api/sales", headers=headers_a, json={
            "items": [{"product_id": product_a.id, "quantity": 1, "unit_price_cents": 1000}],
            "payment_method": "CARD",
        }).get_json()["sale"]
        body = {
            "original_sale_id": sale_a["id"],
            "reason": "x",
            "items": [{
                "original_sale_item_id": other["items"][0]["id"],
                "product_id": product_a.id,
                "quantity": 1,
                "unit_price_cents": 1000,
            }],
        }
        assert client.post("/api/returns", headers=headers_a, json=body).status_code == 400

    def test_foreign_sale_is_404(self, client, headers_b, sale_a, user_b):
        assert _return(client, headers_b, sale_a).status_code == 404


class TestReturnStatus:

    def test_complete_restores_stock_and_refunds_cash(self, client, headers_a, sale_a, product_a, db_session):
        ret = _return(client, headers_a, sale_a, quantity=2).get_json()["return"]

        resp = client.patch(f"/api/returns/{ret['id']}/status", headers=headers_a, json={"status": "COMPLETED"})
        assert resp.status_code == 200

        db_session.expire_all()
        assert db_session.get(Product, product_a.id).stock_quantity == 9
        refund = db_session.query(CashMovement).filter_by(movement_type="RETURN").one()
        assert refund.amount_cents == -2000
        assert refund.reference_type == "RETURN"

    def test_completing_twice_restores_once(self, client, headers_a, sale_a, product_a, db_session):
        ret = _return(client, headers_a, sale_a, quantity=1).get_json()["return"]
        url = f"/api/returns/{ret['id']}/status"
        client.patch(url, headers=headers_a, json={"status": "COMPLETED"})
        client.patch(url, headers=headers_a, json={"status": "COMPLETED"})

        restored = db_session.query(InventoryMovement).filter_by(
            product_id=product_a.id, movement_type="RETURN"
        ).count()
        assert restored == 1

    @pytest.mark.parametrize("new_status", ["REJECTED", "PENDING", "APPROVED"])
    def test_completed_is_final(self, client, headers_a, sale_a, product_a, db_session, new_status):
        ret = _return(client, headers_a, sale_a, quantity=3).get_json()["return"]
        url = f"/api/returns/{ret['id']}/status"
        client.patch(url, headers=headers_a, json={"status": "COMPLETED"})

        resp = client.patch(url, headers=headers_a, json={"status": new_status})
        assert resp.status_code == 400
        assert client.get(f"/api/returns/{ret['id']}", headers=headers_a).get_json()["return"]["status"] == "COMPLETED"

        assert _return(client, headers_a, sale_a, quantity=3).status_code == 400
        assert client.delete(f"/api/returns/{ret['id']}", headers=headers_a).status_code == 400

        db_session.expire_all()
        assert db_session.get(Product, product_a.id).stock_quantity == 10

    def test_invalid_status(self, client, headers_a, sale_a):
        ret = _return(client, headers_a, sale_a).get_json()["return"]
        resp = client.patch(f"/api/returns/{ret['id']}/status", headers=headers_a, json={"status": "LOST"})
        assert resp.status_code == 400

    def test_only_pending_can_be_deleted(self, client, headers_a, sale_a):
        ret = _return(client, headers_a, sale_a).get_json()["return"]
        client.patch(f"/api/returns/{ret['id']}/status", headers=headers_a, json={"status": "APPROVED"})
        assert client.delete(f"/api/returns/{ret['id']}", headers=headers_a).status_code == 400

        pending = _return(client, headers_a, sale_a).get_json()["return"]
        assert client.delete(f"/api/returns/{pending['id']}", headers=headers_a).status_code == 200

    def test_cashier_cannot_update_status(self, client, headers_a, cashier_headers, sale_a):
        ret = _return(client, cashier_headers, sale_a).get_json()["return"]
        resp = client.patch(f"/api/returns/{ret['id']}/status", headers=cashier_headers, json={"status": "COMPLETED"})
        assert resp.status_code == 403

    def test_list_filters_by_status(self, client, headers_a, sale_a):
        _return(client, headers_a, sale_a)
        data = client.get("/api/returns?status=pending", headers=headers_a).get_json()
        assert data["pagination"]["total"] == 1
        assert data["pagination"]["has_prev"] is False


class TestExternalSync:

    @pytest.fixture
    def captured(self, app, monkeypatch):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        monkeypatch.setitem(app.config, "EXTERNAL_SYNC_BASE_URL", "https://erp.example.com/api/")
        monkeypatch.setitem(app.config, "EXTERNAL_SYNC_API_KEY", "k-123")
        monkeypatch.setitem(app.extensions, "external_sync_transport", httpx.MockTransport(handler))
        return requests

    def test_create_and_complete_are_pushed(self, client, headers_a, sale_a, captured):
        ret = _return(client, headers_a, sale_a, quantity=1).get_json()["return"]
        client.patch(f"/api/returns/{ret['id']}/status", headers=headers_a, json={"status": "COMPLETED"})

        assert len(captured) == 2
        assert str(captured[0].url) == "https://erp.example.com/api/returns"
        assert captured[0].headers["x-api-key"] == "k-123"

        created = json.loads(captured[0].content)["records"][0]
        assert created["originalSaleId"] == sale_a["id"]
        assert created["items"][0]["unitPrice"] == 1000

        completed = json.loads(captured[1].content)["records"][0]
        assert completed["status"] == "COMPLETED"
        assert completed["items"][0]["sku"] == "PROD-A-001"

    def test_webhook_failure_does_not_fail_return(self, app, client, headers_a, sale_a, monkeypatch):
        def handler(request):
            return httpx.Response(502)

        monkeypatch.setitem(app.config, "EXTERNAL_SYNC_BASE_URL", "https://erp.example.com/api")
        monkeypatch.setitem(app.extensions, "external_sync_transport", httpx.MockTransport(handler))

        assert _return(client, headers_a, sale_a).status_code == 201

    def test_disabled_without_base_url(self, app):
        with app.app_context():
            assert external_sync_service.push_records("returns", [{"id": 1}]) is False

    def test_basic_auth_wins_over_bearer(self):
        headers = external_sync_service.build_headers({
            "EXTERNAL_SYNC_BEARER_TOKEN": "tok",
            "EXTERNAL_SYNC_BASIC_USER": "u",
            "EXTERNAL_SYNC_BASIC_PASS": "p",
        })
        assert headers["Authorization"] == "Basic dTpw"
