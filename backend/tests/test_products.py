"""
Catalog tests: product CRUD, barcode checks, stock adjustments and cart
validation.
"""

import pytest

from tiendapos.models import Product, InventoryMovement
from tiendapos.validation import (
    ValidationError,
    coerce_int,
    parse_pagination,
    pagination_dict,
    enforce_rules_product,
)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


class TestValidationHelpers:

    @pytest.mark.parametrize("value", ["1.5", "1e3", "", True, 2.0, None])
    def test_coerce_int_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            coerce_int(value, "qty")

    def test_coerce_int_accepts_numeric_strings(self):
        assert coerce_int(" 42 ", "qty") == 42

    def test_pagination_defaults(self):
        assert parse_pagination({}, default_limit=20, max_limit=100) == (1, 20)

    def test_pagination_limit_out_of_range(self):
        with pytest.raises(ValidationError):
            parse_pagination({"limit": "101"}, default_limit=20, max_limit=100)

    def test_pagination_dict_rounds_pages_up(self):
        assert pagination_dict(1, 10, 21)["pages"] == 3

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            enforce_rules_product({"price_cents": -1})

    def test_barcode_must_be_digits(self):
        with pytest.raises(ValidationError):
            enforce_rules_product({"barcode": "ABC12345"})


# =============================================================================
# CRUD
# =============================================================================


class TestProductCrud:

    def test_create_product(self, client, headers_a, org_a):
        resp = client.post("/api/products", headers=headers_a, json={
            "sku": "MART-01",
            "name": "Martillo",
            "price_cents": 15990,
            "stock_quantity": 4,
        })
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["org_id"] == org_a.id
        assert product["price_cents"] == 15990

    def test_create_requires_name(self, client, headers_a):
        resp = client.post("/api/products", headers=headers_a, json={"sku": "X", "price_cents": 100})
        assert resp.status_code == 400
        assert "name" in resp.get_json()["error"]

    def test_unknown_field_rejected(self, client, headers_a):
        resp = client.post("/api/products", headers=headers_a, json={
            "sku": "X", "name": "X", "price_cents": 100, "org_id": 999,
        })
        assert resp.status_code == 400

    def test_duplicate_sku_is_conflict(self, client, headers_a, product_a):
        resp = client.post("/api/products", headers=headers_a, json={
            "sku": product_a.sku, "name": "Copy", "price_cents": 100,
        })
        assert resp.status_code == 409

    def test_offer_above_price_rejected(self, client, headers_a, product_a):
        resp = client.patch(f"/api/products/{product_a.id}", headers=headers_a, json={
            "offer_price_cents": 5000,
        })
        assert resp.status_code == 400

    def test_update_product(self, client, headers_a, product_a):
        resp = client.patch(f"/api/products/{product_a.id}", headers=headers_a, json={
            "name": "Product A v2", "offer_price_cents": 800,
        })
        assert resp.status_code == 200
        assert resp.get_json()["product"]["name"] == "Product A v2"

    def test_delete_is_soft(self, client, headers_a, product_a, db_session):
        resp = client.delete(f"/api/products/{product_a.id}", headers=headers_a)
        assert resp.status_code == 200

        db_session.expire_all()
        product = db_session.get(Product, product_a.id)
        assert product is not None
        assert product.is_active is False

    def test_list_search_and_pagination(self, client, headers_a, product_a, db_session, org_a):
        db_session.add(Product(org_id=org_a.id, sku="OTHER-1", name="Destornillador", price_cents=500))
        db_session.commit()

        resp = client.get("/api/products?search=destor", headers=headers_a)
        data = resp.get_json()
        assert resp.status_code == 200
        assert [p["sku"] for p in data["products"]] == ["OTHER-1"]
        assert data["pagination"]["total"] == 1

    def test_list_rejects_oversized_limit(self, client, headers_a):
        resp = client.get("/api/products?limit=500", headers=headers_a)
        assert resp.status_code == 400

    def test_list_reports_next_since(self, client, headers_a, product_a):
        resp = client.get("/api/products", headers=headers_a)
        assert resp.get_json()["sync"]["next_since"].endswith("Z")


# =============================================================================
# BARCODES AND STOCK
# =============================================================================


class TestBarcodeAndStock:

    def test_validate_barcode_existing(self, client, headers_a, product_a):
        resp = client.get(f"/api/products/validate-barcode?code={product_a.barcode}", headers=headers_a)
        data = resp.get_json()
        assert data["valid"] is True
        assert data["exists"] is True
        assert data["product_id"] == product_a.id

    def test_validate_barcode_bad_format(self, client, headers_a, product_a):
        resp = client.get("/api/products/validate-barcode?code=12AB", headers=headers_a)
        data = resp.get_json()
        assert data["valid"] is False
        assert data["exists"] is False

    def test_stock_adjustment_writes_movement(self, client, headers_a, product_a, db_session):
        resp = client.post(f"/api/products/{product_a.id}/stock-adjustments", headers=headers_a, json={
            "quantity_delta": -3, "reason": "Broken",
        })
        assert resp.status_code == 201
        assert resp.get_json()["product"]["stock_quantity"] == 7

        movement = db_session.query(InventoryMovement).filter_by(product_id=product_a.id).one()
        assert movement.quantity_delta == -3
        assert movement.movement_type == "ADJUSTMENT"

    def test_stock_cannot_go_negative(self, client, headers_a, product_a):
        resp = client.post(f"/api/products/{product_a.id}/stock-adjustments", headers=headers_a, json={
            "quantity_delta": -11,
        })
        assert resp.status_code == 400

    def test_zero_adjustment_rejected(self, client, headers_a, product_a):
        resp = client.post(f"/api/products/{product_a.id}/stock-adjustments", headers=headers_a, json={
            "quantity_delta": 0,
        })
        assert resp.status_code == 400


# =============================================================================
# CART VALIDATION
# =============================================================================


class TestCartValidation:

    def test_valid_cart(self, client, headers_a, product_a):
        resp = client.post("/api/cart/validate", headers=headers_a, json={
            "items": [{"product_id": product_a.id, "quantity": 2, "unit_price_cents": 1000}],
        })
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["valid"] is True
        assert data["subtotal_cents"] == 2000

    def test_reports_every_problem(self, client, headers_a, product_a, product_b):
        resp = client.post("/api/cart/validate", headers=headers_a, json={
            "items": [
                {"product_id": product_a.id, "quantity": 50, "unit_price_cents": 900},
                {"product_id": product_b.id, "quantity": 1},
            ],
        })
        data = resp.get_json()
        assert data["valid"] is False
        first, second = data["items"]
        assert set(first["errors"]) == {"INSUFFICIENT_STOCK", "PRICE_CHANGED"}
        assert first["current_price_cents"] == 1000
        assert second["errors"] == ["PRODUCT_NOT_FOUND"]

    def test_non_integer_product_id_is_not_found(self, client, headers_a, product_a):
        resp = client.post("/api/cart/validate", headers=headers_a, json={
            "items": [
                {"product_id": [product_a.id], "quantity": 1},
                {"product_id": product_a.id, "quantity": 1},
            ],
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["valid"] is False
        assert data["items"][0]["errors"] == ["PRODUCT_NOT_FOUND"]
        assert data["items"][1]["valid"] is True

    def test_offer_price_is_current_price(self, client, headers_a, product_a, db_session):
        product_a.offer_price_cents = 750
        db_session.commit()

        resp = client.post("/api/cart/validate", headers=headers_a, json={
            "items": [{"product_id": product_a.id, "quantity": 1, "unit_price_cents": 750}],
        })
        assert resp.get_json()["items"][0]["valid"] is True

    def test_empty_cart_rejected(self, client, headers_a):
        resp = client.post("/api/cart/validate", headers=headers_a, json={"items": []})
        assert resp.status_code == 400
