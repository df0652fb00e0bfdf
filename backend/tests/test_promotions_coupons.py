"""
Promotions (approval flow, product links, storefront offers) and coupons
(code rules, checkout validation, demo seed).
"""

from datetime import timedelta

import pytest

from tiendapos.models import Coupon, Product
from tiendapos.services.coupon_service import calculate_discount
from tiendapos.services.promotions_service import discounted_price, offers_products
from tiendapos.time_utils import utcnow, to_utc_z


def _iso(delta_days: int) -> str:
    return to_utc_z(utcnow() + timedelta(days=delta_days))


def _promotion_body(**extra):
    body = {
        "name": "Semana ferretera",
        "type": "PERCENTAGE",
        "value": 20,
        "start_date": _iso(-1),
        "end_date": _iso(7),
    }
    body.update(extra)
    return body


# =============================================================================
# PROMOTIONS
# =============================================================================


class TestPromotions:

    def test_create_is_pending_approval(self, client, headers_a, product_a):
        resp = client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            applicable_product_ids=[product_a.id],
        ))
        assert resp.status_code == 201
        promotion = resp.get_json()["promotion"]
        assert promotion["approval_status"] == "pending"
        assert promotion["type"] == "PERCENTAGE"
        assert [p["id"] for p in promotion["applicable_products"]] == [product_a.id]

    @pytest.mark.parametrize(
        "override",
        [
            {"value": 0},
            {"value": 101},
            {"type": "BOGO"},
            {"end_date": _iso(-2)},
            {"name": ""},
        ],
    )
    def test_invalid_promotion_rejected(self, client, headers_a, override):
        resp = client.post("/api/promotions", headers=headers_a, json=_promotion_body(**override))
        assert resp.status_code == 400

    def test_foreign_product_link_rejected(self, client, headers_a, product_b):
        resp = client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            applicable_product_ids=[product_b.id],
        ))
        assert resp.status_code == 400

    def test_approval_flow(self, client, headers_a, user_a):
        promotion = client.post("/api/promotions", headers=headers_a, json=_promotion_body()).get_json()["promotion"]
        url = f"/api/promotions/{promotion['id']}/approval"

        approved = client.patch(url, headers=headers_a, json={"status": "APPROVED", "comment": "ok"}).get_json()
        assert approved["promotion"]["approval_status"] == "approved"
        assert approved["promotion"]["approved_by_user_id"] == user_a.id

        rejected = client.patch(url, headers=headers_a, json={"status": "rejected"}).get_json()
        assert rejected["promotion"]["approved_by_user_id"] is None

        assert client.patch(url, headers=headers_a, json={"status": "maybe"}).status_code == 400

    def test_status_toggle_and_filters(self, client, headers_a):
        running = client.post("/api/promotions", headers=headers_a, json=_promotion_body()).get_json()["promotion"]
        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            name="Futura", start_date=_iso(3), end_date=_iso(10),
        ))

        active = client.get("/api/promotions?status=active", headers=headers_a).get_json()
        assert [p["id"] for p in active["promotions"]] == [running["id"]]

        scheduled = client.get("/api/promotions?status=scheduled", headers=headers_a).get_json()
        assert [p["name"] for p in scheduled["promotions"]] == ["Futura"]

        client.patch(f"/api/promotions/{running['id']}/status", headers=headers_a, json={"is_active": False})
        active = client.get("/api/promotions?status=active", headers=headers_a).get_json()
        assert active["promotions"] == []

    def test_link_and_unlink_products(self, client, headers_a, product_a, db_session, org_a):
        extra = Product(org_id=org_a.id, sku="EXTRA-1", name="Llave inglesa", price_cents=3000)
        db_session.add(extra)
        db_session.commit()

        promotion = client.post("/api/promotions", headers=headers_a, json=_promotion_body()).get_json()["promotion"]
        url = f"/api/promotions/{promotion['id']}/products"

        linked = client.post(url, headers=headers_a, json={"product_ids": [product_a.id, extra.id, product_a.id]})
        assert sorted(p["id"] for p in linked.get_json()["products"]) == sorted([product_a.id, extra.id])

        counts = client.post("/api/promotions/product-counts", headers=headers_a, json={"ids": [promotion["id"], 999]})
        assert counts.get_json() == {str(promotion["id"]): 2, "999": 0}

        remaining = client.delete(url, headers=headers_a, json={"product_ids": [extra.id]})
        assert [p["id"] for p in remaining.get_json()["products"]] == [product_a.id]

    @pytest.mark.parametrize("product_ids", [[[1]], ["1"], [True], "1,2"])
    def test_product_ids_must_be_integers(self, client, headers_a, product_ids):
        promotion = client.post("/api/promotions", headers=headers_a, json=_promotion_body()).get_json()["promotion"]
        url = f"/api/promotions/{promotion['id']}/products"

        assert client.post(url, headers=headers_a, json={"product_ids": product_ids}).status_code == 400
        assert client.delete(url, headers=headers_a, json={"product_ids": product_ids}).status_code == 400
        resp = client.post("/api/promotions", headers=headers_a, json=_promotion_body(applicable_product_ids=product_ids))
        assert resp.status_code == 400

    def test_delete_promotion(self, client, headers_a):
        promotion = client.post("/api/promotions", headers=headers_a, json=_promotion_body()).get_json()["promotion"]
        assert client.delete(f"/api/promotions/{promotion['id']}", headers=headers_a).status_code == 200
        assert client.get(f"/api/promotions/{promotion['id']}", headers=headers_a).status_code == 404


class TestOffers:

    @pytest.mark.parametrize(
        "price,promo_type,value,expected",
        [(1000, "PERCENTAGE", 25, 750), (999, "PERCENTAGE", 10, 899), (500, "FIXED_AMOUNT", 800, 0)],
    )
    def test_discounted_price(self, price, promo_type, value, expected):
        assert discounted_price(price, promo_type, value) == expected

    def test_offers_use_running_promotions(self, client, headers_a, product_a):
        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            applicable_product_ids=[product_a.id],
        ))
        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            name="Vencida", start_date=_iso(-10), end_date=_iso(-5), applicable_product_ids=[product_a.id],
        ))

        data = client.get("/api/promotions/offers-products", headers=headers_a).get_json()
        assert data["total"] == 1
        assert data["limit"] == 24
        offer = data["items"][0]
        assert offer["effective_offer_price_cents"] == 800
        assert offer["discount_percent"] == 20
        assert offer["promotion"]["name"] == "Semana ferretera"
        assert offer["promotion"]["end_date"].endswith("Z")

    def test_standing_offer_price_wins_when_lower(self, client, headers_a, product_a, db_session):
        product_a.offer_price_cents = 700
        db_session.commit()
        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            applicable_product_ids=[product_a.id],
        ))

        offer = client.get("/api/promotions/offers-products", headers=headers_a).get_json()["items"][0]
        assert offer["effective_offer_price_cents"] == 700

    @pytest.fixture
    def three_offers(self, client, headers_a, product_a, db_session, org_a):
        """product_a 1000 -> 800 (20%), drill 5000 -> 4500 (10%), tape 200 -> 100 (50%)."""
        drill = Product(org_id=org_a.id, sku="TALADRO-1", name="Taladro", price_cents=5000)
        tape = Product(org_id=org_a.id, sku="CINTA-1", name="Cinta", price_cents=200)
        db_session.add_all([drill, tape])
        db_session.commit()

        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            applicable_product_ids=[product_a.id],
        ))
        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            name="Taladros", type="FIXED_AMOUNT", value=500, end_date=_iso(2), applicable_product_ids=[drill.id],
        ))
        client.post("/api/promotions", headers=headers_a, json=_promotion_body(
            name="Cintas", value=50, end_date=_iso(30), applicable_product_ids=[tape.id],
        ))
        return {"product": product_a.id, "drill": drill.id, "tape": tape.id}

    @pytest.mark.parametrize(
        "sort,expected",
        [
            ("best_savings", ["drill", "product", "tape"]),
            ("highest_discount", ["tape", "product", "drill"]),
            ("ending_soon", ["drill", "product", "tape"]),
            ("price_low_high", ["tape", "product", "drill"]),
            ("price_high_low", ["drill", "product", "tape"]),
            ("unknown", ["drill", "product", "tape"]),
        ],
    )
    def test_sort_modes(self, client, headers_a, three_offers, sort, expected):
        data = client.get(f"/api/promotions/offers-products?sort={sort}", headers=headers_a).get_json()
        assert [item["product_id"] for item in data["items"]] == [three_offers[name] for name in expected]

    def test_paging_keeps_total(self, client, headers_a, three_offers):
        data = client.get(
            "/api/promotions/offers-products?sort=price_low_high&limit=1&offset=1", headers=headers_a
        ).get_json()
        assert data["total"] == 3
        assert [item["product_id"] for item in data["items"]] == [three_offers["product"]]

    def test_service_rows_serialize_end_date(self, app, org_a, three_offers):
        with app.app_context():
            rows, total = offers_products(org_a.id, sort="ending_soon")
        assert total == 3
        end_dates = [row["promotion"]["end_date"] for row in rows]
        assert all(isinstance(value, str) and value.endswith("Z") for value in end_dates)
        assert end_dates == sorted(end_dates)

    def test_limit_out_of_range(self, client, headers_a):
        resp = client.get("/api/promotions/offers-products?limit=0", headers=headers_a)
        assert resp.status_code == 400


# =============================================================================
# COUPONS
# =============================================================================


class TestCoupons:

    def _create(self, client, headers, **extra):
        body = {
            "code": "BIENVENIDO10",
            "type": "PERCENTAGE",
            "value": 10,
            "start_date": _iso(-1),
            "end_date": _iso(30),
            "min_purchase_cents": 5000,
            "max_discount_cents": 2000,
        }
        body.update(extra)
        return client.post("/api/coupons", headers=headers, json=body)

    def test_create_normalizes_code(self, client, headers_a):
        resp = self._create(client, headers_a, code="bienvenido10")
        assert resp.status_code == 201
        assert resp.get_json()["coupon"]["code"] == "BIENVENIDO10"

    @pytest.mark.parametrize("code", ["SHORT", "WAY-TOO-LONG-CODE", "BAD CODE1"])
    def test_code_rule(self, client, headers_a, code):
        assert self._create(client, headers_a, code=code).status_code == 400

    def test_duplicate_code_is_conflict(self, client, headers_a):
        self._create(client, headers_a)
        assert self._create(client, headers_a).status_code == 409

    def test_validate_applies_caps(self, client, headers_a):
        self._create(client, headers_a)
        resp = client.post("/api/coupons/validate", headers=headers_a, json={
            "code": "bienvenido10", "subtotal_cents": 50000,
        })
        assert resp.status_code == 200
        assert resp.get_json()["discount_amount_cents"] == 2000

    def test_validate_minimum_purchase(self, client, headers_a):
        self._create(client, headers_a)
        resp = client.post("/api/coupons/validate", headers=headers_a, json={
            "code": "BIENVENIDO10", "subtotal_cents": 4999,
        })
        assert resp.status_code == 400

    def test_validate_unknown_code(self, client, headers_a):
        resp = client.post("/api/coupons/validate", headers=headers_a, json={"code": "NOPE1234", "subtotal_cents": 100})
        assert resp.status_code == 404

    def test_validate_expired(self, client, headers_a):
        self._create(client, headers_a, start_date=_iso(-10), end_date=_iso(-1))
        resp = client.post("/api/coupons/validate", headers=headers_a, json={
            "code": "BIENVENIDO10", "subtotal_cents": 10000,
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Coupon has expired"

    def test_cashier_can_validate(self, client, headers_a, cashier_headers):
        self._create(client, headers_a)
        resp = client.post("/api/coupons/validate", headers=cashier_headers, json={
            "code": "BIENVENIDO10", "subtotal_cents": 10000,
        })
        assert resp.status_code == 200

    def test_update_and_delete_by_code(self, client, headers_a):
        self._create(client, headers_a)
        resp = client.patch("/api/coupons/BIENVENIDO10", headers=headers_a, json={"value": 15})
        assert resp.get_json()["coupon"]["value"] == 15

        assert client.delete("/api/coupons/BIENVENIDO10", headers=headers_a).status_code == 200
        assert client.get("/api/coupons/BIENVENIDO10", headers=headers_a).status_code == 404

    def test_seed_examples_is_idempotent(self, client, headers_a, db_session, org_a):
        first = client.post("/api/coupons/seed-examples", headers=headers_a)
        second = client.post("/api/coupons/seed-examples", headers=headers_a)
        assert first.status_code == 201
        assert second.get_json()["count"] == 3

        codes = sorted(c.code for c in db_session.query(Coupon).filter_by(org_id=org_a.id))
        assert codes == ["DESC10", "FIJO50000", "NAVIDAD"]

    def test_list_status_filters(self, client, headers_a):
        self._create(client, headers_a, code="ACTIVO01")
        self._create(client, headers_a, code="APAGADO1", is_active=False)
        self._create(client, headers_a, code="FUTURO01", start_date=_iso(5), end_date=_iso(10))
        self._create(client, headers_a, code="VENCIDO1", start_date=_iso(-10), end_date=_iso(-2))

        def codes(status):
            resp = client.get(f"/api/coupons?status={status}", headers=headers_a)
            assert resp.status_code == 200
            return [c["code"] for c in resp.get_json()["coupons"]]

        assert codes("active") == ["ACTIVO01"]
        assert codes("inactive") == ["APAGADO1"]
        assert codes("scheduled") == ["FUTURO01"]
        assert codes("expired") == ["VENCIDO1"]
        assert client.get("/api/coupons?status=paused", headers=headers_a).status_code == 400

    def test_fixed_discount_capped_by_subtotal(self):
        coupon = Coupon(coupon_type="FIXED_AMOUNT", value=50000, max_discount_cents=None)
        assert calculate_discount(coupon, 30000) == 30000
