"""
Customer and supplier master data, customer purchase history and supplier
price history.
"""


# =============================================================================
# CUSTOMERS
# =============================================================================


class TestCustomers:

    def test_create_customer(self, client, headers_a):
        resp = client.post("/api/customers", headers=headers_a, json={
            "name": "Carla Rojas",
            "email": "Carla@Example.com",
            "birth_date": "1990-03-14",
        })
        assert resp.status_code == 201
        customer = resp.get_json()["customer"]
        assert customer["email"] == "carla@example.com"

    def test_name_required(self, client, headers_a):
        resp = client.post("/api/customers", headers=headers_a, json={"email": "x@example.com"})
        assert resp.status_code == 400

    def test_duplicate_email_is_conflict(self, client, headers_a, customer_a):
        resp = client.post("/api/customers", headers=headers_a, json={
            "name": "Other", "email": customer_a.email,
        })
        assert resp.status_code == 409

    def test_same_email_allowed_in_other_org(self, client, headers_b, customer_a):
        resp = client.post("/api/customers", headers=headers_b, json={
            "name": "Ana en Norte", "email": customer_a.email,
        })
        assert resp.status_code == 201

    def test_search(self, client, headers_a, customer_a):
        resp = client.get("/api/customers?search=perez", headers=headers_a)
        assert resp.status_code == 200
        assert [c["id"] for c in resp.get_json()["customers"]] == [customer_a.id]

    def test_update_and_soft_delete(self, client, headers_a, customer_a):
        resp = client.patch(f"/api/customers/{customer_a.id}", headers=headers_a, json={"phone": "+56911112222"})
        assert resp.status_code == 200
        assert resp.get_json()["customer"]["phone"] == "+56911112222"

        resp = client.delete(f"/api/customers/{customer_a.id}", headers=headers_a)
        assert resp.status_code == 200
        assert resp.get_json()["customer"]["is_active"] is False

    def test_history_lists_sales(self, client, headers_a, customer_a, product_a):
        client.post("/api/sales", headers=headers_a, json={
            "customer_id": customer_a.id,
            "items": [{"product_id": product_a.id, "quantity": 1, "unit_price_cents": 1000}],
            "payment_method": "CARD",
        })

        resp = client.get(f"/api/customers/{customer_a.id}/history", headers=headers_a)
        data = resp.get_json()
        assert resp.status_code == 200
        assert len(data["sales"]) == 1
        assert data["pagination"]["sales_total"] == 1
        assert data["pagination"]["returns_total"] == 0
        assert data["customer"]["total_purchases_cents"] == 1000


# =============================================================================
# SUPPLIERS
# =============================================================================


class TestSuppliers:

    def _create(self, client, headers, name="Distribuidora Andes"):
        resp = client.post("/api/suppliers", headers=headers, json={"name": name, "tax_id": "76.123.456-7"})
        assert resp.status_code == 201
        return resp.get_json()["supplier"]

    def test_create_and_get(self, client, headers_a):
        supplier = self._create(client, headers_a)
        resp = client.get(f"/api/suppliers/{supplier['id']}", headers=headers_a)
        assert resp.status_code == 200
        assert resp.get_json()["supplier"]["name"] == "Distribuidora Andes"

    def test_duplicate_name_is_conflict(self, client, headers_a):
        self._create(client, headers_a)
        resp = client.post("/api/suppliers", headers=headers_a, json={"name": "Distribuidora Andes"})
        assert resp.status_code == 409

    def test_foreign_supplier_is_404(self, client, headers_a, headers_b):
        supplier = self._create(client, headers_b)
        resp = client.get(f"/api/suppliers/{supplier['id']}", headers=headers_a)
        assert resp.status_code == 404

    def test_price_history_tracks_change(self, client, headers_a, product_a):
        supplier = self._create(client, headers_a)
        url = f"/api/suppliers/{supplier['id']}/price-history"

        first = client.post(url, headers=headers_a, json={
            "product_id": product_a.id, "price_cents": 1000, "effective_date": "2024-01-01T00:00:00Z",
        })
        assert first.status_code == 201
        assert first.get_json()["change_pct"] is None

        second = client.post(url, headers=headers_a, json={
            "product_id": product_a.id, "price_cents": 1250, "effective_date": "2024-02-01T00:00:00Z",
        })
        data = second.get_json()
        assert data["price"]["previous_price_cents"] == 1000
        assert data["change_pct"] == 25.0

        listing = client.get(f"{url}?product_id={product_a.id}", headers=headers_a).get_json()
        assert [p["price_cents"] for p in listing["price_history"]] == [1250, 1000]

    def test_price_history_date_filter(self, client, headers_a, product_a):
        supplier = self._create(client, headers_a)
        url = f"/api/suppliers/{supplier['id']}/price-history"
        for month, price in (("01", 1000), ("03", 1100)):
            client.post(url, headers=headers_a, json={
                "product_id": product_a.id, "price_cents": price, "effective_date": f"2024-{month}-01T00:00:00Z",
            })

        listing = client.get(f"{url}?from=2024-02-01", headers=headers_a).get_json()
        assert [p["price_cents"] for p in listing["price_history"]] == [1100]

    def test_negative_price_rejected(self, client, headers_a, product_a):
        supplier = self._create(client, headers_a)
        resp = client.post(f"/api/suppliers/{supplier['id']}/price-history", headers=headers_a, json={
            "product_id": product_a.id, "price_cents": -5,
        })
        assert resp.status_code == 400

    def test_foreign_product_rejected(self, client, headers_a, product_b):
        supplier = self._create(client, headers_a)
        resp = client.post(f"/api/suppliers/{supplier['id']}/price-history", headers=headers_a, json={
            "product_id": product_b.id, "price_cents": 500,
        })
        assert resp.status_code == 404
