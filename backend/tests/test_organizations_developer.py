"""
Developer (superadmin) tools and organization profile updates.
"""

import pytest

from tiendapos.models import Organization, Role
from tiendapos.services.organization_service import OrganizationError, normalize_subdomain
from conftest import get_auth_token, auth_headers


@pytest.fixture
def dev_headers(client, developer):
    return auth_headers(get_auth_token(client, "dev"))


class TestDeveloperSession:

    def test_login_without_organization(self, client, developer):
        resp = client.post("/api/auth/login", json={"username": "dev", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.get_json()["org_id"] is None

    def test_tenant_endpoints_need_an_organization(self, client, dev_headers):
        resp = client.get("/api/products", headers=dev_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Select an organization first"

    def test_switch_org_issues_new_token(self, client, dev_headers, org_a, product_a):
        resp = client.post("/api/developer/switch-org", headers=dev_headers, json={"org_id": org_a.id})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["org_id"] == org_a.id

        new_headers = auth_headers(data["token"])
        products = client.get("/api/products", headers=new_headers).get_json()
        assert [p["sku"] for p in products["products"]] == ["PROD-A-001"]

        assert client.post("/api/auth/validate", headers=dev_headers).status_code == 401

    def test_switch_to_missing_org(self, client, dev_headers):
        resp = client.post("/api/developer/switch-org", headers=dev_headers, json={"org_id": 99999})
        assert resp.status_code == 404

    def test_switch_org_requires_org_id(self, client, dev_headers):
        assert client.post("/api/developer/switch-org", headers=dev_headers, json={}).status_code == 400

    def test_status(self, client, dev_headers):
        data = client.get("/api/developer/status", headers=dev_headers).get_json()
        assert data["is_developer"] is True
        assert data["org_id"] is None

    def test_non_developer_denied(self, client, headers_a):
        resp = client.get("/api/developer/organizations", headers=headers_a)
        assert resp.status_code == 403

    def test_kill_switch(self, app, client, dev_headers, monkeypatch):
        monkeypatch.setitem(app.config, "DEVELOPER_TOOLS_ENABLED", False)
        resp = client.get("/api/developer/organizations", headers=dev_headers)
        assert resp.status_code == 403
        assert "disabled" in resp.get_json()["error"]


class TestDeveloperOrganizations:

    def test_create_with_default_roles(self, client, dev_headers, db_session):
        resp = client.post("/api/developer/organizations", headers=dev_headers, json={
            "name": "Ferreteria Oeste",
            "code": "OESTE",
            "subdomain": " Oeste ",
            "initial_store_name": "Casa Matriz",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["organization"]["subdomain"] == "oeste"
        assert data["store"]["name"] == "Casa Matriz"

        roles = sorted(r.name for r in db_session.query(Role).filter_by(org_id=data["organization"]["id"]))
        assert roles == ["admin", "cashier", "manager"]

    def test_duplicate_code_is_conflict(self, client, dev_headers, org_a):
        resp = client.post("/api/developer/organizations", headers=dev_headers, json={
            "name": "Otra", "code": org_a.code,
        })
        assert resp.status_code == 409

    def test_developer_can_change_plan(self, client, dev_headers, org_a):
        resp = client.patch(f"/api/developer/organizations/{org_a.id}", headers=dev_headers, json={"plan": "pro"})
        assert resp.status_code == 200
        assert resp.get_json()["organization"]["plan"] == "pro"

    def test_list(self, client, dev_headers, org_a, org_b):
        data = client.get("/api/developer/organizations", headers=dev_headers).get_json()
        assert data["count"] == 2


class TestOrganizationProfile:

    @pytest.mark.parametrize("value,expected", [(" Mi-Tienda ", "mi-tienda"), ("", None), (None, None)])
    def test_normalize_subdomain(self, value, expected):
        assert normalize_subdomain(value) == expected

    @pytest.mark.parametrize("value", ["-tienda", "tienda-", "mi_tienda", "a" * 64])
    def test_invalid_subdomain(self, value):
        with pytest.raises(OrganizationError):
            normalize_subdomain(value)

    def test_admin_updates_profile(self, client, headers_a, org_a):
        resp = client.patch(f"/api/admin/organizations/{org_a.id}", headers=headers_a, json={
            "name": "Ferreteria Sur", "custom_domain": "Tienda.Example.com",
        })
        assert resp.status_code == 200
        org = resp.get_json()["organization"]
        assert org["name"] == "Ferreteria Sur"
        assert org["custom_domain"] == "tienda.example.com"

    def test_subdomain_taken(self, client, headers_a, org_a, org_b):
        resp = client.patch(f"/api/admin/organizations/{org_a.id}", headers=headers_a, json={"subdomain": "norte"})
        assert resp.status_code == 409

    def test_invalid_subdomain_rejected(self, client, headers_a, org_a):
        resp = client.patch(f"/api/admin/organizations/{org_a.id}", headers=headers_a, json={"subdomain": "no valido"})
        assert resp.status_code == 400

    def test_plan_ignored_for_tenant_admin(self, client, headers_a, org_a, db_session):
        resp = client.patch(f"/api/admin/organizations/{org_a.id}", headers=headers_a, json={"plan": "enterprise"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No valid fields to update"

        db_session.expire_all()
        assert db_session.get(Organization, org_a.id).plan != "enterprise"

    def test_cashier_cannot_update(self, client, cashier_headers, org_a):
        resp = client.patch(f"/api/admin/organizations/{org_a.id}", headers=cashier_headers, json={"name": "X"})
        assert resp.status_code == 403
