"""
Cash register tests: one open session per organization, movement sign
rules, reconciliation on close and the CSV export.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from tiendapos.models import CashSession
from tiendapos.services import cash_service
from tiendapos.services.cash_service import CSV_HEADER


class TestCashSession:

    def test_open_and_current(self, client, headers_a, open_session_a):
        resp = client.get("/api/cash/session/current", headers=headers_a)
        data = resp.get_json()["session"]
        assert data["id"] == open_session_a["id"]
        assert data["status"] == "OPEN"
        assert data["current_balance_cents"] == 10000

    def test_no_current_session(self, client, headers_a):
        resp = client.get("/api/cash/session/current", headers=headers_a)
        assert resp.get_json() == {"session": None}

    def test_second_open_rejected(self, client, headers_a, open_session_a):
        resp = client.post("/api/cash/session/open", headers=headers_a, json={"opening_amount_cents": 0})
        assert resp.status_code == 400

    def test_unique_index_blocks_concurrent_open(self, client, headers_a, open_session_a, org_a, db_session, monkeypatch):
        monkeypatch.setattr(cash_service, "get_open_session", lambda org_id: None)

        resp = client.post("/api/cash/session/open", headers=headers_a, json={"opening_amount_cents": 0})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "A cash session is already open"
        assert db_session.query(CashSession).filter_by(org_id=org_a.id, status="OPEN").count() == 1

    def test_second_open_row_violates_index(self, open_session_a, org_a, user_a, db_session):
        db_session.add(CashSession(org_id=org_a.id, status="OPEN", opening_amount_cents=0, opened_by_user_id=user_a.id))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_reopen_after_close(self, client, headers_a, open_session_a):
        client.post("/api/cash/session/close", headers=headers_a, json={"closing_amount_cents": 10000})
        resp = client.post("/api/cash/session/open", headers=headers_a, json={"opening_amount_cents": 0})
        assert resp.status_code == 201
        assert resp.get_json()["session"]["id"] != open_session_a["id"]

    def test_negative_opening_rejected(self, client, headers_a):
        resp = client.post("/api/cash/session/open", headers=headers_a, json={"opening_amount_cents": -1})
        assert resp.status_code == 400

    def test_sessions_are_per_org(self, client, headers_a, headers_b, open_session_a):
        resp = client.post("/api/cash/session/open", headers=headers_b, json={"opening_amount_cents": 500})
        assert resp.status_code == 201

    def test_close_with_expected_records_discrepancy(self, client, headers_a, open_session_a):
        resp = client.post("/api/cash/session/close", headers=headers_a, json={
            "closing_amount_cents": 9800,
            "system_expected_cents": 10000,
            "counts": [{"denomination_cents": 1000, "quantity": 9}, {"denomination_cents": 100, "quantity": 8}],
        })
        assert resp.status_code == 200
        session = resp.get_json()["session"]
        assert session["status"] == "CLOSED"
        assert session["discrepancy_cents"] == -200
        assert sorted(c["total_cents"] for c in session["counts"]) == [800, 9000]

    def test_close_without_expected_computes_balance(self, client, headers_a, open_session_a):
        client.post("/api/cash/movements", headers=headers_a, json={
            "session_id": open_session_a["id"], "type": "IN", "amount_cents": 500,
        })
        resp = client.post("/api/cash/session/close", headers=headers_a, json={"closing_amount_cents": 10500})
        session = resp.get_json()["session"]
        assert session["computed_expected_cents"] == 10500
        assert session["discrepancy_cents"] is None

    def test_close_without_open_session(self, client, headers_a):
        resp = client.post("/api/cash/session/close", headers=headers_a, json={"closing_amount_cents": 0})
        assert resp.status_code == 400

    def test_replace_counts(self, client, headers_a, open_session_a):
        url = f"/api/cash/sessions/{open_session_a['id']}/counts"
        client.post(url, headers=headers_a, json={"counts": [{"denomination_cents": 500, "quantity": 2}]})
        resp = client.post(url, headers=headers_a, json={"counts": [{"denomination_cents": 100, "quantity": 3}]})
        assert resp.status_code == 200
        assert [c["total_cents"] for c in resp.get_json()["session"]["counts"]] == [300]

    def test_list_sessions_with_status_filter(self, client, headers_a, open_session_a):
        client.post("/api/cash/session/close", headers=headers_a, json={"closing_amount_cents": 10000})
        data = client.get("/api/cash/sessions?status=CLOSED", headers=headers_a).get_json()
        assert [s["id"] for s in data["sessions"]] == [open_session_a["id"]]
        assert "movements" in data["sessions"][0]


class TestCashMovements:

    def _move(self, client, headers, session_id, movement_type, amount, reason=None):
        return client.post("/api/cash/movements", headers=headers, json={
            "session_id": session_id, "type": movement_type, "amount_cents": amount, "reason": reason,
        })

    @pytest.mark.parametrize(
        "movement_type,amount",
        [("IN", -1), ("OUT", -5), ("RETURN", 5), ("ADJUSTMENT", 0), ("BOGUS", 10)],
    )
    def test_sign_rules(self, client, headers_a, open_session_a, movement_type, amount):
        resp = self._move(client, headers_a, open_session_a["id"], movement_type, amount)
        assert resp.status_code == 400

    def test_negative_adjustment_cannot_overdraw(self, client, headers_a, open_session_a):
        resp = self._move(client, headers_a, open_session_a["id"], "ADJUSTMENT", -10001)
        assert resp.status_code == 400

        resp = self._move(client, headers_a, open_session_a["id"], "ADJUSTMENT", -10000)
        assert resp.status_code == 201

    def test_movement_on_closed_session_rejected(self, client, headers_a, open_session_a):
        client.post("/api/cash/session/close", headers=headers_a, json={"closing_amount_cents": 10000})
        resp = self._move(client, headers_a, open_session_a["id"], "IN", 100)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid or closed session"

    def test_movement_on_foreign_session_rejected(self, client, headers_b, open_session_a, user_b):
        resp = self._move(client, headers_b, open_session_a["id"], "IN", 100)
        assert resp.status_code == 400

    def test_list_filters_and_user(self, client, headers_a, open_session_a):
        self._move(client, headers_a, open_session_a["id"], "IN", 700, "Cambio")
        self._move(client, headers_a, open_session_a["id"], "OUT", 300, "Courier")

        data = client.get("/api/cash/movements?type=OUT&include=user", headers=headers_a).get_json()
        assert [m["amount_cents"] for m in data["movements"]] == [300]
        assert data["movements"][0]["user"]["username"] == "user_a"

        data = client.get("/api/cash/movements?order_by=amount&order_dir=asc", headers=headers_a).get_json()
        assert [m["amount_cents"] for m in data["movements"]] == [300, 700]

        data = client.get("/api/cash/movements?search=cour", headers=headers_a).get_json()
        assert data["pagination"]["total"] == 1

    def test_bad_order_by(self, client, headers_a, open_session_a):
        resp = client.get("/api/cash/movements?order_by=reason", headers=headers_a)
        assert resp.status_code == 400

    def test_limit_above_200_rejected(self, client, headers_a):
        resp = client.get("/api/cash/movements?limit=201", headers=headers_a)
        assert resp.status_code == 400

    def test_report_discrepancy(self, client, headers_a, open_session_a):
        resp = client.post("/api/cash/discrepancies", headers=headers_a, json={
            "session_id": open_session_a["id"], "type": "SHORTAGE", "amount_cents": 500, "explanation": "Falta",
        })
        assert resp.status_code == 201


class TestCashExport:

    def test_csv_format(self, client, headers_a, open_session_a):
        client.post("/api/cash/movements", headers=headers_a, json={
            "session_id": open_session_a["id"], "type": "OUT", "amount_cents": 1250,
            "reason": "Compra", "reference_type": "manual", "reference_id": "A-1",
        })

        resp = client.get("/api/cash/movements/export", headers=headers_a)
        assert resp.status_code == 200
        assert resp.headers["Content-Type"] == "text/csv; charset=utf-8"
        assert resp.headers["Content-Disposition"].startswith('attachment; filename="movimientos_')

        body = resp.get_data(as_text=True)
        assert body.startswith("\ufeff")
        lines = body[1:].split("\n")
        assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADER)
        assert lines[1].endswith('"OUT","12.50","Compra","user_a","MANUAL: A-1"')
        assert len(lines) == 2

    def test_negative_amount_formatting(self, client, headers_a, open_session_a):
        client.post("/api/cash/movements", headers=headers_a, json={
            "session_id": open_session_a["id"], "type": "ADJUSTMENT", "amount_cents": -5,
        })
        body = client.get("/api/cash/movements/export", headers=headers_a).get_data(as_text=True)
        assert '"-0.05","-","user_a","-"' in body
