"""
Loyalty tests: programs and tiers, enrollment, point earning and
adjustments, reward redemption and the scheduled jobs.
"""

from datetime import date, timedelta

import pytest

from tiendapos.models import CustomerLoyalty, CustomerReward, PointsTransaction
from tiendapos.services import loyalty_service
from tiendapos.services.loyalty_service import ranges_overlap
from tiendapos.time_utils import utcnow, to_utc_z


@pytest.fixture
def program(client, headers_a):
    """1 point per 100 cents, 100 welcome points, Bronce/Plata tiers."""
    resp = client.post("/api/loyalty/programs", headers=headers_a, json={
        "name": "Club Ferretero",
        "points_per_purchase": 0.01,
        "minimum_purchase_cents": 1000,
        "points_expiration_days": 30,
        "welcome_bonus": 100,
        "birthday_bonus": 50,
    })
    assert resp.status_code == 201
    program = resp.get_json()["program"]

    url = f"/api/loyalty/programs/{program['id']}/tiers"
    client.post(url, headers=headers_a, json={"name": "Bronce", "min_points": 0, "max_points": 999})
    client.post(url, headers=headers_a, json={"name": "Plata", "min_points": 1000, "multiplier": 1.5})
    return program


@pytest.fixture
def enrollment(client, headers_a, program, customer_a):
    resp = client.post(f"/api/loyalty/programs/{program['id']}/enroll", headers=headers_a, json={
        "customer_id": customer_a.id,
    })
    assert resp.status_code == 201
    return resp.get_json()["loyalty"]


class TestProgramsAndTiers:

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ((0, 99), (100, None), False),
            ((0, 100), (100, 200), True),
            ((500, None), (0, 499), False),
            ((0, None), (1000, 2000), True),
        ],
    )
    def test_ranges_overlap(self, a, b, expected):
        assert ranges_overlap(a[0], a[1], b[0], b[1]) is expected

    def test_program_lists_tiers(self, client, headers_a, program):
        data = client.get(f"/api/loyalty/programs/{program['id']}", headers=headers_a).get_json()
        assert [t["name"] for t in data["program"]["tiers"]] == ["Bronce", "Plata"]

    def test_invalid_program_rejected(self, client, headers_a):
        resp = client.post("/api/loyalty/programs", headers=headers_a, json={
            "name": "Club", "points_per_purchase": -1,
        })
        assert resp.status_code == 400

    def test_overlapping_tier_rejected(self, client, headers_a, program):
        resp = client.post(f"/api/loyalty/programs/{program['id']}/tiers", headers=headers_a, json={
            "name": "Oro", "min_points": 500, "max_points": 1500,
        })
        assert resp.status_code == 400
        assert "Bronce" in resp.get_json()["error"]

    def test_tier_update_checks_overlap(self, client, headers_a, program):
        tiers = client.get(f"/api/loyalty/programs/{program['id']}/tiers", headers=headers_a).get_json()["tiers"]
        ids = {t["name"]: t["id"] for t in tiers}

        resp = client.patch(f"/api/loyalty/tiers/{ids['Plata']}", headers=headers_a, json={"min_points": 500})
        assert resp.status_code == 400
        assert "Bronce" in resp.get_json()["error"]

        resp = client.patch(f"/api/loyalty/tiers/{ids['Bronce']}", headers=headers_a, json={"max_points": None})
        assert resp.status_code == 400
        assert "Plata" in resp.get_json()["error"]

        moved = client.patch(f"/api/loyalty/tiers/{ids['Plata']}", headers=headers_a, json={"min_points": 1200})
        assert moved.status_code == 200
        assert moved.get_json()["tier"]["min_points"] == 1200

        tiers = client.get(f"/api/loyalty/programs/{program['id']}/tiers", headers=headers_a).get_json()["tiers"]
        assert {t["name"]: t["max_points"] for t in tiers}["Bronce"] == 999

    def test_duplicate_tier_name_is_conflict(self, client, headers_a, program):
        resp = client.post(f"/api/loyalty/programs/{program['id']}/tiers", headers=headers_a, json={
            "name": "Plata", "min_points": 5000,
        })
        assert resp.status_code == 409

    def test_cannot_delete_assigned_tier(self, client, headers_a, enrollment):
        resp = client.delete(f"/api/loyalty/tiers/{enrollment['tier_id']}", headers=headers_a)
        assert resp.status_code == 400

    def test_foreign_program_is_404(self, client, headers_b, program, user_b):
        resp = client.get(f"/api/loyalty/programs/{program['id']}", headers=headers_b)
        assert resp.status_code == 404

    def test_cashier_cannot_manage(self, client, cashier_headers):
        resp = client.post("/api/loyalty/programs", headers=cashier_headers, json={"name": "Club"})
        assert resp.status_code == 403


class TestEnrollmentAndPoints:

    def test_enroll_credits_welcome_bonus(self, enrollment, db_session):
        assert enrollment["current_points"] == 100
        assert enrollment["tier"]["name"] == "Bronce"

        bonus = db_session.query(PointsTransaction).filter_by(customer_loyalty_id=enrollment["id"]).one()
        assert bonus.transaction_type == "BONUS"
        assert bonus.reference_type == "WELCOME"

    def test_enroll_twice_is_conflict(self, client, headers_a, program, enrollment, customer_a):
        resp = client.post(f"/api/loyalty/programs/{program['id']}/enroll", headers=headers_a, json={
            "customer_id": customer_a.id,
        })
        assert resp.status_code == 409

    def test_sale_earns_points(self, client, headers_a, enrollment, product_a, customer_a, db_session):
        resp = client.post("/api/sales", headers=headers_a, json={
            "items": [{"product_id": product_a.id, "quantity": 2, "unit_price_cents": 1000}],
            "payment_method": "CARD",
            "customer_id": customer_a.id,
        })
        assert resp.status_code == 201

        db_session.expire_all()
        loyalty = db_session.get(CustomerLoyalty, enrollment["id"])
        assert loyalty.current_points == 120
        earned = db_session.query(PointsTransaction).filter_by(transaction_type="EARNED").one()
        assert earned.reference_id == str(resp.get_json()["sale"]["id"])
        assert earned.expires_at is not None

    def test_purchase_below_minimum_earns_nothing(self, client, headers_a, program, enrollment, customer_a):
        resp = client.post(f"/api/loyalty/programs/{program['id']}/points", headers=headers_a, json={
            "customer_id": customer_a.id, "amount_cents": 999, "sale_id": 1,
        })
        assert resp.status_code == 201
        assert resp.get_json() == {"transaction": None, "points": 0}

    def test_purchase_points_require_enrollment(self, client, headers_a, program, customer_a):
        resp = client.post(f"/api/loyalty/programs/{program['id']}/points", headers=headers_a, json={
            "customer_id": customer_a.id, "amount_cents": 5000,
        })
        assert resp.status_code == 400

    def test_adjust_promotes_tier(self, client, headers_a, enrollment):
        resp = client.post(f"/api/loyalty/enrollments/{enrollment['id']}/adjust", headers=headers_a, json={
            "points": 900, "description": "Compra mayorista",
        })
        assert resp.status_code == 201
        loyalty = resp.get_json()["loyalty"]
        assert loyalty["current_points"] == 1000
        assert loyalty["tier"]["name"] == "Plata"

    def test_adjust_replay_returns_200(self, client, headers_a, enrollment):
        url = f"/api/loyalty/enrollments/{enrollment['id']}/adjust"
        first = client.post(url, headers=headers_a, json={"points": 50, "idempotency_key": "adj-1"})
        second = client.post(url, headers={**headers_a, "Idempotency-Key": "adj-1"}, json={"points": 50})

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert second.get_json()["loyalty"]["current_points"] == 150

    @pytest.mark.parametrize("points", [0, -101, "10"])
    def test_invalid_adjustment(self, client, headers_a, enrollment, points):
        resp = client.post(f"/api/loyalty/enrollments/{enrollment['id']}/adjust", headers=headers_a, json={
            "points": points,
        })
        assert resp.status_code == 400

    def test_cashier_cannot_adjust(self, client, cashier_headers, enrollment):
        resp = client.post(f"/api/loyalty/enrollments/{enrollment['id']}/adjust", headers=cashier_headers, json={
            "points": 10,
        })
        assert resp.status_code == 403


class TestRewards:

    def _reward(self, client, headers, program, **extra):
        body = {"name": "Cafe gratis", "type": "custom", "value": 0, "points_cost": 80}
        body.update(extra)
        return client.post(f"/api/loyalty/programs/{program['id']}/rewards", headers=headers, json=body)

    def test_create_reward(self, client, headers_a, program):
        resp = self._reward(client, headers_a, program)
        assert resp.status_code == 201
        assert resp.get_json()["reward"]["type"] == "CUSTOM"

    @pytest.mark.parametrize(
        "override",
        [{"points_cost": 0}, {"type": "CASHBACK"}, {"type": "DISCOUNT_PERCENTAGE", "value": 150}],
    )
    def test_invalid_reward(self, client, headers_a, program, override):
        assert self._reward(client, headers_a, program, **override).status_code == 400

    def test_available_rewards_for_customer(self, client, headers_a, program, enrollment, customer_a):
        self._reward(client, headers_a, program)
        self._reward(client, headers_a, program, name="Taladro", points_cost=5000)

        url = f"/api/loyalty/programs/{program['id']}/rewards/available?customer_id={customer_a.id}"
        rewards = client.get(url, headers=headers_a).get_json()["rewards"]
        assert [r["name"] for r in rewards] == ["Cafe gratis"]

    def test_redeem_and_use(self, client, cashier_headers, headers_a, program, enrollment, customer_a):
        reward = self._reward(client, headers_a, program, max_redemptions=1).get_json()["reward"]
        body = {"customer_id": customer_a.id, "reward_id": reward["id"], "idempotency_key": "r-1"}
        url = f"/api/loyalty/programs/{program['id']}/redeem"

        resp = client.post(url, headers=cashier_headers, json=body)
        assert resp.status_code == 201
        customer_reward = resp.get_json()["customer_reward"]
        assert customer_reward["status"] == "AVAILABLE"
        assert customer_reward["points_spent"] == 80

        replay = client.post(url, headers=cashier_headers, json=body)
        assert replay.status_code == 200
        assert replay.get_json()["customer_reward"]["id"] == customer_reward["id"]

        again = client.post(url, headers=cashier_headers, json={**body, "idempotency_key": "r-2"})
        assert again.status_code == 400

        used = client.post(f"/api/loyalty/customer-rewards/{customer_reward['id']}/use", headers=cashier_headers)
        assert used.get_json()["customer_reward"]["status"] == "USED"
        reused = client.post(f"/api/loyalty/customer-rewards/{customer_reward['id']}/use", headers=cashier_headers)
        assert reused.status_code == 400

    def test_insufficient_points(self, client, headers_a, program, enrollment, customer_a):
        reward = self._reward(client, headers_a, program, points_cost=500).get_json()["reward"]
        resp = client.post(f"/api/loyalty/programs/{program['id']}/redeem", headers=headers_a, json={
            "customer_id": customer_a.id, "reward_id": reward["id"],
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Insufficient points to redeem this reward"

    @pytest.mark.parametrize(
        "window,error",
        [
            ((5, 10), "This reward is not available yet"),
            ((-10, -1), "This reward has expired"),
        ],
    )
    def test_redeem_outside_validity_window(self, client, headers_a, program, enrollment, customer_a, window, error):
        start, end = window
        reward = self._reward(
            client, headers_a, program,
            valid_from=to_utc_z(utcnow() + timedelta(days=start)),
            valid_until=to_utc_z(utcnow() + timedelta(days=end)),
        ).get_json()["reward"]

        resp = client.post(f"/api/loyalty/programs/{program['id']}/redeem", headers=headers_a, json={
            "customer_id": customer_a.id, "reward_id": reward["id"],
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == error

    def test_use_expired_reward_marks_it_expired(self, client, headers_a, program, enrollment, customer_a, db_session):
        reward = self._reward(
            client, headers_a, program, valid_until=to_utc_z(utcnow() + timedelta(days=1)),
        ).get_json()["reward"]
        customer_reward = client.post(f"/api/loyalty/programs/{program['id']}/redeem", headers=headers_a, json={
            "customer_id": customer_a.id, "reward_id": reward["id"],
        }).get_json()["customer_reward"]

        row = db_session.get(CustomerReward, customer_reward["id"])
        row.expires_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        url = f"/api/loyalty/customer-rewards/{customer_reward['id']}/use"
        resp = client.post(url, headers=headers_a)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "This reward has expired"

        db_session.expire_all()
        row = db_session.get(CustomerReward, customer_reward["id"])
        assert row.status == "EXPIRED"
        assert row.used_at is None

        again = client.post(url, headers=headers_a)
        assert again.status_code == 400
        assert again.get_json()["error"] == "This reward is no longer available"

    def test_delete_deactivates(self, client, headers_a, program):
        reward = self._reward(client, headers_a, program).get_json()["reward"]
        resp = client.delete(f"/api/loyalty/rewards/{reward['id']}", headers=headers_a)
        assert resp.get_json()["reward"]["is_active"] is False


class TestScheduledJobs:

    def test_expire_points_once(self, client, headers_a, program, enrollment, customer_a, db_session):
        client.post(f"/api/loyalty/programs/{program['id']}/points", headers=headers_a, json={
            "customer_id": customer_a.id, "amount_cents": 5000, "sale_id": 7,
        })

        later = utcnow() + timedelta(days=31)
        assert loyalty_service.expire_points(now=later) == 1
        assert loyalty_service.expire_points(now=later) == 0

        db_session.expire_all()
        loyalty = db_session.get(CustomerLoyalty, enrollment["id"])
        assert loyalty.current_points == 100
        expired = db_session.query(PointsTransaction).filter_by(transaction_type="EXPIRED").one()
        assert expired.points == -50

    def test_expire_points_endpoint(self, client, headers_a, enrollment):
        resp = client.post("/api/loyalty/jobs/expire-points", headers=headers_a)
        assert resp.get_json() == {"expired": 0}

    def test_birthday_bonus_once_per_year(self, enrollment, customer_a, db_session):
        today = utcnow().date()
        customer_a.birth_date = today.replace(year=1990) if (today.month, today.day) != (2, 29) else today
        db_session.commit()

        assert loyalty_service.process_birthday_bonuses(today) == 1
        assert loyalty_service.process_birthday_bonuses(today) == 0

        db_session.expire_all()
        assert db_session.get(CustomerLoyalty, enrollment["id"]).current_points == 150

    @pytest.mark.parametrize(
        "birth,year,expected",
        [
            (date(1992, 2, 29), 2025, date(2025, 2, 28)),
            (date(1992, 2, 29), 2028, date(2028, 2, 29)),
            (date(1990, 7, 14), 2025, date(2025, 7, 14)),
        ],
    )
    def test_birthday_in_year(self, birth, year, expected):
        assert loyalty_service._birthday_in(birth, year) == expected


class TestReporting:

    def test_transactions_filter_by_type(self, client, headers_a, enrollment):
        data = client.get("/api/loyalty/transactions?type=bonus", headers=headers_a).get_json()
        assert data["pagination"]["total"] == 1
        assert data["transactions"][0]["reference_type"] == "WELCOME"

        assert client.get("/api/loyalty/transactions?type=GIFT", headers=headers_a).status_code == 400

    def test_analytics(self, client, headers_a, program, enrollment):
        data = client.get(f"/api/loyalty/programs/{program['id']}/analytics", headers=headers_a).get_json()
        assert data["total_customers"] == 1
        assert data["total_points_issued"] == 100
        assert data["top_tier"]["name"] == "Bronce"
        assert data["points_issued_by_month"][0]["points"] == 100
