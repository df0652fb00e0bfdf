# Overview: Flask API routes for the loyalty program; parses input and returns JSON responses.

"""
Loyalty routes.

Programs own tiers and rewards. Customers enroll into a program and earn
points from sales; points are spent on rewards.

Redeem and adjust accept an idempotency key (body "idempotency_key" or the
Idempotency-Key header). A replayed key returns the first result with 200.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..services import loyalty_service
from ..services.loyalty_service import (
    LoyaltyError,
    PROGRAM_FIELDS,
    TIER_FIELDS,
    REWARD_FIELDS,
)
from ..validation import (
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_bool,
    coerce_int,
    coerce_datetime,
    ValidationError,
)
from ..decorators import require_auth, require_permission

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


def _pick(payload: dict, fields) -> dict:
    return {key: payload[key] for key in fields if key in payload}


def _optional_int(args, key):
    raw = args.get(key)
    if raw in (None, ""):
        return None
    return coerce_int(raw, key)


def _idempotency_key(payload: dict) -> str | None:
    key = payload.get("idempotency_key") or request.headers.get("Idempotency-Key")
    return key.strip() if isinstance(key, str) and key.strip() else None


def _reward_data(payload: dict) -> dict:
    data = _pick(payload, REWARD_FIELDS)
    if "type" in payload:
        data["reward_type"] = (payload["type"] or "").upper()
    for key in ("valid_from", "valid_until"):
        if data.get(key) is not None:
            data[key] = coerce_datetime(data[key], key)
    return data


# =============================================================================
# PROGRAMS
# =============================================================================

@loyalty_bp.get("/programs")
@require_auth
@require_permission("VIEW_LOYALTY")
def list_programs():
    programs = loyalty_service.list_programs(g.org_id)
    return jsonify({"programs": [p.to_dict(include_tiers=True) for p in programs]})


@loyalty_bp.get("/programs/<int:program_id>")
@require_auth
@require_permission("VIEW_LOYALTY")
def get_program(program_id: int):
    try:
        program = loyalty_service.get_program(program_id, g.org_id)
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"program": program.to_dict(include_tiers=True)})


@loyalty_bp.post("/programs")
@require_auth
@require_permission("MANAGE_LOYALTY")
def create_program():
    """
    Request body:
    {
        "name": "Club",
        "points_per_purchase": 0.01,     // points per cent spent
        "minimum_purchase_cents": 1000,
        "points_expiration_days": 365,   // optional
        "welcome_bonus": 100,
        "birthday_bonus": 50,
        "referral_bonus": 0
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        program = loyalty_service.create_program(g.org_id, _pick(payload, PROGRAM_FIELDS))
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"program": program.to_dict()}), 201


@loyalty_bp.patch("/programs/<int:program_id>")
@require_auth
@require_permission("MANAGE_LOYALTY")
def update_program(program_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        program = loyalty_service.update_program(program_id, g.org_id, _pick(payload, PROGRAM_FIELDS))
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"program": program.to_dict(include_tiers=True)})


# =============================================================================
# TIERS
# =============================================================================

@loyalty_bp.get("/programs/<int:program_id>/tiers")
@require_auth
@require_permission("VIEW_LOYALTY")
def list_tiers(program_id: int):
    try:
        tiers = loyalty_service.list_tiers(program_id, g.org_id)
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"tiers": [t.to_dict() for t in tiers]})


@loyalty_bp.post("/programs/<int:program_id>/tiers")
@require_auth
@require_permission("MANAGE_LOYALTY")
def create_tier(program_id: int):
    """Request body: {"name": "Gold", "min_points": 1000, "max_points": null, "multiplier": 1.5}"""
    payload = request.get_json(silent=True) or {}
    try:
        tier = loyalty_service.create_tier(program_id, g.org_id, _pick(payload, TIER_FIELDS))
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"tier": tier.to_dict()}), 201


@loyalty_bp.patch("/tiers/<int:tier_id>")
@require_auth
@require_permission("MANAGE_LOYALTY")
def update_tier(tier_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        tier = loyalty_service.update_tier(tier_id, g.org_id, _pick(payload, TIER_FIELDS))
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"tier": tier.to_dict()})


@loyalty_bp.delete("/tiers/<int:tier_id>")
@require_auth
@require_permission("MANAGE_LOYALTY")
def delete_tier(tier_id: int):
    try:
        loyalty_service.delete_tier(tier_id, g.org_id)
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"ok": True})


# =============================================================================
# ENROLLMENT & POINTS
# =============================================================================

@loyalty_bp.post("/programs/<int:program_id>/enroll")
@require_auth
@require_permission("MANAGE_LOYALTY")
def enroll(program_id: int):
    """Request body: {"customer_id": 4}"""
    payload = request.get_json(silent=True) or {}
    try:
        customer_id = coerce_int(payload.get("customer_id"), "customer_id")
        loyalty = loyalty_service.enroll_customer(g.org_id, customer_id, program_id, user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"loyalty": loyalty.to_dict()}), 201


@loyalty_bp.delete("/enrollments/<int:loyalty_id>")
@require_auth
@require_permission("MANAGE_LOYALTY")
def unenroll(loyalty_id: int):
    try:
        loyalty = loyalty_service.unenroll_customer(g.org_id, loyalty_id)
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"loyalty": loyalty.to_dict()})


@loyalty_bp.get("/customers/<int:customer_id>")
@require_auth
@require_permission("VIEW_LOYALTY")
def customer_loyalty(customer_id: int):
    """Enrollments of one customer. Query params: program_id (optional)."""
    try:
        enrollments = loyalty_service.get_customer_loyalty(
            g.org_id, customer_id, _optional_int(request.args, "program_id")
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"enrollments": [e.to_dict() for e in enrollments]})


@loyalty_bp.get("/programs/<int:program_id>/customers")
@require_auth
@require_permission("VIEW_LOYALTY")
def program_customers(program_id: int):
    """Query params: page, limit, is_active, tier_id, min_points, max_points"""
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
        is_active = request.args.get("is_active")
        rows, total = loyalty_service.list_program_customers(
            program_id,
            g.org_id,
            page=page,
            limit=limit,
            is_active=coerce_bool(is_active) if is_active not in (None, "") else None,
            tier_id=_optional_int(request.args, "tier_id"),
            min_points=_optional_int(request.args, "min_points"),
            max_points=_optional_int(request.args, "max_points"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code

    return jsonify({
        "customers": [r.to_dict() for r in rows],
        "pagination": pagination_dict(page, limit, total),
    })


@loyalty_bp.post("/programs/<int:program_id>/points")
@require_auth
@require_permission("ADJUST_POINTS")
def add_purchase_points(program_id: int):
    """
    Credit purchase points for a sale recorded elsewhere.

    Request body: {"customer_id": 4, "amount_cents": 25000, "sale_id": 10}
    """
    payload = request.get_json(silent=True) or {}
    try:
        transaction = loyalty_service.add_points_for_purchase(
            org_id=g.org_id,
            customer_id=coerce_int(payload.get("customer_id"), "customer_id"),
            program_id=program_id,
            amount_cents=coerce_int(payload.get("amount_cents"), "amount_cents"),
            sale_id=payload.get("sale_id"),
            user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code

    return jsonify({
        "transaction": transaction.to_dict() if transaction else None,
        "points": transaction.points if transaction else 0,
    }), 201


@loyalty_bp.post("/enrollments/<int:loyalty_id>/adjust")
@require_auth
@require_permission("ADJUST_POINTS")
def adjust_points(loyalty_id: int):
    """Request body: {"points": -50, "description": "Correction", "idempotency_key": "..."}"""
    payload = request.get_json(silent=True) or {}
    try:
        loyalty, replayed = loyalty_service.adjust_points(
            org_id=g.org_id,
            customer_loyalty_id=loyalty_id,
            points=payload.get("points"),
            description=payload.get("description"),
            user_id=g.current_user.id,
            idempotency_key=_idempotency_key(payload),
        )
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust points")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"loyalty": loyalty.to_dict(), "replayed": replayed}), 200 if replayed else 201


# =============================================================================
# REWARDS
# =============================================================================

@loyalty_bp.get("/programs/<int:program_id>/rewards")
@require_auth
@require_permission("VIEW_LOYALTY")
def list_rewards(program_id: int):
    """Query params: is_active, type"""
    is_active = request.args.get("is_active")
    reward_type = request.args.get("type")
    try:
        rewards = loyalty_service.list_rewards(
            program_id,
            g.org_id,
            is_active=coerce_bool(is_active) if is_active not in (None, "") else None,
            reward_type=reward_type.upper() if reward_type else None,
        )
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"rewards": [r.to_dict() for r in rewards]})


@loyalty_bp.get("/programs/<int:program_id>/rewards/available")
@require_auth
@require_permission("VIEW_LOYALTY")
def available_rewards(program_id: int):
    """Query params: customer_id (optional, keeps only affordable rewards)"""
    try:
        rewards = loyalty_service.get_available_rewards(
            program_id, g.org_id, _optional_int(request.args, "customer_id")
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"rewards": [r.to_dict() for r in rewards]})


@loyalty_bp.post("/programs/<int:program_id>/rewards")
@require_auth
@require_permission("MANAGE_LOYALTY")
def create_reward(program_id: int):
    """
    Request body:
    {
        "name": "10% off",
        "type": "DISCOUNT_PERCENTAGE",
        "value": 10,
        "points_cost": 500,
        "max_redemptions": 100,           // optional
        "valid_from": "...", "valid_until": "..."
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        reward = loyalty_service.create_reward(program_id, g.org_id, _reward_data(payload))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"reward": reward.to_dict()}), 201


@loyalty_bp.patch("/rewards/<int:reward_id>")
@require_auth
@require_permission("MANAGE_LOYALTY")
def update_reward(reward_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        reward = loyalty_service.update_reward(reward_id, g.org_id, _reward_data(payload))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"reward": reward.to_dict()})


@loyalty_bp.delete("/rewards/<int:reward_id>")
@require_auth
@require_permission("MANAGE_LOYALTY")
def delete_reward(reward_id: int):
    """Soft delete."""
    try:
        reward = loyalty_service.delete_reward(reward_id, g.org_id)
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"reward": reward.to_dict()})


@loyalty_bp.post("/programs/<int:program_id>/redeem")
@require_auth
@require_permission("REDEEM_REWARDS")
def redeem(program_id: int):
    """Request body: {"customer_id": 4, "reward_id": 2, "idempotency_key": "..."}"""
    payload = request.get_json(silent=True) or {}
    try:
        customer_reward, replayed = loyalty_service.redeem_reward(
            org_id=g.org_id,
            customer_id=coerce_int(payload.get("customer_id"), "customer_id"),
            program_id=program_id,
            reward_id=coerce_int(payload.get("reward_id"), "reward_id"),
            user_id=g.current_user.id,
            idempotency_key=_idempotency_key(payload),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to redeem reward")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"customer_reward": customer_reward.to_dict(), "replayed": replayed}), 200 if replayed else 201


@loyalty_bp.get("/programs/<int:program_id>/customers/<int:customer_id>/rewards")
@require_auth
@require_permission("VIEW_LOYALTY")
def customer_rewards(program_id: int, customer_id: int):
    status = request.args.get("status")
    try:
        rewards = loyalty_service.list_customer_rewards(
            g.org_id, customer_id, program_id, status.upper() if status else None
        )
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"rewards": [r.to_dict() for r in rewards]})


@loyalty_bp.post("/customer-rewards/<int:customer_reward_id>/use")
@require_auth
@require_permission("REDEEM_REWARDS")
def use_reward(customer_reward_id: int):
    """Request body: {"sale_id": 10} (optional)"""
    payload = request.get_json(silent=True) or {}
    try:
        sale_id = payload.get("sale_id")
        customer_reward = loyalty_service.use_customer_reward(
            g.org_id,
            customer_reward_id,
            coerce_int(sale_id, "sale_id") if sale_id is not None else None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"customer_reward": customer_reward.to_dict()})


# =============================================================================
# REPORTING & JOBS
# =============================================================================

@loyalty_bp.get("/transactions")
@require_auth
@require_permission("VIEW_LOYALTY")
def list_transactions():
    """Query params: page, limit, program_id, customer_id, type, reference_type, start_date, end_date"""
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
        transaction_type = request.args.get("type")
        reference_type = request.args.get("reference_type")
        rows, total = loyalty_service.list_transactions(
            g.org_id,
            page=page,
            limit=limit,
            program_id=_optional_int(request.args, "program_id"),
            customer_id=_optional_int(request.args, "customer_id"),
            transaction_type=transaction_type.upper() if transaction_type else None,
            reference_type=reference_type.upper() if reference_type else None,
            start_date=optional_datetime_arg(request.args, "start_date"),
            end_date=optional_datetime_arg(request.args, "end_date"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code

    return jsonify({
        "transactions": [t.to_dict() for t in rows],
        "pagination": pagination_dict(page, limit, total),
    })


@loyalty_bp.get("/programs/<int:program_id>/analytics")
@require_auth
@require_permission("VIEW_LOYALTY")
def analytics(program_id: int):
    try:
        data = loyalty_service.get_analytics(
            program_id,
            g.org_id,
            start_date=optional_datetime_arg(request.args, "start_date"),
            end_date=optional_datetime_arg(request.args, "end_date"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify(data)


@loyalty_bp.post("/jobs/expire-points")
@require_auth
@require_permission("MANAGE_LOYALTY")
def run_expire_points():
    """Expire the organization's overdue points now."""
    expired = loyalty_service.expire_points(org_id=g.org_id)
    return jsonify({"expired": expired})
