# Overview: Flask API routes for coupons; codes are the public identifier.

from flask import Blueprint, request, jsonify, g

from ..services import coupon_service
from ..services.coupon_service import CouponError
from ..validation import (
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_datetime,
    ValidationError,
)
from ..decorators import require_auth, require_permission

coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")

COUPON_KEYS = (
    "code", "value", "min_purchase_cents", "max_discount_cents",
    "start_date", "end_date", "is_active", "usage_limit",
)


def _coupon_data(payload: dict) -> dict:
    data = {key: payload[key] for key in COUPON_KEYS if key in payload}
    if "type" in payload:
        data["coupon_type"] = (payload["type"] or "").upper()
    for key in ("start_date", "end_date"):
        if data.get(key) is not None:
            data[key] = coerce_datetime(data[key], key)
    return data


@coupons_bp.get("")
@require_auth
@require_permission("VIEW_COUPONS")
def list_coupons():
    """
    Query params:
    - page, limit (1..100, default 10)
    - search: code contains
    - status: active | inactive | scheduled | expired
    - date_from, date_to
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=10, max_limit=100)
        coupons, total = coupon_service.list_coupons(
            g.org_id,
            page=page,
            limit=limit,
            search=request.args.get("search"),
            status=request.args.get("status"),
            date_from=optional_datetime_arg(request.args, "date_from"),
            date_to=optional_datetime_arg(request.args, "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CouponError as e:
        return jsonify({"error": str(e)}), e.status_code

    return jsonify({
        "coupons": [c.to_dict() for c in coupons],
        "pagination": pagination_dict(page, limit, total),
    })


@coupons_bp.get("/<code>")
@require_auth
@require_permission("VIEW_COUPONS")
def get_coupon(code: str):
    try:
        coupon = coupon_service.get_coupon_by_code(g.org_id, code)
    except CouponError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"coupon": coupon.to_dict()})


@coupons_bp.post("")
@require_auth
@require_permission("MANAGE_COUPONS")
def create_coupon():
    """
    Request body:
    {
        "code": "WELCOME2025",
        "type": "PERCENTAGE",        // PERCENTAGE | FIXED_AMOUNT
        "value": 10,
        "start_date": "2025-01-01T00:00:00Z",
        "end_date": "2025-12-31T23:59:59Z",
        "min_purchase_cents": 5000,  // optional
        "max_discount_cents": 2000,  // optional
        "usage_limit": 100           // optional
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        coupon = coupon_service.create_coupon(g.org_id, _coupon_data(payload))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CouponError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"coupon": coupon.to_dict()}), 201


@coupons_bp.patch("/<code>")
@require_auth
@require_permission("MANAGE_COUPONS")
def update_coupon(code: str):
    payload = request.get_json(silent=True) or {}
    try:
        coupon = coupon_service.update_coupon(g.org_id, code, _coupon_data(payload))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CouponError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"coupon": coupon.to_dict()})


@coupons_bp.delete("/<code>")
@require_auth
@require_permission("MANAGE_COUPONS")
def delete_coupon(code: str):
    try:
        coupon_service.delete_coupon(g.org_id, code)
    except CouponError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"ok": True})


@coupons_bp.post("/validate")
@require_auth
@require_permission("APPLY_COUPONS")
def validate_coupon():
    """Request body: {"code": "DESC10", "subtotal_cents": 60000}"""
    data = request.get_json(silent=True) or {}
    if not data.get("code"):
        return jsonify({"error": "code is required"}), 400
    try:
        result = coupon_service.validate_coupon(g.org_id, data["code"], data.get("subtotal_cents"))
    except CouponError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify(result)


@coupons_bp.post("/seed-examples")
@require_auth
@require_permission("MANAGE_COUPONS")
def seed_examples():
    coupons = coupon_service.seed_example_coupons(g.org_id)
    return jsonify({"coupons": [c.to_dict() for c in coupons], "count": len(coupons)}), 201
