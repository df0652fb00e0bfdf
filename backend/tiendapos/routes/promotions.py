# Overview: Flask API routes for promotions operations; parses input and returns JSON responses.

"""
Promotion routes.

- Read operations require VIEW_PROMOTIONS
- Write operations require MANAGE_PROMOTIONS
- Approval requires APPROVE_PROMOTIONS
"""
from flask import Blueprint, request, jsonify, g

from ..services import promotions_service
from ..services.promotions_service import PromotionError, PROMOTION_FIELDS
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

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


def _optional_bool(args, key):
    raw = args.get(key)
    if raw in (None, ""):
        return None
    return coerce_bool(raw)


def _promotion_data(payload: dict) -> dict:
    """Map the JSON body onto service field names; dates become datetimes."""
    data = {}
    for key in PROMOTION_FIELDS:
        source = "type" if key == "promo_type" else key
        if source in payload:
            data[key] = payload[source]
    if isinstance(data.get("promo_type"), str):
        data["promo_type"] = data["promo_type"].upper()
    for key in ("start_date", "end_date"):
        if data.get(key) is not None:
            data[key] = coerce_datetime(data[key], key)
    if "applicable_product_ids" in payload:
        data["applicable_product_ids"] = payload["applicable_product_ids"]
    return data


@promotions_bp.get("")
@require_auth
@require_permission("VIEW_PROMOTIONS")
def list_promotions():
    """
    Query params:
    - page, limit (1..100, default 10)
    - search, type, is_active, stacking
    - status: active | scheduled | expired
    - date_from (start >=), date_to (end <=)
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=10, max_limit=100)
        promotions, total = promotions_service.list_promotions(
            g.org_id,
            page=page,
            limit=limit,
            search=request.args.get("search"),
            promo_type=request.args.get("type"),
            is_active=_optional_bool(request.args, "is_active"),
            stacking=_optional_bool(request.args, "stacking"),
            status=request.args.get("status"),
            date_from=optional_datetime_arg(request.args, "date_from"),
            date_to=optional_datetime_arg(request.args, "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code

    return jsonify({
        "promotions": [p.to_dict() for p in promotions],
        "pagination": pagination_dict(page, limit, total),
    })


@promotions_bp.get("/offers-products")
@require_auth
@require_permission("VIEW_PROMOTIONS")
def offers_products():
    """
    Products linked to running promotions with their effective offer price.

    Query params: category, q, sort, limit (1..100, default 24), offset
    """
    try:
        raw_limit = request.args.get("limit")
        raw_offset = request.args.get("offset")
        limit = coerce_int(raw_limit, "limit") if raw_limit not in (None, "") else 24
        offset = coerce_int(raw_offset, "offset") if raw_offset not in (None, "") else 0
        if limit < 1 or limit > 100:
            raise ValidationError("limit must be between 1 and 100")
        if offset < 0:
            raise ValidationError("offset must be >= 0")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    rows, total = promotions_service.offers_products(
        g.org_id,
        limit=limit,
        offset=offset,
        category=request.args.get("category"),
        q=request.args.get("q"),
        sort=request.args.get("sort"),
    )

    return jsonify({"items": rows, "total": total, "limit": limit, "offset": offset})


@promotions_bp.post("/product-counts")
@require_auth
@require_permission("VIEW_PROMOTIONS")
def product_counts():
    """Request body: {"ids": [1, 2, 3]} -> {"1": 4, "2": 0, "3": 1}"""
    data = request.get_json(silent=True) or {}
    try:
        counts = promotions_service.product_counts(g.org_id, data.get("ids"))
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify(counts)


@promotions_bp.get("/<int:promotion_id>")
@require_auth
@require_permission("VIEW_PROMOTIONS")
def get_promotion(promotion_id: int):
    try:
        promotion = promotions_service.get_promotion(promotion_id, g.org_id)
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"promotion": promotion.to_dict()})


@promotions_bp.post("")
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def create_promotion():
    """
    Request body:
    {
        "name": "Summer sale",
        "type": "PERCENTAGE",          // PERCENTAGE | FIXED_AMOUNT
        "value": 15,
        "start_date": "2025-01-01T00:00:00Z",
        "end_date": "2025-02-01T00:00:00Z",
        "stacking": false,
        "applicable_product_ids": [1, 2]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        promotion = promotions_service.create_promotion(g.org_id, _promotion_data(payload), g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"promotion": promotion.to_dict()}), 201


@promotions_bp.patch("/<int:promotion_id>")
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def update_promotion(promotion_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        promotion = promotions_service.update_promotion(promotion_id, g.org_id, _promotion_data(payload))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"promotion": promotion.to_dict()})


@promotions_bp.delete("/<int:promotion_id>")
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def delete_promotion(promotion_id: int):
    try:
        promotions_service.delete_promotion(promotion_id, g.org_id)
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"ok": True})


@promotions_bp.patch("/<int:promotion_id>/status")
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def set_status(promotion_id: int):
    data = request.get_json(silent=True) or {}
    try:
        promotion = promotions_service.set_status(promotion_id, g.org_id, data.get("is_active"))
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"promotion": promotion.to_dict()})


@promotions_bp.patch("/<int:promotion_id>/approval")
@require_auth
@require_permission("APPROVE_PROMOTIONS")
def set_approval(promotion_id: int):
    """Request body: {"status": "approved", "comment": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        promotion = promotions_service.set_approval(
            promotion_id, g.org_id, data.get("status"), data.get("comment"), g.current_user.id
        )
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"promotion": promotion.to_dict()})


# =============================================================================
# PRODUCT LINKS
# =============================================================================

@promotions_bp.get("/<int:promotion_id>/products")
@require_auth
@require_permission("VIEW_PROMOTIONS")
def list_promotion_products(promotion_id: int):
    try:
        products = promotions_service.list_linked_products(promotion_id, g.org_id)
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"products": [p.to_dict() for p in products]})


@promotions_bp.post("/<int:promotion_id>/products")
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def add_promotion_products(promotion_id: int):
    """Request body: {"product_ids": [1, 2]}"""
    data = request.get_json(silent=True) or {}
    try:
        products = promotions_service.add_products(promotion_id, g.org_id, data.get("product_ids"))
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"products": [p.to_dict() for p in products]})


@promotions_bp.delete("/<int:promotion_id>/products")
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def remove_promotion_products(promotion_id: int):
    """Request body: {"product_ids": [1, 2]}"""
    data = request.get_json(silent=True) or {}
    try:
        products = promotions_service.remove_products(promotion_id, g.org_id, data.get("product_ids"))
    except PromotionError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"products": [p.to_dict() for p in products]})
