# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog routes.

MULTI-TENANT: All product operations are scoped to the caller's organization
(g.org_id, set by @require_auth).

- Read operations require VIEW_PRODUCTS
- Write operations require MANAGE_PRODUCTS
"""
from flask import Blueprint, request, g

from ..models import Product
from ..services import products_service
from ..services.products_service import ProductError, PRODUCT_MUTABLE_FIELDS
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_bool,
    coerce_int,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_permission

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS,
    required_on_create={"sku", "name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_products():
    """
    Query params:
    - page, limit (default 20, max 100)
    - search: name / sku / brand / barcode, case-insensitive
    - category, is_active, low_stock
    - since: ISO datetime; only products updated after it
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
        is_active = request.args.get("is_active")
        result = products_service.list_products(
            g.org_id,
            page=page,
            limit=limit,
            search=request.args.get("search"),
            category=request.args.get("category"),
            is_active=coerce_bool(is_active) if is_active not in (None, "") else None,
            low_stock=coerce_bool(request.args.get("low_stock", "false")),
            since=optional_datetime_arg(request.args, "since"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {
        "products": result["items"],
        "pagination": pagination_dict(page, limit, result["total"]),
        "sync": {"next_since": result["next_since"]},
    }


@products_bp.get("/validate-barcode")
@require_auth
@require_permission("VIEW_PRODUCTS")
def validate_barcode_route():
    return products_service.validate_barcode(g.org_id, request.args.get("code"))


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_PRODUCTS")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id, g.org_id)
    except ProductError as e:
        return {"error": str(e)}, e.status_code
    return {"product": product.to_dict()}


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch, org_id=g.org_id)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"product": created.to_dict()}, 201


@products_bp.patch("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, org_id=g.org_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ProductError as e:
        return {"error": str(e)}, e.status_code

    return {"product": updated.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def delete_product_route(product_id: int):
    """Soft delete (is_active = false)."""
    try:
        product = products_service.delete_product(product_id=product_id, org_id=g.org_id)
    except ProductError as e:
        return {"error": str(e)}, e.status_code
    return {"ok": True, "product": product.to_dict()}, 200


@products_bp.post("/<int:product_id>/stock-adjustments")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def adjust_stock_route(product_id: int):
    """
    Request body:
    {
        "quantity_delta": -3,   // non-zero integer
        "reason": "Broken in storage"
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        delta = coerce_int(payload.get("quantity_delta"), "quantity_delta")
        product, movement = products_service.adjust_stock(
            product_id=product_id,
            org_id=g.org_id,
            quantity_delta=delta,
            reason=payload.get("reason"),
            user_id=g.current_user.id,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ProductError as e:
        return {"error": str(e)}, e.status_code

    return {"product": product.to_dict(), "movement": movement.to_dict()}, 201
