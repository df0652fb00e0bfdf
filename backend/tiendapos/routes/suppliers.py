# Overview: Flask API routes for suppliers and their price history.

"""
Supplier routes.

Price history is append-only: POST records a new price point and the
response reports the change against the previous one.
"""
from flask import Blueprint, request, g

from ..models import Supplier
from ..services import supplier_service
from ..services.supplier_service import SupplierError, SUPPLIER_MUTABLE_FIELDS
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_supplier_price,
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_bool,
    coerce_int,
    coerce_datetime,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_permission

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=SUPPLIER_MUTABLE_FIELDS,
    required_on_create={"name"},
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
@require_permission("VIEW_SUPPLIERS")
def list_suppliers():
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
    except ValidationError as e:
        return {"error": str(e)}, 400

    is_active = request.args.get("is_active")
    suppliers, total = supplier_service.list_suppliers(
        g.org_id,
        page=page,
        limit=limit,
        search=request.args.get("search"),
        is_active=coerce_bool(is_active) if is_active not in (None, "") else None,
    )
    return {
        "suppliers": [s.to_dict() for s in suppliers],
        "pagination": pagination_dict(page, limit, total),
    }


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
@require_permission("VIEW_SUPPLIERS")
def get_supplier(supplier_id: int):
    try:
        supplier = supplier_service.get_supplier(supplier_id, g.org_id)
    except SupplierError as e:
        return {"error": str(e)}, e.status_code
    return {"supplier": supplier.to_dict()}


@suppliers_bp.post("")
@require_auth
@require_permission("MANAGE_SUPPLIERS")
def create_supplier():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
        supplier = supplier_service.create_supplier(org_id=g.org_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"supplier": supplier.to_dict()}, 201


@suppliers_bp.patch("/<int:supplier_id>")
@require_auth
@require_permission("MANAGE_SUPPLIERS")
def update_supplier(supplier_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
        supplier = supplier_service.update_supplier(supplier_id=supplier_id, org_id=g.org_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except SupplierError as e:
        return {"error": str(e)}, e.status_code
    return {"supplier": supplier.to_dict()}


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_permission("MANAGE_SUPPLIERS")
def delete_supplier(supplier_id: int):
    try:
        supplier = supplier_service.delete_supplier(supplier_id=supplier_id, org_id=g.org_id)
    except SupplierError as e:
        return {"error": str(e)}, e.status_code
    return {"ok": True, "supplier": supplier.to_dict()}


# =============================================================================
# PRICE HISTORY
# =============================================================================

@suppliers_bp.get("/<int:supplier_id>/price-history")
@require_auth
@require_permission("VIEW_SUPPLIERS")
def list_price_history(supplier_id: int):
    """
    Query params:
    - page, limit (1..100, default 20)
    - product_id
    - from, to: ISO datetimes on effective_date
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
        product_id = request.args.get("product_id")
        rows, total = supplier_service.list_price_history(
            supplier_id,
            g.org_id,
            page=page,
            limit=limit,
            product_id=coerce_int(product_id, "product_id") if product_id not in (None, "") else None,
            date_from=optional_datetime_arg(request.args, "from"),
            date_to=optional_datetime_arg(request.args, "to"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SupplierError as e:
        return {"error": str(e)}, e.status_code

    return {
        "price_history": [r.to_dict() for r in rows],
        "pagination": pagination_dict(page, limit, total),
    }


@suppliers_bp.post("/<int:supplier_id>/price-history")
@require_auth
@require_permission("MANAGE_SUPPLIERS")
def record_price(supplier_id: int):
    """
    Request body:
    {
        "product_id": 12,
        "price_cents": 1450,
        "effective_date": "2024-05-01T00:00:00Z",   // optional, defaults to now
        "notes": "New list"                        // optional
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        if payload.get("product_id") is None:
            raise ValidationError("product_id is required")
        patch = {
            "price_cents": coerce_int(payload["price_cents"], "price_cents")
            if payload.get("price_cents") is not None else None,
        }
        enforce_rules_supplier_price(patch)
        effective_date = payload.get("effective_date")
        entry = supplier_service.record_price(
            supplier_id=supplier_id,
            org_id=g.org_id,
            product_id=coerce_int(payload["product_id"], "product_id"),
            price_cents=patch["price_cents"],
            effective_date=coerce_datetime(effective_date, "effective_date") if effective_date else None,
            notes=payload.get("notes"),
            user_id=g.current_user.id,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SupplierError as e:
        return {"error": str(e)}, e.status_code

    return {"price": entry.to_dict(), "change_pct": entry.change_pct}, 201
