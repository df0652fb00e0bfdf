# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

from flask import Blueprint, request, g

from ..models import Customer
from ..services import customer_service
from ..services.customer_service import CustomerError, CUSTOMER_MUTABLE_FIELDS
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    parse_pagination,
    pagination_dict,
    coerce_bool,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_permission

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=CUSTOMER_MUTABLE_FIELDS,
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def list_customers():
    """
    Query params:
    - page, limit (default 20, max 100)
    - search: name / email / phone
    - is_active: bool
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
    except ValidationError as e:
        return {"error": str(e)}, 400

    is_active = request.args.get("is_active")
    customers, total = customer_service.list_customers(
        g.org_id,
        page=page,
        limit=limit,
        search=request.args.get("search"),
        is_active=coerce_bool(is_active) if is_active not in (None, "") else None,
    )
    return {
        "customers": [c.to_dict() for c in customers],
        "pagination": pagination_dict(page, limit, total),
    }


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def get_customer(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id, g.org_id)
    except CustomerError as e:
        return {"error": str(e)}, e.status_code
    return {"customer": customer.to_dict()}


@customers_bp.post("")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def create_customer():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        customer = customer_service.create_customer(org_id=g.org_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"customer": customer.to_dict()}, 201


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def update_customer(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        customer = customer_service.update_customer(customer_id=customer_id, org_id=g.org_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except CustomerError as e:
        return {"error": str(e)}, e.status_code
    return {"customer": customer.to_dict()}


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def delete_customer(customer_id: int):
    try:
        customer = customer_service.delete_customer(customer_id=customer_id, org_id=g.org_id)
    except CustomerError as e:
        return {"error": str(e)}, e.status_code
    return {"ok": True, "customer": customer.to_dict()}


@customers_bp.get("/<int:customer_id>/history")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def customer_history(customer_id: int):
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
        history = customer_service.get_customer_history(customer_id, g.org_id, page=page, limit=limit)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except CustomerError as e:
        return {"error": str(e)}, e.status_code

    history["pagination"] = {
        "page": page,
        "limit": limit,
        "sales_total": history["sales_total"],
        "returns_total": history["returns_total"],
    }
    return history
