# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

"""
Returns routes.

A return starts PENDING. Stock and the cash refund are applied once, on
the first transition to COMPLETED.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..services import return_service
from ..services.return_service import ReturnError
from ..validation import (
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_int,
    ValidationError,
)
from ..decorators import require_auth, require_permission

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_auth
@require_permission("CREATE_RETURN")
def create_return():
    """
    Create a return against a sale.

    Request body:
    {
        "original_sale_id": 10,
        "customer_id": 4,                   // optional
        "items": [{
            "original_sale_item_id": 31,
            "product_id": 7,
            "quantity": 1,
            "unit_price_cents": 1500,
            "reason": "Damaged"
        }],
        "reason": "Customer complaint",
        "refund_method": "CASH"             // CASH | CARD | TRANSFER | OTHER
    }

    Returns:
        201 {return, summary}
        400 invalid items / quantity above what is still returnable
        404 sale not found
    """
    data = request.get_json(silent=True) or {}
    try:
        return_doc = return_service.create_return(
            org_id=g.org_id,
            user_id=g.current_user.id,
            original_sale_id=data.get("original_sale_id"),
            items=data.get("items"),
            reason=data.get("reason"),
            refund_method=data.get("refund_method") or "CASH",
            customer_id=data.get("customer_id"),
        )
    except ReturnError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "return": return_doc.to_dict(),
        "summary": return_service.return_summary(return_doc),
    }), 201


@returns_bp.patch("/<int:return_id>/status")
@require_auth
@require_permission("UPDATE_RETURN")
def update_return_status(return_id: int):
    """Request body: {"status": "COMPLETED", "notes": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        return_doc = return_service.update_status(
            return_id=return_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            status=data.get("status"),
            notes=data.get("notes"),
        )
    except ReturnError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return status")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"return": return_doc.to_dict()})


@returns_bp.delete("/<int:return_id>")
@require_auth
@require_permission("DELETE_RETURN")
def delete_return(return_id: int):
    try:
        return_service.delete_return(return_id=return_id, org_id=g.org_id)
    except ReturnError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"ok": True})


@returns_bp.get("")
@require_auth
@require_permission("VIEW_RETURNS")
def list_returns():
    """
    Query params:
    - page, limit (1..100, default 10)
    - start_date, end_date (start must not be after end)
    - customer_id, status, original_sale_id
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=10, max_limit=100)
        customer_id = request.args.get("customer_id")
        sale_id = request.args.get("original_sale_id")
        returns, total = return_service.list_returns(
            g.org_id,
            page=page,
            limit=limit,
            start_date=optional_datetime_arg(request.args, "start_date"),
            end_date=optional_datetime_arg(request.args, "end_date"),
            customer_id=coerce_int(customer_id, "customer_id") if customer_id not in (None, "") else None,
            status=request.args.get("status"),
            original_sale_id=coerce_int(sale_id, "original_sale_id") if sale_id not in (None, "") else None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ReturnError as e:
        return jsonify({"error": str(e)}), e.status_code

    pagination = pagination_dict(page, limit, total)
    pagination["has_next"] = page < pagination["pages"]
    pagination["has_prev"] = page > 1

    return jsonify({
        "returns": [r.to_dict(include_items=False) for r in returns],
        "pagination": pagination,
    })


@returns_bp.get("/<int:return_id>")
@require_auth
@require_permission("VIEW_RETURNS")
def get_return(return_id: int):
    try:
        return_doc = return_service.get_return(return_id, g.org_id)
    except ReturnError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({
        "return": return_doc.to_dict(),
        "summary": return_service.return_summary(return_doc),
    })
