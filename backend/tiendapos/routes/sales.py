# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales routes.

POST /api/sales settles a sale in one transaction: stock, customer totals
and (for CASH) the open cash session are updated together.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.sales_service import SaleError
from ..validation import (
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_int,
    ValidationError,
)
from ..decorators import require_auth, require_permission

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def create_sale():
    """
    Create a sale.

    Request body:
    {
        "customer_id": 4,                 // optional
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "payment_method": "CASH",         // CASH | CARD | TRANSFER | OTHER
        "discount": 10,                   // optional, default 0
        "discount_type": "PERCENTAGE",    // PERCENTAGE | FIXED_AMOUNT
        "tax_cents": 0,
        "notes": "..."
    }

    Returns:
        201 {sale, summary}
        400 invalid input / insufficient stock / no open cash session
        404 product or customer not found
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.create_sale(
            org_id=g.org_id,
            user_id=g.current_user.id,
            items=data.get("items"),
            customer_id=data.get("customer_id"),
            payment_method=data.get("payment_method") or "CASH",
            discount=data.get("discount", 0),
            discount_type=data.get("discount_type") or "PERCENTAGE",
            tax_cents=data.get("tax_cents", 0),
            notes=data.get("notes"),
            store_id=g.store_id,
        )
    except SaleError as e:
        body = {"error": str(e)}
        body.update(e.details)
        return jsonify(body), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": sale.to_dict(), "summary": sales_service.sale_summary(sale)}), 201


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales():
    """
    Query params:
    - page, limit (default 10, max 100)
    - start_date, end_date: ISO datetimes
    - customer_id, payment_method
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=10, max_limit=100)
        customer_id = request.args.get("customer_id")
        sales, total = sales_service.list_sales(
            g.org_id,
            page=page,
            limit=limit,
            start_date=optional_datetime_arg(request.args, "start_date"),
            end_date=optional_datetime_arg(request.args, "end_date"),
            customer_id=coerce_int(customer_id, "customer_id") if customer_id not in (None, "") else None,
            payment_method=request.args.get("payment_method"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "sales": [s.to_dict(include_items=False) for s in sales],
        "pagination": pagination_dict(page, limit, total),
    })


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, g.org_id)
    except SaleError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"sale": sale.to_dict(), "summary": sales_service.sale_summary(sale)})


@sales_bp.get("/summary/today")
@require_auth
@require_permission("VIEW_SALES")
def today_summary():
    return jsonify(sales_service.today_summary(g.org_id))


@sales_bp.get("/analytics/dashboard")
@require_auth
@require_permission("VIEW_SALES")
def dashboard():
    return jsonify(sales_service.dashboard(g.org_id))
