# Overview: Flask API route that re-checks a client cart against the catalog.

from flask import Blueprint, request, g

from ..services import products_service
from ..services.products_service import ProductError
from ..decorators import require_auth, require_permission

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.post("/validate")
@require_auth
@require_permission("VIEW_PRODUCTS")
def validate_cart_route():
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}]
    }

    Returns {valid, items[{product_id, valid, errors[], current_price_cents,
    available_stock}], subtotal_cents}.
    """
    payload = request.get_json(silent=True) or {}
    try:
        return products_service.validate_cart(g.org_id, payload.get("items"))
    except ProductError as e:
        return {"error": str(e)}, e.status_code
