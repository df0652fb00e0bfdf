# backend/tiendapos/services/products_service.py
"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are tenant-scoped by org_id.
- SKU and barcode are unique within an organization
- Deleting a product only deactivates it (sales and returns reference it)
- Stock changes always write an InventoryMovement
"""
from __future__ import annotations

import re

from ..extensions import db
from ..models import Product, InventoryMovement
from ..validation import ConflictError, ValidationError
from .concurrency import lock_for_update
from .errors import ServiceError, not_found
from .tenant_service import require_in_org
from tiendapos.time_utils import utcnow, to_utc_z

PRODUCT_MUTABLE_FIELDS = {
    "sku", "barcode", "name", "description", "category", "brand",
    "price_cents", "offer_price_cents", "cost_cents",
    "stock_quantity", "min_stock", "is_active",
}

BARCODE_RE = re.compile(r"^[0-9]{8,14}$")


class ProductError(ServiceError):
    """Raised for product operation errors."""
    pass


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: int, org_id: int) -> Product:
    return require_in_org(Product, product_id, org_id, ProductError, "Product")


def list_products(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    category: str | None = None,
    is_active: bool | None = None,
    low_stock: bool = False,
    since=None,
) -> dict:
    """
    Tenant-scoped product listing.

    since: only products updated strictly after this datetime. The response
    carries sync.next_since (the newest updated_at in the page) so clients
    can poll for incremental changes.
    """
    query = db.session.query(Product).filter(Product.org_id == org_id)

    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(db.or_(
            db.func.lower(Product.name).like(pattern),
            db.func.lower(Product.sku).like(pattern),
            db.func.lower(Product.brand).like(pattern),
            db.func.lower(Product.barcode).like(pattern),
        ))
    if category:
        query = query.filter(Product.category == category)
    if is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))
    if low_stock:
        query = query.filter(Product.stock_quantity <= Product.min_stock)
    if since is not None:
        query = query.filter(Product.updated_at > since)
        query = query.order_by(Product.updated_at.asc(), Product.id.asc())
    else:
        query = query.order_by(Product.name.asc(), Product.id.asc())

    total = query.count()
    products = query.offset((page - 1) * limit).limit(limit).all()

    newest = max((p.updated_at for p in products if p.updated_at), default=None)

    return {
        "items": [p.to_dict() for p in products],
        "total": total,
        "next_since": to_utc_z(newest) if newest else None,
    }


def _ensure_unique_codes(org_id: int, patch: dict, exclude_id: int | None = None) -> None:
    for field in ("sku", "barcode"):
        value = patch.get(field)
        if not value:
            continue
        query = db.session.query(Product.id).filter(
            Product.org_id == org_id,
            getattr(Product, field) == value,
        )
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise ConflictError(f"{field.upper()} already exists in this organization.")


def create_product(*, patch: dict, org_id: int) -> Product:
    """
    Create product from a validated patch dict.

    Raises:
        ConflictError: SKU or barcode already used in the org
    """
    if not patch.get("sku"):
        raise ValidationError("sku is required")

    _ensure_unique_codes(org_id, patch)

    p = Product(org_id=org_id)
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    return p


def update_product(*, product_id: int, org_id: int, patch: dict) -> Product:
    p = get_product(product_id, org_id)
    _ensure_unique_codes(org_id, patch, exclude_id=p.id)

    price = patch.get("price_cents", p.price_cents)
    offer = patch.get("offer_price_cents", p.offer_price_cents)
    if offer and price is not None and offer > price:
        raise ValidationError("offer_price_cents cannot exceed price_cents")

    apply_product_patch(p, patch)
    db.session.commit()
    return p


def delete_product(*, product_id: int, org_id: int) -> Product:
    """Soft delete: the row stays for sales/returns history."""
    p = get_product(product_id, org_id)
    p.is_active = False
    db.session.commit()
    return p


def validate_barcode(org_id: int, code: str | None) -> dict:
    """
    Check a scanned code: valid is 8-14 digits; exists means a product of
    the org already uses it as SKU or barcode.
    """
    code = (code or "").strip()
    valid = bool(BARCODE_RE.match(code))

    existing = None
    if code:
        existing = db.session.query(Product).filter(
            Product.org_id == org_id,
            db.or_(Product.sku == code, Product.barcode == code),
        ).first()

    return {
        "code": code,
        "valid": valid,
        "exists": existing is not None,
        "product_id": existing.id if existing else None,
    }


def adjust_stock(
    *,
    product_id: int,
    org_id: int,
    quantity_delta: int,
    reason: str | None,
    user_id: int,
) -> tuple[Product, InventoryMovement]:
    """
    Manual stock correction.

    Locks the product row; the result may not go below zero.
    """
    if quantity_delta == 0:
        raise ProductError("quantity_delta must not be zero")

    get_product(product_id, org_id)

    product = lock_for_update(
        db.session.query(Product).filter_by(id=product_id, org_id=org_id)
    ).first()

    new_quantity = product.stock_quantity + quantity_delta
    if new_quantity < 0:
        raise ProductError(
            f"Insufficient stock: {product.stock_quantity} on hand, adjustment {quantity_delta}"
        )

    product.stock_quantity = new_quantity
    product.updated_at = utcnow()

    movement = InventoryMovement(
        org_id=org_id,
        product_id=product.id,
        movement_type="ADJUSTMENT",
        quantity_delta=quantity_delta,
        reason=(reason or "").strip() or None,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.commit()

    return product, movement


# =============================================================================
# CART VALIDATION
# =============================================================================

def validate_cart(org_id: int, items: list) -> dict:
    """
    Compare a client cart against current catalog state.

    Per item: {product_id, valid, errors[], current_price_cents, available_stock}.
    Error codes: PRODUCT_NOT_FOUND, PRODUCT_INACTIVE, INVALID_QUANTITY,
    INSUFFICIENT_STOCK, PRICE_CHANGED.

    subtotal_cents sums quantity x current effective price for items whose
    product exists.
    """
    if not isinstance(items, list) or not items:
        raise ProductError("items must be a non-empty list")

    product_ids = {item.get("product_id") for item in items if isinstance(item, dict) and _is_int(item.get("product_id"))}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.org_id == org_id, Product.id.in_(product_ids)).all()
    }

    results = []
    subtotal = 0

    for item in items:
        if not isinstance(item, dict):
            raise ProductError("Each item must be an object")

        product_id = item.get("product_id")
        quantity = item.get("quantity")
        submitted_price = item.get("unit_price_cents")
        errors = []

        product = products.get(product_id) if _is_int(product_id) else None
        if product is None:
            results.append({
                "product_id": product_id,
                "valid": False,
                "errors": ["PRODUCT_NOT_FOUND"],
                "current_price_cents": None,
                "available_stock": 0,
            })
            continue

        if not product.is_active:
            errors.append("PRODUCT_INACTIVE")

        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            errors.append("INVALID_QUANTITY")
        elif quantity > product.stock_quantity:
            errors.append("INSUFFICIENT_STOCK")

        current_price = product.effective_price_cents
        if submitted_price is not None and submitted_price != current_price:
            errors.append("PRICE_CHANGED")

        if isinstance(quantity, int) and not isinstance(quantity, bool) and quantity > 0:
            subtotal += quantity * current_price

        results.append({
            "product_id": product_id,
            "valid": not errors,
            "errors": errors,
            "current_price_cents": current_price,
            "available_stock": product.stock_quantity,
        })

    return {
        "valid": all(r["valid"] for r in results),
        "items": results,
        "subtotal_cents": subtotal,
    }
