"""
Supplier Service

Suppliers are org-scoped and unique by name. Each supplier keeps an
immutable price history per product; a new price point records the
supplier's previous price for that product so the change can be shown.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Supplier, SupplierPriceHistory, Product
from ..validation import ConflictError
from .errors import ServiceError
from .tenant_service import require_in_org
from tiendapos.time_utils import utcnow


class SupplierError(ServiceError):
    """Raised for supplier operation errors."""
    pass


SUPPLIER_MUTABLE_FIELDS = {"name", "contact_name", "email", "phone", "tax_id", "address", "is_active"}


def get_supplier(supplier_id: int, org_id: int) -> Supplier:
    return require_in_org(Supplier, supplier_id, org_id, SupplierError, "Supplier")


def _ensure_unique_name(org_id: int, name: str | None, exclude_id: int | None = None) -> None:
    if not name:
        return
    query = db.session.query(Supplier.id).filter(Supplier.org_id == org_id, Supplier.name == name)
    if exclude_id is not None:
        query = query.filter(Supplier.id != exclude_id)
    if query.first():
        raise ConflictError("A supplier with this name already exists")


def list_suppliers(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    is_active: bool | None = None,
) -> tuple[list[Supplier], int]:
    query = db.session.query(Supplier).filter(Supplier.org_id == org_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(db.or_(
            db.func.lower(Supplier.name).like(pattern),
            db.func.lower(Supplier.contact_name).like(pattern),
            db.func.lower(Supplier.email).like(pattern),
        ))
    if is_active is not None:
        query = query.filter(Supplier.is_active.is_(is_active))

    total = query.count()
    suppliers = query.order_by(Supplier.name.asc()).offset((page - 1) * limit).limit(limit).all()
    return suppliers, total


def create_supplier(*, org_id: int, patch: dict) -> Supplier:
    _ensure_unique_name(org_id, patch.get("name"))
    supplier = Supplier(org_id=org_id)
    for key, value in patch.items():
        if key in SUPPLIER_MUTABLE_FIELDS:
            setattr(supplier, key, value)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def update_supplier(*, supplier_id: int, org_id: int, patch: dict) -> Supplier:
    supplier = get_supplier(supplier_id, org_id)
    _ensure_unique_name(org_id, patch.get("name"), exclude_id=supplier.id)
    for key, value in patch.items():
        if key in SUPPLIER_MUTABLE_FIELDS:
            setattr(supplier, key, value)
    supplier.updated_at = utcnow()
    db.session.commit()
    return supplier


def delete_supplier(*, supplier_id: int, org_id: int) -> Supplier:
    supplier = get_supplier(supplier_id, org_id)
    supplier.is_active = False
    db.session.commit()
    return supplier


# =============================================================================
# PRICE HISTORY
# =============================================================================

def list_price_history(
    supplier_id: int,
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    product_id: int | None = None,
    date_from=None,
    date_to=None,
) -> tuple[list[SupplierPriceHistory], int]:
    """Newest first by effective_date."""
    supplier = get_supplier(supplier_id, org_id)

    query = db.session.query(SupplierPriceHistory).filter(
        SupplierPriceHistory.org_id == org_id,
        SupplierPriceHistory.supplier_id == supplier.id,
    )
    if product_id is not None:
        query = query.filter(SupplierPriceHistory.product_id == product_id)
    if date_from is not None:
        query = query.filter(SupplierPriceHistory.effective_date >= date_from)
    if date_to is not None:
        query = query.filter(SupplierPriceHistory.effective_date <= date_to)

    total = query.count()
    rows = (
        query.order_by(SupplierPriceHistory.effective_date.desc(), SupplierPriceHistory.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def record_price(
    *,
    supplier_id: int,
    org_id: int,
    product_id: int,
    price_cents: int,
    effective_date=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> SupplierPriceHistory:
    """
    Append a price point. previous_price_cents is the supplier's latest
    earlier price for the product (None for the first point).
    """
    supplier = get_supplier(supplier_id, org_id)
    require_in_org(Product, product_id, org_id, SupplierError, "Product")

    if effective_date is None:
        effective_date = utcnow()

    previous = (
        db.session.query(SupplierPriceHistory)
        .filter(
            SupplierPriceHistory.supplier_id == supplier.id,
            SupplierPriceHistory.product_id == product_id,
            SupplierPriceHistory.effective_date <= effective_date,
        )
        .order_by(SupplierPriceHistory.effective_date.desc(), SupplierPriceHistory.id.desc())
        .first()
    )

    entry = SupplierPriceHistory(
        org_id=org_id,
        supplier_id=supplier.id,
        product_id=product_id,
        price_cents=price_cents,
        previous_price_cents=previous.price_cents if previous else None,
        effective_date=effective_date,
        notes=(notes or "").strip() or None,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.commit()
    return entry
