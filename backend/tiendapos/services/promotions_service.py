# Overview: Promotions with approval flow, product links and storefront offer pricing.

from __future__ import annotations

from ..extensions import db
from ..models import Promotion, PromotionProduct, Product
from .errors import ServiceError
from .tenant_service import require_in_org
from tiendapos.time_utils import utcnow, to_utc_z


class PromotionError(ServiceError):
    """Raised for promotion operation errors."""
    pass


PROMOTION_TYPES = ("PERCENTAGE", "FIXED_AMOUNT")
STATUS_FILTERS = ("active", "scheduled", "expired")
APPROVAL_STATUSES = ("pending", "approved", "rejected")
OFFER_SORTS = ("best_savings", "highest_discount", "ending_soon", "price_low_high", "price_high_low")

PROMOTION_FIELDS = (
    "name", "description", "promo_type", "value", "stacking",
    "min_purchase_cents", "max_discount_cents", "start_date", "end_date", "is_active",
)


def _validate_value(promo_type: str, value) -> None:
    if promo_type not in PROMOTION_TYPES:
        raise PromotionError(f"type must be one of: {', '.join(PROMOTION_TYPES)}")
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise PromotionError("value must be a positive integer")
    if promo_type == "PERCENTAGE" and value > 100:
        raise PromotionError("Percentage value cannot exceed 100")


def _validate_dates(start_date, end_date) -> None:
    if start_date is None or end_date is None or end_date <= start_date:
        raise PromotionError("Invalid date range")


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_id_list(product_ids, field: str) -> list[int]:
    if not isinstance(product_ids, list) or not all(_is_int(pid) for pid in product_ids):
        raise PromotionError(f"{field} must be a list of product ids")
    return product_ids


def _resolve_products(org_id: int, product_ids) -> list[Product]:
    product_ids = _require_id_list(product_ids, "applicable_product_ids")
    ids = list(dict.fromkeys(product_ids))
    if not ids:
        return []
    products = db.session.query(Product).filter(Product.org_id == org_id, Product.id.in_(ids)).all()
    if len(products) != len(ids):
        raise PromotionError("Some applicable products do not belong to this organization")
    return products


def _replace_links(promotion: Promotion, products: list[Product]) -> None:
    # Kept links are reused; the unit of work inserts before it deletes orphans.
    existing = {link.product_id: link for link in promotion.product_links}
    promotion.product_links = [existing.get(p.id) or PromotionProduct(product_id=p.id) for p in products]


def get_promotion(promotion_id: int, org_id: int) -> Promotion:
    return require_in_org(Promotion, promotion_id, org_id, PromotionError, "Promotion")


def list_promotions(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    promo_type: str | None = None,
    is_active: bool | None = None,
    stacking: bool | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
) -> tuple[list[Promotion], int]:
    q = db.session.query(Promotion).filter(Promotion.org_id == org_id)
    now = utcnow()

    if search:
        q = q.filter(db.func.lower(Promotion.name).like(f"%{search.strip().lower()}%"))
    if promo_type:
        q = q.filter(Promotion.promo_type == promo_type.upper())
    if is_active is not None:
        q = q.filter(Promotion.is_active.is_(is_active))
    if stacking is not None:
        q = q.filter(Promotion.stacking.is_(stacking))
    if status:
        if status not in STATUS_FILTERS:
            raise PromotionError(f"status must be one of: {', '.join(STATUS_FILTERS)}")
        if status == "active":
            q = q.filter(Promotion.is_active.is_(True), Promotion.start_date <= now, Promotion.end_date >= now)
        elif status == "scheduled":
            q = q.filter(Promotion.is_active.is_(True), Promotion.start_date > now)
        else:
            q = q.filter(Promotion.end_date < now)
    if date_from is not None:
        q = q.filter(Promotion.start_date >= date_from)
    if date_to is not None:
        q = q.filter(Promotion.end_date <= date_to)

    total = q.count()
    rows = q.order_by(Promotion.start_date.asc(), Promotion.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def create_promotion(org_id: int, data: dict, user_id: int) -> Promotion:
    if not (data.get("name") or "").strip():
        raise PromotionError("name is required")
    _validate_value(data.get("promo_type"), data.get("value"))
    _validate_dates(data.get("start_date"), data.get("end_date"))
    products = _resolve_products(org_id, data.get("applicable_product_ids") or [])

    promotion = Promotion(org_id=org_id, created_by_user_id=user_id, approval_status="pending")
    for key in PROMOTION_FIELDS:
        if key in data:
            setattr(promotion, key, data[key])
    promotion.name = promotion.name.strip()
    _replace_links(promotion, products)

    db.session.add(promotion)
    db.session.commit()
    return promotion


def update_promotion(promotion_id: int, org_id: int, data: dict) -> Promotion:
    """Partial update. Product links are replaced only when applicable_product_ids is given."""
    promotion = get_promotion(promotion_id, org_id)

    if "name" in data and not (data["name"] or "").strip():
        raise PromotionError("name cannot be blank")
    if "promo_type" in data or "value" in data:
        _validate_value(data.get("promo_type", promotion.promo_type), data.get("value", promotion.value))
    if "start_date" in data or "end_date" in data:
        _validate_dates(data.get("start_date", promotion.start_date), data.get("end_date", promotion.end_date))

    products = None
    if "applicable_product_ids" in data:
        products = _resolve_products(org_id, data["applicable_product_ids"] or [])

    for key in PROMOTION_FIELDS:
        if key in data:
            setattr(promotion, key, data[key])
    if products is not None:
        _replace_links(promotion, products)

    promotion.updated_at = utcnow()
    db.session.commit()
    return promotion


def delete_promotion(promotion_id: int, org_id: int) -> None:
    promotion = get_promotion(promotion_id, org_id)
    db.session.delete(promotion)
    db.session.commit()


def set_status(promotion_id: int, org_id: int, is_active) -> Promotion:
    promotion = get_promotion(promotion_id, org_id)
    promotion.is_active = is_active is True or (isinstance(is_active, str) and is_active.strip().lower() == "true")
    promotion.updated_at = utcnow()
    db.session.commit()
    return promotion


def set_approval(promotion_id: int, org_id: int, status: str, comment: str | None, user_id: int) -> Promotion:
    status = (status or "").strip().lower()
    if status not in APPROVAL_STATUSES:
        raise PromotionError(f"status must be one of: {', '.join(APPROVAL_STATUSES)}")

    promotion = get_promotion(promotion_id, org_id)
    promotion.approval_status = status
    promotion.approval_comment = (comment or "").strip() or None
    if status == "approved":
        promotion.approved_by_user_id = user_id
        promotion.approved_at = utcnow()
    else:
        promotion.approved_by_user_id = None
        promotion.approved_at = None
    db.session.commit()
    return promotion


# =============================================================================
# PRODUCT LINKS
# =============================================================================

def list_linked_products(promotion_id: int, org_id: int) -> list[Product]:
    return get_promotion(promotion_id, org_id).applicable_products


def add_products(promotion_id: int, org_id: int, product_ids) -> list[Product]:
    """Link products, skipping those already linked."""
    promotion = get_promotion(promotion_id, org_id)
    products = _resolve_products(org_id, product_ids)
    linked = {link.product_id for link in promotion.product_links}
    for product in products:
        if product.id not in linked:
            promotion.product_links.append(PromotionProduct(product_id=product.id))
            linked.add(product.id)
    db.session.commit()
    return promotion.applicable_products


def remove_products(promotion_id: int, org_id: int, product_ids) -> list[Product]:
    promotion = get_promotion(promotion_id, org_id)
    drop = set(_require_id_list(product_ids, "product_ids"))
    promotion.product_links = [link for link in promotion.product_links if link.product_id not in drop]
    db.session.commit()
    return promotion.applicable_products


def product_counts(org_id: int, promotion_ids) -> dict[str, int]:
    if not isinstance(promotion_ids, list):
        raise PromotionError("ids must be a list")
    counts = {str(pid): 0 for pid in promotion_ids}
    ids = [pid for pid in promotion_ids if isinstance(pid, int) and not isinstance(pid, bool)]
    if not ids:
        return counts
    rows = db.session.query(PromotionProduct.promotion_id, db.func.count(PromotionProduct.id)).join(
        Promotion, Promotion.id == PromotionProduct.promotion_id
    ).filter(
        Promotion.org_id == org_id,
        PromotionProduct.promotion_id.in_(ids),
    ).group_by(PromotionProduct.promotion_id).all()
    for promotion_id, count in rows:
        counts[str(promotion_id)] = int(count)
    return counts


# =============================================================================
# STOREFRONT OFFERS
# =============================================================================

def discounted_price(price_cents: int, promo_type: str, value: int) -> int:
    if promo_type == "PERCENTAGE":
        pct = max(0, min(100, value))
        return max(0, int(price_cents * (100 - pct) / 100))
    if promo_type == "FIXED_AMOUNT":
        return max(0, price_cents - value)
    return price_cents


def _offer_row(product: Product, promotion: Promotion) -> dict:
    base = product.price_cents or 0
    effective = discounted_price(base, promotion.promo_type, promotion.value)
    if product.offer_price_cents is not None and product.offer_price_cents > 0:
        effective = min(product.offer_price_cents, effective)
    percent = round((1 - effective / base) * 100) if base > 0 else 0

    return {
        "product_id": product.id,
        "name": product.name,
        "brand": product.brand,
        "category": product.category,
        "price_cents": base,
        "offer_price_cents": product.offer_price_cents,
        "effective_offer_price_cents": effective,
        "discount_percent": percent,
        "promotion": {
            "id": promotion.id,
            "name": promotion.name,
            "type": promotion.promo_type,
            "value": promotion.value,
            "end_date": to_utc_z(promotion.end_date),
        },
    }


def _sort_key(sort: str):
    if sort == "highest_discount":
        return lambda r: -r["discount_percent"]
    if sort == "ending_soon":
        return lambda r: r["promotion"]["end_date"]
    if sort == "price_low_high":
        return lambda r: r["effective_offer_price_cents"]
    if sort == "price_high_low":
        return lambda r: -r["effective_offer_price_cents"]
    return lambda r: -max(0, r["price_cents"] - r["effective_offer_price_cents"])


def offers_products(
    org_id: int,
    *,
    limit: int = 24,
    offset: int = 0,
    category: str | None = None,
    q: str | None = None,
    sort: str | None = None,
) -> tuple[list[dict], int]:
    """
    Active products linked to currently running promotions, priced with the
    first linked promotion. Returns (rows, total before paging).
    """
    now = utcnow()
    promotions = db.session.query(Promotion).filter(
        Promotion.org_id == org_id,
        Promotion.is_active.is_(True),
        Promotion.start_date <= now,
        Promotion.end_date >= now,
    ).order_by(Promotion.id.asc()).all()

    primary: dict[int, Promotion] = {}
    for promotion in promotions:
        for link in promotion.product_links:
            primary.setdefault(link.product_id, promotion)

    if not primary:
        return [], 0

    products = db.session.query(Product).filter(
        Product.org_id == org_id,
        Product.id.in_(list(primary)),
        Product.is_active.is_(True),
    ).all()

    rows = [_offer_row(p, primary[p.id]) for p in products]

    if category:
        rows = [r for r in rows if (r["category"] or "") == category]
    if q:
        needle = q.strip().lower()
        rows = [r for r in rows if needle in (r["name"] or "").lower() or needle in (r["brand"] or "").lower()]

    sort = (sort or "best_savings").lower()
    if sort not in OFFER_SORTS:
        sort = "best_savings"
    rows.sort(key=lambda r: r["product_id"])
    rows.sort(key=_sort_key(sort))

    total = len(rows)
    return rows[offset:offset + limit], total
