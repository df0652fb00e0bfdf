# Overview: Coupon codes: normalization, CRUD, status filters, checkout validation and demo seed.

from __future__ import annotations

import re
from datetime import datetime

from ..extensions import db
from ..models import Coupon
from .errors import ServiceError, not_found
from tiendapos.time_utils import utcnow


class CouponError(ServiceError):
    """Raised for coupon operation errors."""
    pass


COUPON_TYPES = ("PERCENTAGE", "FIXED_AMOUNT")
CODE_RE = re.compile(r"^[A-Z0-9]{8,12}$")
STATUS_FILTERS = ("active", "inactive", "scheduled", "expired")

# Demo coupons; codes are shorter than the 8-12 rule on purpose.
SEED_COUPONS = (
    {
        "code": "DESC10",
        "coupon_type": "PERCENTAGE",
        "value": 10,
        "start_date": datetime(2025, 1, 1),
        "end_date": datetime(2026, 1, 1),
        "min_purchase_cents": 50000,
        "max_discount_cents": 100000,
        "usage_limit": 5,
    },
    {
        "code": "FIJO50000",
        "coupon_type": "FIXED_AMOUNT",
        "value": 50000,
        "start_date": datetime(2025, 1, 1),
        "end_date": datetime(2026, 12, 31),
        "min_purchase_cents": 100000,
        "max_discount_cents": 50000,
        "usage_limit": 3,
    },
    {
        "code": "NAVIDAD",
        "coupon_type": "PERCENTAGE",
        "value": 20,
        "start_date": datetime(2025, 12, 1),
        "end_date": datetime(2025, 12, 31),
        "min_purchase_cents": 150000,
        "max_discount_cents": 200000,
        "usage_limit": 1,
    },
)


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def _validate_code(code: str) -> str:
    code = normalize_code(code)
    if not CODE_RE.match(code):
        raise CouponError("Code must be 8-12 uppercase letters or digits")
    return code


def _validate_value(coupon_type: str, value) -> None:
    if coupon_type not in COUPON_TYPES:
        raise CouponError(f"type must be one of: {', '.join(COUPON_TYPES)}")
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise CouponError("value must be a positive integer")
    if coupon_type == "PERCENTAGE" and value > 100:
        raise CouponError("Percentage value cannot exceed 100")


def _validate_dates(start_date, end_date) -> None:
    if start_date is None or end_date is None:
        raise CouponError("start_date and end_date are required")
    if end_date <= start_date:
        raise CouponError("end_date must be after start_date")


def _validate_optional_cents(data: dict) -> None:
    for field in ("min_purchase_cents", "max_discount_cents", "usage_limit"):
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise CouponError(f"{field} must be an integer >= 0")


def get_coupon_by_code(org_id: int, code: str) -> Coupon:
    coupon = db.session.query(Coupon).filter_by(org_id=org_id, code=normalize_code(code)).first()
    if not coupon:
        raise not_found(CouponError, "Coupon")
    return coupon


def list_coupons(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
) -> tuple[list[Coupon], int]:
    query = db.session.query(Coupon).filter(Coupon.org_id == org_id)
    now = utcnow()

    if search:
        query = query.filter(Coupon.code.like(f"%{normalize_code(search)}%"))

    if status:
        if status not in STATUS_FILTERS:
            raise CouponError(f"status must be one of: {', '.join(STATUS_FILTERS)}")
        if status == "active":
            query = query.filter(Coupon.is_active.is_(True), Coupon.start_date <= now, Coupon.end_date >= now)
        elif status == "inactive":
            query = query.filter(Coupon.is_active.is_(False))
        elif status == "scheduled":
            query = query.filter(Coupon.is_active.is_(True), Coupon.start_date > now)
        elif status == "expired":
            query = query.filter(Coupon.end_date < now)

    if date_from is not None:
        query = query.filter(Coupon.start_date >= date_from)
    if date_to is not None:
        query = query.filter(Coupon.end_date <= date_to)

    total = query.count()
    coupons = (
        query.order_by(Coupon.start_date.asc(), Coupon.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return coupons, total


def create_coupon(org_id: int, data: dict) -> Coupon:
    code = _validate_code(data.get("code"))
    coupon_type = data.get("coupon_type")
    _validate_value(coupon_type, data.get("value"))
    _validate_dates(data.get("start_date"), data.get("end_date"))
    _validate_optional_cents(data)

    if db.session.query(Coupon.id).filter_by(org_id=org_id, code=code).first():
        raise CouponError("Coupon code already exists", status_code=409)

    coupon = Coupon(
        org_id=org_id,
        code=code,
        coupon_type=coupon_type,
        value=data["value"],
        min_purchase_cents=data.get("min_purchase_cents"),
        max_discount_cents=data.get("max_discount_cents"),
        start_date=data["start_date"],
        end_date=data["end_date"],
        is_active=data.get("is_active", True),
        usage_limit=data.get("usage_limit"),
    )
    db.session.add(coupon)
    db.session.commit()
    return coupon


def update_coupon(org_id: int, code: str, data: dict) -> Coupon:
    """Partial update by code. A new code must pass the code rule and be free."""
    coupon = get_coupon_by_code(org_id, code)

    if "code" in data and normalize_code(data["code"]) != coupon.code:
        new_code = _validate_code(data["code"])
        if db.session.query(Coupon.id).filter_by(org_id=org_id, code=new_code).first():
            raise CouponError("Coupon code already exists", status_code=409)
        coupon.code = new_code

    coupon_type = data.get("coupon_type", coupon.coupon_type)
    value = data.get("value", coupon.value)
    if "coupon_type" in data or "value" in data:
        _validate_value(coupon_type, value)
        coupon.coupon_type = coupon_type
        coupon.value = value

    start_date = data.get("start_date", coupon.start_date)
    end_date = data.get("end_date", coupon.end_date)
    if "start_date" in data or "end_date" in data:
        _validate_dates(start_date, end_date)
        coupon.start_date = start_date
        coupon.end_date = end_date

    _validate_optional_cents(data)
    for field in ("min_purchase_cents", "max_discount_cents", "usage_limit", "is_active"):
        if field in data:
            setattr(coupon, field, data[field])

    db.session.commit()
    return coupon


def delete_coupon(org_id: int, code: str) -> None:
    coupon = get_coupon_by_code(org_id, code)
    db.session.delete(coupon)
    db.session.commit()


def calculate_discount(coupon: Coupon, subtotal_cents: int) -> int:
    """
    PERCENTAGE: floor(subtotal * value / 100); FIXED_AMOUNT: value.
    Then capped by max_discount_cents and by the subtotal.
    """
    if coupon.coupon_type == "PERCENTAGE":
        discount = subtotal_cents * coupon.value // 100
    else:
        discount = int(coupon.value)

    if coupon.max_discount_cents is not None:
        discount = min(discount, coupon.max_discount_cents)
    return min(discount, subtotal_cents)


def validate_coupon(org_id: int, code: str, subtotal_cents: int) -> dict:
    """
    Check a coupon at checkout.

    Raises:
        CouponError 404: unknown or inactive code
        CouponError 400: not started, expired, or below minimum purchase
    """
    if not isinstance(subtotal_cents, int) or isinstance(subtotal_cents, bool) or subtotal_cents < 0:
        raise CouponError("subtotal_cents must be an integer >= 0")

    coupon = db.session.query(Coupon).filter_by(
        org_id=org_id,
        code=normalize_code(code),
        is_active=True,
    ).first()
    if not coupon:
        raise CouponError("Coupon not found or inactive", status_code=404)

    now = utcnow()
    if coupon.start_date > now:
        raise CouponError("Coupon is not active yet")
    if coupon.end_date < now:
        raise CouponError("Coupon has expired")
    if coupon.min_purchase_cents is not None and subtotal_cents < coupon.min_purchase_cents:
        raise CouponError(f"Minimum purchase of {coupon.min_purchase_cents} cents required")

    discount = calculate_discount(coupon, subtotal_cents)

    return {
        "code": coupon.code,
        "discount_amount_cents": discount,
        "discount_type": coupon.coupon_type,
        "message": "Coupon applied",
    }


def seed_example_coupons(org_id: int) -> list[Coupon]:
    """Upsert the demo coupons by code. Idempotent."""
    coupons = []
    for spec in SEED_COUPONS:
        coupon = db.session.query(Coupon).filter_by(org_id=org_id, code=spec["code"]).first()
        if coupon is None:
            coupon = Coupon(org_id=org_id, code=spec["code"])
            db.session.add(coupon)
        for key, value in spec.items():
            setattr(coupon, key, value)
        coupon.is_active = True
        coupons.append(coupon)

    db.session.commit()
    return coupons
