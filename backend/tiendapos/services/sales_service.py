"""
Sales Service - single-call POS checkout

A sale is created complete: items, stock decrement, inventory movements,
customer aggregates and (for CASH) the cash movement are written in one
transaction. Loyalty points are awarded after the commit and never fail
the sale.

TOTALS:
- subtotal = sum(quantity * unit_price_cents)
- PERCENTAGE discount: floor(subtotal * discount / 100), discount <= 100
- FIXED_AMOUNT discount: min(discount, subtotal)
- total = subtotal - discount + tax
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Sale, SaleItem, Product, Customer, InventoryMovement, CustomerLoyalty, CashSession
from .concurrency import lock_for_update, run_with_retry
from .errors import ServiceError
from .tenant_service import require_in_org
from . import cash_service, loyalty_service
from tiendapos.time_utils import utcnow, start_of_day, start_of_week, start_of_month


class SaleError(ServiceError):
    """Raised for sale operation errors."""
    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        super().__init__(message, status_code)
        self.details = details or {}


PAYMENT_METHODS = ("CASH", "CARD", "TRANSFER", "OTHER")
DISCOUNT_TYPES = ("PERCENTAGE", "FIXED_AMOUNT")


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise SaleError("At least one item is required")

    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise SaleError(f"items[{index}] must be an object")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        unit_price = item.get("unit_price_cents")
        if not _is_int(product_id):
            raise SaleError(f"items[{index}].product_id is required")
        if not _is_int(quantity) or quantity < 1:
            raise SaleError(f"items[{index}].quantity must be an integer >= 1")
        if not _is_int(unit_price) or unit_price < 0:
            raise SaleError(f"items[{index}].unit_price_cents must be an integer >= 0")
        cleaned.append({"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price})
    return cleaned


def compute_discount(subtotal_cents: int, discount: int, discount_type: str) -> int:
    if discount_type == "PERCENTAGE":
        return subtotal_cents * discount // 100
    return min(discount, subtotal_cents)


def _check_stock(products: dict[int, Product], items: list[dict]) -> None:
    requested: dict[int, int] = {}
    for item in items:
        requested[item["product_id"]] = requested.get(item["product_id"], 0) + item["quantity"]

    insufficient = []
    for product_id, quantity in requested.items():
        product = products[product_id]
        if product.stock_quantity < quantity:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": quantity,
                "on_hand": product.stock_quantity,
            })

    if insufficient:
        raise SaleError("Insufficient stock", details={"items": insufficient})


def create_sale(
    *,
    org_id: int,
    user_id: int,
    items,
    customer_id: int | None = None,
    payment_method: str = "CASH",
    discount: int = 0,
    discount_type: str = "PERCENTAGE",
    tax_cents: int = 0,
    notes: str | None = None,
    store_id: int | None = None,
) -> Sale:
    """
    Create and settle a sale.

    Raises:
        SaleError 400: invalid input, no open cash session for CASH,
            insufficient stock
        SaleError 404: product or customer outside the org
    """
    items = _validate_items(items)

    payment_method = (payment_method or "CASH").upper()
    if payment_method not in PAYMENT_METHODS:
        raise SaleError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    discount_type = (discount_type or "PERCENTAGE").upper()
    if discount_type not in DISCOUNT_TYPES:
        raise SaleError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")
    if not _is_int(discount) or discount < 0:
        raise SaleError("discount must be an integer >= 0")
    if discount_type == "PERCENTAGE" and discount > 100:
        raise SaleError("Percentage discount cannot exceed 100")
    if not _is_int(tax_cents) or tax_cents < 0:
        raise SaleError("tax_cents must be an integer >= 0")

    if customer_id is not None:
        require_in_org(Customer, customer_id, org_id, SaleError, "Customer")

    product_ids = sorted({item["product_id"] for item in items})
    for product_id in product_ids:
        require_in_org(Product, product_id, org_id, SaleError, "Product")

    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()}
    _check_stock(products, items)

    if payment_method == "CASH" and cash_service.get_open_session(org_id) is None:
        raise SaleError("An open cash session is required for cash sales")

    def _op():
        locked = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id)
            ).all()
        }
        _check_stock(locked, items)

        cash_session = None
        if payment_method == "CASH":
            cash_session = lock_for_update(
                db.session.query(CashSession).filter_by(org_id=org_id, status="OPEN")
            ).first()
            if cash_session is None:
                raise SaleError("An open cash session is required for cash sales")

        subtotal = sum(item["quantity"] * item["unit_price_cents"] for item in items)
        discount_cents = compute_discount(subtotal, discount, discount_type)
        total = subtotal - discount_cents + tax_cents
        now = utcnow()

        sale = Sale(
            org_id=org_id,
            store_id=store_id,
            customer_id=customer_id,
            cash_session_id=cash_session.id if cash_session else None,
            payment_method=payment_method,
            status="COMPLETED",
            subtotal_cents=subtotal,
            discount_type=discount_type,
            discount_value=discount,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            total_cents=total,
            notes=notes,
            created_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for item in items:
            product = locked[item["product_id"]]
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                quantity=item["quantity"],
                unit_price_cents=item["unit_price_cents"],
                line_total_cents=item["quantity"] * item["unit_price_cents"],
            ))
            product.stock_quantity -= item["quantity"]
            product.updated_at = now
            db.session.add(InventoryMovement(
                org_id=org_id,
                product_id=product.id,
                movement_type="OUT",
                quantity_delta=-item["quantity"],
                reason=f"Sale #{sale.id}",
                reference_type="SALE",
                reference_id=sale.id,
                created_by_user_id=user_id,
                created_at=now,
            ))

        if customer_id is not None:
            customer = db.session.query(Customer).filter_by(id=customer_id).first()
            customer.total_purchases_cents = (customer.total_purchases_cents or 0) + total
            customer.last_purchase_at = now

        if cash_session is not None:
            cash_service.add_sale_movement(cash_session, sale, user_id)

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    if customer_id is not None:
        _award_loyalty_points(sale, user_id)

    return sale


def _award_loyalty_points(sale: Sale, user_id: int) -> None:
    enrollments = db.session.query(CustomerLoyalty).filter_by(
        org_id=sale.org_id,
        customer_id=sale.customer_id,
        is_active=True,
    ).all()

    for enrollment in enrollments:
        try:
            loyalty_service.add_points_for_purchase(
                org_id=sale.org_id,
                customer_id=sale.customer_id,
                program_id=enrollment.program_id,
                amount_cents=sale.total_cents,
                sale_id=sale.id,
                user_id=user_id,
            )
        except (loyalty_service.LoyaltyError, SQLAlchemyError) as e:
            db.session.rollback()
            current_app.logger.warning(
                "Loyalty points not awarded for sale %s (program %s): %s",
                sale.id, enrollment.program_id, e
            )


def sale_summary(sale: Sale) -> dict:
    return {
        "subtotal_cents": sale.subtotal_cents,
        "discount_cents": sale.discount_cents,
        "discount_type": sale.discount_type,
        "tax_cents": sale.tax_cents,
        "total_cents": sale.total_cents,
        "item_count": len(sale.items),
        "total_quantity": sum(item.quantity for item in sale.items),
    }


def get_sale(sale_id: int, org_id: int) -> Sale:
    return require_in_org(Sale, sale_id, org_id, SaleError, "Sale")


def list_sales(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    start_date=None,
    end_date=None,
    customer_id: int | None = None,
    payment_method: str | None = None,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale).filter(Sale.org_id == org_id)

    if start_date is not None:
        query = query.filter(Sale.created_at >= start_date)
    if end_date is not None:
        query = query.filter(Sale.created_at <= end_date)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method.upper())

    total = query.count()
    sales = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return sales, total


# =============================================================================
# REPORTING
# =============================================================================

def _revenue_and_count(org_id: int, start, end) -> tuple[int, int]:
    revenue, count = db.session.query(
        db.func.coalesce(db.func.sum(Sale.total_cents), 0),
        db.func.count(Sale.id),
    ).filter(
        Sale.org_id == org_id,
        Sale.created_at >= start,
        Sale.created_at < end,
    ).one()
    return int(revenue or 0), int(count or 0)


def today_summary(org_id: int, now=None) -> dict:
    """Sales of the current UTC day, grouped by payment method."""
    now = now or utcnow()
    start = start_of_day(now.date())
    end = start + timedelta(days=1)

    revenue, count = _revenue_and_count(org_id, start, end)

    rows = db.session.query(
        Sale.payment_method,
        db.func.count(Sale.id),
        db.func.coalesce(db.func.sum(Sale.total_cents), 0),
    ).filter(
        Sale.org_id == org_id,
        Sale.created_at >= start,
        Sale.created_at < end,
    ).group_by(Sale.payment_method).order_by(Sale.payment_method).all()

    return {
        "date": start.date().isoformat(),
        "sales_count": count,
        "total_revenue_cents": revenue,
        "sales_by_payment_method": [
            {"payment_method": method, "count": int(n), "total_cents": int(total)}
            for method, n, total in rows
        ],
    }


def dashboard(org_id: int, now=None) -> dict:
    """Today / week (from Sunday) / month revenue plus the month's top 5 products."""
    now = now or utcnow()
    today = now.date()
    end = start_of_day(today) + timedelta(days=1)

    periods = {}
    for key, start in (
        ("today", start_of_day(today)),
        ("week", start_of_week(today)),
        ("month", start_of_month(today)),
    ):
        revenue, count = _revenue_and_count(org_id, start, end)
        periods[key] = {"revenue_cents": revenue, "transactions": count}

    top_rows = db.session.query(
        Product.id,
        Product.name,
        db.func.sum(SaleItem.quantity).label("quantity"),
        db.func.sum(SaleItem.line_total_cents).label("revenue"),
    ).join(SaleItem, SaleItem.product_id == Product.id).join(
        Sale, Sale.id == SaleItem.sale_id
    ).filter(
        Sale.org_id == org_id,
        Sale.created_at >= start_of_month(today),
        Sale.created_at < end,
    ).group_by(Product.id, Product.name).order_by(
        db.desc("quantity"), Product.id
    ).limit(5).all()

    periods["top_products"] = [
        {"product_id": pid, "name": name, "quantity": int(qty), "revenue_cents": int(rev)}
        for pid, name, qty, rev in top_rows
    ]
    return periods
