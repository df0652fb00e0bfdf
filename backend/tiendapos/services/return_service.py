"""
Return Service

Customer returns against a previous sale.

LIFECYCLE:
1. Create return (PENDING): lines are checked against the original sale
2. Approve / Reject
3. Complete: restore stock and, for CASH refunds with an open cash
   session, record a RETURN cash movement

Stock and cash effects are applied once, on the first transition to
COMPLETED; stock_restored_at marks it. Every creation and status change is
mirrored to the external sync webhook when one is configured.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Return, ReturnItem, Sale, SaleItem, Product, InventoryMovement, Customer, CashSession
from .concurrency import lock_for_update, run_with_retry
from .errors import ServiceError
from .tenant_service import require_in_org
from . import external_sync_service
from . import cash_service
from tiendapos.time_utils import utcnow


class ReturnError(ServiceError):
    """Raised for return operation errors."""
    pass


# =============================================================================
# RETURN STATUS CONSTANTS
# =============================================================================

RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_REJECTED = "REJECTED"
RETURN_STATUS_COMPLETED = "COMPLETED"

RETURN_STATUSES = (RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED, RETURN_STATUS_COMPLETED)
REFUND_METHODS = ("CASH", "CARD", "TRANSFER", "OTHER")

MAX_ITEMS = 50
MAX_ITEM_QUANTITY = 10000
MAX_REASON_LENGTH = 1000


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ReturnError("At least one item is required")
    if len(items) > MAX_ITEMS:
        raise ReturnError(f"A return may have at most {MAX_ITEMS} items")

    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ReturnError(f"items[{index}] must be an object")
        for field in ("original_sale_item_id", "product_id"):
            if not _is_int(item.get(field)):
                raise ReturnError(f"items[{index}].{field} is required")
        quantity = item.get("quantity")
        if not _is_int(quantity) or not 1 <= quantity <= MAX_ITEM_QUANTITY:
            raise ReturnError(f"items[{index}].quantity must be between 1 and {MAX_ITEM_QUANTITY}")
        unit_price = item.get("unit_price_cents")
        if not _is_int(unit_price) or unit_price < 0:
            raise ReturnError(f"items[{index}].unit_price_cents must be an integer >= 0")
        cleaned.append({
            "original_sale_item_id": item["original_sale_item_id"],
            "product_id": item["product_id"],
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "reason": (item.get("reason") or "").strip() or None,
        })
    return cleaned


def _already_returned(sale_item_id: int) -> int:
    """Quantity already returned for a sale line. Rejected returns count only if they restocked."""
    total = db.session.query(db.func.coalesce(db.func.sum(ReturnItem.quantity), 0)).join(
        Return, Return.id == ReturnItem.return_id
    ).filter(
        ReturnItem.original_sale_item_id == sale_item_id,
        db.or_(Return.status != RETURN_STATUS_REJECTED, Return.stock_restored_at.isnot(None)),
    ).scalar()
    return int(total or 0)


# =============================================================================
# RETURN CREATION
# =============================================================================

def create_return(
    *,
    org_id: int,
    user_id: int,
    original_sale_id: int,
    items,
    reason: str,
    refund_method: str = "CASH",
    customer_id: int | None = None,
) -> Return:
    """
    Create a return document (status: PENDING).

    Raises:
        ReturnError 404: sale or customer not in the organization
        ReturnError 400: line does not belong to the sale, product mismatch,
            quantity above what is still returnable
    """
    reason = (reason or "").strip()
    if not reason or len(reason) > MAX_REASON_LENGTH:
        raise ReturnError(f"reason is required (1-{MAX_REASON_LENGTH} characters)")

    refund_method = (refund_method or "CASH").upper()
    if refund_method not in REFUND_METHODS:
        raise ReturnError(f"refund_method must be one of: {', '.join(REFUND_METHODS)}")

    items = _validate_items(items)
    sale = require_in_org(Sale, original_sale_id, org_id, ReturnError, "Sale")
    if customer_id is not None:
        require_in_org(Customer, customer_id, org_id, ReturnError, "Customer")

    requested: dict[int, int] = {}
    for index, item in enumerate(items):
        sale_item = db.session.query(SaleItem).filter_by(id=item["original_sale_item_id"]).first()
        if sale_item is None or sale_item.sale_id != sale.id:
            raise ReturnError(f"items[{index}]: sale line does not belong to sale {sale.id}")
        if sale_item.product_id != item["product_id"]:
            raise ReturnError(f"items[{index}]: product does not match the sale line")

        requested[sale_item.id] = requested.get(sale_item.id, 0) + item["quantity"]
        returnable = sale_item.quantity - _already_returned(sale_item.id)
        if requested[sale_item.id] > returnable:
            raise ReturnError(
                f"items[{index}]: quantity exceeds returnable amount ({returnable} remaining)"
            )

    now = utcnow()
    return_doc = Return(
        org_id=org_id,
        original_sale_id=sale.id,
        customer_id=customer_id if customer_id is not None else sale.customer_id,
        status=RETURN_STATUS_PENDING,
        reason=reason,
        refund_method=refund_method,
        total_cents=sum(item["quantity"] * item["unit_price_cents"] for item in items),
        created_by_user_id=user_id,
        created_at=now,
        updated_at=now,
    )
    db.session.add(return_doc)
    db.session.flush()

    for item in items:
        db.session.add(ReturnItem(
            return_id=return_doc.id,
            original_sale_item_id=item["original_sale_item_id"],
            product_id=item["product_id"],
            quantity=item["quantity"],
            unit_price_cents=item["unit_price_cents"],
            line_total_cents=item["quantity"] * item["unit_price_cents"],
            reason=item["reason"],
        ))

    db.session.commit()

    external_sync_service.push_records("returns", [external_sync_service.return_created_record(return_doc)])
    return return_doc


def return_summary(return_doc: Return) -> dict:
    return {
        "total_items": len(return_doc.items),
        "total_quantity": sum(item.quantity for item in return_doc.items),
        "total_cents": return_doc.total_cents,
    }


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _complete(return_doc: Return, user_id: int) -> None:
    """Restore stock and record the cash refund. No commit."""
    now = utcnow()
    product_ids = sorted({item.product_id for item in return_doc.items})
    products = {
        p.id: p
        for p in lock_for_update(
            db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id)
        ).all()
    }

    for item in return_doc.items:
        product = products[item.product_id]
        product.stock_quantity += item.quantity
        product.updated_at = now
        db.session.add(InventoryMovement(
            org_id=return_doc.org_id,
            product_id=product.id,
            movement_type="RETURN",
            quantity_delta=item.quantity,
            reason=f"Return #{return_doc.id}",
            reference_type="RETURN",
            reference_id=return_doc.id,
            created_by_user_id=user_id,
            created_at=now,
        ))

    return_doc.stock_restored_at = now

    if return_doc.refund_method == "CASH":
        session = lock_for_update(
            db.session.query(CashSession).filter_by(org_id=return_doc.org_id, status="OPEN")
        ).first()
        if session is not None:
            cash_service.add_return_movement(session, return_doc, user_id)


def update_status(*, return_id: int, org_id: int, user_id: int, status: str, notes: str | None = None) -> Return:
    """
    Move a return to a new status.

    Completion side effects run inside the same transaction as the status
    change, and only the first time the return reaches COMPLETED.
    """
    status = (status or "").upper()
    if status not in RETURN_STATUSES:
        raise ReturnError(f"status must be one of: {', '.join(RETURN_STATUSES)}")

    require_in_org(Return, return_id, org_id, ReturnError, "Return")

    def _op():
        return_doc = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
        if return_doc.status == RETURN_STATUS_COMPLETED and status != RETURN_STATUS_COMPLETED:
            db.session.rollback()
            raise ReturnError("Completed returns cannot change status")

        if status == RETURN_STATUS_COMPLETED and return_doc.stock_restored_at is None:
            _complete(return_doc, user_id)

        return_doc.status = status
        if notes is not None:
            return_doc.notes = notes.strip() or None
        return_doc.updated_by_user_id = user_id
        return_doc.updated_at = utcnow()
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)

    if status == RETURN_STATUS_COMPLETED:
        current_app.logger.info("Return %s completed (org %s)", return_doc.id, org_id)

    external_sync_service.push_records("returns", [external_sync_service.return_status_record(return_doc)])
    return return_doc


def delete_return(*, return_id: int, org_id: int) -> None:
    return_doc = require_in_org(Return, return_id, org_id, ReturnError, "Return")
    if return_doc.status != RETURN_STATUS_PENDING or return_doc.stock_restored_at is not None:
        raise ReturnError("Only pending returns can be deleted")
    db.session.delete(return_doc)
    db.session.commit()


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int, org_id: int) -> Return:
    return require_in_org(Return, return_id, org_id, ReturnError, "Return")


def list_returns(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    start_date=None,
    end_date=None,
    customer_id: int | None = None,
    status: str | None = None,
    original_sale_id: int | None = None,
) -> tuple[list[Return], int]:
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ReturnError("start_date must be before end_date")

    query = db.session.query(Return).filter(Return.org_id == org_id)
    if start_date is not None:
        query = query.filter(Return.created_at >= start_date)
    if end_date is not None:
        query = query.filter(Return.created_at <= end_date)
    if customer_id is not None:
        query = query.filter(Return.customer_id == customer_id)
    if status:
        query = query.filter(Return.status == status.upper())
    if original_sale_id is not None:
        query = query.filter(Return.original_sale_id == original_sale_id)

    total = query.count()
    returns = (
        query.order_by(Return.created_at.desc(), Return.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return returns, total
