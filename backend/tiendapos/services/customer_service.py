"""
Customer Service

MULTI-TENANT: Customers are scoped by org_id; email is unique per org.
Deleting a customer deactivates it (sales, returns and loyalty keep the
reference). total_purchases_cents / last_purchase_at are maintained by
sales_service, never by clients.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, Sale, Return
from ..validation import ConflictError
from .errors import ServiceError
from .tenant_service import require_in_org
from tiendapos.time_utils import utcnow


class CustomerError(ServiceError):
    """Raised for customer operation errors."""
    pass


CUSTOMER_MUTABLE_FIELDS = {"name", "email", "phone", "document_id", "birth_date", "address", "is_active"}


def get_customer(customer_id: int, org_id: int) -> Customer:
    return require_in_org(Customer, customer_id, org_id, CustomerError, "Customer")


def _ensure_unique_email(org_id: int, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    query = db.session.query(Customer.id).filter(
        Customer.org_id == org_id,
        db.func.lower(Customer.email) == email.lower(),
    )
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ConflictError("A customer with this email already exists")


def list_customers(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    is_active: bool | None = None,
) -> tuple[list[Customer], int]:
    query = db.session.query(Customer).filter(Customer.org_id == org_id)

    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(db.or_(
            db.func.lower(Customer.name).like(pattern),
            db.func.lower(Customer.email).like(pattern),
            Customer.phone.like(pattern),
        ))
    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))

    total = query.count()
    customers = (
        query.order_by(Customer.name.asc(), Customer.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return customers, total


def create_customer(*, org_id: int, patch: dict) -> Customer:
    if patch.get("email"):
        patch["email"] = patch["email"].lower()
    _ensure_unique_email(org_id, patch.get("email"))

    customer = Customer(org_id=org_id)
    for key, value in patch.items():
        if key in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, key, value)

    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(*, customer_id: int, org_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id, org_id)

    if patch.get("email"):
        patch["email"] = patch["email"].lower()
    _ensure_unique_email(org_id, patch.get("email"), exclude_id=customer.id)

    for key, value in patch.items():
        if key in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, key, value)
    customer.updated_at = utcnow()

    db.session.commit()
    return customer


def delete_customer(*, customer_id: int, org_id: int) -> Customer:
    customer = get_customer(customer_id, org_id)
    customer.is_active = False
    db.session.commit()
    return customer


def get_customer_history(customer_id: int, org_id: int, *, page: int = 1, limit: int = 20) -> dict:
    """Paginated sales and returns of one customer, newest first."""
    customer = get_customer(customer_id, org_id)

    sales_query = db.session.query(Sale).filter(Sale.org_id == org_id, Sale.customer_id == customer.id)
    returns_query = db.session.query(Return).filter(Return.org_id == org_id, Return.customer_id == customer.id)

    sales_total = sales_query.count()
    returns_total = returns_query.count()

    sales = (
        sales_query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit).limit(limit).all()
    )
    returns = (
        returns_query.order_by(Return.created_at.desc(), Return.id.desc())
        .offset((page - 1) * limit).limit(limit).all()
    )

    return {
        "customer": customer.to_dict(),
        "sales": [s.to_dict(include_items=False) for s in sales],
        "returns": [r.to_dict(include_items=False) for r in returns],
        "sales_total": sales_total,
        "returns_total": returns_total,
    }
