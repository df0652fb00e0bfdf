"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

Every request is scoped to a tenant (organization). IDs arriving from
client input are checked against g.org_id before use, and cross-tenant
lookups are logged as security events.

SECURITY INVARIANTS:
1. Every authenticated non-developer request has g.org_id set
2. Row IDs from client input are validated against g.org_id
3. A row in another org is reported as "not found", never as forbidden
4. Cross-tenant access attempts are logged as CROSS_TENANT_ACCESS_DENIED

USAGE:
    from tiendapos.services.tenant_service import require_in_org

    session = require_in_org(CashSession, session_id, g.org_id, CashError, "Cash session")
"""

from flask import g, has_request_context, request
from ..extensions import db
from ..models import Store
from .errors import not_found
from .permission_service import log_security_event


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    status_code = 404


def require_in_org(model, row_id, org_id: int, error_cls, label: str):
    """
    Load model row row_id and check it belongs to org_id.

    Raises error_cls (404) when the row is missing or owned by another
    organization; the latter is also logged.
    """
    row = db.session.query(model).filter_by(id=row_id).first() if row_id is not None else None

    if row is None:
        raise not_found(error_cls, label)

    if row.org_id != org_id:
        _log_cross_tenant_attempt(
            f"{model.__name__} {row_id} belongs to org {row.org_id}, not {org_id}",
            org_id=org_id,
        )
        raise not_found(error_cls, label)

    return row


def require_store_in_org(store_id: int, org_id: int) -> Store:
    """
    Validate that a store belongs to the specified organization.

    Raises TenantAccessError("Store not found") if it doesn't exist or
    belongs to a different org.
    """
    store = db.session.query(Store).filter_by(id=store_id).first()

    if not store:
        _log_cross_tenant_attempt(f"Store {store_id} not found", org_id=org_id)
        raise TenantAccessError("Store not found")

    if store.org_id != org_id:
        _log_cross_tenant_attempt(
            f"Store {store_id} belongs to org {store.org_id}, not {org_id}",
            org_id=org_id,
            attempted_store_id=store_id
        )
        raise TenantAccessError("Store not found")

    return store


def get_org_stores(org_id: int) -> list[Store]:
    return db.session.query(Store).filter_by(org_id=org_id).order_by(Store.name).all()


def _log_cross_tenant_attempt(
    reason: str,
    org_id: int | None = None,
    attempted_store_id: int | None = None
) -> None:
    if not has_request_context():
        return

    user = getattr(g, 'current_user', None)

    log_security_event(
        user_id=user.id if user is not None else None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=request.path,
        action=request.method,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        org_id=org_id,
        store_id=attempted_store_id
    )
