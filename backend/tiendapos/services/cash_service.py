# Overview: Cash register sessions, signed cash movements, counts, discrepancies and CSV export.

"""
Cash Register Service

LIFECYCLE:
1. open_session: one OPEN session per organization, with an opening float
2. record_movement / add_sale_movement / add_return_movement while OPEN
3. close_session: counted cash, optional denomination counts, discrepancy

BALANCE: opening_amount_cents + sum(movement.amount_cents). Movement signs:
- IN, OUT, SALE: amount >= 0 (OUT is recorded as entered)
- RETURN: amount <= 0
- ADJUSTMENT: amount != 0, never pushing the balance below zero

DISCREPANCY: only computed when the operator provides the system expected
amount at close. Otherwise the computed balance is stored in
computed_expected_cents for reference and discrepancy_cents stays null.
"""

from __future__ import annotations

import csv
import io

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashSession, CashMovement, CashCount, CashDiscrepancy, User
from .concurrency import lock_for_update, commit_with_retry
from .errors import ServiceError
from .tenant_service import require_in_org
from tiendapos.time_utils import utcnow, to_utc_z


class CashError(ServiceError):
    """Raised for cash register operation errors."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

SESSION_STATUS_OPEN = "OPEN"
SESSION_STATUS_CLOSED = "CLOSED"

MOVEMENT_TYPES = ("IN", "OUT", "SALE", "RETURN", "ADJUSTMENT")
DISCREPANCY_TYPES = ("SHORTAGE", "OVERAGE")

ORDER_COLUMNS = {
    "date": CashMovement.created_at,
    "amount": CashMovement.amount_cents,
    "type": CashMovement.movement_type,
}

CSV_HEADER = ["Fecha", "Tipo", "Monto", "Motivo", "Usuario", "Referencia"]


# =============================================================================
# SESSIONS
# =============================================================================

def get_open_session(org_id: int) -> CashSession | None:
    return db.session.query(CashSession).filter_by(
        org_id=org_id,
        status=SESSION_STATUS_OPEN
    ).order_by(CashSession.opened_at.desc(), CashSession.id.desc()).first()


def get_session(session_id: int, org_id: int) -> CashSession:
    return require_in_org(CashSession, session_id, org_id, CashError, "Cash session")


def session_balance(session: CashSession) -> int:
    moved = db.session.query(
        db.func.coalesce(db.func.sum(CashMovement.amount_cents), 0)
    ).filter(CashMovement.session_id == session.id).scalar()
    return session.opening_amount_cents + int(moved or 0)


def open_session(
    *,
    org_id: int,
    user_id: int,
    opening_amount_cents: int,
    notes: str | None = None,
    store_id: int | None = None,
) -> CashSession:
    if opening_amount_cents is None or opening_amount_cents < 0:
        raise CashError("opening_amount_cents must be >= 0")

    existing = get_open_session(org_id)
    if existing:
        raise CashError(f"A cash session is already open (session {existing.id})")

    session = CashSession(
        org_id=org_id,
        store_id=store_id,
        status=SESSION_STATUS_OPEN,
        opening_amount_cents=opening_amount_cents,
        opened_by_user_id=user_id,
        opened_at=utcnow(),
        notes=notes,
    )
    db.session.add(session)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise CashError("A cash session is already open")

    current_app.logger.info("Cash session %s opened in org %s", session.id, org_id)
    return session


def _build_counts(session_id: int, counts: list) -> list[CashCount]:
    rows = []
    for entry in counts or []:
        if not isinstance(entry, dict):
            raise CashError("Each count must be an object")
        denomination = entry.get("denomination_cents")
        quantity = entry.get("quantity")
        if not isinstance(denomination, int) or isinstance(denomination, bool) or denomination < 0:
            raise CashError("denomination_cents must be an integer >= 0")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise CashError("quantity must be an integer >= 0")
        rows.append(CashCount(
            session_id=session_id,
            denomination_cents=denomination,
            quantity=quantity,
            total_cents=denomination * quantity,
        ))
    return rows


def close_session(
    *,
    org_id: int,
    user_id: int,
    closing_amount_cents: int,
    system_expected_cents: int | None = None,
    notes: str | None = None,
    counts: list | None = None,
) -> CashSession:
    """
    Close the organization's open session under a row lock.

    Raises CashError (400) when no session is open.
    """
    if closing_amount_cents is None or closing_amount_cents < 0:
        raise CashError("closing_amount_cents must be >= 0")

    session = lock_for_update(
        db.session.query(CashSession).filter_by(org_id=org_id, status=SESSION_STATUS_OPEN)
    ).first()
    if not session:
        raise CashError("No open cash session")

    count_rows = _build_counts(session.id, counts)

    session.status = SESSION_STATUS_CLOSED
    session.closing_amount_cents = closing_amount_cents
    session.closed_by_user_id = user_id
    session.closed_at = utcnow()
    if notes is not None:
        session.notes = notes

    if system_expected_cents is not None:
        session.system_expected_cents = system_expected_cents
        session.discrepancy_cents = closing_amount_cents - system_expected_cents
    else:
        session.computed_expected_cents = session_balance(session)
        session.discrepancy_cents = None

    for row in count_rows:
        db.session.add(row)

    commit_with_retry()

    current_app.logger.info(
        "Cash session %s closed in org %s (discrepancy=%s)",
        session.id, org_id, session.discrepancy_cents
    )
    return session


def replace_counts(session_id: int, org_id: int, counts: list) -> CashSession:
    """Delete the session's counts and insert the given ones."""
    session = get_session(session_id, org_id)
    rows = _build_counts(session.id, counts)

    db.session.query(CashCount).filter_by(session_id=session.id).delete(synchronize_session=False)
    for row in rows:
        db.session.add(row)
    db.session.commit()
    db.session.refresh(session)
    return session


def list_sessions(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    date_from=None,
    date_to=None,
    user_id: int | None = None,
) -> tuple[list[CashSession], int]:
    query = db.session.query(CashSession).filter(CashSession.org_id == org_id)

    if status and status.lower() != "all":
        query = query.filter(CashSession.status == status.upper())
    if date_from is not None:
        query = query.filter(CashSession.opened_at >= date_from)
    if date_to is not None:
        query = query.filter(CashSession.opened_at <= date_to)
    if user_id is not None:
        query = query.filter(db.or_(
            CashSession.opened_by_user_id == user_id,
            CashSession.closed_by_user_id == user_id,
        ))

    total = query.count()
    sessions = (
        query.order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return sessions, total


# =============================================================================
# MOVEMENTS
# =============================================================================

def _validate_amount(movement_type: str, amount_cents: int) -> None:
    if movement_type in ("IN", "OUT", "SALE") and amount_cents < 0:
        raise CashError(f"{movement_type} movements require amount_cents >= 0")
    if movement_type == "RETURN" and amount_cents > 0:
        raise CashError("RETURN movements require amount_cents <= 0")
    if movement_type == "ADJUSTMENT" and amount_cents == 0:
        raise CashError("ADJUSTMENT movements require a non-zero amount_cents")


def record_movement(
    *,
    org_id: int,
    user_id: int,
    session_id: int,
    movement_type: str,
    amount_cents: int,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id=None,
) -> CashMovement:
    """
    Record a movement in an OPEN session of the organization.

    Raises CashError "Invalid or closed session" when the session is missing,
    in another org, or closed.
    """
    movement_type = (movement_type or "").upper()
    if movement_type not in MOVEMENT_TYPES:
        raise CashError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool):
        raise CashError("amount_cents must be an integer")

    _validate_amount(movement_type, amount_cents)

    session = lock_for_update(
        db.session.query(CashSession).filter_by(id=session_id, org_id=org_id)
    ).first()
    if not session or session.status != SESSION_STATUS_OPEN:
        raise CashError("Invalid or closed session")

    if movement_type == "ADJUSTMENT" and amount_cents < 0:
        if session_balance(session) + amount_cents < 0:
            raise CashError("Adjustment would make the cash balance negative")

    movement = _add_movement(
        session=session,
        user_id=user_id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.session.commit()
    return movement


def _add_movement(
    *,
    session: CashSession,
    user_id: int,
    movement_type: str,
    amount_cents: int,
    reason: str | None,
    reference_type: str | None,
    reference_id,
) -> CashMovement:
    movement = CashMovement(
        org_id=session.org_id,
        session_id=session.id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        reason=(reason or "").strip() or None,
        reference_type=reference_type.upper() if reference_type else None,
        reference_id=str(reference_id) if reference_id is not None else None,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def add_sale_movement(session: CashSession, sale, user_id: int) -> CashMovement:
    """SALE movement of +total inside the caller's transaction (no commit)."""
    return _add_movement(
        session=session,
        user_id=user_id,
        movement_type="SALE",
        amount_cents=sale.total_cents,
        reason=f"Venta #{sale.id}",
        reference_type="SALE",
        reference_id=sale.id,
    )


def add_return_movement(session: CashSession, return_doc, user_id: int) -> CashMovement:
    """RETURN movement of -|total| inside the caller's transaction (no commit)."""
    return _add_movement(
        session=session,
        user_id=user_id,
        movement_type="RETURN",
        amount_cents=-abs(return_doc.total_cents),
        reason=f"Devolución #{return_doc.id}",
        reference_type="RETURN",
        reference_id=return_doc.id,
    )


def _movements_query(org_id: int, filters: dict):
    query = db.session.query(CashMovement).filter(CashMovement.org_id == org_id)

    session_id = filters.get("session_id")
    if session_id is not None:
        get_session(session_id, org_id)
        query = query.filter(CashMovement.session_id == session_id)

    movement_type = filters.get("type")
    if movement_type and movement_type.lower() != "all":
        query = query.filter(CashMovement.movement_type == movement_type.upper())

    reference_type = filters.get("reference_type")
    if reference_type:
        query = query.filter(CashMovement.reference_type == reference_type.upper())

    if filters.get("from") is not None:
        query = query.filter(CashMovement.created_at >= filters["from"])
    if filters.get("to") is not None:
        query = query.filter(CashMovement.created_at <= filters["to"])

    if filters.get("amount_min") is not None:
        query = query.filter(CashMovement.amount_cents >= filters["amount_min"])
    if filters.get("amount_max") is not None:
        query = query.filter(CashMovement.amount_cents <= filters["amount_max"])

    user_id = filters.get("user_id")
    if user_id not in (None, "", "all"):
        query = query.filter(CashMovement.created_by_user_id == int(user_id))

    search = filters.get("search")
    if search:
        query = query.filter(db.func.lower(CashMovement.reason).like(f"%{search.strip().lower()}%"))

    order_by = filters.get("order_by") or "date"
    if order_by not in ORDER_COLUMNS:
        raise CashError("order_by must be one of: date, amount, type")
    order_dir = (filters.get("order_dir") or "desc").lower()
    if order_dir not in ("asc", "desc"):
        raise CashError("order_dir must be asc or desc")

    column = ORDER_COLUMNS[order_by]
    if order_dir == "asc":
        query = query.order_by(column.asc(), CashMovement.id.asc())
    else:
        query = query.order_by(column.desc(), CashMovement.id.desc())

    return query


def list_movements(org_id: int, filters: dict, *, page: int = 1, limit: int = 20) -> tuple[list[CashMovement], int]:
    query = _movements_query(org_id, filters)
    total = query.count()
    movements = query.offset((page - 1) * limit).limit(limit).all()
    return movements, total


def _format_amount(amount_cents: int) -> str:
    sign = "-" if amount_cents < 0 else ""
    return f"{sign}{abs(amount_cents) // 100}.{abs(amount_cents) % 100:02d}"


def _user_label(user: User | None) -> str:
    if user is None:
        return "-"
    return user.username or user.email or "-"


def export_movements_csv(org_id: int, filters: dict) -> str:
    """
    Render filtered movements as CSV: UTF-8 BOM, every field quoted,
    rows separated by a bare newline.
    """
    movements = _movements_query(org_id, filters).all()

    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)

    for m in movements:
        reference = f"{m.reference_type}: {m.reference_id}" if m.reference_type and m.reference_id else "-"
        writer.writerow([
            to_utc_z(m.created_at),
            m.movement_type,
            _format_amount(m.amount_cents),
            m.reason or "-",
            _user_label(m.created_by),
            reference,
        ])

    body = output.getvalue()
    if body.endswith("\n"):
        body = body[:-1]
    return "\ufeff" + body


# =============================================================================
# DISCREPANCIES
# =============================================================================

def report_discrepancy(
    *,
    org_id: int,
    user_id: int,
    session_id: int,
    discrepancy_type: str,
    amount_cents: int,
    explanation: str | None = None,
) -> CashDiscrepancy:
    discrepancy_type = (discrepancy_type or "").upper()
    if discrepancy_type not in DISCREPANCY_TYPES:
        raise CashError("type must be SHORTAGE or OVERAGE")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents < 0:
        raise CashError("amount_cents must be an integer >= 0")

    session = get_session(session_id, org_id)

    discrepancy = CashDiscrepancy(
        org_id=org_id,
        session_id=session.id,
        discrepancy_type=discrepancy_type,
        amount_cents=amount_cents,
        explanation=(explanation or "").strip() or None,
        reported_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(discrepancy)
    db.session.commit()
    return discrepancy
