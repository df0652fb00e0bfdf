# Overview: Flask API routes for the cash register; parses input and returns JSON responses.

"""
Cash register routes.

A single OPEN session per organization. Movements are recorded against an
open session; the session list and CSV export are read-only views.
"""
from flask import Blueprint, request, jsonify, g, Response, current_app

from ..services import cash_service
from ..services.cash_service import CashError
from ..validation import (
    parse_pagination,
    pagination_dict,
    optional_datetime_arg,
    coerce_int,
    ValidationError,
)
from ..decorators import require_auth, require_permission
from ..time_utils import utcnow

cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _optional_int(args, key):
    raw = args.get(key)
    if raw in (None, ""):
        return None
    return coerce_int(raw, key)


def _movement_filters(args) -> dict:
    user_id = args.get("user_id")
    return {
        "session_id": _optional_int(args, "session_id"),
        "type": args.get("type"),
        "reference_type": args.get("reference_type"),
        "from": optional_datetime_arg(args, "from"),
        "to": optional_datetime_arg(args, "to"),
        "amount_min": _optional_int(args, "amount_min"),
        "amount_max": _optional_int(args, "amount_max"),
        "user_id": user_id if user_id in (None, "", "all") else coerce_int(user_id, "user_id"),
        "search": args.get("search"),
        "order_by": args.get("order_by"),
        "order_dir": args.get("order_dir"),
    }


# =============================================================================
# SESSION
# =============================================================================

@cash_bp.get("/session/current")
@require_auth
@require_permission("VIEW_CASH")
def current_session():
    session = cash_service.get_open_session(g.org_id)
    if not session:
        return jsonify({"session": None})
    data = session.to_dict(include_counts=True)
    data["current_balance_cents"] = cash_service.session_balance(session)
    return jsonify({"session": data})


@cash_bp.post("/session/open")
@require_auth
@require_permission("OPEN_CASH_SESSION")
def open_session():
    """
    Request body: {"opening_amount_cents": 10000, "notes": "..."}
    """
    data = request.get_json(silent=True) or {}
    try:
        session = cash_service.open_session(
            org_id=g.org_id,
            user_id=g.current_user.id,
            opening_amount_cents=coerce_int(data.get("opening_amount_cents"), "opening_amount_cents"),
            notes=data.get("notes"),
            store_id=g.store_id,
        )
    except (ValidationError, CashError) as e:
        return jsonify({"error": str(e)}), getattr(e, "status_code", 400)
    return jsonify({"session": session.to_dict()}), 201


@cash_bp.post("/session/close")
@require_auth
@require_permission("CLOSE_CASH_SESSION")
def close_session():
    """
    Request body:
    {
        "closing_amount_cents": 15230,
        "system_expected_cents": 15000,     // optional
        "notes": "...",
        "counts": [{"denomination_cents": 1000, "quantity": 12}]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        expected = data.get("system_expected_cents")
        session = cash_service.close_session(
            org_id=g.org_id,
            user_id=g.current_user.id,
            closing_amount_cents=coerce_int(data.get("closing_amount_cents"), "closing_amount_cents"),
            system_expected_cents=coerce_int(expected, "system_expected_cents") if expected is not None else None,
            notes=data.get("notes"),
            counts=data.get("counts"),
        )
    except (ValidationError, CashError) as e:
        return jsonify({"error": str(e)}), getattr(e, "status_code", 400)
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"session": session.to_dict(include_counts=True)})


@cash_bp.get("/sessions")
@require_auth
@require_permission("VIEW_CASH")
def list_sessions():
    """
    Query params:
    - status: OPEN | CLOSED | all
    - from, to: on opened_at
    - user_id: opened or closed by
    - page, limit (default 20, max 100)
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
        sessions, total = cash_service.list_sessions(
            g.org_id,
            page=page,
            limit=limit,
            status=request.args.get("status"),
            date_from=optional_datetime_arg(request.args, "from"),
            date_to=optional_datetime_arg(request.args, "to"),
            user_id=_optional_int(request.args, "user_id"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "sessions": [s.to_dict(include_movements=True, include_counts=True) for s in sessions],
        "pagination": pagination_dict(page, limit, total),
    })


@cash_bp.post("/sessions/<int:session_id>/counts")
@require_auth
@require_permission("RECONCILE_CASH")
def replace_counts(session_id: int):
    """Request body: {"counts": [{"denomination_cents": 500, "quantity": 3}]}"""
    data = request.get_json(silent=True) or {}
    try:
        session = cash_service.replace_counts(session_id, g.org_id, data.get("counts") or [])
    except CashError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"session": session.to_dict(include_counts=True)})


# =============================================================================
# MOVEMENTS
# =============================================================================

@cash_bp.post("/movements")
@require_auth
@require_permission("RECORD_CASH_MOVEMENT")
def record_movement():
    """
    Request body:
    {
        "session_id": 3,
        "type": "OUT",                  // IN | OUT | SALE | RETURN | ADJUSTMENT
        "amount_cents": 2500,
        "reason": "Courier",
        "reference_type": "MANUAL",     // optional
        "reference_id": "A-12"          // optional
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        movement = cash_service.record_movement(
            org_id=g.org_id,
            user_id=g.current_user.id,
            session_id=coerce_int(data.get("session_id"), "session_id"),
            movement_type=data.get("type"),
            amount_cents=coerce_int(data.get("amount_cents"), "amount_cents"),
            reason=data.get("reason"),
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
        )
    except (ValidationError, CashError) as e:
        return jsonify({"error": str(e)}), getattr(e, "status_code", 400)
    return jsonify({"movement": movement.to_dict(include_user=True)}), 201


@cash_bp.get("/movements")
@require_auth
@require_permission("VIEW_CASH")
def list_movements():
    """
    Query params: session_id, type, reference_type, from, to, amount_min,
    amount_max, user_id ("all" = any), search, order_by (date|amount|type),
    order_dir (asc|desc), page, limit (1..200), include=user
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=20, max_limit=200)
        movements, total = cash_service.list_movements(
            g.org_id, _movement_filters(request.args), page=page, limit=limit
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CashError as e:
        return jsonify({"error": str(e)}), e.status_code

    include_user = "user" in (request.args.get("include") or "").split(",")
    return jsonify({
        "movements": [m.to_dict(include_user=include_user) for m in movements],
        "pagination": pagination_dict(page, limit, total),
    })


@cash_bp.get("/movements/export")
@require_auth
@require_permission("VIEW_CASH")
def export_movements():
    """Same filters as the list, without pagination. Returns text/csv."""
    try:
        body = cash_service.export_movements_csv(g.org_id, _movement_filters(request.args))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CashError as e:
        return jsonify({"error": str(e)}), e.status_code

    filename = f"movimientos_{utcnow().date().isoformat()}.csv"
    return Response(
        body,
        content_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )


# =============================================================================
# DISCREPANCIES
# =============================================================================

@cash_bp.post("/discrepancies")
@require_auth
@require_permission("RECONCILE_CASH")
def report_discrepancy():
    """Request body: {"session_id": 3, "type": "SHORTAGE", "amount_cents": 500, "explanation": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        discrepancy = cash_service.report_discrepancy(
            org_id=g.org_id,
            user_id=g.current_user.id,
            session_id=coerce_int(data.get("session_id"), "session_id"),
            discrepancy_type=data.get("type"),
            amount_cents=data.get("amount_cents"),
            explanation=data.get("explanation"),
        )
    except (ValidationError, CashError) as e:
        return jsonify({"error": str(e)}), getattr(e, "status_code", 400)
    return jsonify({"discrepancy": discrepancy.to_dict()}), 201
