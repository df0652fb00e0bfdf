# backend/tiendapos/routes/system.py
"""
System health and version endpoints.

/health checks the database, the session table and the role/permission
seed. Any unhealthy check turns the response into a 503; degraded checks
still answer 200.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError
from ..extensions import db
from ..models import Organization, User, Role, Permission, SessionToken
from tiendapos.time_utils import utcnow

API_VERSION = "1.0.0"

system_bp = Blueprint("system", __name__)


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "organizations": db.session.query(Organization).count(),
            "users": db.session.query(User).count(),
            "roles": db.session.query(Role).count(),
            "permissions": db.session.query(Permission).count(),
        }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        active_sessions = db.session.query(SessionToken).filter(SessionToken.is_revoked.is_(False)).count()
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(False)
        ).count()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            }
        }
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Session service error"}


def check_auth_service_health() -> dict:
    """Degraded when some org lacks a default role or permissions were never seeded."""
    start_time = time.time()
    try:
        permission_count = db.session.query(Permission).count()
        role_names = {name for (name,) in db.session.query(Role.name).distinct().all()}
        missing_roles = [name for name in ("admin", "manager", "cashier") if name not in role_names]

        details = {
            "permissions_initialized": permission_count > 0,
            "permission_count": permission_count,
        }
        if missing_roles or permission_count == 0:
            warning = f"Missing roles: {', '.join(missing_roles)}" if missing_roles else "Permissions not initialized"
            return {"status": "degraded", "latency_ms": _elapsed_ms(start_time), "warning": warning, "details": details}

        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Auth service health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Auth service error"}


@system_bp.get("/health")
def health():
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "auth_service": check_auth_service_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info."""
    return {
        "version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "timestamp": utcnow().isoformat() + "Z",
    }
