# Overview: Authentication, permission and developer guards for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


def bearer_token() -> str | None:
    """Token from "Authorization: Bearer <token>", or None."""
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def _log_denied(event_type: str, reason: str, *, user_id: int, action: str | None = None) -> None:
    permission_service.log_security_event(
        user_id=user_id,
        event_type=event_type,
        success=False,
        resource=request.path,
        action=action or request.method,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        org_id=getattr(g, "org_id", None),
        store_id=getattr(g, "store_id", None),
    )


def require_auth(f):
    """
    Resolve the bearer token and pin the tenant for the request.

    Sets g.current_user, g.org_id, g.store_id and g.session_context.
    g.org_id is None only for a developer that has not switched into an
    organization. Unknown, expired, idle or revoked tokens get 401.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        if context.org_id is None and not context.user.is_developer:
            _log_denied("TENANT_CONTEXT_MISSING", "Session missing org_id", user_id=context.user.id)
            return jsonify({"error": "Invalid session: missing tenant context"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.store_id = context.store_id
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str, *, tenant_required: bool = True):
    """
    Gate a route on one permission code. Must sit under @require_auth.

    Developers skip the permission check. With tenant_required they still
    need an organization selected, otherwise the response is 400.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if user.is_developer:
                if tenant_required and g.org_id is None:
                    return jsonify({"error": "Select an organization first"}), 400
                return f(*args, **kwargs)

            try:
                permission_service.require_permission(
                    user_id=user.id,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    org_id=g.org_id,
                    store_id=g.store_id,
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes: str):
    """Like require_permission, but one of several codes is enough."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.is_developer:
                if g.org_id is None:
                    return jsonify({"error": "Select an organization first"}), 400
                return f(*args, **kwargs)

            held = permission_service.get_user_permissions(user.id)
            if held.isdisjoint(permission_codes):
                wanted = ", ".join(permission_codes)
                _log_denied("PERMISSION_DENIED", f"Missing any of: {wanted}", user_id=user.id, action=f"ANY_OF:{wanted}")
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_codes),
                    "message": f"Requires any of: {wanted}",
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_developer(f):
    """Only developer (superadmin) accounts pass; others get 403 and a security event."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        if not user.is_developer:
            _log_denied("DEVELOPER_ACCESS_DENIED", "Developer access required", user_id=user.id)
            return jsonify({"error": "Developer access required"}), 403
        return f(*args, **kwargs)
    return decorated_function
