# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes for users, roles, permissions and the organization profile.

All endpoints require authentication and an admin permission. Every lookup
is scoped to g.org_id; developers without an organization selected are
asked to switch first.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import User, Role, Permission, UserPermissionOverride, SecurityEvent
from ..services import auth_service, session_service, permission_service, organization_service
from ..services.auth_service import PasswordValidationError
from ..services.organization_service import OrganizationError
from ..decorators import require_auth, require_permission, require_any_permission
from ..permissions import DEFAULT_ROLE_PERMISSIONS
from ..validation import ValidationError, coerce_bool, parse_pagination, pagination_dict

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _get_user_in_current_org(user_id: int) -> User | None:
    return db.session.query(User).filter_by(id=user_id, org_id=g.org_id).first()


def _audit(event_type: str, action: str, reason: str | None = None) -> None:
    permission_service.log_security_event(
        user_id=g.current_user.id,
        event_type=event_type,
        success=True,
        resource=request.path,
        action=action,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        org_id=g.org_id,
        store_id=g.store_id,
    )


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@admin_bp.get("/users")
@require_auth
@require_permission("VIEW_USERS")
def list_users():
    """
    List the organization's users with their roles.

    Query params:
    - include_inactive: bool (default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    query = db.session.query(User).filter(User.org_id == g.org_id)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))

    users = [u.to_dict() for u in query.order_by(User.username).all()]
    return jsonify({"users": users, "count": len(users)})


@admin_bp.get("/users/<int:user_id>")
@require_auth
@require_permission("VIEW_USERS")
def get_user(user_id: int):
    user = _get_user_in_current_org(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    data = user.to_dict()
    data["permissions"] = sorted(permission_service.get_user_permissions(user.id))
    overrides = db.session.query(UserPermissionOverride).filter_by(user_id=user.id).all()
    data["permission_overrides"] = [o.to_dict() for o in overrides]
    return jsonify({"user": data})


@admin_bp.post("/users")
@require_auth
@require_permission("MANAGE_USERS")
def create_user():
    """
    Create a user in the current organization.

    Request body:
    - username, email, password: str (required)
    - full_name: str (optional)
    - store_id: int (optional, must be in the org)
    - role: str (optional) - role to assign
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        email = data.get("email")
        password = data.get("password")
        role_name = data.get("role")

        if not all([username, email, password]):
            return jsonify({"error": "username, email, and password required"}), 400

        user = auth_service.create_user(
            username,
            email,
            password,
            org_id=g.org_id,
            store_id=data.get("store_id"),
            full_name=data.get("full_name"),
        )

        if role_name:
            try:
                auth_service.assign_role(user.id, role_name)
            except ValueError as e:
                return jsonify({
                    "user": user.to_dict(),
                    "warning": f"User created but role assignment failed: {e}"
                }), 201

        _audit("USER_CREATED", f"Created user: {username}")

        return jsonify({"user": user.to_dict(), "message": "User created successfully"}), 201

    except (PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/users/<int:user_id>/deactivate")
@require_auth
@require_permission("MANAGE_USERS")
def deactivate_user(user_id: int):
    """Deactivate a user and revoke all of their sessions."""
    user = _get_user_in_current_org(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404
    if not user.is_active:
        return jsonify({"error": "User is already deactivated"}), 400
    if user.id == g.current_user.id:
        return jsonify({"error": "Cannot deactivate your own account"}), 400

    user.is_active = False
    revoked_count = session_service.revoke_all_user_sessions(
        user_id=user.id,
        reason="Account deactivated by admin"
    )
    db.session.commit()

    _audit("USER_DEACTIVATED", f"Deactivated user: {user.username}", f"Revoked {revoked_count} sessions")
    return jsonify({"user": user.to_dict(), "sessions_revoked": revoked_count})


@admin_bp.post("/users/<int:user_id>/roles")
@require_auth
@require_permission("MANAGE_USERS")
def assign_role(user_id: int):
    """Request body: {"role": "manager"}"""
    user = _get_user_in_current_org(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    data = request.get_json(silent=True) or {}
    role_name = data.get("role") or data.get("role_name")
    if not role_name:
        return jsonify({"error": "role is required"}), 400

    try:
        auth_service.assign_role(user.id, role_name)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    _audit("ROLE_ASSIGNED", f"Assigned {role_name} to {user.username}")
    return jsonify({"user": user.to_dict(), "message": "Role assigned"})


# =============================================================================
# ROLES & PERMISSIONS
# =============================================================================

@admin_bp.get("/roles")
@require_auth
@require_permission("VIEW_USERS")
def list_roles():
    roles = db.session.query(Role).filter_by(org_id=g.org_id).order_by(Role.name).all()
    result = []
    for role in roles:
        data = role.to_dict(include_permissions=True)
        data["default_permissions"] = DEFAULT_ROLE_PERMISSIONS.get(role.name, [])
        result.append(data)
    return jsonify({"roles": result})


@admin_bp.post("/roles/<role_name>/permissions")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def grant_role_permission(role_name: str):
    """Request body: {"permission_code": "MANAGE_COUPONS"}"""
    data = request.get_json(silent=True) or {}
    code = data.get("permission_code")
    if not code:
        return jsonify({"error": "permission_code is required"}), 400

    try:
        permission_service.grant_permission_to_role(g.org_id, role_name, code)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    _audit("ROLE_PERMISSION_GRANTED", f"{role_name}:{code}")
    return jsonify({"message": f"Granted {code} to {role_name}"}), 201


@admin_bp.delete("/roles/<role_name>/permissions/<permission_code>")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def revoke_role_permission(role_name: str, permission_code: str):
    try:
        removed = permission_service.revoke_permission_from_role(g.org_id, role_name, permission_code)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    if not removed:
        return jsonify({"error": "Role does not have this permission"}), 404

    _audit("ROLE_PERMISSION_REVOKED", f"{role_name}:{permission_code}")
    return jsonify({"message": f"Revoked {permission_code} from {role_name}"})


@admin_bp.get("/permissions")
@require_auth
@require_permission("VIEW_USERS")
def list_permissions():
    permissions = db.session.query(Permission).order_by(Permission.category, Permission.code).all()
    by_category: dict[str, list] = {}
    for perm in permissions:
        by_category.setdefault(perm.category, []).append(perm.to_dict())
    return jsonify({"permissions": [p.to_dict() for p in permissions], "by_category": by_category})


@admin_bp.post("/users/<int:user_id>/permission-overrides")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def grant_override(user_id: int):
    """Request body: {"permission_code": "...", "override_type": "GRANT"|"DENY", "reason": "..."}"""
    user = _get_user_in_current_org(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    data = request.get_json(silent=True) or {}
    try:
        override = permission_service.grant_permission_override(
            user_id=user.id,
            permission_code=data.get("permission_code"),
            granted_by_user_id=g.current_user.id,
            override_type=(data.get("override_type") or "GRANT").upper(),
            reason=data.get("reason"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    _audit("PERMISSION_OVERRIDE_SET", f"{override.override_type}:{override.permission_code} for {user.username}")
    return jsonify({"override": override.to_dict()}), 201


@admin_bp.delete("/users/<int:user_id>/permission-overrides/<permission_code>")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def revoke_override(user_id: int, permission_code: str):
    user = _get_user_in_current_org(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    override = permission_service.revoke_permission_override(
        user_id=user.id,
        permission_code=permission_code,
        revoked_by_user_id=g.current_user.id,
    )
    if not override:
        return jsonify({"error": "Override not found"}), 404

    _audit("PERMISSION_OVERRIDE_REVOKED", f"{permission_code} for {user.username}")
    return jsonify({"override": override.to_dict()})


# =============================================================================
# ORGANIZATION PROFILE
# =============================================================================

@admin_bp.get("/organizations/<int:org_id>")
@require_auth
@require_permission("MANAGE_ORGANIZATION", tenant_required=False)
def get_organization(org_id: int):
    if not g.current_user.is_developer and org_id != g.org_id:
        return jsonify({"error": "Organization not found"}), 404
    try:
        org = organization_service.get_organization(org_id)
    except OrganizationError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"organization": org.to_dict()})


@admin_bp.patch("/organizations/<int:org_id>")
@require_auth
@require_permission("MANAGE_ORGANIZATION", tenant_required=False)
def update_organization(org_id: int):
    """
    Update the organization profile.

    Request body (any of):
    - name, contact_email, phone, address, logo_url
    - subdomain: lower-case letters, digits and inner hyphens (max 63)
    - custom_domain: hostname, or null/"" to clear
    - plan, is_active: developers only

    Unknown fields are ignored. Returns 400 when nothing valid remains,
    409 when the subdomain or custom domain is taken.
    """
    is_developer = bool(g.current_user.is_developer)
    if not is_developer and org_id != g.org_id:
        return jsonify({"error": "Organization not found"}), 404

    try:
        data = request.get_json(silent=True)
        org = organization_service.update_organization(org_id, data, is_developer=is_developer)

        _audit("ORGANIZATION_UPDATED", f"Updated organization {org_id}")
        return jsonify({"organization": org.to_dict(), "message": "Organization updated"})

    except OrganizationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update organization")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT LOG
# =============================================================================

@admin_bp.get("/security-events")
@require_auth
@require_any_permission("MANAGE_USERS", "MANAGE_PERMISSIONS")
def list_security_events():
    """
    Newest-first security events for the current organization.

    Query: event_type?, success? (true|false), page, limit (max 200)
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=50, max_limit=200)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    query = db.session.query(SecurityEvent).filter(SecurityEvent.org_id == g.org_id)
    event_type = (request.args.get("event_type") or "").strip().upper()
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    if request.args.get("success") not in (None, ""):
        query = query.filter(SecurityEvent.success.is_(coerce_bool(request.args["success"])))

    total = query.count()
    events = (
        query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({
        "events": [event.to_dict() for event in events],
        "pagination": pagination_dict(page, limit, total),
    })
