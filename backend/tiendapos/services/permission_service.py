# Overview: RBAC resolution, permission enforcement and the security event log.

"""
Permission Checking and Security Event Logging

DESIGN PRINCIPLES:
- Fail closed: deny unless a role or GRANT override provides the code
- Log denials only (granted checks are not logged)
- Per-user overrides: DENY removes, GRANT adds; PROTECTED_PERMISSIONS
  can only come from roles
- Security events carry org_id/store_id for tenant-scoped auditing
"""

from ..extensions import db
from ..models import UserRole, Role, RolePermission, Permission, SecurityEvent, UserPermissionOverride
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, validate_permission_code
from tiendapos.time_utils import utcnow

PROTECTED_PERMISSIONS = {
    "SYSTEM_ADMIN",
    "MANAGE_PERMISSIONS",
}


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
    store_id: int | None = None
) -> SecurityEvent:
    """
    Append a row to security_events and commit.

    event_type examples: PERMISSION_DENIED, LOGIN_FAILED, LOGOUT,
    ROLE_ASSIGNED, USER_CREATED, ORGANIZATION_UPDATED,
    TENANT_CONTEXT_MISSING, CROSS_TENANT_ACCESS_DENIED.
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        store_id=store_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> set[str]:
    """Union of the user's role permissions, with active overrides applied."""
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    permission_codes: set[str] = {code for (code,) in rows}

    overrides = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        is_active=True,
    ).all()

    for override in overrides:
        if override.permission_code in PROTECTED_PERMISSIONS:
            continue
        if override.override_type == "GRANT":
            permission_codes.add(override.permission_code)
        elif override.override_type == "DENY":
            permission_codes.discard(override.permission_code)

    return permission_codes


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
    store_id: int | None = None
) -> None:
    """
    Raise PermissionDeniedError (after logging PERMISSION_DENIED) unless the
    user holds permission_code.

    Usage:
        require_permission(user.id, "CLOSE_CASH_SESSION", resource=request.path, org_id=g.org_id)
    """
    if user_has_permission(user_id, permission_code):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
        org_id=org_id,
        store_id=store_id
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")


def grant_permission_override(
    *,
    user_id: int,
    permission_code: str,
    granted_by_user_id: int,
    override_type: str,
    reason: str | None = None,
) -> UserPermissionOverride:
    """Upsert a GRANT/DENY override. Protected permissions are refused."""
    if permission_code in PROTECTED_PERMISSIONS:
        raise ValueError("Permission overrides cannot modify admin permissions")

    if override_type not in {"GRANT", "DENY"}:
        raise ValueError("override_type must be GRANT or DENY")

    if not validate_permission_code(permission_code):
        raise ValueError(f"Permission '{permission_code}' not found")

    override = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        permission_code=permission_code,
    ).first()

    if override is None:
        override = UserPermissionOverride(user_id=user_id, permission_code=permission_code)
        db.session.add(override)

    override.override_type = override_type
    override.granted_by_user_id = granted_by_user_id
    override.granted_at = utcnow()
    override.reason = reason
    override.is_active = True
    override.revoked_by_user_id = None
    override.revoked_at = None

    db.session.commit()
    return override


def revoke_permission_override(
    *,
    user_id: int,
    permission_code: str,
    revoked_by_user_id: int,
) -> UserPermissionOverride | None:
    override = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        permission_code=permission_code,
        is_active=True,
    ).first()

    if not override:
        return None

    override.is_active = False
    override.revoked_by_user_id = revoked_by_user_id
    override.revoked_at = utcnow()

    db.session.commit()
    return override


def initialize_permissions() -> int:
    """
    Create Permission rows for every code in PERMISSION_DEFINITIONS.

    Idempotent. Returns the number of rows created.
    """
    existing = {code for (code,) in db.session.query(Permission.code).all()}
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        if code in existing:
            continue
        db.session.add(Permission(code=code, name=name, description=description, category=category))
        created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions(org_id: int | None = None) -> int:
    """
    Link every organization's default roles to their default permissions.

    Pass org_id to limit the repair to one organization. Idempotent.
    Returns the number of links created.
    """
    permissions_by_code = {p.code: p for p in db.session.query(Permission).all()}

    roles_query = db.session.query(Role).filter(Role.name.in_(list(DEFAULT_ROLE_PERMISSIONS)))
    if org_id is not None:
        roles_query = roles_query.filter(Role.org_id == org_id)

    created_count = 0
    for role in roles_query.all():
        linked = {
            pid for (pid,) in db.session.query(RolePermission.permission_id).filter_by(role_id=role.id).all()
        }
        for permission_code in DEFAULT_ROLE_PERMISSIONS[role.name]:
            permission = permissions_by_code.get(permission_code)
            if permission is None or permission.id in linked:
                continue
            db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
            linked.add(permission.id)
            created_count += 1

    db.session.commit()
    return created_count


def _resolve_role_and_permission(org_id: int, role_name: str, permission_code: str):
    role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    return role, permission


def grant_permission_to_role(org_id: int, role_name: str, permission_code: str) -> RolePermission:
    role, permission = _resolve_role_and_permission(org_id, role_name, permission_code)

    existing = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()
    if existing:
        return existing

    role_permission = RolePermission(role_id=role.id, permission_id=permission.id)
    db.session.add(role_permission)
    db.session.commit()
    return role_permission


def revoke_permission_from_role(org_id: int, role_name: str, permission_code: str) -> bool:
    """Returns False if the role did not hold the permission."""
    role, permission = _resolve_role_and_permission(org_id, role_name, permission_code)

    role_permission = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()
    if not role_permission:
        return False

    db.session.delete(role_permission)
    db.session.commit()
    return True
