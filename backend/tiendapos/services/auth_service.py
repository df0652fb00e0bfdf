# Overview: Password hashing, user creation, login and default roles.

"""
Authentication Service

MULTI-TENANT: Users belong to exactly one organization (org_id); username
and email uniqueness is tenant-scoped. Developers are the exception: they
have no org until they switch into one.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters; upper, lower, digit and special char required
- Session tokens are managed in session_service
"""

import bcrypt
import re
from ..extensions import db
from ..models import User, Role, UserRole, Organization, Store
from tiendapos.time_utils import utcnow


DEFAULT_ROLES = [
    ("admin", "Full access to the organization"),
    ("manager", "Store management, cash reconciliation and approvals"),
    ("cashier", "Point of sale, cash register and returns intake"),
]


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Raise PasswordValidationError unless the password has 8+ chars and at
    least one uppercase, lowercase, digit and special character.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash with cost factor 12."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    store_id: int | None = None,
    full_name: str | None = None,
) -> User:
    """
    Create a user inside an organization.

    Raises:
        ValueError: org missing/inactive, duplicate username or email in the
            org, or store outside the org
        PasswordValidationError: weak password
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise ValueError("Organization not found")
    if not org.is_active:
        raise ValueError("Organization is not active")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists in this organization")

    if store_id is not None:
        store = db.session.query(Store).filter_by(id=store_id).first()
        if not store or store.org_id != org_id:
            raise ValueError("Store not found")

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        store_id=store_id
    )

    db.session.add(user)
    db.session.commit()
    return user


def create_developer(username: str, email: str, password: str) -> User:
    """Create a cross-org developer (superadmin) with no organization."""
    existing = db.session.query(User).filter(
        User.org_id.is_(None),
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Developer username or email already exists")

    user = User(
        org_id=None,
        username=username,
        email=email,
        password_hash=hash_password(password),
        is_developer=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, org_id: int | None = None) -> User | None:
    """
    Check credentials (username or email) and stamp last_login_at.

    Returns None for unknown users, wrong passwords, inactive users, and
    users whose organization is inactive.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )

    if org_id is not None:
        query = query.filter(User.org_id == org_id)

    for user in query.all():
        if user.org_id is not None:
            org = db.session.query(Organization).filter_by(id=user.org_id).first()
            if not org or not org.is_active:
                continue

        if verify_password(password, user.password_hash):
            user.last_login_at = utcnow()
            db.session.commit()
            return user

    return None


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign one of the user's organization roles. Idempotent."""
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")

    role = db.session.query(Role).filter_by(org_id=user.org_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(
        user_id=user_id,
        role_id=role.id
    ).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.commit()
    return user_role


def create_default_roles(org_id: int) -> list[Role]:
    """Create admin, manager and cashier for an organization if missing."""
    roles = []
    for name, desc in DEFAULT_ROLES:
        role = db.session.query(Role).filter_by(org_id=org_id, name=name).first()
        if not role:
            role = Role(org_id=org_id, name=name, description=desc)
            db.session.add(role)
        roles.append(role)

    db.session.commit()
    return roles
