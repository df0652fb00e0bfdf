# Overview: Bearer session tokens with tenant context.

"""
Session Token Management

Tokens are 32 random bytes (hex), handed to the client once and stored only
as a SHA-256 hash. Each session captures org_id and store_id at creation,
so every authenticated request knows its tenant without re-deriving it.

TIMEOUTS:
- SESSION_ABSOLUTE_TIMEOUT: 24h from creation
- SESSION_IDLE_TIMEOUT: 2h since last use (idle sessions are revoked)

Developer users may hold a session without org_id until they switch into
an organization (see create_session_for_org).
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta
from ..extensions import db
from ..models import SessionToken, User, Organization
from tiendapos.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """User identity plus the tenant context pinned to the session."""
    user: User
    session: SessionToken
    org_id: int | None  # None only for developers outside any org
    store_id: int | None


def generate_token() -> str:
    """64 hex characters (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is sufficient for high-entropy tokens (unlike passwords)."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _new_session(
    user: User,
    org_id: int | None,
    store_id: int | None,
    user_agent: str | None,
    ip_address: str | None,
) -> tuple[SessionToken, str]:
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        org_id=org_id,
        store_id=store_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create a session for a user, capturing the user's org and store.

    Returns (session_record, plaintext_token).

    Raises ValueError if the user is missing, has no organization (and is
    not a developer), or the organization is inactive.
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")

    if not user.org_id and not user.is_developer:
        raise ValueError("User must belong to an organization")

    if user.org_id:
        org = db.session.query(Organization).filter_by(id=user.org_id).first()
        if not org or not org.is_active:
            raise ValueError("Organization is not active")

    return _new_session(user, user.org_id, user.store_id, user_agent, ip_address)


def create_session_for_org(
    context: SessionContext,
    org_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str, Organization]:
    """
    Developer org switch: revoke the current session and open a new one
    pinned to org_id. Raises ValueError if the org is missing or inactive.
    """
    org = db.session.query(Organization).filter_by(id=org_id, is_active=True).first()
    if not org:
        raise ValueError("Organization not found or inactive")

    context.session.revoke(f"Developer switched to org {org_id}", utcnow())

    session, token = _new_session(context.user, org.id, None, user_agent, ip_address)
    return session, token, org


def _revoke(session: SessionToken, reason: str) -> None:
    session.revoke(reason, utcnow())
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its SessionContext.

    Returns None when the token is unknown, revoked or expired. Sessions that
    went idle, or whose user or organization was deactivated, are revoked
    on the spot. A successful check refreshes last_used_at.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.is_expired(now):
        return None

    if session.is_idle(now, SESSION_IDLE_TIMEOUT):
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    if session.org_id is not None:
        org = session.organization
        if not org or not org.is_active:
            _revoke(session, "Organization deactivated")
            return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        org_id=session.org_id,
        store_id=session.store_id
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session. Returns False if it was not found or already revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """Revoke every active session of a user. Returns the count."""
    now = utcnow()

    sessions = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False
    ).all()

    for session in sessions:
        session.revoke(reason, now)

    db.session.commit()
    return len(sessions)


def cleanup_expired_sessions(*, older_than_days: int = 30) -> int:
    """
    Delete sessions that are expired or revoked and older than the cutoff.

    Returns count of sessions deleted.
    """
    now = utcnow()
    cutoff = now - timedelta(days=older_than_days)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True)
        ),
        SessionToken.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
