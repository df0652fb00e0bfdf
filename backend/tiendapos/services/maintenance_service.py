# Overview: Retention cleanup for security events.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from tiendapos.time_utils import utcnow


def cleanup_security_events(*, retention_days: int = 90, org_id: int | None = None) -> int:
    """Delete security events older than retention_days. Returns the count deleted."""
    if retention_days < 1:
        raise ValueError("retention_days must be >= 1")

    cutoff = utcnow() - timedelta(days=retention_days)
    query = db.session.query(SecurityEvent).filter(SecurityEvent.occurred_at < cutoff)
    if org_id is not None:
        query = query.filter(SecurityEvent.org_id == org_id)

    deleted = query.delete(synchronize_session=False)
    db.session.commit()
    return deleted
