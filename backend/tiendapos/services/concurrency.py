# Overview: Row locking and retry helpers for writes that race (stock, cash, points).

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply SELECT ... FOR UPDATE to a query.

    NOTE: SQLite ignores FOR UPDATE; Postgres honors it. Version columns
    still catch lost updates on SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of DB work, retrying on lock errors and optimistic-lock conflicts.

    The session is rolled back between attempts, so func must redo all of
    its reads. Backoff doubles per attempt: 0.1s, 0.2s, ...
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    return run_with_retry(db.session.commit, attempts=attempts, backoff_base=backoff_base)
