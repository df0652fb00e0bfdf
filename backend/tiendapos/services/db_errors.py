# Overview: Translate database driver errors into HTTP status + message pairs.

"""
Database error classification.

Postgres drivers expose the SQLSTATE on the wrapped DBAPI exception
(`pgcode` on psycopg2, `sqlstate` on psycopg 3). SQLite has no SQLSTATE, so
its messages are mapped onto the same codes.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError


UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
UNDEFINED_TABLE = "42P01"

_RESPONSES = {
    UNIQUE_VIOLATION: (409, "Resource already exists"),
    FOREIGN_KEY_VIOLATION: (400, "Referenced resource does not exist"),
    UNDEFINED_TABLE: (503, "Database schema is not initialized"),
}

_SQLITE_PATTERNS = (
    ("unique constraint failed", UNIQUE_VIOLATION),
    ("foreign key constraint failed", FOREIGN_KEY_VIOLATION),
    ("no such table", UNDEFINED_TABLE),
)


def get_sqlstate(exc: Exception) -> str | None:
    """Best-effort SQLSTATE for a SQLAlchemy/DBAPI error."""
    orig = getattr(exc, "orig", exc)
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)

    message = str(orig).lower()
    for needle, code in _SQLITE_PATTERNS:
        if needle in message:
            return code
    return None


def classify_db_error(exc: Exception) -> tuple[int, str]:
    """
    Map a database error to (http_status, client message).

    Unknown errors are (500, "Database error"); callers log those.
    """
    if not isinstance(exc, DBAPIError):
        return 500, "Database error"
    return _RESPONSES.get(get_sqlstate(exc), (500, "Database error"))
