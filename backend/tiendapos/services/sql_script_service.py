# Overview: Split and run maintenance SQL scripts statement by statement.

from __future__ import annotations

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db

MIN_STATEMENT_LENGTH = 10


def _dollar_tag_at(sql: str, i: int) -> str | None:
    """Return "$tag$" starting at i, or None. The tag may be empty ($$)."""
    j = i + 1
    while j < len(sql) and (sql[j].isalnum() or sql[j] == "_"):
        j += 1
    if j < len(sql) and sql[j] == "$":
        return sql[i:j + 1]
    return None


def split_sql_statements(sql: str) -> list[str]:
    """
    Split a script on ';' outside quotes, comments and dollar-quoted bodies.

    Line comments are dropped but keep their newline; block comments are
    dropped. Statements are trimmed and empty ones removed.
    """
    statements: list[str] = []
    current: list[str] = []
    in_single = in_double = False
    in_line_comment = in_block_comment = False
    dollar_tag: str | None = None
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if in_line_comment:
            if ch == "\n":
                in_line_comment = False
                current.append(ch)
            i += 1
            continue

        if in_block_comment:
            if ch == "*" and nxt == "/":
                in_block_comment = False
                i += 2
            else:
                i += 1
            continue

        if dollar_tag:
            if sql.startswith(dollar_tag, i):
                current.append(dollar_tag)
                i += len(dollar_tag)
                dollar_tag = None
            else:
                current.append(ch)
                i += 1
            continue

        quoted = in_single or in_double

        if not quoted and ch == "-" and nxt == "-":
            in_line_comment = True
            i += 2
            continue

        if not quoted and ch == "/" and nxt == "*":
            in_block_comment = True
            i += 2
            continue

        if not quoted and ch == "$":
            tag = _dollar_tag_at(sql, i)
            if tag:
                dollar_tag = tag
                current.append(tag)
                i += len(tag)
                continue

        if not in_double and ch == "'":
            in_single = not in_single
        elif not in_single and ch == '"':
            in_double = not in_double
        elif not quoted and ch == ";":
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
            i += 1
            continue

        current.append(ch)
        i += 1

    tail = "".join(current).strip()
    if tail:
        statements.append(tail)
    return statements


def _preview(statement: str, width: int = 80) -> str:
    flat = " ".join(statement.split())
    return flat if len(flat) <= width else flat[:width - 3] + "..."


def run_sql_script(sql: str, *, dry_run: bool = False, stop_on_error: bool = False) -> dict:
    """
    Execute each statement of a script in its own transaction.

    Statements shorter than MIN_STATEMENT_LENGTH are skipped. A failure is
    rolled back and logged; execution continues unless stop_on_error.

    Returns {total, executed, succeeded, failed, skipped, errors[{index, statement, error}]}.
    """
    statements = split_sql_statements(sql)
    result = {
        "total": len(statements),
        "executed": 0,
        "succeeded": 0,
        "failed": 0,
        "skipped": 0,
        "errors": [],
    }
    log = current_app.logger

    for index, statement in enumerate(statements, start=1):
        if len(statement) < MIN_STATEMENT_LENGTH:
            result["skipped"] += 1
            continue

        if dry_run:
            log.info("[dry-run] %d/%d: %s", index, len(statements), _preview(statement))
            continue

        result["executed"] += 1
        try:
            db.session.execute(text(statement))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            result["failed"] += 1
            message = str(getattr(e, "orig", None) or e)
            result["errors"].append({"index": index, "statement": _preview(statement), "error": message})
            log.warning("SQL statement %d failed: %s", index, message)
            if stop_on_error:
                break
            continue

        result["succeeded"] += 1
        log.info("SQL statement %d ok: %s", index, _preview(statement))

    return result
