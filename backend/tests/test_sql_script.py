"""
Maintenance SQL runner (statement splitting, per-statement execution) and
database error classification.
"""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from tiendapos.services.db_errors import classify_db_error
from tiendapos.services.sql_script_service import split_sql_statements, run_sql_script


def _table_exists(db_session, name):
    row = db_session.execute(
        text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = :name"), {"name": name}
    ).first()
    return row is not None


class TestSplitStatements:

    def test_semicolons_inside_quotes(self):
        sql = "UPDATE products SET name = 'a;b' WHERE id = 1; SELECT \"odd;column\" FROM t"
        assert split_sql_statements(sql) == [
            "UPDATE products SET name = 'a;b' WHERE id = 1",
            'SELECT "odd;column" FROM t',
        ]

    def test_escaped_single_quote(self):
        assert split_sql_statements("SELECT 'it''s; fine'; SELECT 2") == ["SELECT 'it''s; fine'", "SELECT 2"]

    def test_comment_markers_inside_quotes(self):
        sql = (
            "INSERT INTO notes (body) VALUES ('--not a comment; really'); "
            "UPDATE t SET s = '/* keep; me */' WHERE note = \"a--b\"; "
            "SELECT '$$; still text'"
        )
        assert split_sql_statements(sql) == [
            "INSERT INTO notes (body) VALUES ('--not a comment; really')",
            "UPDATE t SET s = '/* keep; me */' WHERE note = \"a--b\"",
            "SELECT '$$; still text'",
        ]

    def test_comments_are_dropped(self):
        sql = "-- cleanup; do not run twice\nDELETE FROM t; /* block; comment */ SELECT 1;"
        assert split_sql_statements(sql) == ["DELETE FROM t", "SELECT 1"]

    @pytest.mark.parametrize("tag", ["$$", "$body$"])
    def test_dollar_quoted_body(self, tag):
        sql = (
            f"CREATE FUNCTION touch() RETURNS trigger AS {tag} BEGIN NEW.updated_at = now(); RETURN NEW; END; {tag} "
            "LANGUAGE plpgsql; SELECT 1"
        )
        statements = split_sql_statements(sql)
        assert len(statements) == 2
        assert "RETURN NEW; END;" in statements[0]
        assert statements[0].endswith("LANGUAGE plpgsql")

    def test_empty_statements_removed(self):
        assert split_sql_statements(" ;;\n; ") == []


class TestRunSqlScript:

    def test_continues_after_failure(self, db_session):
        sql = """
            CREATE TABLE scratch_items (id INTEGER PRIMARY KEY, name TEXT);
            INSERT INTO scratch_items (name) VALUES ('uno');
            INSERT INTO missing_table VALUES (1);
            INSERT INTO scratch_items (name) VALUES ('dos');
            SELECT 1;
            DROP TABLE scratch_items;
        """
        result = run_sql_script(sql)

        assert result["total"] == 6
        assert result["skipped"] == 1
        assert result["executed"] == 5
        assert result["succeeded"] == 4
        assert result["failed"] == 1
        assert result["errors"][0]["index"] == 3
        assert "missing_table" in result["errors"][0]["error"]
        assert not _table_exists(db_session, "scratch_items")

    def test_stop_on_error(self, db_session):
        sql = "CREATE TABLE scratch_stop (id INTEGER); INSERT INTO missing_table VALUES (1); DROP TABLE scratch_stop"
        result = run_sql_script(sql, stop_on_error=True)

        assert result["executed"] == 2
        assert result["failed"] == 1
        assert _table_exists(db_session, "scratch_stop")

        db_session.execute(text("DROP TABLE scratch_stop"))
        db_session.commit()

    def test_dry_run_executes_nothing(self, db_session):
        result = run_sql_script("CREATE TABLE scratch_dry (id INTEGER); DROP TABLE scratch_dry", dry_run=True)

        assert result["total"] == 2
        assert result["executed"] == 0
        assert not _table_exists(db_session, "scratch_dry")


class TestDatabaseErrorClassification:

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("UNIQUE constraint failed: products.sku", (409, "Resource already exists")),
            ("FOREIGN KEY constraint failed", (400, "Referenced resource does not exist")),
            ("no such table: products", (503, "Database schema is not initialized")),
            ("disk I/O error", (500, "Database error")),
        ],
    )
    def test_sqlite_messages(self, message, expected):
        assert classify_db_error(IntegrityError("INSERT ...", {}, Exception(message))) == expected

    def test_postgres_sqlstate(self):
        orig = Exception("duplicate key value violates unique constraint")
        orig.pgcode = "23505"
        assert classify_db_error(IntegrityError("INSERT ...", {}, orig))[0] == 409

    def test_non_database_error(self):
        assert classify_db_error(ValueError("boom")) == (500, "Database error")
