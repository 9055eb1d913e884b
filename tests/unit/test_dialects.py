"""
test_dialects.py - Unit tests for per-engine SQL and driver helpers.

No database needed: checks generated text and dialect detection.
"""

import pytest

from gameserver.storage.dialects import (
    TIMESTAMP_NULL,
    AddColumn,
    Column,
    CreateIndex,
    CreateTable,
    Dialect,
    DropColumns,
    DropIndex,
    DropTable,
    MySQLDialect,
    OracleDialect,
    PostgresDialect,
    SQLiteDialect,
    dialect_for,
)
from gameserver.storage.drivers import qmark_to_numeric, sqlite_path


class TestLimitClause:

    def test_sqlite_and_postgres_use_limit(self):
        assert SQLiteDialect().limit_clause("SELECT a FROM t", 5) == "SELECT a FROM t LIMIT 5"
        assert PostgresDialect().limit_clause("SELECT a FROM t;", 10) == "SELECT a FROM t LIMIT 10"
        assert MySQLDialect().limit_clause("SELECT a FROM t", 1) == "SELECT a FROM t LIMIT 1"

    def test_oracle_wraps_with_rownum(self):
        sql = OracleDialect().limit_clause("SELECT a FROM t", 5)
        assert sql == "SELECT * FROM (SELECT a FROM t) t WHERE ROWNUM <= 5"

    def test_unknown_engine_has_no_limit(self):
        assert Dialect().limit_clause("SELECT a FROM t", 5) == "SELECT a FROM t"


class TestDDL:

    def test_drop_columns_per_engine(self):
        op = DropColumns("games", ("a", "b"))
        assert SQLiteDialect(True).ddl_for(op) == [
            "ALTER TABLE games DROP COLUMN a",
            "ALTER TABLE games DROP COLUMN b",
        ]
        assert PostgresDialect().ddl_for(op) == ["ALTER TABLE games DROP a, DROP b"]
        assert MySQLDialect().ddl_for(op) == ["ALTER TABLE games DROP a, DROP b"]
        assert OracleDialect().ddl_for(op) == ["ALTER TABLE games DROP (a, b)"]

    def test_sqlite_without_column_drop(self):
        d = SQLiteDialect(supports_drop_column=False)
        assert not d.can_drop_column()
        with pytest.raises(NotImplementedError):
            d.ddl_for(DropColumns("games", ("a",)))

    def test_drop_index(self):
        op = DropIndex("users__lc", "users")
        assert SQLiteDialect().ddl_for(op) == ["DROP INDEX users__lc"]
        assert MySQLDialect().ddl_for(op) == ["DROP INDEX users__lc ON users"]

    def test_create_unique_index(self):
        op = CreateIndex("users__lc", "users", "nickname_lc", unique=True)
        assert PostgresDialect().ddl_for(op) == ["CREATE UNIQUE INDEX users__lc ON users(nickname_lc)"]

    def test_add_column(self):
        op = AddColumn("users", Column("nickname_lc", "VARCHAR(20)"))
        assert SQLiteDialect().ddl_for(op) == ["ALTER TABLE users ADD COLUMN nickname_lc VARCHAR(20)"]
        assert OracleDialect().ddl_for(op) == ["ALTER TABLE users ADD nickname_lc VARCHAR(20)"]

    def test_nullable_timestamp_types(self):
        op = AddColumn("users", Column("credential_changed_at", TIMESTAMP_NULL))
        assert MySQLDialect().ddl_for(op) == [
            "ALTER TABLE users ADD COLUMN credential_changed_at TIMESTAMP NULL DEFAULT null"
        ]
        assert PostgresDialect().ddl_for(op) == [
            "ALTER TABLE users ADD COLUMN credential_changed_at TIMESTAMP WITHOUT TIME ZONE"
        ]

    def test_create_and_drop_table(self):
        op = CreateTable(
            "settings",
            (Column("name", "VARCHAR(32)", nullable=False), Column("int_value", "INT")),
            primary_key=("name",),
        )
        assert SQLiteDialect().ddl_for(op) == [
            "CREATE TABLE settings ( name VARCHAR(32) NOT NULL, int_value INT, PRIMARY KEY (name) )"
        ]
        assert SQLiteDialect().ddl_for(DropTable("settings")) == ["DROP TABLE settings"]

    def test_owner_check_only_on_postgres(self):
        assert PostgresDialect().table_owner_sql() is not None
        assert SQLiteDialect().table_owner_sql() is None
        assert MySQLDialect().table_owner_sql() is None

    def test_sqlite_skips_use_lines(self):
        assert SQLiteDialect().skip_setup_line("USE gamedb;")
        assert not PostgresDialect().skip_setup_line("USE gamedb;")


class TestDetection:

    def test_defaults_to_sqlite(self):
        dialect, url = dialect_for(None, None)
        assert dialect.name == "sqlite"
        assert url.startswith("sqlite:///")

    @pytest.mark.parametrize("url,name", [
        ("postgresql://db/game", "postgresql"),
        ("postgres://db/game", "postgresql"),
        ("sqlite:///x.db", "sqlite"),
        ("mysql://db/game", "mysql"),
    ])
    def test_from_url(self, url, name):
        dialect, effective = dialect_for(url, None)
        assert dialect.name == name
        assert effective == url

    def test_driver_wins_over_url(self):
        dialect, _ = dialect_for("jdbc:whatever", "asyncpg")
        assert dialect.name == "postgresql"

    def test_driver_only_uses_default_url(self):
        dialect, url = dialect_for(None, "postgresql")
        assert dialect.name == "postgresql"
        assert url.startswith("postgresql://")

    def test_unknown_url_without_driver(self):
        with pytest.raises(ValueError):
            dialect_for("foo://x", None)

    def test_driver_without_default_url(self):
        with pytest.raises(ValueError):
            dialect_for(None, "oracle")

    def test_unrecognized_driver_gets_generic_dialect(self):
        dialect, _ = dialect_for("foo://x", "somedriver")
        assert dialect.name == "unknown"


class TestDriverHelpers:

    def test_qmark_to_numeric(self):
        assert qmark_to_numeric("SELECT a FROM t WHERE x = ? AND y = ?") == \
            "SELECT a FROM t WHERE x = $1 AND y = $2"

    def test_qmark_inside_literal_untouched(self):
        assert qmark_to_numeric("UPDATE t SET p = '?' WHERE n = ?") == \
            "UPDATE t SET p = '?' WHERE n = $1"

    def test_sqlite_path(self):
        assert sqlite_path("sqlite:///data/game.db") == "data/game.db"
        assert sqlite_path("sqlite:////tmp/game.db") == "/tmp/game.db"
        assert sqlite_path("sqlite:///:memory:") == ":memory:"
