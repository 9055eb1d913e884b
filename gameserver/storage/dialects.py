"""
dialects.py - Per-engine SQL differences.

The upgrader, statement registry and introspection helpers never branch on
the engine name; they ask the Dialect for limit clauses, DDL text and
capabilities instead. Statement parameters are always written as '?' and
rewritten by the driver for its own paramstyle.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple, Union

# Column type tokens resolved per dialect
TIMESTAMP = "TIMESTAMP"
TIMESTAMP_NULL = "TIMESTAMP NULL"


# ---------------------------------------------------------------------------
# DDL operations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Column:
    name: str
    type: str
    nullable: bool = True


@dataclass(frozen=True)
class CreateTable:
    name: str
    columns: Tuple[Column, ...]
    primary_key: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DropTable:
    name: str


@dataclass(frozen=True)
class AddColumn:
    table: str
    column: Column


@dataclass(frozen=True)
class DropColumns:
    table: str
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class CreateIndex:
    name: str
    table: str
    column: str
    unique: bool = False


@dataclass(frozen=True)
class DropIndex:
    name: str
    table: str


DDLOperation = Union[CreateTable, DropTable, AddColumn, DropColumns, CreateIndex, DropIndex]


# ---------------------------------------------------------------------------
# Dialects
# ---------------------------------------------------------------------------

class Dialect:
    """Generic SQL; also used for unrecognized drivers."""

    name = "unknown"
    paramstyle = "qmark"

    def limit_clause(self, sql: str, limit: int) -> str:
        """Return sql limited to at most limit rows. Unknown engines get no limit."""
        return sql.rstrip().rstrip(";")

    def can_drop_column(self) -> bool:
        return True

    def timestamp_type(self, nullable: bool) -> str:
        return "TIMESTAMP"

    def column_type(self, column: Column) -> str:
        if column.type == TIMESTAMP:
            return self.timestamp_type(nullable=False)
        if column.type == TIMESTAMP_NULL:
            return self.timestamp_type(nullable=True)
        return column.type

    def to_db_timestamp(self, value: datetime):
        return value

    def table_names_sql(self) -> Optional[str]:
        return None

    def table_owner_sql(self) -> Optional[Tuple[str, str]]:
        """(current-user sql, users-table-owner sql), or None if no owner check applies."""
        return None

    def column_probe(self, table: str, column: str) -> Tuple[str, bool]:
        """SQL to test for a column, and whether its first value is a count.

        Without a count the probe succeeds iff the query doesn't error.
        """
        return self.limit_clause("SELECT %s FROM %s" % (column, table), 1), False

    def skip_setup_line(self, line: str) -> bool:
        return False

    def ddl_for(self, op: DDLOperation) -> List[str]:
        if isinstance(op, CreateTable):
            cols = []
            for c in op.columns:
                text = "%s %s" % (c.name, self.column_type(c))
                if not c.nullable:
                    text += " NOT NULL"
                cols.append(text)
            if op.primary_key:
                cols.append("PRIMARY KEY (%s)" % ", ".join(op.primary_key))
            return ["CREATE TABLE %s ( %s )" % (op.name, ", ".join(cols))]
        if isinstance(op, DropTable):
            return ["DROP TABLE %s" % op.name]
        if isinstance(op, AddColumn):
            return ["ALTER TABLE %s ADD COLUMN %s %s" % (
                op.table, op.column.name, self.column_type(op.column))]
        if isinstance(op, DropColumns):
            if not self.can_drop_column():
                raise NotImplementedError("%s cannot drop columns" % self.name)
            return self._drop_columns(op)
        if isinstance(op, CreateIndex):
            return ["CREATE %sINDEX %s ON %s(%s)" % (
                "UNIQUE " if op.unique else "", op.name, op.table, op.column)]
        if isinstance(op, DropIndex):
            return ["DROP INDEX %s" % op.name]
        raise TypeError("Unknown DDL operation: %r" % (op,))

    def _drop_columns(self, op: DropColumns) -> List[str]:
        return ["ALTER TABLE %s DROP %s" % (op.table, c) for c in op.columns]

    def __repr__(self):
        return "<%s>" % type(self).__name__


class SQLiteDialect(Dialect):
    """SQLite. Column drop exists only from SQLite 3.35 onward."""

    name = "sqlite"

    def __init__(self, supports_drop_column: Optional[bool] = None):
        if supports_drop_column is None:
            supports_drop_column = sqlite3.sqlite_version_info >= (3, 35, 0)
        self._supports_drop_column = supports_drop_column

    def limit_clause(self, sql: str, limit: int) -> str:
        return "%s LIMIT %d" % (sql.rstrip().rstrip(";"), int(limit))

    def can_drop_column(self) -> bool:
        return self._supports_drop_column

    def to_db_timestamp(self, value: datetime):
        return value.isoformat(sep=" ", timespec="seconds")

    def table_names_sql(self) -> Optional[str]:
        return "SELECT name FROM sqlite_master WHERE type = 'table'"

    def column_probe(self, table: str, column: str) -> Tuple[str, bool]:
        return (
            "SELECT count(*) FROM pragma_table_info('%s') WHERE lower(name) = '%s'"
            % (table, column.lower()),
            True,
        )

    def skip_setup_line(self, line: str) -> bool:
        return line.lower().startswith("use ")

    def _drop_columns(self, op: DropColumns) -> List[str]:
        # one column per statement
        return ["ALTER TABLE %s DROP COLUMN %s" % (op.table, c) for c in op.columns]


class PostgresDialect(Dialect):
    name = "postgresql"
    paramstyle = "numeric"

    def limit_clause(self, sql: str, limit: int) -> str:
        return "%s LIMIT %d" % (sql.rstrip().rstrip(";"), int(limit))

    def timestamp_type(self, nullable: bool) -> str:
        return "TIMESTAMP WITHOUT TIME ZONE"

    def table_names_sql(self) -> Optional[str]:
        return "SELECT tablename FROM pg_tables WHERE schemaname = current_schema()"

    def table_owner_sql(self) -> Optional[Tuple[str, str]]:
        return (
            "SELECT current_user",
            "SELECT tableowner FROM pg_tables WHERE tablename = 'users'",
        )

    def column_probe(self, table: str, column: str) -> Tuple[str, bool]:
        return (
            "SELECT count(*) FROM information_schema.columns "
            "WHERE table_name = '%s' AND column_name = '%s'" % (table.lower(), column.lower()),
            True,
        )

    def _drop_columns(self, op: DropColumns) -> List[str]:
        return ["ALTER TABLE %s %s" % (op.table, ", ".join("DROP %s" % c for c in op.columns))]


class MySQLDialect(Dialect):
    name = "mysql"
    paramstyle = "format"

    def limit_clause(self, sql: str, limit: int) -> str:
        return "%s LIMIT %d" % (sql.rstrip().rstrip(";"), int(limit))

    def timestamp_type(self, nullable: bool) -> str:
        return "TIMESTAMP NULL DEFAULT null" if nullable else "TIMESTAMP"

    def table_names_sql(self) -> Optional[str]:
        return "SELECT table_name FROM information_schema.tables WHERE table_schema = DATABASE()"

    def ddl_for(self, op: DDLOperation) -> List[str]:
        if isinstance(op, DropIndex):
            return ["DROP INDEX %s ON %s" % (op.name, op.table)]
        return super().ddl_for(op)

    def _drop_columns(self, op: DropColumns) -> List[str]:
        return ["ALTER TABLE %s %s" % (op.table, ", ".join("DROP %s" % c for c in op.columns))]


class OracleDialect(Dialect):
    name = "oracle"
    paramstyle = "named"

    def limit_clause(self, sql: str, limit: int) -> str:
        return "SELECT * FROM (%s) t WHERE ROWNUM <= %d" % (sql.rstrip().rstrip(";"), int(limit))

    def table_names_sql(self) -> Optional[str]:
        return "SELECT table_name FROM user_tables"

    def column_probe(self, table: str, column: str) -> Tuple[str, bool]:
        return (
            "SELECT count(*) FROM user_tab_columns WHERE table_name = '%s' AND column_name = '%s'"
            % (table.upper(), column.upper()),
            True,
        )

    def ddl_for(self, op: DDLOperation) -> List[str]:
        if isinstance(op, AddColumn):
            return ["ALTER TABLE %s ADD %s %s" % (
                op.table, op.column.name, self.column_type(op.column))]
        return super().ddl_for(op)

    def _drop_columns(self, op: DropColumns) -> List[str]:
        return ["ALTER TABLE %s DROP (%s)" % (op.table, ", ".join(op.columns))]


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

DEFAULT_URLS = {
    "sqlite": "sqlite:///data/gameserver.db",
    "postgresql": "postgresql://localhost/gameserver",
    "mysql": "mysql://localhost/gameserver",
}


def _dialect_from_driver(driver: str) -> Dialect:
    d = driver.lower()
    if "postgres" in d or "asyncpg" in d:
        return PostgresDialect()
    if "sqlite" in d:
        return SQLiteDialect()
    if "mysql" in d:
        return MySQLDialect()
    if "oracle" in d:
        return OracleDialect()
    return Dialect()


def dialect_for(url: Optional[str], driver: Optional[str]) -> Tuple[Dialect, str]:
    """Pick the dialect and effective URL from the configured URL and driver name.

    With both given, the driver name wins. With only a URL, its scheme decides.
    With only a driver, that engine's default URL is used.
    """
    if url:
        if driver:
            return _dialect_from_driver(driver), url
        if url.startswith("postgresql:") or url.startswith("postgres:"):
            return PostgresDialect(), url
        if url.startswith("sqlite:"):
            return SQLiteDialect(), url
        if url.startswith("mysql:"):
            return MySQLDialect(), url
        raise ValueError("DB URL is set, but driver is not (db_url, db_driver)")

    if not driver:
        return SQLiteDialect(), DEFAULT_URLS["sqlite"]
    dialect = _dialect_from_driver(driver)
    if dialect.name not in DEFAULT_URLS:
        raise ValueError("DB driver is set, but URL is not (db_driver, db_url)")
    return dialect, DEFAULT_URLS[dialect.name]
