"""
drivers.py - Thin async adapters over the database client libraries.

Each driver runs in autocommit mode between explicit begin()/commit()
pairs, so the transaction state seen by DatabaseContext.transaction() is
always the driver's own. Statements use '?' placeholders.
"""

import logging
import os
from typing import Any, Iterable, List, Optional, Sequence

try:
    import aiosqlite
except ImportError:
    raise ImportError(
        "aiosqlite is required for the storage layer. "
        "Install with: pip install aiosqlite"
    )

from ..errors import ConnectError
from .dialects import Dialect

logger = logging.getLogger("storage")

QUERY_TIMEOUT_SEC = 30.0


class Driver:
    """Async DB connection with explicit transactions."""

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        raise NotImplementedError

    async def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> None:
        raise NotImplementedError

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        raise NotImplementedError

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        raise NotImplementedError

    async def begin(self) -> None:
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError

    async def rollback(self) -> None:
        raise NotImplementedError

    @property
    def in_transaction(self) -> bool:
        raise NotImplementedError

    @property
    def autocommit(self) -> bool:
        return not self.in_transaction

    @property
    def reopenable(self) -> bool:
        """False when closing the connection would discard the database itself."""
        return True

    async def close(self) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


def sqlite_path(url: str) -> str:
    """sqlite:///relative.db, sqlite:////abs/path.db or sqlite:///:memory: -> file path."""
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    if url.startswith("sqlite:"):
        return url[len("sqlite:"):]
    return url


class SQLiteDriver(Driver):
    def __init__(self, db: "aiosqlite.Connection", path: str = ""):
        self._db = db
        self._path = path
        self._tx_open = False

    @classmethod
    async def open(cls, url: str) -> "SQLiteDriver":
        path = sqlite_path(url)
        if path != ":memory:":
            db_dir = os.path.dirname(path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        # isolation_level=None: sqlite3 never opens implicit transactions
        db = await aiosqlite.connect(path, timeout=QUERY_TIMEOUT_SEC, isolation_level=None)
        await db.execute("PRAGMA foreign_keys=ON")
        return cls(db, path)

    @property
    def reopenable(self) -> bool:
        return self._path != ":memory:"

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        cursor = await self._db.execute(sql, tuple(params))
        count = cursor.rowcount
        await cursor.close()
        return count

    async def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> None:
        await self._db.executemany(sql, [tuple(p) for p in seq_of_params])

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        async with self._db.execute(sql, tuple(params)) as cursor:
            row = await cursor.fetchone()
        return tuple(row) if row is not None else None

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        async with self._db.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [tuple(r) for r in rows]

    async def begin(self) -> None:
        await self._db.execute("BEGIN")
        self._tx_open = True

    async def commit(self) -> None:
        try:
            await self._db.execute("COMMIT")
        finally:
            self._tx_open = False

    async def rollback(self) -> None:
        try:
            await self._db.execute("ROLLBACK")
        finally:
            self._tx_open = False

    @property
    def in_transaction(self) -> bool:
        return self._tx_open

    async def close(self) -> None:
        await self._db.close()

    def describe(self) -> str:
        return "aiosqlite (sqlite %s)" % aiosqlite.sqlite_version


def qmark_to_numeric(sql: str) -> str:
    """Rewrite '?' placeholders as $1, $2, ... outside quoted literals."""
    out = []
    n = 0
    quote = None
    for ch in sql:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "?":
            n += 1
            out.append("$%d" % n)
            continue
        out.append(ch)
    return "".join(out)


class PostgresDriver(Driver):
    def __init__(self, conn):
        self._conn = conn
        self._tx = None

    @classmethod
    async def open(cls, url: str, user: str, password: str) -> "PostgresDriver":
        try:
            import asyncpg
        except ImportError:
            raise ConnectError(
                "asyncpg is required for PostgreSQL. Install with: pip install asyncpg"
            )
        conn = await asyncpg.connect(
            dsn=url, user=user or None, password=password or None,
            timeout=QUERY_TIMEOUT_SEC, command_timeout=QUERY_TIMEOUT_SEC,
        )
        return cls(conn)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        status = await self._conn.execute(qmark_to_numeric(sql), *params)
        # status looks like "UPDATE 3" or "INSERT 0 1"
        try:
            return int(status.split()[-1])
        except (ValueError, IndexError):
            return -1

    async def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> None:
        await self._conn.executemany(qmark_to_numeric(sql), [tuple(p) for p in seq_of_params])

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        row = await self._conn.fetchrow(qmark_to_numeric(sql), *params)
        return tuple(row) if row is not None else None

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        rows = await self._conn.fetch(qmark_to_numeric(sql), *params)
        return [tuple(r) for r in rows]

    async def begin(self) -> None:
        self._tx = self._conn.transaction()
        await self._tx.start()

    async def commit(self) -> None:
        tx, self._tx = self._tx, None
        if tx is not None:
            await tx.commit()

    async def rollback(self) -> None:
        tx, self._tx = self._tx, None
        if tx is not None:
            await tx.rollback()

    @property
    def in_transaction(self) -> bool:
        return self._tx is not None

    async def close(self) -> None:
        await self._conn.close()

    def describe(self) -> str:
        v = self._conn.get_server_version()
        return "asyncpg (postgresql %d.%d)" % (v.major, v.minor)


async def open_driver(dialect: Dialect, url: str, user: str = "", password: str = "") -> Driver:
    """Open a connection for dialect. Engines without a shipped driver raise ConnectError."""
    if dialect.name == "sqlite":
        return await SQLiteDriver.open(url)
    if dialect.name == "postgresql":
        return await PostgresDriver.open(url, user, password)
    raise ConnectError("No async driver available for %s (%s)" % (dialect.name, url))
