"""
context.py - Connection manager for the account database.

One DatabaseContext per server process. It owns the single connection, the
detected schema version, the statement registry and the credential policy,
and hands them to the repos. A failed query flags the connection; the next
ensure_connected() replaces it using the credentials cached at connect().
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Iterable, List, Optional, Sequence

from ..config import DBConfig
from ..credentials import CredentialPolicy, validate_cost_factor
from ..errors import ConnectError, ConnectionUnavailable, TransactionTimeout
from ._schema import SCHEMA_VERSION_1200, SCHEMA_VERSION_LATEST, SETTING_COST_FACTOR
from .accounts import AccountRepo
from .bg_migration import BackgroundMigrationWorker
from .dialects import DDLOperation, SQLiteDialect, dialect_for
from .drivers import Driver, open_driver
from .sessions import SessionRepo
from .settings import SettingsRepo
from .setup_script import run_setup_script
from .statements import StatementRegistry
from .version import detect_schema_version

logger = logging.getLogger("storage")

# Longest wait for another task to release the connection
LOCK_TIMEOUT_SEC = 30.0


class DatabaseContext:
    """Connection, schema version and statements shared by every DB operation."""

    def __init__(self, config: Optional[DBConfig] = None,
                 policy: Optional[CredentialPolicy] = None):
        self.config = config or DBConfig()
        try:
            self.dialect, self.url = dialect_for(self.config.url, self.config.driver)
        except ValueError as e:
            raise ConnectError(str(e)) from e
        if self.dialect.name == "sqlite" and self.config.sqlite_drop_column is not None:
            self.dialect = SQLiteDialect(self.config.sqlite_drop_column)

        # An explicit policy keeps its cost factor; otherwise config, then settings table
        self._policy_fixed = policy is not None or self.config.cost_factor is not None
        if policy is None:
            policy = CredentialPolicy()
            if self.config.cost_factor is not None:
                policy.cost_factor = self.config.cost_factor
        self.policy = policy

        self.driver: Optional[Driver] = None
        self.schema_version = 0
        self.bg_tasks_from_version = 0
        self.statements: Optional[StatementRegistry] = None
        self.bg_worker = None

        # One task at a time uses the connection; the holder may nest transactions
        self.lock_timeout = LOCK_TIMEOUT_SEC
        self._lock = asyncio.Lock()
        self._lock_owner: asyncio.Task | None = None

        self._user = ""
        self._secret = ""
        self._connected_once = False
        self._shutdown = False
        self._error = False

        self.accounts = AccountRepo(self)
        self.sessions = SessionRepo(self)
        self.settings = SettingsRepo(self)

    # -- state --------------------------------------------------------------

    @property
    def is_latest(self) -> bool:
        return self.schema_version >= SCHEMA_VERSION_LATEST

    @property
    def needs_bg_tasks(self) -> bool:
        return self.bg_tasks_from_version != 0

    @property
    def cost_factor(self) -> int:
        return self.policy.cost_factor

    @property
    def is_connected(self) -> bool:
        return self.driver is not None and not self._shutdown

    def mark_error(self) -> None:
        """Flag the connection; the next ensure_connected() reconnects."""
        self._error = True

    # -- lifecycle ----------------------------------------------------------

    async def connect(self, user: str = "", secret: str = "",
                      setup_script: Optional[str] = None) -> None:
        """Open the database, run an optional setup script, detect the schema.

        Raises ConnectError for any failure, leaving the context disconnected.
        """
        await self._close_driver()
        self._user, self._secret = user, secret
        self._shutdown = False
        try:
            self.driver = await open_driver(self.dialect, self.url, user, secret)
            self._error = False
            self._connected_once = True
            if setup_script:
                await run_setup_script(self, setup_script)
            await self._load_state()
        except Exception as e:
            self._connected_once = False
            await self._close_driver()
            if isinstance(e, ConnectError):
                raise
            raise ConnectError("Could not connect to DB (%s): %s" % (self.url, e)) from e

        logger.info(
            "DB connected: %s via %s, schema version %d",
            self.url, self.driver.describe(), self.schema_version,
        )

    async def _load_state(self) -> None:
        info = await detect_schema_version(self)
        self.schema_version = info.version
        self.bg_tasks_from_version = info.bg_tasks_from_version
        self.statements = StatementRegistry.build(info.version)
        await self._load_settings()

    async def _load_settings(self) -> None:
        if self.schema_version < SCHEMA_VERSION_1200 or self._policy_fixed:
            return
        row = await self.driver.fetchone(
            "SELECT int_value FROM settings WHERE name = ?", (SETTING_COST_FACTOR,)
        )
        if not row or row[0] is None:
            return
        try:
            self.policy.cost_factor = validate_cost_factor(int(row[0]))
        except ValueError as e:
            logger.warning("Ignoring DB setting %s: %s", SETTING_COST_FACTOR, e)

    async def reload_state(self) -> None:
        """Re-derive version, statements and settings after a schema change."""
        await self._load_state()

    async def ensure_connected(self) -> bool:
        """True if usable. Reconnects only after a flagged error."""
        if self._shutdown or not self._connected_once:
            return False
        if self.driver is not None and not self._error:
            return True
        if self.driver is not None and (self.driver.in_transaction or self._held_elsewhere()):
            # the holder rolls back or finishes; reconnect after it releases
            return True
        if self.driver is not None and not self.driver.reopenable:
            self._error = False
            return True

        logger.info("Reconnecting to DB after error")
        await self._close_driver()
        try:
            self.driver = await open_driver(self.dialect, self.url, self._user, self._secret)
            self._error = False
            await self._load_state()
        except Exception:
            logger.exception("DB reconnect failed")
            self._error = True
            await self._close_driver()
            return False
        return True

    async def _close_driver(self) -> None:
        driver, self.driver = self.driver, None
        if driver is None:
            return
        try:
            await driver.close()
        except Exception as e:
            logger.warning("Error closing DB connection: %s", e)

    async def close(self, for_shutdown: bool = False) -> None:
        """Stop the background worker and close the connection.

        After a shutdown close, ensure_connected() stays False.
        """
        if self.bg_worker is not None:
            await self.bg_worker.stop()
        await self._close_driver()
        if for_shutdown:
            self._shutdown = True
            logger.info("DB closed for shutdown")
        else:
            self._error = True

    # -- connection ownership -----------------------------------------------

    def _holds_lock(self) -> bool:
        return self._lock_owner is not None and self._lock_owner is asyncio.current_task()

    def _held_elsewhere(self) -> bool:
        return self._lock.locked() and not self._holds_lock()

    async def _acquire(self) -> None:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError:
            raise TransactionTimeout(
                "Waited %.1fs for another task to release the DB connection" % self.lock_timeout
            ) from None
        self._lock_owner = asyncio.current_task()

    def _release(self) -> None:
        self._lock_owner = None
        self._lock.release()

    @asynccontextmanager
    async def _using_driver(self):
        """Yield the driver for one statement, waiting out other tasks' transactions."""
        if self._holds_lock():
            yield await self._require()
            return
        await self._acquire()
        try:
            yield await self._require()
        finally:
            self._release()

    # -- queries ------------------------------------------------------------

    async def _require(self) -> Driver:
        if not await self.ensure_connected():
            raise ConnectionUnavailable("Not connected to DB")
        return self.driver

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        async with self._using_driver() as driver:
            try:
                return await driver.execute(sql, params)
            except Exception:
                self._error = True
                raise

    async def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> None:
        async with self._using_driver() as driver:
            try:
                await driver.executemany(sql, seq_of_params)
            except Exception:
                self._error = True
                raise

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        async with self._using_driver() as driver:
            try:
                return await driver.fetchone(sql, params)
            except Exception:
                self._error = True
                raise

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        async with self._using_driver() as driver:
            try:
                return await driver.fetchall(sql, params)
            except Exception:
                self._error = True
                raise

    async def select_with_limit(self, sql: str, limit: int,
                                params: Sequence[Any] = ()) -> List[tuple]:
        return await self.fetchall(self.dialect.limit_clause(sql, limit), params)

    async def run_ddl(self, op: DDLOperation) -> None:
        for sql in self.dialect.ddl_for(op):
            logger.debug("DDL: %s", sql)
            await self.execute(sql)

    @asynccontextmanager
    async def transaction(self):
        """Run the block in one transaction.

        A block nested in the same task joins the open transaction. Other
        tasks wait until it commits or rolls back; TransactionTimeout if
        that takes longer than lock_timeout.
        """
        if self._holds_lock():
            yield self
            return

        await self._acquire()
        try:
            driver = await self._require()
            await driver.begin()
            try:
                yield self
            except BaseException:
                try:
                    await driver.rollback()
                except Exception:
                    logger.exception("Rollback failed")
                    self._error = True
                raise
            try:
                await driver.commit()
            except Exception:
                self._error = True
                raise
        finally:
            self._release()

    # -- introspection ------------------------------------------------------

    async def table_exists(self, name: str) -> bool:
        """Case-insensitive table lookup."""
        sql = self.dialect.table_names_sql()
        async with self._using_driver() as driver:
            if sql is not None:
                rows = await driver.fetchall(sql)
                return name.lower() in {str(r[0]).lower() for r in rows}
            try:
                await driver.fetchone(self.dialect.limit_clause("SELECT * FROM %s" % name, 1))
            except Exception as e:
                logger.debug("Table probe for %s failed: %s", name, e)
                return False
            return True

    async def column_exists(self, table: str, column: str) -> bool:
        sql, counts = self.dialect.column_probe(table, column)
        async with self._using_driver() as driver:
            if counts:
                row = await driver.fetchone(sql)
                return bool(row and row[0])
            try:
                await driver.fetchone(sql)
            except Exception as e:
                logger.debug("Column probe for %s.%s failed: %s", table, column, e)
                return False
            return True

    # -- background migration ----------------------------------------------

    def start_background_migration(self, **kwargs) -> bool:
        """Start the credential migration worker if the ledger says work is pending.

        Returns False if nothing is pending or a worker is already running.
        """
        if not self.needs_bg_tasks:
            return False
        if self.bg_worker is not None and self.bg_worker.is_alive:
            return False
        self.bg_worker = BackgroundMigrationWorker(self, **kwargs)
        return self.bg_worker.start()
