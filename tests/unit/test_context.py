"""
test_context.py - Unit tests for DatabaseContext.

Connection lifecycle, reconnect after a flagged error, transactions,
introspection helpers and settings-driven cost factor, on temp-file SQLite.
"""

import asyncio

import pytest

from gameserver.config import DBConfig
from gameserver.credentials import DEFAULT_COST_FACTOR
from gameserver.errors import NOT_CONNECTED, ConnectError, ConnectionUnavailable, TransactionTimeout
from gameserver.storage import (
    LATEST_SCHEMA_SQL,
    LEGACY_SCHEMA_SQL,
    SCHEMA_VERSION_ORIGINAL,
    DatabaseContext,
)
from gameserver.storage._schema import SETTING_COST_FACTOR

pytestmark = pytest.mark.asyncio


class TestLifecycle:

    async def test_not_connected_before_connect(self):
        ctx = DatabaseContext(DBConfig(url="sqlite:///:memory:"))
        assert not await ctx.ensure_connected()
        assert await ctx.accounts.get_user("alice") is NOT_CONNECTED
        assert await ctx.accounts.count_users() is NOT_CONNECTED
        assert not NOT_CONNECTED

    async def test_empty_db_is_original_version(self, make_ctx):
        ctx = await make_ctx()
        assert await ctx.ensure_connected()
        assert ctx.schema_version == SCHEMA_VERSION_ORIGINAL
        assert not ctx.is_latest
        assert ctx.statements is not None

    async def test_shutdown_close(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        await ctx.close(for_shutdown=True)
        assert not await ctx.ensure_connected()
        with pytest.raises(ConnectionUnavailable):
            await ctx.fetchone("SELECT 1")

    async def test_plain_close_reconnects_on_next_use(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        await ctx.close()
        assert await ctx.ensure_connected()
        assert await ctx.table_exists("users")

    async def test_no_reconnect_without_error(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        driver = ctx.driver
        assert await ctx.ensure_connected()
        assert ctx.driver is driver

    async def test_reconnect_after_flagged_error(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        driver = ctx.driver
        with pytest.raises(Exception):
            await ctx.execute("SELECT * FROM no_such_table")
        assert await ctx.ensure_connected()
        assert ctx.driver is not driver
        assert ctx.schema_version == SCHEMA_VERSION_ORIGINAL

    async def test_memory_db_is_kept_after_error(self):
        ctx = DatabaseContext(DBConfig(url="sqlite:///:memory:"))
        await ctx.connect()
        await ctx.execute("CREATE TABLE t (x INT)")
        ctx.mark_error()
        assert await ctx.ensure_connected()
        assert await ctx.table_exists("t")
        await ctx.close(for_shutdown=True)

    async def test_unopenable_db(self, tmp_path):
        # a directory can't be opened as a database file
        ctx = DatabaseContext(DBConfig(url="sqlite:///%s" % tmp_path))
        with pytest.raises(ConnectError):
            await ctx.connect()
        assert not await ctx.ensure_connected()

    async def test_engine_without_driver(self):
        ctx = DatabaseContext(DBConfig(url="mysql://localhost/game"))
        with pytest.raises(ConnectError, match="No async driver"):
            await ctx.connect()

    async def test_bad_config(self):
        with pytest.raises(ConnectError):
            DatabaseContext(DBConfig(url="foo://x"))


class TestTransactions:

    async def test_commit(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        async with ctx.transaction():
            await ctx.execute("INSERT INTO t VALUES (1)")
            await ctx.execute("INSERT INTO t VALUES (2)")
        assert (await ctx.fetchone("SELECT count(*) FROM t"))[0] == 2
        assert ctx.driver.autocommit

    async def test_rollback_on_exception(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        with pytest.raises(RuntimeError):
            async with ctx.transaction():
                await ctx.execute("INSERT INTO t VALUES (1)")
                raise RuntimeError("boom")
        assert (await ctx.fetchone("SELECT count(*) FROM t"))[0] == 0
        assert ctx.driver.autocommit

    async def test_nested_joins_outer(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        with pytest.raises(RuntimeError):
            async with ctx.transaction():
                async with ctx.transaction():
                    await ctx.execute("INSERT INTO t VALUES (1)")
                assert ctx.driver.in_transaction
                raise RuntimeError("boom")
        assert (await ctx.fetchone("SELECT count(*) FROM t"))[0] == 0

    async def test_other_task_waits_instead_of_joining(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        opened = asyncio.Event()
        order = []

        async def rolls_back():
            with pytest.raises(RuntimeError):
                async with ctx.transaction():
                    await ctx.execute("INSERT INTO t VALUES (1)")
                    opened.set()
                    await asyncio.sleep(0.1)
                    order.append("rollback")
                    raise RuntimeError("boom")

        async def commits():
            await opened.wait()
            async with ctx.transaction():
                order.append("second")
                await ctx.execute("INSERT INTO t VALUES (2)")

        await asyncio.gather(rolls_back(), commits())
        assert order == ["rollback", "second"]
        assert await ctx.fetchall("SELECT x FROM t") == [(2,)]

    async def test_statement_waits_for_other_transaction(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        opened = asyncio.Event()

        async def rolls_back():
            with pytest.raises(RuntimeError):
                async with ctx.transaction():
                    opened.set()
                    await asyncio.sleep(0.1)
                    raise RuntimeError("boom")

        async def inserts():
            await opened.wait()
            await ctx.execute("INSERT INTO t VALUES (3)")

        await asyncio.gather(rolls_back(), inserts())
        assert await ctx.fetchall("SELECT x FROM t") == [(3,)]

    async def test_wait_times_out(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        ctx.lock_timeout = 0.05
        opened = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with ctx.transaction():
                opened.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await opened.wait()
        with pytest.raises(TransactionTimeout):
            await ctx.execute("INSERT INTO t VALUES (1)")
        release.set()
        await task
        assert (await ctx.fetchone("SELECT count(*) FROM t"))[0] == 0


class TestIntrospection:

    async def test_table_exists_ignores_case(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        assert await ctx.table_exists("users")
        assert await ctx.table_exists("Session_Results")
        assert not await ctx.table_exists("settings")

    async def test_underscore_is_not_a_wildcard(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        assert not await ctx.table_exists("sessionXresults")
        assert not await ctx.column_exists("users", "nickXname")

    async def test_column_exists(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        assert await ctx.column_exists("users", "nickname")
        assert await ctx.column_exists("users", "NICKNAME")
        assert not await ctx.column_exists("users", "nickname_lc")
        assert not await ctx.column_exists("no_such_table", "x")

    async def test_select_with_limit(self, make_ctx):
        ctx = await make_ctx()
        await ctx.execute("CREATE TABLE t (x INT)")
        await ctx.executemany("INSERT INTO t VALUES (?)", [(i,) for i in range(20)])
        rows = await ctx.select_with_limit("SELECT x FROM t WHERE x >= ? ORDER BY x", 5, (3,))
        assert [r[0] for r in rows] == [3, 4, 5, 6, 7]


class TestCostFactorSetting:

    async def test_default_without_setting(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL, test_policy=False)
        assert ctx.cost_factor == DEFAULT_COST_FACTOR

    async def test_read_from_settings(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL, test_policy=False)
        assert await ctx.settings.set_int(SETTING_COST_FACTOR, 10)
        await ctx.reload_state()
        assert ctx.cost_factor == 10
        assert await ctx.settings.get_int(SETTING_COST_FACTOR) == 10

    async def test_out_of_range_setting_ignored(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL, test_policy=False)
        await ctx.settings.set_int(SETTING_COST_FACTOR, 40)
        await ctx.reload_state()
        assert ctx.cost_factor == DEFAULT_COST_FACTOR

    async def test_config_overrides_setting(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL, test_policy=False, cost_factor=11)
        await ctx.settings.set_int(SETTING_COST_FACTOR, 10)
        await ctx.reload_state()
        assert ctx.cost_factor == 11

    async def test_string_settings(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        assert await ctx.settings.get_str("motd") is None
        await ctx.settings.set_str("motd", "hello")
        await ctx.settings.set_str("motd", "hello again")
        assert await ctx.settings.get_str("motd") == "hello again"
        rows = await ctx.fetchall("SELECT name FROM settings WHERE name = 'motd'")
        assert len(rows) == 1
