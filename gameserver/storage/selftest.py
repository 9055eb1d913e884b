"""
selftest.py - DB self-tests for --test-db.

Exercises the dialect and driver against the live database using a scratch
table, so an administrator can check an engine before trusting it with an
upgrade. The scratch table is dropped even when a check fails.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from ..errors import SelfTestFailed
from .dialects import AddColumn, Column, CreateIndex, CreateTable, DropColumns, DropIndex, DropTable
from .ledger import utcnow

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("storage")

FIXTURE_TABLE = "gamesxyz2"
FIXTURE_INDEX = "gamesxyz2__n"
FIXTURE_ROWS = 100


@dataclass
class SelfTestResult:
    name: str
    ok: bool
    detail: str = ""


def _check(cond: bool, message: str):
    if not cond:
        raise AssertionError(message)


async def _probes(ctx: "DatabaseContext"):
    _check(await ctx.table_exists("users"), "users table not found")
    _check(await ctx.table_exists("USERS"), "table lookup is case-sensitive")
    _check(not await ctx.table_exists("session_resultz"), "phantom table found")
    # '_' must not act as a wildcard
    _check(not await ctx.table_exists("user_"), "'_' matched as wildcard")
    _check(await ctx.column_exists("users", "nickname"), "users.nickname not found")
    _check(not await ctx.column_exists("users", "nick_ame"), "phantom column found")


async def _create_fixture(ctx: "DatabaseContext"):
    await ctx.run_ddl(CreateTable(
        FIXTURE_TABLE,
        (Column("gname", "VARCHAR(20)", nullable=False), Column("player1", "VARCHAR(20)"),
         Column("started_at", "TIMESTAMP")),
    ))
    await ctx.run_ddl(AddColumn(FIXTURE_TABLE, Column("player5", "VARCHAR(20)")))
    await ctx.run_ddl(AddColumn(FIXTURE_TABLE, Column("duration_sec", "INT")))
    _check(await ctx.column_exists(FIXTURE_TABLE, "player5"), "added column not found")
    await ctx.run_ddl(CreateIndex(FIXTURE_INDEX, FIXTURE_TABLE, "gname", unique=True))


async def _batch_insert(ctx: "DatabaseContext"):
    now = ctx.dialect.to_db_timestamp(utcnow())
    sql = "INSERT INTO %s (gname, player1, started_at, duration_sec) VALUES (?, ?, ?, ?)" % FIXTURE_TABLE
    async with ctx.transaction():
        for batch in range(2):
            rows = [("g%d_%d" % (batch, i), "p%d" % i, now, i) for i in range(FIXTURE_ROWS)]
            # nested block joins the outer transaction; both commits must succeed
            async with ctx.transaction():
                await ctx.executemany(sql, rows)
    row = await ctx.fetchone("SELECT count(*) FROM %s" % FIXTURE_TABLE)
    _check(row[0] == 2 * FIXTURE_ROWS, "expected %d rows, got %s" % (2 * FIXTURE_ROWS, row[0]))


async def _limit(ctx: "DatabaseContext"):
    rows = await ctx.select_with_limit("SELECT gname FROM %s ORDER BY gname" % FIXTURE_TABLE, 5)
    _check(len(rows) == 5, "select_with_limit returned %d rows" % len(rows))


async def _unique_index(ctx: "DatabaseContext"):
    try:
        await ctx.execute(
            "INSERT INTO %s (gname) VALUES (?)" % FIXTURE_TABLE, ("g0_0",)
        )
    except Exception:
        return
    raise AssertionError("unique index accepted a duplicate")


async def _drop_index(ctx: "DatabaseContext"):
    await ctx.run_ddl(DropIndex(FIXTURE_INDEX, FIXTURE_TABLE))


async def _drop_columns(ctx: "DatabaseContext"):
    if not ctx.dialect.can_drop_column():
        logger.info("Skipping column drop: %s can't drop columns", ctx.dialect.name)
        return
    await ctx.run_ddl(DropColumns(FIXTURE_TABLE, ("player5", "duration_sec")))
    _check(not await ctx.column_exists(FIXTURE_TABLE, "player5"), "dropped column still present")


CHECKS = [
    ("table and column probes", _probes),
    ("create scratch table", _create_fixture),
    ("batch insert in one transaction", _batch_insert),
    ("select with limit", _limit),
    ("unique index", _unique_index),
    ("drop index", _drop_index),
    ("drop columns", _drop_columns),
]


async def run_self_tests(ctx: "DatabaseContext") -> List[SelfTestResult]:
    """Run every check in order, stopping at the first failure.

    Raises SelfTestFailed listing what failed.
    """
    results: List[SelfTestResult] = []
    if await ctx.table_exists(FIXTURE_TABLE):
        await ctx.run_ddl(DropTable(FIXTURE_TABLE))

    try:
        for name, check in CHECKS:
            try:
                await check(ctx)
            except Exception as e:
                logger.error("DB self-test failed: %s: %s", name, e)
                results.append(SelfTestResult(name, False, str(e)))
                break
            logger.info("DB self-test passed: %s", name)
            results.append(SelfTestResult(name, True))
    finally:
        if await ctx.table_exists(FIXTURE_TABLE):
            await ctx.run_ddl(DropTable(FIXTURE_TABLE))

    failed = [r for r in results if not r.ok]
    if failed:
        raise SelfTestFailed(
            "DB self-test failed: " + "; ".join("%s (%s)" % (r.name, r.detail) for r in failed)
        )
    return results
