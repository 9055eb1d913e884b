"""Version ledger: one row per schema transition, stamped as each phase completes."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from .dialects import TIMESTAMP_NULL, Column, CreateTable, DropTable
from ._schema import LEDGER_TABLE

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("storage")

LEDGER_DDL = CreateTable(
    LEDGER_TABLE,
    (
        Column("from_version", "INT", nullable=False),
        Column("to_version", "INT", nullable=False),
        Column("ddl_done", TIMESTAMP_NULL),
        Column("bg_tasks_done", TIMESTAMP_NULL),
    ),
    primary_key=("to_version",),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


@dataclass
class LedgerEntry:
    from_version: int
    to_version: int
    ddl_done: Optional[object] = None
    bg_tasks_done: Optional[object] = None


class VersionLedger:
    """Reads and stamps schema_version rows."""

    def __init__(self, ctx: "DatabaseContext"):
        self._ctx = ctx

    async def exists(self) -> bool:
        return await self._ctx.table_exists(LEDGER_TABLE)

    async def create(self) -> None:
        await self._ctx.run_ddl(LEDGER_DDL)

    async def drop(self) -> None:
        await self._ctx.run_ddl(DropTable(LEDGER_TABLE))

    async def begin_transition(self, from_version: int, to_version: int) -> None:
        await self._ctx.execute(
            "INSERT INTO %s (from_version, to_version, ddl_done, bg_tasks_done) "
            "VALUES (?, ?, NULL, NULL)" % LEDGER_TABLE,
            (from_version, to_version),
        )

    async def discard_transition(self, to_version: int) -> None:
        await self._ctx.execute(
            "DELETE FROM %s WHERE to_version = ? AND ddl_done IS NULL" % LEDGER_TABLE,
            (to_version,),
        )

    async def mark_ddl_done(self, to_version: int, bg_tasks_done: bool) -> None:
        now = self._ctx.dialect.to_db_timestamp(utcnow())
        await self._ctx.execute(
            "UPDATE %s SET ddl_done = ?, bg_tasks_done = ? WHERE to_version = ?" % LEDGER_TABLE,
            (now, now if bg_tasks_done else None, to_version),
        )

    async def mark_bg_tasks_done(self, to_version: int) -> int:
        now = self._ctx.dialect.to_db_timestamp(utcnow())
        return await self._ctx.execute(
            "UPDATE %s SET bg_tasks_done = ? WHERE bg_tasks_done IS NULL AND to_version = ?"
            % LEDGER_TABLE,
            (now, to_version),
        )

    async def get(self, to_version: int) -> Optional[LedgerEntry]:
        row = await self._ctx.fetchone(
            "SELECT from_version, to_version, ddl_done, bg_tasks_done FROM %s "
            "WHERE to_version = ?" % LEDGER_TABLE,
            (to_version,),
        )
        return LedgerEntry(*row) if row else None

    async def list_all(self) -> List[LedgerEntry]:
        rows = await self._ctx.fetchall(
            "SELECT from_version, to_version, ddl_done, bg_tasks_done FROM %s "
            "ORDER BY to_version" % LEDGER_TABLE
        )
        return [LedgerEntry(*r) for r in rows]
