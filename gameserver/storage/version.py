import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import IncompleteUpgradeError
from ._schema import LEDGER_TABLE, SCHEMA_VERSION_1200, SCHEMA_VERSION_ORIGINAL

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("storage")


@dataclass
class VersionInfo:
    version: int
    # 0 unless an upgrade's background tasks are still pending
    bg_tasks_from_version: int = 0


async def detect_schema_version(ctx: "DatabaseContext") -> VersionInfo:
    """Determine the installed schema version.

    The ledger table is authoritative when it has rows. A ledger row whose
    DDL never finished is fatal; an unfinished background phase is reported
    so the host can restart the worker. Older databases have no ledger, so
    the version is inferred from a column only v1200 has.
    """
    version = -1
    if await ctx.table_exists(LEDGER_TABLE):
        row = await ctx.driver.fetchone("SELECT max(to_version) FROM %s" % LEDGER_TABLE)
        if row and row[0] is not None:
            version = int(row[0])

    if version > 0:
        row = await ctx.driver.fetchone(
            "SELECT from_version, ddl_done, bg_tasks_done FROM %s WHERE to_version = ?"
            % LEDGER_TABLE,
            (version,),
        )
        from_version = int(row[0]) if row else 0
        if row and row[1] is None:
            raise IncompleteUpgradeError(from_version, version)
        if row and row[2] is None:
            logger.warning(
                "Schema upgrade background tasks from v%d to v%d are incomplete per ledger",
                from_version, version,
            )
            return VersionInfo(version, from_version)
        return VersionInfo(version)

    if await ctx.column_exists("users", "nickname_lc"):
        logger.warning(
            "DB schema version appears to be %d, but missing from %s table",
            SCHEMA_VERSION_1200, LEDGER_TABLE,
        )
        return VersionInfo(SCHEMA_VERSION_1200)
    return VersionInfo(SCHEMA_VERSION_ORIGINAL)
