import logging
from typing import TYPE_CHECKING, Optional

from ..errors import NOT_CONNECTED
from .ledger import utcnow

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("storage")


class SettingsRepo:
    """Name/value tunables in the settings table (schema v1200+)."""

    def __init__(self, ctx: "DatabaseContext"):
        self._ctx = ctx

    async def _get(self, name: str):
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        return await self._ctx.fetchone(
            "SELECT string_value, int_value FROM settings WHERE name = ?", (name,)
        )

    async def get_int(self, name: str) -> Optional[int]:
        row = await self._get(name)
        if row is NOT_CONNECTED:
            return NOT_CONNECTED
        return int(row[1]) if row and row[1] is not None else None

    async def get_str(self, name: str) -> Optional[str]:
        row = await self._get(name)
        if row is NOT_CONNECTED:
            return NOT_CONNECTED
        return row[0] if row else None

    async def _put(self, name: str, string_value: Optional[str], int_value: Optional[int]):
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        now = self._ctx.dialect.to_db_timestamp(utcnow())
        async with self._ctx.transaction():
            n = await self._ctx.execute(
                "UPDATE settings SET string_value = ?, int_value = ?, changed_at = ? "
                "WHERE name = ?",
                (string_value, int_value, now, name),
            )
            if n == 0:
                await self._ctx.execute(
                    "INSERT INTO settings (name, string_value, int_value, changed_at) "
                    "VALUES (?, ?, ?, ?)",
                    (name, string_value, int_value, now),
                )
        logger.info("Setting %s changed", name)
        return True

    async def set_int(self, name: str, value: Optional[int]):
        return await self._put(name, None, value)

    async def set_str(self, name: str, value: Optional[str]):
        return await self._put(name, value, None)
