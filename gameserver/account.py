"""
account.py - Account service.

Login and registration rules on top of the account database. With no
database the server runs account-less: every login is accepted and
nothing is recorded.
"""

import logging
from typing import TYPE_CHECKING, Optional

from .errors import NOT_CONNECTED

if TYPE_CHECKING:
    from gameserver.storage import DatabaseContext, SessionResult

logger = logging.getLogger("accounts")


class AccountService:
    """Account rules backed by DatabaseContext's repos."""

    def __init__(self, ctx: "DatabaseContext", save_sessions: bool = False):
        self._ctx = ctx
        self.save_sessions = save_sessions

    async def register(self, nickname: str, password: str, host: str = "",
                       email: Optional[str] = None) -> str:
        """Create an account. ValueError if taken or invalid, RuntimeError without a DB."""
        if not nickname or len(nickname) > 20:
            raise ValueError("Nickname must be 1 to 20 characters")
        existing = await self._ctx.accounts.get_user(nickname)
        if existing is NOT_CONNECTED:
            raise RuntimeError("Account database is not available")
        if existing is not None:
            raise ValueError("Nickname %s is already in use" % existing)
        await self._ctx.accounts.create_account(nickname, host, password, email)
        return nickname

    async def login(self, nickname: str, password: str, host: str = "") -> dict:
        """Check credentials and record the login.

        Unregistered nicknames may log in with an empty password.
        Raises PermissionError on a rejected password.
        """
        existing = await self._ctx.accounts.get_user(nickname)
        if existing is NOT_CONNECTED:
            return {"nickname": nickname, "registered": False}
        if existing is None:
            if password:
                raise PermissionError("No account named %s" % nickname)
            return {"nickname": nickname, "registered": False}

        authed = await self._ctx.accounts.authenticate(nickname, password)
        if not authed:
            raise PermissionError("Incorrect password for %s" % nickname)
        await self._ctx.accounts.record_login(authed, host)
        await self._ctx.accounts.update_last_login(authed)
        logger.info("Login: %s from %s", authed, host or "?")
        return {"nickname": authed, "registered": True}

    async def change_password(self, nickname: str, old_password: str, new_password: str) -> None:
        authed = await self._ctx.accounts.authenticate(nickname, old_password)
        if authed is NOT_CONNECTED:
            raise RuntimeError("Account database is not available")
        if not authed:
            raise PermissionError("Incorrect password for %s" % nickname)
        await self._ctx.accounts.update_credential(authed, new_password)

    async def save_session(self, result: "SessionResult") -> bool:
        if not self.save_sessions:
            return False
        saved = await self._ctx.sessions.save_session_result(result)
        return bool(saved)

    async def status(self) -> dict:
        ctx = self._ctx
        connected = await ctx.ensure_connected()
        users = await ctx.accounts.count_users() if connected else None
        return {
            "db_connected": connected,
            "schema_version": ctx.schema_version if connected else None,
            "schema_latest": ctx.is_latest if connected else None,
            "bg_tasks_pending": ctx.needs_bg_tasks if connected else False,
            "cost_factor": ctx.cost_factor,
            "users": users,
        }
