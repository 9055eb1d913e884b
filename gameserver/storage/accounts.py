import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from ..credentials import MAX_SECRET_LENGTH, EncodingScheme
from ..errors import NOT_CONNECTED
from ._schema import ENCODED_PASSWORD_PLACEHOLDER
from .ledger import utcnow

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("accounts")


def check_secret(secret: str) -> None:
    if secret is None or not (1 <= len(secret) <= MAX_SECRET_LENGTH):
        raise ValueError("Password must be 1 to %d characters" % MAX_SECRET_LENGTH)


class AccountRepo:
    """User accounts and login history.

    Under schema 1200 accounts are looked up case-insensitively through
    nickname_lc; the legacy schema matches nickname exactly.
    """

    def __init__(self, ctx: "DatabaseContext"):
        self._ctx = ctx

    def _key(self, name: str) -> str:
        return name.lower() if self._ctx.is_latest else name

    def _ts(self, when: Optional[datetime]):
        return self._ctx.dialect.to_db_timestamp(when or utcnow())

    async def get_user(self, name: str) -> Optional[str]:
        """Original-case nickname of an existing account, or None."""
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        row = await self._ctx.fetchone(self._ctx.statements["user_exists"], (self._key(name),))
        return row[0] if row else None

    async def authenticate(self, name: str, secret: str) -> Optional[str]:
        """Original-case nickname if secret matches the stored credential, else None."""
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        row = await self._ctx.fetchone(
            self._ctx.statements["credential_lookup"], (self._key(name),)
        )
        if row is None:
            return None

        nickname, password = row[0], row[1]
        # a null scheme is a legacy plaintext row; any other scheme reads credential_store
        scheme = row[2] if len(row) > 2 and row[2] is not None else EncodingScheme.NONE
        stored = password if scheme == EncodingScheme.NONE else row[3]

        if scheme == EncodingScheme.NONE:
            ok = self._ctx.policy.verify(scheme, secret, stored)
        else:
            ok = await asyncio.to_thread(self._ctx.policy.verify, scheme, secret, stored)
        if not ok:
            logger.info("Authentication failed for %s", nickname)
            return None
        return nickname

    async def create_account(self, name: str, host: str, secret: str,
                             email: Optional[str] = None,
                             now: Optional[datetime] = None):
        """Insert a new account; under schema 1200 the credential is encoded at once."""
        check_secret(secret)
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        ts = self._ts(now)
        if self._ctx.is_latest:
            policy = self._ctx.policy
            store = await asyncio.to_thread(policy.encode, secret)
            params = (name, host, email, ts, ts, name.lower(), int(policy.scheme), store, ts)
        else:
            params = (name, host, secret, email, ts, ts)
        await self._ctx.execute(self._ctx.statements["create_account"], params)
        logger.info("Created account %s", name)
        return True

    async def update_credential(self, name: str, secret: str):
        """Replace an account's password. False if there is no such account."""
        check_secret(secret)
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        if self._ctx.is_latest:
            policy = self._ctx.policy
            store = await asyncio.to_thread(policy.encode, secret)
            params = (int(policy.scheme), store, self._ts(None), name.lower())
        else:
            params = (secret, name)
        async with self._ctx.transaction():
            n = await self._ctx.execute(self._ctx.statements["credential_update"], params)
        if n == 0:
            return False
        logger.info("Password changed for %s", name)
        return True

    async def record_login(self, name: str, host: str, when: Optional[datetime] = None):
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        await self._ctx.execute(
            self._ctx.statements["record_login"], (name, host, self._ts(when))
        )
        return True

    async def update_last_login(self, name: str, when: Optional[datetime] = None):
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        n = await self._ctx.execute(
            self._ctx.statements["last_login_update"], (self._ts(when), name)
        )
        return n > 0

    async def get_user_from_host(self, host: str) -> Optional[str]:
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        row = await self._ctx.fetchone(self._ctx.statements["host_lookup"], (host,))
        return row[0] if row else None

    async def count_users(self):
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        row = await self._ctx.fetchone(self._ctx.statements["user_count"])
        return int(row[0]) if row else 0

    async def query_duplicate_lowercase(self) -> Dict[str, List[str]]:
        """Nicknames that collide once lowercased: lowercase name -> original names."""
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED
        groups: Dict[str, List[str]] = {}
        for (nickname,) in await self._ctx.fetchall("SELECT nickname FROM users"):
            groups.setdefault(nickname.lower(), []).append(nickname)
        return {lc: sorted(names) for lc, names in groups.items() if len(names) > 1}


async def encode_legacy_credentials(ctx: "DatabaseContext", names_lc: Sequence[str]) -> List[str]:
    """Encode the legacy passwords of the given accounts in one transaction.

    Accounts that are missing or already encoded are skipped. Hashing runs in
    a worker thread before the transaction opens. Returns the lowercase
    nicknames actually converted.
    """
    if not names_lc:
        return []
    policy = ctx.policy
    pending = []
    for name_lc in names_lc:
        row = await ctx.fetchone(
            "SELECT password FROM users WHERE nickname_lc = ? AND credential_store IS NULL",
            (name_lc,),
        )
        if row is None:
            continue
        pending.append((name_lc, row[0]))

    encoded = []
    for name_lc, password in pending:
        store = await asyncio.to_thread(policy.encode, password)
        encoded.append((name_lc, store))

    now = ctx.dialect.to_db_timestamp(utcnow())
    converted = []
    async with ctx.transaction():
        for name_lc, store in encoded:
            n = await ctx.execute(
                "UPDATE users SET password = ?, encoding_scheme = ?, credential_store = ?, "
                "credential_changed_at = ? WHERE nickname_lc = ? AND credential_store IS NULL",
                (ENCODED_PASSWORD_PLACEHOLDER, int(policy.scheme), store, now, name_lc),
            )
            if n:
                converted.append(name_lc)
    return converted
