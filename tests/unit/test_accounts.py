"""
test_accounts.py - Unit tests for AccountRepo on both schema versions.
"""

from datetime import datetime

import pytest

from gameserver.credentials import EncodingScheme
from gameserver.storage import LATEST_SCHEMA_SQL, LEGACY_SCHEMA_SQL

pytestmark = pytest.mark.asyncio


class TestLatestSchema:

    async def test_create_encodes_immediately(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        assert await ctx.accounts.create_account("Dave", "10.0.0.5", "davepw", "d@example.com")
        row = await ctx.fetchone(
            "SELECT password, nickname_lc, encoding_scheme, credential_store, "
            "credential_changed_at FROM users WHERE nickname = 'Dave'"
        )
        assert row[0] == "!"
        assert row[1] == "dave"
        assert row[2] == EncodingScheme.BCRYPT
        assert row[3] and row[3] != "davepw"
        assert row[4] is not None

    async def test_lookup_ignores_case(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.accounts.create_account("Dave", "", "davepw")
        assert await ctx.accounts.get_user("DAVE") == "Dave"
        assert await ctx.accounts.get_user("nobody") is None

    async def test_authenticate(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.accounts.create_account("Dave", "", "davepw")
        assert await ctx.accounts.authenticate("dave", "davepw") == "Dave"
        assert await ctx.accounts.authenticate("Dave", "wrong") is None
        assert await ctx.accounts.authenticate("nobody", "davepw") is None

    async def test_unconverted_row_uses_plaintext(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.execute(
            "INSERT INTO users (nickname, host, password, nickname_lc) VALUES (?, ?, ?, ?)",
            ("Old", "", "oldpw", "old"),
        )
        assert await ctx.accounts.authenticate("OLD", "oldpw") == "Old"
        assert await ctx.accounts.authenticate("old", "!") is None

    async def test_unknown_stored_scheme_rejected(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.execute(
            "INSERT INTO users (nickname, password, nickname_lc, encoding_scheme, credential_store) "
            "VALUES (?, ?, ?, ?, ?)",
            ("Odd", "!", "odd", 9, "oddpw"),
        )
        assert await ctx.accounts.authenticate("odd", "oddpw") is None

    async def test_scheme_without_store_ignores_plaintext(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.executemany(
            "INSERT INTO users (nickname, password, nickname_lc, encoding_scheme) "
            "VALUES (?, ?, ?, ?)",
            [("Odd", "oddpw", "odd", 9), ("Half", "halfpw", "half", int(EncodingScheme.BCRYPT))],
        )
        assert await ctx.accounts.authenticate("odd", "oddpw") is None
        assert await ctx.accounts.authenticate("half", "halfpw") is None

    async def test_update_credential(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.accounts.create_account("Dave", "", "davepw")
        assert await ctx.accounts.update_credential("DAVE", "newpw") is True
        assert await ctx.accounts.authenticate("dave", "davepw") is None
        assert await ctx.accounts.authenticate("dave", "newpw") == "Dave"
        assert await ctx.accounts.update_credential("ghost", "newpw") is False

    @pytest.mark.parametrize("secret", ["", "x" * 21])
    async def test_secret_length(self, make_ctx, secret):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.accounts.create_account("Dave", "", "davepw")
        with pytest.raises(ValueError):
            await ctx.accounts.update_credential("Dave", secret)
        with pytest.raises(ValueError):
            await ctx.accounts.create_account("Other", "", secret)

    async def test_duplicate_nickname_any_case(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.accounts.create_account("Dave", "", "davepw")
        with pytest.raises(Exception):
            await ctx.accounts.create_account("DAVE", "", "davepw")


class TestLegacySchema:

    async def test_plaintext_and_exact_case(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        await ctx.accounts.create_account("Alice", "", "alicepw")
        row = await ctx.fetchone("SELECT password FROM users WHERE nickname = 'Alice'")
        assert row[0] == "alicepw"
        assert await ctx.accounts.get_user("Alice") == "Alice"
        assert await ctx.accounts.get_user("alice") is None
        assert await ctx.accounts.authenticate("Alice", "alicepw") == "Alice"
        assert await ctx.accounts.authenticate("Alice", "nope") is None

    async def test_update_credential(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        await ctx.accounts.create_account("Alice", "", "alicepw")
        assert await ctx.accounts.update_credential("Alice", "changed")
        assert await ctx.accounts.authenticate("Alice", "changed") == "Alice"

    async def test_duplicate_lowercase_report(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        for name in ("Bob", "bob", "BOB", "carol", "Dave"):
            await ctx.accounts.create_account(name, "", "pw")
        groups = await ctx.accounts.query_duplicate_lowercase()
        assert groups == {"bob": ["BOB", "Bob", "bob"]}


class TestLoginsAndHosts:

    async def test_record_login_and_last_login(self, make_ctx):
        ctx = await make_ctx(LATEST_SCHEMA_SQL)
        await ctx.accounts.create_account("Dave", "10.0.0.5", "davepw")
        when = datetime(2024, 5, 1, 12, 30, 0)
        await ctx.accounts.record_login("Dave", "10.0.0.9", when)
        await ctx.accounts.record_login("Dave", "10.0.0.9")
        rows = await ctx.fetchall("SELECT nickname, host FROM logins")
        assert rows == [("Dave", "10.0.0.9"), ("Dave", "10.0.0.9")]
        assert await ctx.accounts.update_last_login("Dave", when)
        row = await ctx.fetchone("SELECT last_login FROM users WHERE nickname = 'Dave'")
        assert row[0] == "2024-05-01 12:30:00"
        assert not await ctx.accounts.update_last_login("ghost")

    async def test_user_from_host(self, make_ctx):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        await ctx.accounts.create_account("Alice", "192.168.1.2", "pw")
        assert await ctx.accounts.get_user_from_host("192.168.1.2") == "Alice"
        assert await ctx.accounts.get_user_from_host("192.168.1.3") is None

    async def test_count_users(self, make_ctx, seed, legacy_users):
        ctx = await make_ctx(LEGACY_SCHEMA_SQL)
        assert await ctx.accounts.count_users() == 0
        await seed(ctx)
        assert await ctx.accounts.count_users() == len(legacy_users)
