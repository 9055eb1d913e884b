"""Shared fixtures for the account database test suite."""

import pytest
import pytest_asyncio

from gameserver.config import DBConfig
from gameserver.credentials import CredentialPolicy
from gameserver.storage import DatabaseContext, run_setup_script_text


# bcrypt's minimum cost; keeps hashing fast
TEST_COST_FACTOR = 4

LEGACY_USERS = [
    ("Alice", "alicepw"),
    ("bob", "bobpw"),
    ("Carol", "carol-secret"),
    ("dave", "d"),
    ("Eve_99", "evepw"),
]


def db_url(tmp_path, name: str = "game.db") -> str:
    return "sqlite:///%s" % (tmp_path / name)


@pytest.fixture
def policy():
    return CredentialPolicy(TEST_COST_FACTOR)


@pytest_asyncio.fixture
async def make_ctx(tmp_path):
    """Factory: open a DatabaseContext on a temp SQLite file, optionally creating tables."""
    opened = []

    async def _make(schema_sql=None, name="game.db", test_policy=True, **config):
        cfg = DBConfig(url=db_url(tmp_path, name), **config)
        policy = CredentialPolicy(TEST_COST_FACTOR) if test_policy else None
        ctx = DatabaseContext(cfg, policy=policy)
        opened.append(ctx)
        await ctx.connect()
        if schema_sql:
            await run_setup_script_text(ctx, schema_sql)
            await ctx.reload_state()
        return ctx

    yield _make
    for ctx in opened:
        await ctx.close(for_shutdown=True)


async def seed_users(ctx, users=LEGACY_USERS, host="10.0.0.1"):
    for name, pw in users:
        await ctx.accounts.create_account(name, host, pw)


@pytest.fixture
def seed():
    return seed_users


@pytest.fixture
def legacy_users():
    return list(LEGACY_USERS)
