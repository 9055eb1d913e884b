"""
server.py - Game server entry point.

Single-process server combining:
 - Account database (SQLite by default, PostgreSQL with asyncpg)
 - Background credential migration after a schema upgrade
 - REST API (FastAPI on uvicorn)

Utility modes run once and exit:
    --db-setup                    create tables (setup script, or the built-in latest schema)
    --db-upgrade-schema           upgrade to the latest schema; --admins a,b encodes those now
    --pw-reset NAME               set a new password for an account
    --test-db                     run DB self-tests against a scratch table
    --test-cost-factor            time bcrypt and recommend a cost factor

Usage:
    python -m gameserver.server [--api-port 8080] [--db-url sqlite:///data/gameserver.db]
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI

from gameserver.account import AccountService
from gameserver.config import DBConfig
from gameserver.credentials import calibrate_cost_factor
from gameserver.errors import ConnectError, StorageError
from gameserver.routers import register_all_routers
from gameserver.storage import (
    LATEST_SCHEMA_SQL,
    DatabaseContext,
    SchemaUpgrader,
    run_self_tests,
    run_setup_script_text,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)-12s] %(levelname)-5s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("server")


# ---------------------------------------------------------------------------
# Game server
# ---------------------------------------------------------------------------

class GameServer:
    """Account database plus REST API."""

    def __init__(self, config: Optional[DBConfig] = None, api_port: int = 8080,
                 ctx: Optional[DatabaseContext] = None):
        self.config = config or DBConfig()
        self.api_port = api_port
        self.ctx = ctx or DatabaseContext(self.config)
        self.accounts = AccountService(self.ctx, save_sessions=self.config.save_sessions)

        self.app = FastAPI(title="Game Server", version="1.2.0")
        self.app.state.server = self
        register_all_routers(self.app)
        self._uvicorn_server: Optional[uvicorn.Server] = None

    async def open_db(self) -> bool:
        """Connect and start pending background tasks. False runs the server account-less."""
        try:
            await self.ctx.connect(self.config.user, self.config.password, self.config.setup_script)
        except ConnectError as e:
            logger.warning("No account database, continuing without accounts: %s", e)
            return False
        if not self.ctx.is_latest:
            logger.warning(
                "DB schema v%d is older than the latest; run with --db-upgrade-schema",
                self.ctx.schema_version,
            )
        if self.ctx.needs_bg_tasks:
            self.ctx.start_background_migration()
        return True

    async def start(self):
        await self.open_db()
        config = uvicorn.Config(self.app, host="0.0.0.0", port=self.api_port, log_level="info")
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.api_port)
        try:
            await self._uvicorn_server.serve()
        finally:
            await self.ctx.close(for_shutdown=True)

    async def stop(self):
        await self.ctx.close(for_shutdown=True)
        if self._uvicorn_server is not None:
            self._uvicorn_server.should_exit = True


# ---------------------------------------------------------------------------
# Utility modes
# ---------------------------------------------------------------------------

async def db_setup(config: DBConfig) -> int:
    ctx = DatabaseContext(config)
    await ctx.connect(config.user, config.password, config.setup_script)
    try:
        if not config.setup_script:
            if await ctx.table_exists("users"):
                logger.error("Tables already exist; not running the built-in setup script")
                return 1
            await run_setup_script_text(ctx, LATEST_SCHEMA_SQL)
            await ctx.reload_state()
        logger.info("DB setup complete, schema version %d", ctx.schema_version)
    finally:
        await ctx.close(for_shutdown=True)
    return 0


async def db_upgrade(config: DBConfig, admins: str) -> int:
    ctx = DatabaseContext(config)
    await ctx.connect(config.user, config.password)
    try:
        names = [a.strip() for a in admins.split(",")] if admins else []
        outcome = await SchemaUpgrader(ctx).upgrade_schema(names)
    except StorageError as e:
        logger.error("Schema upgrade failed: %s", e)
        return 1
    finally:
        await ctx.close(for_shutdown=True)

    logger.info(
        "Upgraded schema v%d -> v%d; %d admin credential(s) encoded",
        outcome.from_version, outcome.to_version, outcome.admins_converted,
    )
    if outcome.unknown_admins:
        logger.warning("Unknown admin accounts: %s", ", ".join(outcome.unknown_admins))
    if outcome.bg_tasks_pending:
        logger.info("Remaining credentials will be encoded in the background once the server starts")
    return 0


async def pw_reset(config: DBConfig, nickname: str) -> int:
    pw1 = getpass.getpass("New password for %s: " % nickname)
    pw2 = getpass.getpass("Confirm new password: ")
    if pw1 != pw2:
        logger.error("Passwords don't match")
        return 1

    ctx = DatabaseContext(config)
    await ctx.connect(config.user, config.password)
    try:
        changed = await ctx.accounts.update_credential(nickname, pw1)
    except ValueError as e:
        logger.error("%s", e)
        return 1
    finally:
        await ctx.close(for_shutdown=True)
    if not changed:
        logger.error("No account named %s", nickname)
        return 1
    logger.info("Password changed for %s", nickname)
    return 0


async def run_db_self_tests(config: DBConfig) -> int:
    ctx = DatabaseContext(config)
    await ctx.connect(config.user, config.password)
    try:
        results = await run_self_tests(ctx)
    except StorageError as e:
        logger.error("%s", e)
        return 1
    finally:
        await ctx.close(for_shutdown=True)
    logger.info("All %d DB self-tests passed", len(results))
    return 0


def show_cost_factor() -> int:
    result = calibrate_cost_factor()
    print(result.format_table())
    return 0 if result.recommended is not None else 1


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Game Server")
    parser.add_argument("--api-port", type=int, default=8080, help="REST API port (default: 8080)")
    parser.add_argument("--db-url", default=None, help="DB URL (default: sqlite:///data/gameserver.db)")
    parser.add_argument("--db-driver", default=None, help="DB driver name, if the URL doesn't say")
    parser.add_argument("--db-user", default="", help="DB username")
    parser.add_argument("--db-password", default="", help="DB password")
    parser.add_argument("--db-setup-script", default=None, help="SQL script run at connect")
    parser.add_argument("--cost-factor", type=int, default=None,
                        help="bcrypt cost factor; overrides the DB setting")
    parser.add_argument("--save-sessions", action="store_true", help="Save completed session results")

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("--db-setup", action="store_true", help="Create the DB tables and exit")
    modes.add_argument("--db-upgrade-schema", action="store_true", help="Upgrade the DB schema and exit")
    modes.add_argument("--pw-reset", metavar="NAME", default=None, help="Reset an account's password and exit")
    modes.add_argument("--test-db", action="store_true", help="Run DB self-tests and exit")
    modes.add_argument("--test-cost-factor", action="store_true", help="Recommend a bcrypt cost factor and exit")
    parser.add_argument("--admins", default="", help="With --db-upgrade-schema: admin accounts to encode now")
    return parser


def config_from_args(args) -> DBConfig:
    return DBConfig(
        url=args.db_url,
        driver=args.db_driver,
        user=args.db_user,
        password=args.db_password,
        setup_script=args.db_setup_script,
        cost_factor=args.cost_factor,
        save_sessions=args.save_sessions,
    )


def main(argv=None):
    """CLI entry point for the game server."""
    args = build_parser().parse_args(argv)
    if args.test_cost_factor:
        sys.exit(show_cost_factor())

    config = config_from_args(args)
    try:
        if args.db_setup:
            sys.exit(asyncio.run(db_setup(config)))
        if args.db_upgrade_schema:
            sys.exit(asyncio.run(db_upgrade(config, args.admins)))
        if args.pw_reset:
            sys.exit(asyncio.run(pw_reset(config, args.pw_reset)))
        if args.test_db:
            sys.exit(asyncio.run(run_db_self_tests(config)))
        server = GameServer(config, api_port=args.api_port)
    except ConnectError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("  Game Server")
    logger.info("  REST API:    http://localhost:%d", args.api_port)
    logger.info("  Database:    %s", server.ctx.url)
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
