"""
upgrade.py - Schema upgrade orchestrator.

Runs each version transition as an ordered list of tracked steps. A step
that fails triggers undo of the applied steps in reverse order; the ledger
row for the transition survives only if that undo could not be completed,
so the next connect refuses the half-upgraded database.

Credential conversion for ordinary accounts is left to the background
worker; only the named admin accounts are converted here.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from ..errors import (
    AlreadyLatestSchema,
    ConnectionUnavailable,
    PartialUpgradeFailure,
    PrecheckFailed,
    StorageError,
    UnrecoverableSchemaState,
)
from ._schema import (
    SCHEMA_VERSION_1200,
    SCHEMA_VERSION_LATEST,
    SCHEMA_VERSION_ORIGINAL,
    UPGRADE_BATCH_MAX,
)
from .accounts import encode_legacy_credentials
from .dialects import (
    TIMESTAMP,
    TIMESTAMP_NULL,
    AddColumn,
    Column,
    CreateIndex,
    CreateTable,
    DDLOperation,
    Dialect,
    DropColumns,
    DropIndex,
    DropTable,
)
from .ledger import VersionLedger
from .statements import StatementRegistry

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("upgrade")


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

class UpgradeStep:
    """One tracked unit of a transition, with its inverse."""

    name = "step"

    async def apply(self, ctx: "DatabaseContext") -> None:
        raise NotImplementedError

    async def undo(self, ctx: "DatabaseContext") -> None:
        raise NotImplementedError

    def can_undo(self, dialect: Dialect) -> bool:
        return True

    def __repr__(self):
        return "<%s %s>" % (type(self).__name__, self.name)


class DDLStep(UpgradeStep):
    def __init__(self, op: DDLOperation, inverse: DDLOperation, name: str):
        self.op = op
        self.inverse = inverse
        self.name = name

    async def apply(self, ctx):
        await ctx.run_ddl(self.op)

    async def undo(self, ctx):
        await ctx.run_ddl(self.inverse)

    def can_undo(self, dialect):
        if isinstance(self.inverse, DropColumns):
            return dialect.can_drop_column()
        return True


def create_table(op: CreateTable) -> DDLStep:
    return DDLStep(op, DropTable(op.name), "create table %s" % op.name)


def add_column(table: str, column: Column) -> DDLStep:
    return DDLStep(
        AddColumn(table, column), DropColumns(table, (column.name,)),
        "add column %s.%s" % (table, column.name),
    )


def create_index(op: CreateIndex) -> DDLStep:
    return DDLStep(op, DropIndex(op.name, op.table), "create index %s" % op.name)


class FillLowercaseNicknames(UpgradeStep):
    """Populate users.nickname_lc in batches, all inside one transaction.

    Lowercasing is done here rather than with SQL lower() so the result
    matches the lookups done by AccountRepo on every engine.
    """

    name = "fill users.nickname_lc"

    def __init__(self, batch_size: int = UPGRADE_BATCH_MAX):
        self.batch_size = batch_size

    async def apply(self, ctx):
        filled = 0
        async with ctx.transaction():
            while True:
                rows = await ctx.select_with_limit(
                    "SELECT nickname FROM users WHERE nickname_lc IS NULL", self.batch_size
                )
                if not rows:
                    break
                await ctx.executemany(
                    "UPDATE users SET nickname_lc = ? WHERE nickname = ?",
                    [(r[0].lower(), r[0]) for r in rows],
                )
                filled += len(rows)
        logger.info("Filled nickname_lc for %d users", filled)

    async def undo(self, ctx):
        # dropping the column undoes this; leave the values for engines that can't
        pass


class ConvertAdminCredentials(UpgradeStep):
    """Encode the named admin accounts now, so they can log in right after the upgrade.

    Unknown names are recorded, not fatal. Dropping the credential columns
    undoes this; an encoded credential still verifies where they stay.
    """

    name = "encode admin credentials"

    def __init__(self, admin_names: Iterable[str], batch_size: int = UPGRADE_BATCH_MAX):
        self.admin_names = [a for a in admin_names if a]
        self.batch_size = batch_size
        self.converted = 0
        self.unknown: List[str] = []

    async def apply(self, ctx):
        known = []
        for name in self.admin_names:
            row = await ctx.fetchone(
                "SELECT nickname FROM users WHERE nickname_lc = ?", (name.lower(),)
            )
            if row is None:
                logger.warning("Admin account %s not found; skipping", name)
                self.unknown.append(name)
            else:
                known.append(name.lower())

        for i in range(0, len(known), self.batch_size):
            converted = await encode_legacy_credentials(ctx, known[i:i + self.batch_size])
            self.converted += len(converted)
        if known:
            logger.info("Converted %d admin credential(s)", self.converted)

    async def undo(self, ctx):
        pass


class CallableStep(UpgradeStep):
    """Step built from plain coroutine functions."""

    def __init__(self, name: str, apply_fn: Callable, undo_fn: Optional[Callable] = None):
        self.name = name
        self._apply = apply_fn
        self._undo = undo_fn

    async def apply(self, ctx):
        await self._apply(ctx)

    async def undo(self, ctx):
        if self._undo is not None:
            await self._undo(ctx)


SETTINGS_TABLE = CreateTable(
    "settings",
    (
        Column("name", "VARCHAR(32)", nullable=False),
        Column("string_value", "VARCHAR(500)"),
        Column("int_value", "INT"),
        Column("changed_at", TIMESTAMP, nullable=False),
    ),
    primary_key=("name",),
)

SESSION_COLUMNS_1200 = (
    Column("player5", "VARCHAR(20)"),
    Column("player6", "VARCHAR(20)"),
    Column("score5", "SMALLINT"),
    Column("score6", "SMALLINT"),
    Column("duration_sec", "INT"),
    Column("winner", "VARCHAR(20)"),
    Column("options", "VARCHAR(500)"),
)

USER_COLUMNS_1200 = (
    Column("nickname_lc", "VARCHAR(20)"),
    Column("encoding_scheme", "INT"),
    Column("credential_store", "VARCHAR(255)"),
    Column("credential_changed_at", TIMESTAMP_NULL),
)


def steps_1000_to_1200() -> List[UpgradeStep]:
    steps: List[UpgradeStep] = [create_table(SETTINGS_TABLE)]
    steps += [add_column("session_results", c) for c in SESSION_COLUMNS_1200]
    steps += [add_column("users", c) for c in USER_COLUMNS_1200]
    steps.append(FillLowercaseNicknames())
    steps.append(create_index(CreateIndex("users__lc", "users", "nickname_lc", unique=True)))
    return steps


@dataclass
class Transition:
    from_version: int
    to_version: int
    build_steps: Callable[[], List[UpgradeStep]]


TRANSITIONS: Dict[int, Transition] = {
    SCHEMA_VERSION_ORIGINAL: Transition(
        SCHEMA_VERSION_ORIGINAL, SCHEMA_VERSION_1200, steps_1000_to_1200
    ),
}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

@dataclass
class UpgradeOutcome:
    from_version: int
    to_version: int
    admins_converted: int = 0
    unknown_admins: List[str] = field(default_factory=list)
    bg_tasks_pending: bool = False


def rename_hint(groups: Dict[str, List[str]]) -> str:
    lines = []
    for lc in sorted(groups):
        lines.append("  %s: %s" % (lc, ", ".join(groups[lc])))
    lines.append(
        "Rename all but one in each group before upgrading, for example:\n"
        "  UPDATE users SET nickname='newname' WHERE nickname='oldname';"
    )
    return "\n".join(lines)


class SchemaUpgrader:
    """Brings the connected database to SCHEMA_VERSION_LATEST."""

    def __init__(self, ctx: "DatabaseContext",
                 transitions: Optional[Dict[int, Transition]] = None):
        self.ctx = ctx
        self.transitions = transitions if transitions is not None else TRANSITIONS

    async def precheck(self) -> None:
        ctx = self.ctx
        if not await ctx.ensure_connected():
            raise ConnectionUnavailable("Not connected to DB")
        if ctx.is_latest:
            raise AlreadyLatestSchema(
                "Schema is already the latest version (%d)" % ctx.schema_version
            )

        owner_sql = ctx.dialect.table_owner_sql()
        if owner_sql is not None:
            current = await ctx.fetchone(owner_sql[0])
            owner = await ctx.fetchone(owner_sql[1])
            if current and owner and owner[0] != current[0]:
                raise PrecheckFailed(
                    "Must change tables to be owned by this DB user %s (owner is %s) "
                    "before upgrading" % (current[0], owner[0]),
                    table_owner=owner[0],
                )

        groups = await ctx.accounts.query_duplicate_lowercase()
        if groups:
            raise PrecheckFailed(
                "Nicknames must be unique ignoring case; found %d colliding group(s):\n%s"
                % (len(groups), rename_hint(groups)),
                duplicate_groups=groups,
            )

    async def upgrade_schema(self, admin_names: Iterable[str] = ()) -> UpgradeOutcome:
        ctx = self.ctx
        await self.precheck()

        start_version = ctx.schema_version
        admins = [a for a in admin_names if a]
        outcome = UpgradeOutcome(start_version, start_version)

        while ctx.schema_version < SCHEMA_VERSION_LATEST:
            transition = self.transitions.get(ctx.schema_version)
            if transition is None:
                raise StorageError("No schema upgrade path from version %d" % ctx.schema_version)
            admin_step = None
            if transition.to_version >= SCHEMA_VERSION_LATEST:
                # admins need nickname_lc and the credential columns
                admin_step = ConvertAdminCredentials(admins)
            await self._run_transition(transition, [admin_step] if admin_step is not None else [])
            if admin_step is not None:
                outcome.admins_converted += admin_step.converted
                outcome.unknown_admins.extend(admin_step.unknown)

            remaining = await ctx.fetchone(
                "SELECT count(*) FROM users WHERE credential_store IS NULL"
            )
            pending = bool(remaining and remaining[0])
            await VersionLedger(ctx).mark_ddl_done(transition.to_version, bg_tasks_done=not pending)

            ctx.schema_version = transition.to_version
            ctx.bg_tasks_from_version = transition.from_version if pending else 0
            ctx.statements = StatementRegistry.build(ctx.schema_version)
            outcome.to_version = transition.to_version
            outcome.bg_tasks_pending = pending
            logger.info(
                "Schema upgraded from v%d to v%d%s",
                transition.from_version, transition.to_version,
                "; credential conversion continues in background" if pending else "",
            )

        return outcome

    async def _run_transition(self, transition: Transition,
                              extra_steps: Iterable[UpgradeStep] = ()) -> None:
        ctx = self.ctx
        ledger = VersionLedger(ctx)
        created_ledger = False
        if not await ledger.exists():
            await ledger.create()
            created_ledger = True
        try:
            await ledger.begin_transition(transition.from_version, transition.to_version)
        except Exception:
            if created_ledger:
                logger.warning("Could not add ledger row; dropping new ledger table")
                await ledger.drop()
            raise

        logger.info(
            "Upgrading schema from v%d to v%d",
            transition.from_version, transition.to_version,
        )
        applied: List[UpgradeStep] = []
        for step in list(transition.build_steps()) + list(extra_steps):
            try:
                logger.info("Upgrade step: %s", step.name)
                await step.apply(ctx)
            except Exception as e:
                logger.error("Upgrade step failed: %s: %s", step.name, e)
                raise await self._roll_back(applied, step, transition, created_ledger) from e
            applied.append(step)

    async def _roll_back(self, applied: List[UpgradeStep], failed: UpgradeStep,
                         transition: Transition, created_ledger: bool) -> PartialUpgradeFailure:
        """Undo applied steps in reverse. Returns the exception to raise."""
        ctx = self.ctx
        not_undone = []
        for step in reversed(applied):
            if not step.can_undo(ctx.dialect):
                logger.error("Can't undo %s: %s can't drop columns", step.name, ctx.dialect.name)
                not_undone.append(step.name)
                continue
            try:
                await step.undo(ctx)
                logger.info("Rolled back: %s", step.name)
            except Exception:
                logger.exception("Rollback of %s failed", step.name)
                not_undone.append(step.name)

        if not_undone:
            return UnrecoverableSchemaState(
                "Schema upgrade from v%d to v%d failed at '%s' and could not be rolled back "
                "(%s). Restore the database from backup before restarting."
                % (transition.from_version, transition.to_version, failed.name,
                   ", ".join(not_undone)),
                step=failed.name,
            )

        ledger = VersionLedger(ctx)
        await ledger.discard_transition(transition.to_version)
        if created_ledger:
            await ledger.drop()
        return PartialUpgradeFailure(
            "Schema upgrade from v%d to v%d failed at '%s'; all completed steps rolled back"
            % (transition.from_version, transition.to_version, failed.name),
            step=failed.name,
        )


async def upgrade_schema(ctx: "DatabaseContext", admin_names: Iterable[str] = ()) -> UpgradeOutcome:
    return await SchemaUpgrader(ctx).upgrade_schema(admin_names)
