"""Background credential migration - encodes legacy passwords after a schema upgrade."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional

from ..errors import BackgroundTaskError
from ._schema import BG_BATCH_SIZE, BG_START_DELAY_SEC, SCHEMA_VERSION_1200, SCHEMA_VERSION_ORIGINAL
from .accounts import encode_legacy_credentials
from .ledger import VersionLedger

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("bg_migration")

# from_version -> ledger row whose bg_tasks_done this worker stamps
_TARGET_VERSION = {SCHEMA_VERSION_ORIGINAL: SCHEMA_VERSION_1200}


@dataclass
class MigrationResult:
    completed: bool = False
    batches: int = 0
    converted: int = 0
    # lowercase nicknames converted by the most recent batch
    last_batch: List[str] = field(default_factory=list)


class BackgroundMigrationWorker:
    """Converts accounts still lacking an encoded credential, one short batch at a time.

    Each batch commits as a unit, so stopping (or crashing) between batches
    leaves a consistent table and a restart picks up exactly the remainder.
    """

    def __init__(
        self,
        ctx: "DatabaseContext",
        batch_size: int = BG_BATCH_SIZE,
        start_delay: float = BG_START_DELAY_SEC,
        on_batch: Optional[Callable[[MigrationResult], None]] = None,
    ):
        self.ctx = ctx
        self.batch_size = batch_size
        self.start_delay = start_delay
        self.on_batch = on_batch
        self.result = MigrationResult()
        self._stop_requested = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Schedule the worker. False if it is already running."""
        if self.is_alive:
            return False
        self._stop_requested.clear()
        self.result = MigrationResult()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Background credential migration scheduled (batch %d, delay %.1fs)",
            self.batch_size, self.start_delay,
        )
        return True

    def request_stop(self) -> None:
        """Ask the worker to finish after the batch in progress."""
        self._stop_requested.set()

    async def wait(self) -> MigrationResult:
        """Wait for the worker to end. Re-raises BackgroundTaskError."""
        if self._task is not None:
            await self._task
        return self.result

    async def stop(self) -> None:
        self.request_stop()
        if self._task is None:
            return
        try:
            await self._task
        except BackgroundTaskError as e:
            logger.warning("Background migration ended with error: %s", e)
        logger.info(
            "Background migration stopped: %d batches, %d converted",
            self.result.batches, self.result.converted,
        )

    async def _run(self) -> MigrationResult:
        ctx = self.ctx
        from_version = ctx.bg_tasks_from_version
        to_version = _TARGET_VERSION.get(from_version)
        if to_version is None:
            logger.error("No background tasks known for schema upgrade from v%d", from_version)
            return self.result

        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=self.start_delay)
            logger.info("Background migration stopped before start")
            return self.result
        except asyncio.TimeoutError:
            pass

        stalled: Optional[List[str]] = None
        try:
            while not self._stop_requested.is_set():
                rows = await ctx.select_with_limit(
                    "SELECT nickname_lc FROM users WHERE credential_store IS NULL",
                    self.batch_size,
                )
                if not rows:
                    await VersionLedger(ctx).mark_bg_tasks_done(to_version)
                    ctx.bg_tasks_from_version = 0
                    self.result.completed = True
                    logger.info(
                        "Background migration complete: %d credentials encoded in %d batches",
                        self.result.converted, self.result.batches,
                    )
                    break

                names = [r[0] for r in rows]
                converted = await encode_legacy_credentials(ctx, names)
                if not converted:
                    # rows changed under us (password reset); select again
                    if names == stalled:
                        raise BackgroundTaskError(
                            "No credentials could be encoded in batch starting at %s" % names[0]
                        )
                    logger.info("Batch starting at %s converted nothing; selecting again", names[0])
                    stalled = names
                    continue
                stalled = None
                self.result.batches += 1
                self.result.converted += len(converted)
                self.result.last_batch = converted
                logger.debug("Encoded batch of %d credentials", len(converted))
                if self.on_batch is not None:
                    self.on_batch(self.result)
        except BackgroundTaskError:
            logger.exception("Background migration failed")
            raise
        except Exception as e:
            logger.exception("Background migration failed")
            raise BackgroundTaskError("Background migration failed: %s" % e) from e

        return self.result
