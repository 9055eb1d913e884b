import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from ..errors import NOT_CONNECTED
from ..slots import DEFAULT_SLOT_POLICY, SeatResult, SlotFittingPolicy
from ._schema import LEGACY_MAX_SEATS, MAX_SEATS
from .ledger import utcnow

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("storage")


@dataclass
class SessionResult:
    session_name: str
    seats: List[SeatResult]
    winner: str
    started_at: Optional[datetime] = None
    duration_sec: int = 0
    options: Optional[str] = None

    @property
    def occupied(self) -> List[SeatResult]:
        return [s for s in self.seats if s.name]


class SessionRepo:
    """Completed-session results."""

    def __init__(self, ctx: "DatabaseContext", slot_policy: Optional[SlotFittingPolicy] = None):
        self._ctx = ctx
        self.slot_policy = slot_policy or DEFAULT_SLOT_POLICY

    @property
    def max_seats(self) -> int:
        return MAX_SEATS if self._ctx.is_latest else LEGACY_MAX_SEATS

    async def save_session_result(self, result: SessionResult):
        if not result.winner:
            raise ValueError("Session %s has no winner" % result.session_name)
        if not await self._ctx.ensure_connected():
            return NOT_CONNECTED

        slots = self.max_seats
        keep = self.slot_policy.fit(result.seats, slots, result.winner)
        if len(result.occupied) > slots:
            logger.info(
                "Session %s: %d players, recording seats %s",
                result.session_name, len(result.occupied), keep,
            )
        names: List[Optional[str]] = [result.seats[i].name for i in keep]
        scores: List[Optional[int]] = [result.seats[i].score for i in keep]
        names += [None] * (slots - len(names))
        scores += [0] * (slots - len(scores))

        started = self._ctx.dialect.to_db_timestamp(result.started_at or utcnow())
        params = [result.session_name] + names + scores + [started]
        if self._ctx.is_latest:
            params += [result.duration_sec, result.winner, result.options]
        await self._ctx.execute(self._ctx.statements["session_insert"], params)
        return True
