"""
slots.py - Choosing which players fit a results table with fewer seat columns.

A 6-seat session saved into a 4-seat table has to drop players. The policy
is pluggable; the default keeps the winner, then humans, then robots, each
in seat order.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass
class SeatResult:
    name: Optional[str]
    score: int = 0
    is_robot: bool = False


class SlotFittingPolicy:
    """Picks seat indices to record when occupied seats exceed the slot count."""

    def fit(self, seats: Sequence[SeatResult], slots: int, winner: str) -> List[int]:
        raise NotImplementedError


class WinnerAndHumansFirst(SlotFittingPolicy):

    def fit(self, seats: Sequence[SeatResult], slots: int, winner: str) -> List[int]:
        occupied = [i for i, s in enumerate(seats) if s.name]
        if len(occupied) <= slots:
            return occupied

        ranked = sorted(
            occupied,
            key=lambda i: (seats[i].name != winner, seats[i].is_robot, i),
        )
        return sorted(ranked[:slots])


DEFAULT_SLOT_POLICY = WinnerAndHumansFirst()
