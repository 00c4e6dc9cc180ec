"""FIFO waiting list of validated participants."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass(slots=True)
class Participant:
    identity: str
    display_name: str
    joined_at: float = field(default_factory=time.time)


class MatchmakingQueue:
    """Arrival-ordered queue; an identity appears at most once."""

    def __init__(self) -> None:
        self._waiting: list[Participant] = []

    def enqueue(self, participant: Participant) -> bool:
        if participant.identity in self:
            return False
        self._waiting.append(participant)
        return True

    def remove(self, identity: str) -> bool:
        for index, participant in enumerate(self._waiting):
            if participant.identity == identity:
                del self._waiting[index]
                return True
        return False

    def attempt_pairing(self, is_reachable: Callable[[str], bool]) -> list[tuple[Participant, Participant]]:
        """Drop unreachable entries, then pair the two oldest until fewer than two remain."""

        self._waiting = [participant for participant in self._waiting if is_reachable(participant.identity)]
        pairs = []
        while len(self._waiting) >= 2:
            first = self._waiting.pop(0)
            second = self._waiting.pop(0)
            pairs.append((first, second))
        return pairs

    def snapshot(self) -> list[Participant]:
        return list(self._waiting)

    def clear(self) -> None:
        self._waiting.clear()

    def __contains__(self, identity: str) -> bool:
        return any(participant.identity == identity for participant in self._waiting)

    def __len__(self) -> int:
        return len(self._waiting)
