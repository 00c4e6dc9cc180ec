"""Active two-party rooms."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from uuid import uuid4

from stranger_chat.core.matchmaking import Participant
from stranger_chat.utils.error_codes import ErrorCodes, RelayError


@dataclass(slots=True)
class Room:
    room_id: str
    participants: tuple[Participant, Participant]
    created_at: float = field(default_factory=time.time)

    def has(self, identity: str) -> bool:
        return any(participant.identity == identity for participant in self.participants)

    def partner_of(self, identity: str) -> Optional[Participant]:
        first, second = self.participants
        if first.identity == identity:
            return second
        if second.identity == identity:
            return first
        return None


class RoomTable:
    """Room id -> Room. An identity belongs to at most one room."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}

    def create(self, first: Participant, second: Participant) -> Room:
        if first.identity == second.identity:
            raise RelayError(ErrorCodes.ERR_ROOM_CONFLICT, "Cannot pair a participant with itself")
        for participant in (first, second):
            if self.find_by_participant(participant.identity) is not None:
                raise RelayError(ErrorCodes.ERR_ROOM_CONFLICT, f"{participant.identity} is already in a room")

        room = Room(room_id=str(uuid4()), participants=(first, second))
        self._rooms[room.room_id] = room
        return room

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def find_by_participant(self, identity: str) -> Optional[Room]:
        # Linear scan; room counts stay small for a single process
        for room in self._rooms.values():
            if room.has(identity):
                return room
        return None

    def dissolve(self, room_id: str) -> Optional[Room]:
        return self._rooms.pop(room_id, None)

    def clear(self) -> None:
        self._rooms.clear()

    def __len__(self) -> int:
        return len(self._rooms)
