"""Identity -> live connection map."""
from __future__ import annotations

from typing import Dict, Optional


class ParticipantRegistry:
    """Single source of truth for whether an identity is currently reachable."""

    def __init__(self) -> None:
        self._connections: Dict[str, object] = {}

    def register(self, identity: str, connection) -> None:
        self._connections[identity] = connection

    def unregister(self, identity: str) -> bool:
        return self._connections.pop(identity, None) is not None

    def lookup(self, identity: str) -> Optional[object]:
        """Return the open connection for identity, or None if missing or closed."""

        connection = self._connections.get(identity)
        if connection is None or not connection.is_open():
            return None
        return connection

    def is_reachable(self, identity: str) -> bool:
        return self.lookup(identity) is not None

    def stale(self) -> list[str]:
        return [identity for identity, connection in self._connections.items() if not connection.is_open()]

    def open_connections(self) -> list:
        return [connection for connection in self._connections.values() if connection.is_open()]

    def all_connections(self) -> list:
        return list(self._connections.values())

    def clear(self) -> None:
        self._connections.clear()

    def __contains__(self, identity: str) -> bool:
        return identity in self._connections

    def __len__(self) -> int:
        return len(self._connections)
