import json
import logging
from uuid import uuid4

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)


def resolve_origin(websocket, trust_forwarded_for: bool = False) -> str:
    """Network origin used for connection rate limiting."""
    if trust_forwarded_for and websocket.request is not None:
        forwarded = websocket.request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    address = websocket.remote_address
    if isinstance(address, (tuple, list)) and address:
        return str(address[0])
    return "unknown"


class ClientConnection:
    """
    Server-side handle for one accepted WebSocket.
    Sends are best effort: a closed socket is a silent drop.
    """

    def __init__(self, websocket, origin: str, identity: str = None):
        self.websocket = websocket
        self.origin = origin
        self.identity = identity or str(uuid4())

    def is_open(self) -> bool:
        return self.websocket.state is State.OPEN

    async def send(self, payload: dict) -> bool:
        if not self.is_open():
            return False
        try:
            await self.websocket.send(json.dumps(payload))
            return True
        except ConnectionClosed:
            logger.debug(f"Send to closed connection {self.identity} dropped")
            return False

    async def close(self, code: int = 1000, reason: str = ""):
        await self.websocket.close(code=code, reason=reason)

    def __repr__(self):
        return f"ClientConnection({self.identity!r}, origin={self.origin!r})"
