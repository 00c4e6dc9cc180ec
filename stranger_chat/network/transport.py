import asyncio
import json
import logging

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

SERVER_EVENTS = {
    "online_count",
    "login_success",
    "login_error",
    "matched",
    "message",
    "typing",
    "partner_skipped",
    "partner_disconnected",
    "report_acknowledged",
    "error",
}


class TransportLayer:
    """Client side of the relay connection used by the terminal client."""

    def __init__(self, uri="ws://localhost:8765"):
        self.uri = uri
        self.websocket = None
        self.listen_task = None
        self.on_event_callback = None
        self.on_closed_callback = None

    async def connect(self):
        try:
            self.websocket = await connect(self.uri)
        except (OSError, asyncio.TimeoutError) as e:
            logging.debug(f"Connection to {self.uri} failed: {e}")
            return False
        self.listen_task = asyncio.create_task(self.listen())
        return True

    async def listen(self):
        try:
            async for message in self.websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict) or data.get("type") not in SERVER_EVENTS:
                    continue
                if self.on_event_callback:
                    await self.on_event_callback(data)
        except ConnectionClosed:
            pass
        finally:
            if self.on_closed_callback:
                self.on_closed_callback()

    async def send_event(self, payload: dict):
        if self.websocket:
            try:
                await self.websocket.send(json.dumps(payload))
            except ConnectionClosed:
                return False
            return True
        return False

    async def login(self, username: str):
        return await self.send_event({"type": "login", "username": username})

    async def disconnect(self):
        if self.websocket:
            await self.websocket.close()
        if self.listen_task:
            await asyncio.gather(self.listen_task, return_exceptions=True)
