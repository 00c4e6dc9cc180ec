import asyncio
import functools
import json
import logging
from http import HTTPStatus

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from stranger_chat.core.config import get_settings
from stranger_chat.core.session_manager import SessionCoordinator
from stranger_chat.network.connection import ClientConnection, resolve_origin


async def handler(websocket, coordinator, trust_forwarded_for=False):
    connection = ClientConnection(websocket, resolve_origin(websocket, trust_forwarded_for))
    if not await coordinator.connect(connection):
        return

    try:
        # Frames from one connection are handled strictly in arrival order
        async for frame in websocket:
            await coordinator.handle_frame(connection, frame)
    except ConnectionClosed:
        pass
    finally:
        await coordinator.disconnect(connection)


def make_process_request(coordinator):
    """Answers plain HTTP probes on the WebSocket port; upgrades pass through."""

    def process_request(connection, request):
        path = request.path.split("?", 1)[0]
        if path == "/api/status":
            response = connection.respond(HTTPStatus.OK, json.dumps(coordinator.status()) + "\n")
            del response.headers["Content-Type"]
            response.headers["Content-Type"] = "application/json"
            return response
        if path == "/healthz":
            return connection.respond(HTTPStatus.OK, "ok\n")
        return None

    return process_request


async def main(settings=None):
    settings = settings or get_settings()
    coordinator = SessionCoordinator(settings)
    coordinator.start()

    logging.info(f"Starting chat relay on {settings.host}:{settings.port}")
    try:
        async with serve(
            functools.partial(handler, coordinator=coordinator, trust_forwarded_for=settings.trust_forwarded_for),
            settings.host,
            settings.port,
            process_request=make_process_request(coordinator),
            # Above the application frame limit so oversized frames get an error reply instead of a close.
            # Frames beyond this are closed by websockets with 1009; the connection does not stay open for those.
            max_size=settings.transport_max_size,
        ):
            await asyncio.Future()  # run forever
    finally:
        await coordinator.shutdown()


def run():
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format='%(asctime)s - %(message)s')
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
