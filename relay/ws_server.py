"""
WebSocket relay. Every frame from a client becomes one message; outbound messages go to all clients.
"""

import logging
from typing import Callable, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .broadcast import ConnectionRegistry
from .config import Settings, settings as default_settings
from .events import Message, ServerMode
from .utils import decode_payload, format_peer

traffic_log = logging.getLogger("relay_traffic")


def sent_message_to(count: int) -> str:
    return f"Sent message to {count}"


class WebSocketRelay:
    mode = ServerMode.WEBSOCKET

    def __init__(self, port: int, on_message: Callable[[Message], None], settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.host = self.settings.HOST
        self.port = port
        self.on_message = on_message
        self.registry = ConnectionRegistry()
        self._server: Optional[Server] = None

    @property
    def connection_count(self) -> int:
        return len(self.registry)

    async def start(self):
        """
        Start the WS server. Raises OSError if the port cannot be bound.
        """
        self._server = await serve(self.ws_handler, self.host, self.port)
        logging.info(f"WS relay listening on {self.host}:{self.port}")

    async def stop(self):
        server, self._server = self._server, None
        if server is not None:
            # listener goes first, the port is free whatever the clients do
            server.close(close_connections=False)
        try:
            await self.registry.close_all(self.settings.CLOSE_TIMEOUT)
        finally:
            if server is not None:
                await server.wait_closed()
                logging.info(f"WS relay on port {self.port} stopped")

    async def ws_handler(self, websocket: ServerConnection):
        """
        Handle one WebSocket client.
        """
        peer = format_peer(websocket.remote_address)
        await self.registry.register(websocket)
        logging.info(f"WS connection opened: {peer}")
        try:
            async for frame in websocket:
                text = decode_payload(frame)
                traffic_log.debug(f"[WS in] {peer}: {text!r}")
                self.on_message(Message(text=text, mode=self.mode, peer=peer))
        except ConnectionClosed as exc:
            logging.info(f"WS connection lost: {peer} ({exc})")
        except Exception as exc:
            logging.error(f"WS connection error ({peer}): {exc}", exc_info=True)
            await websocket.close(1011, "internal error")
        finally:
            await self.registry.unregister(websocket)
            logging.info(f"WS connection closed: {peer}")

    async def send(self, message: str) -> str:
        count = await self.registry.broadcast(message)
        logging.debug(f"Sending message to {count} ws clients")
        return sent_message_to(count)
