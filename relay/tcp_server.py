"""
TCP relay: raw byte stream, one tracked client, one message per read.
"""

import asyncio
import logging
from typing import Callable, Optional

from .config import Settings, settings as default_settings
from .events import Message, ServerMode
from .utils import decode_payload, format_peer

traffic_log = logging.getLogger("relay_traffic")

SENT_TO_TCP_CLIENT = "Sent to TCP client"
TCP_CLIENT_NOT_CONNECTED = "TCP client not connected"


class TCPRelay:
    """
    Listening -> Connected (one client) -> Listening.

    A newly accepted client replaces the current one; the previous client is closed first.
    """

    mode = ServerMode.TCP

    def __init__(self, port: int, on_message: Callable[[Message], None], settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.host = self.settings.HOST
        self.port = port
        self.on_message = on_message
        self._server: Optional[asyncio.AbstractServer] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def connection_count(self) -> int:
        return 0 if self._writer is None or self._writer.is_closing() else 1

    async def start(self):
        """
        Bind and start accepting. Raises OSError if the port cannot be bound.
        """
        self._server = await asyncio.start_server(
            self.handle_client,
            self.host,
            self.port,
            reuse_address=True,
            start_serving=True,
        )
        logging.info(f"TCP relay listening on {self.host}:{self.port}")

    async def stop(self):
        server, self._server = self._server, None
        writer, self._writer = self._writer, None
        if server is not None:
            server.close()
        try:
            if writer is not None:
                await self._close_writer(writer)
        finally:
            if server is not None:
                await server.wait_closed()
                logging.info(f"TCP relay on port {self.port} stopped")

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = format_peer(writer.get_extra_info("peername"))
        previous, self._writer = self._writer, writer
        if previous is not None:
            logging.info(f"[TCP] New client {peer} replaces {format_peer(previous.get_extra_info('peername'))}")
            await self._close_writer(previous)
        logging.info(f"[TCP] Client connected: {peer}")
        total_bytes = 0

        try:
            while True:
                try:
                    data = await reader.read(self.settings.READ_BUFFER_SIZE)
                except OSError as exc:
                    logging.warning(f"[TCP] Read error from {peer}: {exc}")
                    break
                if not data:
                    break
                total_bytes += len(data)
                text = decode_payload(data, self.settings.ENCODING)
                traffic_log.debug(f"[TCP in] {peer}: {text!r}")
                self.on_message(Message(text=text, mode=self.mode, peer=peer))
        except Exception as e:
            logging.error(f"[TCP] Client handler error ({peer}): {e}", exc_info=True)
        finally:
            if self._writer is writer:
                self._writer = None
            logging.info(f"[TCP] Client disconnected: {peer}, received={total_bytes} bytes")
            await self._close_writer(writer)

    async def send(self, message: str) -> str:
        writer = self._writer
        if writer is None or writer.is_closing():
            return TCP_CLIENT_NOT_CONNECTED
        writer.write(message.encode(self.settings.ENCODING, errors="replace"))
        await writer.drain()
        traffic_log.debug(f"[TCP out] {format_peer(writer.get_extra_info('peername'))}: {message!r}")
        return SENT_TO_TCP_CLIENT

    async def _close_writer(self, writer: asyncio.StreamWriter):
        if not writer.is_closing():
            writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), self.settings.CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            # peer stopped reading, the write buffer never flushes
            logging.warning("[TCP] Client did not close in time, aborting")
            writer.transport.abort()
        except OSError as exc:
            logging.debug(f"[TCP] Error while closing client: {exc}")
