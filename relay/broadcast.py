"""
Broadcast: WebSocket connection registry and fan-out of outbound messages.
"""

import asyncio
import logging
from typing import Optional

traffic_log = logging.getLogger("relay_traffic")


class ConnectionRegistry:
    """
    Set of open WebSocket connections.

    Open/close callbacks and the broadcast path all go through one asyncio.Lock;
    broadcast iterates over a snapshot, never over the live set.
    """

    def __init__(self):
        self._connections = set()
        self._lock = asyncio.Lock()

    def __len__(self):
        return len(self._connections)

    def __contains__(self, ws):
        return ws in self._connections

    async def register(self, ws):
        """
        Register a ws client.
        """
        async with self._lock:
            self._connections.add(ws)
            total = len(self._connections)
        logging.info(f"WS client added ({total} connected)")

    async def unregister(self, ws):
        """
        Deregister a ws client. Unknown clients are ignored.
        """
        async with self._lock:
            if ws not in self._connections:
                return
            self._connections.discard(ws)
            total = len(self._connections)
        logging.info(f"WS client removed ({total} connected)")

    async def snapshot(self) -> list:
        async with self._lock:
            return list(self._connections)

    async def broadcast(self, message: str) -> int:
        """
        Send a text message to every registered ws client.

        :param message: text payload, sent as one frame
        :return: number of clients the message was addressed to
        """
        targets = await self.snapshot()
        if not targets:
            return 0
        results = await asyncio.gather(
            *(ws.send(message) for ws in targets), return_exceptions=True
        )
        failed = []
        for ws, result in zip(targets, results):
            if isinstance(result, Exception):
                failed.append(ws)
                logging.error(f"Failed to send to ws client {getattr(ws, 'remote_address', None)}: {result}")
        for ws in failed:
            await self.unregister(ws)
        traffic_log.debug(f"[WS out] to {len(targets)} ({len(failed)} failed): {message!r}")
        return len(targets)

    async def close_all(self, timeout: Optional[float] = None):
        """
        Close every registered client concurrently and clear the registry.

        :param timeout: seconds to wait for the close handshakes; clients still
            open afterwards have their transport aborted
        """
        async with self._lock:
            targets = list(self._connections)
            self._connections.clear()
        if not targets:
            return
        closing = [asyncio.ensure_future(ws.close()) for ws in targets]
        _, pending = await asyncio.wait(closing, timeout=timeout)
        aborted = 0
        for ws, task in zip(targets, closing):
            if task in pending:
                task.cancel()
                transport = getattr(ws, "transport", None)
                if transport is not None:
                    transport.abort()
                aborted += 1
            elif task.exception() is not None:
                logging.warning(f"Error closing ws client: {task.exception()}")
        logging.info(f"Closed {len(targets)} ws clients ({aborted} aborted)")
