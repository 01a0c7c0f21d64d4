"""
ServerController: single entry point for the host. Starts/stops/switches the TCP
or WebSocket relay on a background event loop and exposes send() and the
MessageReceived event independently of which relay is active.
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional

from .companions import CompanionGroup, CompanionProcess
from .config import Settings, settings as default_settings
from .events import Message, MessageReceived, ServerMode
from .tcp_server import SENT_TO_TCP_CLIENT, TCP_CLIENT_NOT_CONNECTED, TCPRelay
from .ws_server import WebSocketRelay, sent_message_to

NOT_FOUND = "Not found"

__all__ = [
    "NOT_FOUND",
    "SENT_TO_TCP_CLIENT",
    "TCP_CLIENT_NOT_CONNECTED",
    "RelayStartError",
    "ServerController",
    "sent_message_to",
]

RELAYS = {
    ServerMode.TCP: TCPRelay,
    ServerMode.WEBSOCKET: WebSocketRelay,
}


class RelayStartError(RuntimeError):
    """The relay listener could not be bound."""

    def __init__(self, mode: ServerMode, port: int, reason: BaseException):
        super().__init__(f"Cannot start {mode.value} relay on port {port}: {reason}")
        self.mode = mode
        self.port = port


class ServerController:
    """
    Owns the active mode and relay.

    Only one relay runs at a time; start() always tears down the running relay
    (same mode included) before binding the new one.

    Example::

        controller = ServerController()
        controller.message_received += lambda message: print(message.text)
        controller.start("ws", 4001)
        controller.send("hello")  # "Sent message to 1"
        controller.close()
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.message_received = MessageReceived()
        self.companions = CompanionGroup()
        self._mode = ServerMode.INACTIVE
        self._relay = None
        self._lock = threading.RLock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def mode(self) -> ServerMode:
        return self._mode

    @property
    def port(self) -> Optional[int]:
        relay = self._relay
        return relay.port if relay is not None else None

    @property
    def connection_count(self) -> int:
        relay = self._relay
        return relay.connection_count if relay is not None else 0

    def start(self, mode, port: int):
        """
        Start the server for "tcp" or "ws" on the given port. Unknown modes are ignored.

        Returns once the listener is bound; raises RelayStartError otherwise.
        """
        server_mode = ServerMode.parse(mode)
        if server_mode is None:
            logging.warning(f"Unknown server mode {mode!r}, ignoring start")
            return
        logging.info(f"Starting server: {server_mode.value} on port {port}")

        with self._lock:
            self._stop_relay()
            self._ensure_loop()
            relay = RELAYS[server_mode](port, self._emit, self.settings)
            try:
                self._call(relay.start(), self.settings.START_TIMEOUT)
            except (OSError, concurrent.futures.TimeoutError) as exc:
                logging.error(f"Failed to start {server_mode.value} relay on port {port}: {exc}")
                raise RelayStartError(server_mode, port, exc) from exc
            self._relay = relay
            self._mode = server_mode

    def send(self, message: str) -> str:
        """
        Send a message to the connected client(s). Never raises, returns a status string.
        """
        with self._lock:
            relay = self._relay
            if relay is None:
                return NOT_FOUND
            try:
                return self._call(relay.send(message), self.settings.SEND_TIMEOUT)
            except Exception as exc:
                reason = str(exc) or type(exc).__name__
                logging.error(f"Send failed in {relay.mode.value} mode: {reason}")
                return f"Error: {reason}"

    def start_program_along(self, path: str, show_window: bool = False, args: str = "") -> CompanionProcess:
        """
        Start a companion program; close() kills it.
        """
        return self.companions.launch(path, show_window, args)

    def close(self):
        """
        Stop the relay, kill companion programs, stop the background threads.
        Safe to call repeatedly; the controller can be started again afterwards.
        """
        try:
            with self._lock:
                try:
                    self._stop_relay()
                finally:
                    self.companions.kill_all()
                    self._stop_loop()
        finally:
            # outside the lock: pending handlers may still call send()
            self.message_received.close(self.settings.START_TIMEOUT)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _emit(self, message: Message):
        self.message_received.emit(message)

    def _stop_relay(self):
        relay, self._relay = self._relay, None
        self._mode = ServerMode.INACTIVE
        if relay is None:
            return
        try:
            self._call(relay.stop(), self.settings.START_TIMEOUT)
        except Exception as exc:
            logging.error(f"Error while stopping {relay.mode.value} relay: {exc}", exc_info=True)

    def _ensure_loop(self):
        if self._thread is not None and self._thread.is_alive():
            return
        loop = asyncio.new_event_loop()
        ready = threading.Event()

        def run():
            asyncio.set_event_loop(loop)
            loop.call_soon(ready.set)
            loop.run_forever()
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

        self._loop = loop
        self._thread = threading.Thread(target=run, name="relay-loop", daemon=True)
        self._thread.start()
        ready.wait()

    def _stop_loop(self):
        loop, thread = self._loop, self._thread
        self._loop = self._thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(self._cancel_pending, loop)
        thread.join(self.settings.START_TIMEOUT)

    @staticmethod
    def _cancel_pending(loop: asyncio.AbstractEventLoop):
        tasks = [task for task in asyncio.all_tasks(loop) if not task.done()]
        for task in tasks:
            task.cancel()
        if not tasks:
            loop.stop()
            return
        gathered = asyncio.gather(*tasks, return_exceptions=True)
        gathered.add_done_callback(lambda _: loop.stop())

    def _call(self, coro, timeout: float):
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("ServerController cannot be called from its own event loop")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise
