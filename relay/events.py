"""
Inbound message plumbing: server modes, messages and the MessageReceived event.
"""

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional


class ServerMode(str, enum.Enum):
    INACTIVE = "inactive"
    TCP = "tcp"
    WEBSOCKET = "ws"

    @classmethod
    def parse(cls, value) -> Optional["ServerMode"]:
        """
        "tcp" / "ws" (any case) -> mode; anything else -> None.
        """
        if isinstance(value, cls):
            return None if value is cls.INACTIVE else value
        text = str(value or "").strip().lower()
        if text == cls.TCP.value:
            return cls.TCP
        if text == cls.WEBSOCKET.value:
            return cls.WEBSOCKET
        return None


@dataclass(frozen=True)
class Message:
    """
    One inbound message: a single TCP read or a single WebSocket frame.
    """
    text: str
    mode: ServerMode
    peer: Optional[str] = None

    def __str__(self):
        return self.text


Handler = Callable[[Message], None]

_STOP = object()


class MessageReceived:
    """
    Event fired once per inbound message.

    emit() only enqueues; a dispatcher thread calls the handlers in arrival
    order, so handlers never run on the relay event loop and may call
    ServerController.send().
    """

    def __init__(self):
        self._handlers: List[Handler] = []
        self._lock = threading.Lock()
        self._queue: Optional[queue.Queue] = None
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, handler: Handler) -> Handler:
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler):
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def __iadd__(self, handler: Handler):
        self.subscribe(handler)
        return self

    def __isub__(self, handler: Handler):
        self.unsubscribe(handler)
        return self

    def __len__(self):
        with self._lock:
            return len(self._handlers)

    def emit(self, message: Message):
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                # one queue per dispatcher thread
                self._queue = queue.Queue()
                self._thread = threading.Thread(
                    target=self._dispatch, args=(self._queue,), name="relay-dispatch", daemon=True
                )
                self._thread.start()
            self._queue.put(message)

    def close(self, timeout: Optional[float] = None):
        """
        Delivers what is already queued, then stops the dispatcher thread.
        """
        with self._lock:
            thread, pending = self._thread, self._queue
            self._thread = self._queue = None
            if thread is None:
                return
            pending.put(_STOP)
        if thread is not threading.current_thread():
            thread.join(timeout)

    def _dispatch(self, pending: queue.Queue):
        while True:
            message = pending.get()
            if message is _STOP:
                return
            with self._lock:
                handlers = list(self._handlers)
            for handler in handlers:
                try:
                    handler(message)
                except Exception:
                    logging.exception(f"MessageReceived handler {handler!r} failed")
