"""Shared fixtures for relay tests."""

import queue
import socket
import time

import pytest

from relay.config import Settings
from relay.controller import ServerController


def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for(predicate, timeout=5.0, interval=0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def free_port():
    return get_free_port()


@pytest.fixture
def test_settings():
    return Settings(HOST="127.0.0.1", START_TIMEOUT=5.0, SEND_TIMEOUT=5.0)


@pytest.fixture
def controller(test_settings):
    ctrl = ServerController(test_settings)
    yield ctrl
    ctrl.close()


@pytest.fixture
def inbox(controller):
    """Queue receiving every Message the controller emits."""
    received = queue.Queue()
    controller.message_received += received.put
    return received
