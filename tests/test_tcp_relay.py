"""Tests for the TCP relay through the controller."""

import socket
import struct

from relay.controller import SENT_TO_TCP_CLIENT, TCP_CLIENT_NOT_CONNECTED
from relay.events import ServerMode

from conftest import wait_for


def connect(port):
    return socket.create_connection(("127.0.0.1", port), timeout=5)


class TestTCPRelay:
    def test_hello_world_scenario(self, controller, inbox, free_port):
        controller.start("tcp", free_port)
        assert controller.mode is ServerMode.TCP

        with connect(free_port) as client:
            client.sendall(b"hello")
            message = inbox.get(timeout=5)
            assert message.text == "hello"
            assert message.mode is ServerMode.TCP
            assert message.peer is not None

            assert controller.send("world") == SENT_TO_TCP_CLIENT
            assert client.recv(4096) == b"world"

    def test_send_without_client(self, controller, free_port):
        controller.start("tcp", free_port)
        assert controller.send("nobody") == TCP_CLIENT_NOT_CONNECTED
        assert controller.connection_count == 0

    def test_client_disconnect_returns_to_accept(self, controller, inbox, free_port):
        controller.start("tcp", free_port)

        with connect(free_port) as first:
            first.sendall(b"one")
            assert inbox.get(timeout=5).text == "one"
        assert wait_for(lambda: controller.connection_count == 0)
        assert controller.send("lost") == TCP_CLIENT_NOT_CONNECTED

        with connect(free_port) as second:
            second.sendall(b"two")
            assert inbox.get(timeout=5).text == "two"
            assert controller.send("back") == SENT_TO_TCP_CLIENT
            assert second.recv(4096) == b"back"

        # the peer close is a zero-byte read, not a message
        assert inbox.empty()

    def test_new_client_replaces_previous(self, controller, inbox, free_port):
        controller.start("tcp", free_port)

        first = connect(free_port)
        second = None
        try:
            first.sendall(b"first")
            assert inbox.get(timeout=5).text == "first"
            second = connect(free_port)
            second.sendall(b"second")
            assert inbox.get(timeout=5).text == "second"

            # the first client has been closed by the relay
            assert first.recv(4096) == b""

            assert controller.send("only you") == SENT_TO_TCP_CLIENT
            assert second.recv(4096) == b"only you"
        finally:
            first.close()
            if second is not None:
                second.close()

    def test_one_message_per_read(self, controller, inbox, free_port, test_settings):
        controller.start("tcp", free_port)
        payload = b"x" * (test_settings.READ_BUFFER_SIZE * 2 + 10)

        with connect(free_port) as client:
            client.sendall(payload)
            received = []
            while sum(len(m) for m in received) < len(payload):
                message = inbox.get(timeout=5)
                assert len(message.text) <= test_settings.READ_BUFFER_SIZE
                received.append(message.text)
        assert "".join(received) == payload.decode()
        assert len(received) >= 3

    def test_undecodable_bytes_are_replaced(self, controller, inbox, free_port):
        controller.start("tcp", free_port)
        with connect(free_port) as client:
            client.sendall(b"ok\xff")
            assert inbox.get(timeout=5).text == "ok�"

    def test_close_releases_client(self, controller, free_port):
        controller.start("tcp", free_port)
        with connect(free_port) as client:
            assert wait_for(lambda: controller.connection_count == 1)
            controller.close()
            assert client.recv(4096) == b""
        assert controller.mode is ServerMode.INACTIVE

    def test_connection_reset_returns_to_accept(self, controller, inbox, free_port):
        controller.start("tcp", free_port)

        client = connect(free_port)
        client.sendall(b"before reset")
        assert inbox.get(timeout=5).text == "before reset"
        # linger 0: close() sends RST instead of FIN, the relay's read fails
        client.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        client.close()

        assert wait_for(lambda: controller.connection_count == 0)
        assert controller.send("anyone?") == TCP_CLIENT_NOT_CONNECTED
        assert inbox.empty()

        with connect(free_port) as fresh:
            fresh.sendall(b"after reset")
            assert inbox.get(timeout=5).text == "after reset"
            assert controller.send("welcome") == SENT_TO_TCP_CLIENT
            assert fresh.recv(4096) == b"welcome"
