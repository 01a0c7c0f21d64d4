"""Tests for relay.utils helpers."""

from relay.utils import decode_payload, format_peer


def test_format_peer():
    assert format_peer(("127.0.0.1", 5000)) == "127.0.0.1:5000"
    assert format_peer(("::1", 5000, 0, 0)) == "::1:5000"
    assert format_peer(None) is None
    assert format_peer("/tmp/relay.sock") == "/tmp/relay.sock"


def test_decode_payload():
    assert decode_payload(b"hello") == "hello"
    assert decode_payload("already text") == "already text"
    assert decode_payload(bytearray(b"caf\xc3\xa9")) == "café"
    assert decode_payload(b"\xe9t\xe9", "latin-1") == "été"
    assert decode_payload(b"bad\xff") == "bad�"
