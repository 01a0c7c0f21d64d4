"""
Utility helpers (peer formatting, payload decoding).
"""

from typing import Optional


def format_peer(peername) -> Optional[str]:
    """
    Turns a socket peer address into "host:port".

    :param peername: value of get_extra_info("peername") or remote_address
    :return: "host:port", or None if the address is unknown
    """
    if not peername:
        return None
    if isinstance(peername, (tuple, list)) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


def decode_payload(data, encoding: str = "utf-8") -> str:
    """
    Decodes one read (or one binary frame) into text; undecodable bytes are replaced.
    """
    if isinstance(data, str):
        return data
    return bytes(data).decode(encoding, errors="replace")
