"""Hashing and encoding helpers used by the WebSocket handshake."""

from __future__ import annotations

import base64
import hashlib

WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"


def sha1(data: bytes | bytearray | memoryview) -> bytes:
    """The 20-byte SHA-1 digest of ``data``."""
    return hashlib.sha1(bytes(data)).digest()


def base64_encode(data: bytes | bytearray | memoryview) -> str:
    """Standard base64 text of ``data``."""
    return base64.b64encode(bytes(data)).decode("ascii")


def websocket_accept_key(key: str) -> str:
    """The Sec-WebSocket-Accept value answering a Sec-WebSocket-Key."""
    return base64_encode(sha1((key + WEBSOCKET_GUID).encode("latin-1")))