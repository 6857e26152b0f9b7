"""Incremental WebSocket frame decoding and encoding."""

from __future__ import annotations

import abc
import enum
import logging

logger = logging.getLogger(__name__)

MAX_WEBSOCKET_HEADER = 16


class WebSocketOperation(enum.IntEnum):
    CONTINUATION_FRAME = 0x00
    TEXT_FRAME = 0x01
    BINARY_FRAME = 0x02
    CONNECTION_CLOSE = 0x08
    PING = 0x09
    PONG = 0x0A


_DATA_OPERATIONS = frozenset(
    {
        WebSocketOperation.CONTINUATION_FRAME,
        WebSocketOperation.TEXT_FRAME,
        WebSocketOperation.BINARY_FRAME,
    }
)


class WebSocketState(enum.Enum):
    WAIT_PACKET = enum.auto()
    WAIT_DATA = enum.auto()


class WebSocketError(Exception):
    """Raised when a stream cannot be decoded or encoded; the connection must close."""


class WebSocketInterface(abc.ABC):
    """Receiver of decoded payloads and of encoded bytes ready to send.

    Each method returns True on success and False to abort processing.
    """

    @abc.abstractmethod
    def on_websocket_data(self, data: bytes) -> bool:
        """Handle a chunk of unmasked payload."""

    @abc.abstractmethod
    def on_websocket_encoded_data(self, data: bytes) -> bool:
        """Send a chunk of encoded frame bytes."""


def encode_frame_header(length: int) -> bytes:
    """Header of an unmasked, final binary frame carrying ``length`` bytes."""
    if length < 0:
        raise WebSocketError("negative payload length")
    first = 0x80 | WebSocketOperation.BINARY_FRAME
    if length < 126:
        return bytes((first, length))
    if length <= 0xFFFF:
        return bytes((first, 126)) + length.to_bytes(2, "big")
    if length > 0xFFFFFFFF:
        raise WebSocketError("payload too large to encode")
    return bytes((first, 127)) + bytes(4) + length.to_bytes(4, "big")


class WebSocketHandler:
    """Decodes frames from a byte stream delivered in arbitrary chunks."""

    def __init__(self) -> None:
        self.fin = False
        self.mask = False
        self.opcode = 0
        self.state = WebSocketState.WAIT_PACKET
        self._data_len = 0
        self._data_index = 0
        self._masking_key = bytes(4)
        self._buffer = bytearray()

    def decode(self, data: bytes | bytearray | memoryview, callback: WebSocketInterface) -> None:
        """Feed received bytes; payload chunks go to ``callback``.

        Bytes of a partially received frame header are kept until the rest
        arrives. Raises WebSocketError on control frames or when the callback
        refuses the data.
        """
        view = bytes(data)
        pos = 0
        end = len(view)
        while pos < end:
            if self.state is WebSocketState.WAIT_PACKET:
                take = min(end - pos, MAX_WEBSOCKET_HEADER - len(self._buffer))
                self._buffer += view[pos:pos + take]
                if len(self._buffer) < 2:
                    return

                buf = self._buffer
                self.fin = bool(buf[0] & 0x80)
                self.opcode = buf[0] & 0x0F
                self.mask = bool(buf[1] & 0x80)
                payload_len = buf[1] & 0x7F

                header_size = 2
                if payload_len == 126:
                    header_size += 2
                elif payload_len == 127:
                    header_size += 8
                if self.mask:
                    header_size += 4
                if len(buf) < header_size:
                    logger.debug(
                        "incomplete websocket header [%d] expected [%d]", len(buf), header_size
                    )
                    return

                pos += take - (len(buf) - header_size)

                if payload_len < 126:
                    self._data_len = payload_len
                    key_at = 2
                elif payload_len == 126:
                    self._data_len = int.from_bytes(buf[2:4], "big")
                    key_at = 4
                else:
                    self._data_len = int.from_bytes(buf[2:10], "big")
                    key_at = 10

                self._masking_key = bytes(buf[key_at:key_at + 4]) if self.mask else bytes(4)
                self._data_index = 0
                self.state = WebSocketState.WAIT_DATA
                self._buffer = bytearray()
            else:
                if self.opcode not in _DATA_OPERATIONS:
                    raise WebSocketError(f"unsupported websocket operation {self.opcode:#x}")

                count = min(end - pos, self._data_len - self._data_index)
                chunk = view[pos:pos + count]
                if self.mask:
                    key = self._masking_key
                    start = self._data_index
                    chunk = bytes(
                        byte ^ key[(start + offset) & 0x3] for offset, byte in enumerate(chunk)
                    )
                self._data_index += count

                if not callback.on_websocket_data(chunk):
                    raise WebSocketError("websocket data rejected by callback")

                pos += count
                if self._data_index == self._data_len:
                    self.state = WebSocketState.WAIT_PACKET

    def encode(self, data: bytes | bytearray | memoryview, callback: WebSocketInterface) -> None:
        """Frame ``data`` as one binary message and hand header and payload to ``callback``."""
        payload = bytes(data)
        if not callback.on_websocket_encoded_data(encode_frame_header(len(payload))):
            raise WebSocketError("sending websocket header failed")
        if not callback.on_websocket_encoded_data(payload):
            raise WebSocketError("sending websocket payload failed")