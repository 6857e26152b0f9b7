"""Remote logging over UDP: text trace lines and raw binary dumps."""

from __future__ import annotations

import ipaddress
import logging
import socket
import time

_log = logging.getLogger(__name__)

BUFFER_SIZE = 1500
LOG_COUNT_MODULO = 999


def safestr(value: str | None) -> str:
    """``value`` itself, or the text "null" when it is None."""
    return value if value is not None else "null"


class UdpLogger:
    """Sends numbered, timestamped log lines to a remote UDP collector.

    Until ``start`` is called, messages are formatted but not sent anywhere.
    """

    def __init__(self) -> None:
        self._count = 0
        self._started_at = time.monotonic()
        self._address = ""
        self._text_socket: socket.socket | None = None
        self._binary_socket: socket.socket | None = None

    @property
    def started(self) -> bool:
        return self._text_socket is not None

    def start(self, server: str, port: int, binary_port: int | None = None) -> None:
        """Connect to the collector at ``server``; binary dumps go to ``binary_port``.

        ``server`` must be an IPv4 address. Raises ValueError for a bad address
        and OSError when the sockets cannot be set up.
        """
        try:
            ipaddress.IPv4Address(server)
        except ValueError as exc:
            raise ValueError(f"invalid logging server address: {server!r}") from exc
        if binary_port is None:
            binary_port = port

        self.close()
        text_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        binary_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            text_socket.bind(("", 0))
            text_socket.connect((server, port))
            binary_socket.bind(("", 0))
            binary_socket.connect((server, binary_port))
        except OSError:
            text_socket.close()
            binary_socket.close()
            raise
        self._text_socket = text_socket
        self._binary_socket = binary_socket
        self._address = text_socket.getsockname()[0]

    def format_message(self, category: str, format: str, *args: object) -> bytes:
        """Build one log line: counter, milliseconds, local address, category, text."""
        elapsed_ms = int((time.monotonic() - self._started_at) * 1000)
        prefix = "%3d %8d %s %s " % (self._count, elapsed_ms, self._address, category)
        self._count = (self._count + 1) % LOG_COUNT_MODULO

        message = format % args if args else format
        encoded = (prefix + message).encode("utf-8", errors="replace")
        if len(encoded) < BUFFER_SIZE - 1 and not encoded.endswith(b"\n"):
            encoded += b"\n"
        return encoded[: BUFFER_SIZE - 1]

    def _send(self, sock: socket.socket | None, payload: bytes) -> None:
        if sock is None:
            return
        try:
            sock.send(payload)
        except OSError as exc:
            _log.warning("failed to send UDP packet: %s", exc)

    def trace(self, format: str, *args: object) -> bytes:
        """Send a trace line; returns the bytes of the line."""
        payload = self.format_message("trace", format, *args)
        self._send(self._text_socket, payload)
        return payload

    def fail(self, format: str, *args: object) -> bytes:
        """Send a failure line; returns the bytes of the line."""
        payload = self.format_message("fail", format, *args)
        self._send(self._text_socket, payload)
        return payload

    def trace_bytes(self, data: bytes | bytearray | memoryview) -> None:
        """Send ``data`` unchanged to the binary port."""
        self._send(self._binary_socket, bytes(data))

    def close(self) -> None:
        """Close the sockets; later messages are no longer sent."""
        for sock in (self._text_socket, self._binary_socket):
            if sock is not None:
                sock.close()
        self._text_socket = None
        self._binary_socket = None
        self._address = ""

    def __enter__(self) -> UdpLogger:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


_default_logger = UdpLogger()


def start_logging_server(server: str, port: int, binary_port: int | None = None) -> UdpLogger:
    """Start the shared logger and return it."""
    _default_logger.start(server, port, binary_port)
    return _default_logger


def trace(format: str, *args: object) -> bytes:
    """Send a trace line through the shared logger."""
    return _default_logger.trace(format, *args)


def fail(format: str, *args: object) -> bytes:
    """Send a failure line through the shared logger."""
    return _default_logger.fail(format, *args)


def trace_bytes(data: bytes | bytearray | memoryview) -> None:
    """Send raw bytes through the shared logger."""
    _default_logger.trace_bytes(data)