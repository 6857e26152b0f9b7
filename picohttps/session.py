"""A TCP or TLS connection that reports its events to a callback object."""

from __future__ import annotations

import contextlib
import logging
import socket
import ssl

logger = logging.getLogger(__name__)

RECV_SIZE = 4096
MAX_SEND_BUFFER = 0xFFFF

_client_tls_context: ssl.SSLContext | None = None


class SessionError(OSError):
    """Raised when a session cannot connect or send."""


class SessionCallback:
    """Receiver of session events. Defaults accept everything."""

    def on_sent(self, length: int) -> bool:
        """``length`` bytes were sent; return False to close the session."""
        return True

    def on_recv(self, data: bytes) -> bool:
        """Bytes arrived; return False to close the session."""
        return True

    def on_closed(self) -> None:
        """The session is closed."""

    def on_connected(self) -> None:
        """An outgoing connection was established."""


def create_client_tls_context(cert: bytes | str) -> ssl.SSLContext:
    """Create, once, the TLS context used by client sessions.

    ``cert`` is a trusted certificate in PEM text or DER bytes. Later calls
    return the context made by the first successful one.
    """
    global _client_tls_context
    if _client_tls_context is None:
        if isinstance(cert, (bytes, bytearray, memoryview)):
            raw = bytes(cert)
            cadata: bytes | str = (
                raw.decode("ascii") if raw.lstrip().startswith(b"-----BEGIN") else raw
            )
        else:
            cadata = cert
        context = ssl.create_default_context(cadata=cadata)
        _client_tls_context = context
    return _client_tls_context


class Session:
    """One connection, either accepted (``sock`` given) or opened by ``connect``."""

    def __init__(
        self,
        sock: socket.socket | None = None,
        tls: bool = False,
        callback: SessionCallback | None = None,
        tls_context: ssl.SSLContext | None = None,
    ) -> None:
        self.tls = tls
        self.callback = callback
        self._tls_context = tls_context
        self._sock = sock
        self._connected = sock is not None
        self._closing = False
        self._sending = False
        self._outgoing = bytearray()
        if sock is not None:
            self._init_socket()

    def _init_socket(self) -> None:
        if self._sock is not None and self._sock.family in (socket.AF_INET, socket.AF_INET6):
            with contextlib.suppress(OSError):
                self._sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    @property
    def socket(self) -> socket.socket | None:
        return self._sock

    def connect(self, host: str, port: int) -> None:
        """Open a connection to ``host``:``port``, over TLS if the session is TLS."""
        context = None
        if self.tls:
            context = self._tls_context or _client_tls_context
            if context is None:
                raise SessionError("tls client config was not created")
        try:
            raw = socket.create_connection((host, port))
            try:
                sock = context.wrap_socket(raw, server_hostname=host) if context else raw
            except (OSError, ValueError):
                raw.close()
                raise
        except (OSError, ValueError) as exc:
            logger.debug("connect to %s:%d failed: %s", host, port, exc)
            self.close()
            raise SessionError(f"cannot connect to {host}:{port}: {exc}") from exc

        self._sock = sock
        self._init_socket()
        self._connected = True
        if self.callback is not None:
            self.callback.on_connected()

    def run(self) -> None:
        """Read and dispatch incoming data until the session closes."""
        while self._sock is not None and not self._closing:
            try:
                data = self._sock.recv(RECV_SIZE)
            except OSError as exc:
                logger.debug("receive failed: %s", exc)
                self.close()
                return
            if not data:
                logger.debug("connection closed by remote party")
                self.close()
                return
            if self.callback is not None and not self.callback.on_recv(data):
                self.close()
                return

    def send(self, data: bytes | bytearray | memoryview) -> None:
        """Queue and write ``data``; a closed session silently drops it."""
        if data is None:
            raise SessionError("no data to send")
        if self._sock is None:
            return
        payload = bytes(data)
        self._sending = True
        try:
            self._outgoing += payload
            self.flush()
        except OSError as exc:
            self._sending = False
            raise SessionError(f"send failed: {exc}") from exc
        self._sending = False

        if self._closing or self._sock is None:
            if self.callback is not None:
                self.callback.on_closed()
            raise SessionError("session closed while sending")

        if self.callback is not None and not self.callback.on_sent(len(payload)):
            self.close()

    def flush(self) -> None:
        """Write out everything queued."""
        if self._closing or self._sock is None:
            return
        while self._outgoing:
            written = self._sock.send(self._outgoing)
            del self._outgoing[:written]

    def close(self) -> None:
        """Close the connection once and notify the callback."""
        if self._closing:
            return
        self._connected = False
        self._closing = True
        self._outgoing.clear()
        sock, self._sock = self._sock, None
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.close()
        if not self._sending and self.callback is not None:
            self.callback.on_closed()

    def send_buffer_size(self) -> int:
        """Size of the socket's send buffer, capped at 0xFFFF; 0 when closed."""
        if self._sock is None:
            return 0
        try:
            size = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF)
        except OSError:
            return 0
        return min(size, MAX_SEND_BUFFER)

    def is_connected(self) -> bool:
        return self._sock is not None and not self._closing and self._connected

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()