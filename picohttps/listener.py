"""TCP and TLS listeners that hand each accepted connection to a factory."""

from __future__ import annotations

import contextlib
import logging
import socket
import ssl
import threading
from typing import Callable

logger = logging.getLogger(__name__)

ALPN_PROTOCOLS = ["http/1.1"]
ACCEPT_POLL_SECONDS = 0.2
HANDSHAKE_TIMEOUT = 10.0

SessionFactory = Callable[[socket.socket, bool], object]


class ListenerError(OSError):
    """Raised when a listener cannot be set up."""


def create_server_tls_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """A server TLS context with the given certificate chain and key, offering HTTP/1.1."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(cert_file, key_file)
    except OSError as exc:
        raise ListenerError(f"cannot load certificate: {exc}") from exc
    context.set_alpn_protocols(ALPN_PROTOCOLS)
    return context


class Listener:
    """Accepts plain TCP connections and calls ``factory(sock, False)`` for each."""

    tls = False

    def __init__(self) -> None:
        self._factory: SessionFactory | None = None
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def port(self) -> int:
        """The bound port, or 0 when not listening."""
        return self._sock.getsockname()[1] if self._sock is not None else 0

    def listen(self, port: int, factory: SessionFactory) -> None:
        """Bind to ``port`` on every address and start accepting in the background."""
        if self._factory is not None:
            raise ListenerError("listener is already initialized")
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            raise ListenerError(f"cannot create socket: {exc}") from exc
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", port))
            sock.listen()
            sock.settimeout(ACCEPT_POLL_SECONDS)
        except OSError as exc:
            sock.close()
            raise ListenerError(f"cannot listen on port {port}: {exc}") from exc

        self._factory = factory
        self._sock = sock
        self._stop.clear()
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()
        logger.debug("listening on port %d", self.port)

    def _prepare(self, conn: socket.socket) -> socket.socket | None:
        return conn

    def _accept_loop(self) -> None:
        sock = self._sock
        factory = self._factory
        while sock is not None and factory is not None and not self._stop.is_set():
            try:
                conn, address = sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            logger.debug("accepted connection from %s", address)
            conn.setblocking(True)
            prepared = self._prepare(conn)
            if prepared is None:
                continue
            try:
                factory(prepared, self.tls)
            except Exception:
                logger.exception("session factory failed")
                with contextlib.suppress(OSError):
                    prepared.close()

    def close(self) -> None:
        """Stop accepting and release the port."""
        self._stop.set()
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._factory = None

    def __enter__(self) -> Listener:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class TLSListener(Listener):
    """Accepts TLS connections and calls ``factory(sock, True)`` after the handshake."""

    tls = True

    def __init__(self, context: ssl.SSLContext) -> None:
        super().__init__()
        self.context = context

    def listen(self, port: int, factory: SessionFactory) -> None:
        """Bind to ``port`` and accept TLS clients in the background."""
        super().listen(port, factory)

    def _prepare(self, conn: socket.socket) -> socket.socket | None:
        conn.settimeout(HANDSHAKE_TIMEOUT)
        try:
            wrapped = self.context.wrap_socket(conn, server_side=True)
        except OSError as exc:
            logger.debug("tls handshake failed: %s", exc)
            with contextlib.suppress(OSError):
                conn.close()
            return None
        wrapped.settimeout(None)
        return wrapped