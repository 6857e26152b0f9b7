# picohttps

Socket-level building blocks for small HTTP and HTTPS services: an HTTP
header parser, WebSocket framing, SHA-1/base64 helpers for the WebSocket
handshake, an MQTT 3.1.1 client codec, TCP/TLS sessions and listeners, and
a UDP trace logger. It needs nothing beyond the Python standard library.

## What is in the package

| Module | Purpose |
| --- | --- |
| `picohttps.http_header` | Parse the request or status line and header fields of an HTTP message (`parse_header`, `HTTPHeader`, `HeaderParseError`). |
| `picohttps.websocket` | Decode and encode WebSocket frames (`WebSocketHandler`, `WebSocketInterface`, `encode_frame_header`, `WebSocketError`). |
| `picohttps.digest` | SHA-1, base64 and the WebSocket accept key (`sha1`, `base64_encode`, `websocket_accept_key`). |
| `picohttps.logger` | Send numbered trace lines and raw bytes to a UDP log collector (`UdpLogger`, `start_logging_server`, `trace`, `fail`, `trace_bytes`, `safestr`). |
| `picohttps.session` | One TCP or TLS connection reporting its events to a callback (`Session`, `SessionCallback`, `SessionError`, `create_client_tls_context`). |
| `picohttps.mqtt` | Build and decode MQTT packets in chunks (`MQTTSocketHandler`, `MQTTSocketInterface`, `encode_fixed_header`, `MQTTError`). |
| `picohttps.listener` | Accept plain or TLS connections and hand each one to a factory (`Listener`, `TLSListener`, `create_server_tls_context`, `ListenerError`). |

## Parsing a header

```python
from picohttps.http_header import parse_header, HeaderParseError

header = parse_header(b"GET /index.html HTTP/1.1\r\nHost: example.com\r\n\r\n")
assert header.is_request()
assert header.command == "GET" and header.path == "/index.html"
assert header.header_value("host") == "example.com"   # names match case-insensitively
print(header.describe())
```

`header_size` on the result is the number of bytes the header took,
including the blank line that ends it, so any body starts at that offset.
For a response, `response_code` holds the numeric status. An incomplete or
malformed message raises `HeaderParseError`. At most twenty fields are
recorded; any further ones are skipped up to the blank line.

## WebSocket handshake and frames

```python
from picohttps.digest import websocket_accept_key

assert websocket_accept_key("dGhlIHNhbXBsZSBub25jZQ==") == "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="
```

`WebSocketHandler.decode(data, callback)` takes bytes as they arrive, keeps
any partial frame header for the next call, unmasks payloads and passes them
to `on_websocket_data` of a `WebSocketInterface`. `WebSocketHandler.encode`
hands an unmasked, final binary frame header and then the payload to
`on_websocket_encoded_data`. Control frames such as close or ping, and a
callback returning `False`, raise `WebSocketError`.

## Sessions and listeners

A `Listener` binds a port, accepts connections on a background thread and
calls `factory(sock, tls)` for each one; a `TLSListener` does the same after
a TLS handshake, using a context from
`create_server_tls_context(cert_file, key_file)`. A listener can be started
only once; `close()` stops it.

A `Session` wraps a connected socket (or opens one with `connect(host, port)`)
and calls `on_recv`, `on_sent`, `on_closed` and `on_connected` on its
`SessionCallback`. `run()` reads until the connection closes; returning
`False` from `on_recv` or `on_sent` closes the session.

```python
import threading

from picohttps.http_header import HeaderParseError, parse_header
from picohttps.listener import Listener
from picohttps.session import Session, SessionCallback


class Hello(SessionCallback):
    session: Session

    def on_recv(self, data):
        try:
            parse_header(data)
        except HeaderParseError:
            return False
        self.session.send(b"HTTP/1.0 200 OK\r\nContent-Length: 5\r\n\r\nhello")
        return False  # close after one reply


def factory(sock, tls):
    callback = Hello()
    callback.session = Session(sock, tls, callback)
    threading.Thread(target=callback.session.run, daemon=True).start()


listener = Listener()
listener.listen(8080, factory)
```

For outgoing TLS sessions, call `create_client_tls_context(cert)` once with
a trusted certificate (PEM text or DER bytes), or pass `tls_context` to
`Session`.

## MQTT

`MQTTSocketHandler` writes CONNECT, SUBSCRIBE, PUBLISH and PINGREQ packets
to its `downstream` (anything with `send(bytes)`, such as a `Session`) and,
used as a session callback, decodes CONNACK, SUBACK, PUBACK, PINGRESP and
PUBLISH packets into calls on an `MQTTSocketInterface`. The default
interface records what it sees in its `status`. Published payloads arrive
in chunks through `on_publish_data`; packets other than PUBLISH must fit in
a 256-byte buffer.

```python
from picohttps.mqtt import MQTTSocketHandler
from picohttps.session import Session

handler = MQTTSocketHandler()
session = Session(callback=handler)
handler.downstream = session
session.connect("localhost", 1883)

password = "password"
handler.send_connect(True, 60, "client-1", user="user", password=password)
handler.send_subscribe("sensors/temperature")
handler.send_publish_header("sensors/status", 2)
handler.send_publish_data(b"ok")
```

Errors while building a packet raise `MQTTError`. `send_ping()` sends a
PINGREQ only once the keepalive interval has passed and returns whether it
did.

## Logging

```python
from picohttps.logger import start_logging_server, trace, fail

start_logging_server("127.0.0.1", 9000, 9001)
trace("listening on port %d", 443)
fail("handshake failed: %s", "timeout")
```

Each line is prefixed with a rolling counter, the uptime in milliseconds,
the local address and its category, and is sent as one UDP datagram;
`trace` and `fail` also return the bytes of the line. `trace_bytes` sends
raw bytes to the second port. Before the logger is started, lines are
formatted but not sent.

## What the package does not do

There is no ready-made HTTP server session: nothing routes requests,
writes replies or upgrades a connection to WebSocket for you. Those steps
are assembled from `parse_header`, `Session`, `websocket_accept_key` and
`WebSocketHandler`, as in the example above. The package also has no
command-line program.

## Running the tests

Install the `test` extra and run pytest from the project root.