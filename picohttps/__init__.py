"""Building blocks for HTTP/HTTPS services: header parsing, WebSocket framing, MQTT codec, sessions, listeners and UDP logging."""

__version__ = "0.1.0"