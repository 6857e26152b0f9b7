"""A small MQTT 3.1.1 client protocol handler sitting on top of a session."""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
from typing import Callable, Protocol

from .session import SessionCallback

logger = logging.getLogger(__name__)

MQTTQOS0 = 0x00
MQTTQOS1 = 0x02
MQTTQOS2 = 0x04
MQTTRETAIN = 0x01

MQTT_MAX_HEADER_SIZE = 5
MQTT_BUFFER_SIZE = 256

_MESSAGE_ID_SIZE = 2
_LENGTH_PREFIX_SIZE = 2


class MQTTError(Exception):
    """Raised when a message cannot be built or a received stream is invalid."""


class ConnAckCode(enum.IntEnum):
    CONNECTION_ACCEPTED = 0x00
    UNACCEPTABLE_PROTOCOL = 0x01
    IDENTIFIER_REJECTED = 0x02
    SERVER_UNAVAILABLE = 0x03
    BAD_USER_OR_PASS = 0x04
    NOT_AUTHORIZED = 0x05


class MessageType(enum.IntEnum):
    CONNECT = 0x10
    CONNACK = 0x20
    PUBLISH = 0x30
    PUBACK = 0x40
    PUBREC = 0x50
    PUBREL = 0x60
    PUBCOMP = 0x70
    SUBSCRIBE = 0x80
    SUBACK = 0x90
    UNSUBSCRIBE = 0xA0
    UNSUBACK = 0xB0
    PINGREQ = 0xC0
    PINGRESP = 0xD0
    DISCONNECT = 0xE0
    RESERVED = 0xF0


class _SocketState(enum.Enum):
    WAIT_PACKET = enum.auto()
    WAIT_DATA = enum.auto()


class _Sender(Protocol):
    def send(self, data: bytes) -> object: ...


@dataclasses.dataclass
class ReceivedMessage:
    """A PUBLISH received from the broker, body collected as it arrives."""

    topic: bytes
    message_id: int
    length: int
    body: bytearray = dataclasses.field(default_factory=bytearray)


@dataclasses.dataclass
class ConnectionStatus:
    """What the default MQTTSocketInterface has seen so far."""

    connected: bool = False
    conn_ack: tuple[ConnAckCode | int, int] | None = None
    pub_acks: list[int] = dataclasses.field(default_factory=list)
    sub_acks: list[int] = dataclasses.field(default_factory=list)
    ping_responses: int = 0
    bytes_sent: int = 0
    messages: list[ReceivedMessage] = dataclasses.field(default_factory=list)
    incoming: ReceivedMessage | None = None


class MQTTSocketInterface:
    """Receiver of decoded MQTT events.

    The default implementation accepts every event and records it in
    ``status``. Each ``on_*`` method returning a bool returns False to make
    processing fail, which leads to a disconnect.
    """

    @property
    def status(self) -> ConnectionStatus:
        current = getattr(self, "_status", None)
        if current is None:
            current = ConnectionStatus()
            self._status = current
        return current

    def on_pub_ack(self, message_id: int) -> bool:
        self.status.pub_acks.append(message_id)
        return True

    def on_sub_ack(self, message_id: int) -> bool:
        self.status.sub_acks.append(message_id)
        return True

    def on_conn_ack(self, code: ConnAckCode | int, flags: int) -> bool:
        self.status.conn_ack = (code, flags)
        return True

    def on_ping_resp(self) -> bool:
        self.status.ping_responses += 1
        return True

    def on_publish_header(self, topic: bytes, message_id: int, message_length: int) -> bool:
        self.status.incoming = ReceivedMessage(bytes(topic), message_id, message_length)
        return True

    def on_publish_data(self, data: bytes, last_chunk: bool) -> bool:
        status = self.status
        if status.incoming is not None:
            status.incoming.body += data
            if last_chunk:
                status.messages.append(status.incoming)
                status.incoming = None
        return True

    def on_sent(self, length: int) -> bool:
        self.status.bytes_sent += length
        return True

    def on_closed(self) -> None:
        self.status.connected = False

    def on_connected(self) -> None:
        self.status.connected = True


def encode_fixed_header(message_type: int, message_size: int, later_bytes: int = 0) -> bytes:
    """Fixed header: the type byte and the remaining length as a variable-length integer.

    ``later_bytes`` is the part of ``message_size`` that the caller sends
    separately; it does not change the encoding.
    """
    if message_size < 0 or later_bytes < 0 or later_bytes > message_size:
        raise MQTTError("invalid message size")
    if message_size >> 28:
        raise MQTTError(f"mqtt message size is too large to encode: {message_size}")
    out = bytearray((message_type & 0xFF,))
    remaining = message_size
    while True:
        byte = remaining & 0x7F
        remaining >>= 7
        if remaining:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _encode_string(value: bytes) -> bytes:
    return len(value).to_bytes(2, "big") + value


def _text_bytes(value: str | bytes) -> bytes:
    raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    if len(raw) > 0xFFFF:
        raise MQTTError("string too long for an mqtt message")
    return raw


class MQTTSocketHandler(SessionCallback):
    """Encodes outgoing MQTT messages and decodes the incoming stream.

    ``downstream`` is anything with ``send(bytes)``, typically a Session.
    ``upstream`` receives decoded events.
    """

    def __init__(
        self,
        upstream: MQTTSocketInterface | None = None,
        downstream: _Sender | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.upstream = upstream if upstream is not None else MQTTSocketInterface()
        self.downstream = downstream
        self._clock = clock
        self._keepalive_seconds = 0
        self._message_id = 1
        self._recv_buffer = bytearray()
        self._state = _SocketState.WAIT_PACKET
        self._last_keepalive = 0.0
        self._pending_data_len = 0
        self._pending_send_data_len = 0

    @property
    def message_id(self) -> int:
        return self._message_id

    @property
    def pending_send_length(self) -> int:
        return self._pending_send_data_len

    # Session callbacks

    def on_recv(self, data: bytes) -> bool:
        logger.debug("received %d bytes", len(data))
        try:
            self._decode(data)
        except MQTTError as exc:
            logger.debug("mqtt decode failed: %s", exc)
            return False
        return True

    def on_sent(self, length: int) -> bool:
        return self.upstream.on_sent(length)

    def on_closed(self) -> None:
        self.upstream.on_closed()

    def on_connected(self) -> None:
        self.upstream.on_connected()

    # Decoding

    def _decode(self, data: bytes | bytearray | memoryview) -> None:
        view = bytes(data)
        pos = 0
        end = len(view)
        while pos < end:
            if self._state is _SocketState.WAIT_PACKET:
                consumed = self._decode_packet(view, pos, end)
                if consumed is None:
                    return
                pos += consumed
            else:
                count = min(end - pos, self._pending_data_len)
                last = count == self._pending_data_len
                if not self.upstream.on_publish_data(view[pos:pos + count], last):
                    raise MQTTError("publish data rejected")
                pos += count
                self._pending_data_len -= count
                if self._pending_data_len == 0:
                    self._state = _SocketState.WAIT_PACKET

    def _decode_packet(self, view: bytes, start: int, end: int) -> int | None:
        """Handle one packet header; returns bytes used from ``view`` or None if incomplete."""
        previously = len(self._recv_buffer)
        take = min(end - start, MQTT_BUFFER_SIZE - previously)
        self._recv_buffer += view[start:start + take]
        buf = self._recv_buffer
        if len(buf) < 2:
            return None

        length = 0
        pos = 1
        while pos < 5:
            if pos >= len(buf):
                return None
            if buf[pos] == 5:
                raise MQTTError("received disconnect message")
            length += (buf[pos] & 0x7F) << ((pos - 1) * 7)
            if not buf[pos] & 0x80:
                pos += 1
                break
            pos += 1

        msg_size = length + pos
        message_type = buf[0] & 0xF0
        qos = buf[0] & (MQTTQOS1 | MQTTQOS2)

        if message_type == MessageType.PUBLISH:
            if pos + 2 > len(buf):
                return None
            topic_length = int.from_bytes(buf[pos:pos + 2], "big")
            pos += 2
            if pos + topic_length >= MQTT_BUFFER_SIZE:
                raise MQTTError(
                    f"publish header larger than local buffer: {pos + topic_length}"
                )
            if pos + topic_length > len(buf):
                return None
            topic = bytes(buf[pos:pos + topic_length])
            pos += topic_length
            message_id = 0
            if qos:
                if pos + 2 > len(buf):
                    return None
                message_id = int.from_bytes(buf[pos:pos + 2], "big")
                pos += 2
            message_length = msg_size - pos
            if message_length < 0:
                raise MQTTError("publish message shorter than its header")
            if not self.upstream.on_publish_header(topic, message_id, message_length):
                raise MQTTError("publish header rejected")
            self._recv_buffer = bytearray()
            if message_length == 0:
                if not self.upstream.on_publish_data(b"", True):
                    raise MQTTError("publish data rejected")
            else:
                self._pending_data_len = message_length
                self._state = _SocketState.WAIT_DATA
            return pos - previously

        if msg_size >= MQTT_BUFFER_SIZE:
            raise MQTTError(
                f"message larger than local buffer: size {msg_size}, type {message_type:#x}"
            )
        if msg_size > len(buf):
            return None

        if message_type == MessageType.CONNACK:
            if pos + 2 > msg_size:
                raise MQTTError("malformed connack")
            flags = buf[pos]
            raw_code = buf[pos + 1]
            try:
                code: ConnAckCode | int = ConnAckCode(raw_code)
            except ValueError:
                code = raw_code
            ok = self.upstream.on_conn_ack(code, flags)
        elif message_type in (MessageType.SUBACK, MessageType.PUBACK):
            if pos + 2 > msg_size:
                raise MQTTError("malformed acknowledgement")
            message_id = int.from_bytes(buf[pos:pos + 2], "big")
            if message_type == MessageType.PUBACK:
                ok = self.upstream.on_pub_ack(message_id)
            else:
                ok = self.upstream.on_sub_ack(message_id)
        elif message_type == MessageType.PINGRESP:
            ok = self.upstream.on_ping_resp()
        else:
            logger.debug("unknown message: %d, size: %d", buf[0], msg_size)
            ok = True

        self._recv_buffer = bytearray()
        if not ok:
            raise MQTTError(f"message of type {message_type:#x} rejected")
        return msg_size - previously

    # Encoding

    def _require_idle(self, what: str) -> None:
        if self._pending_send_data_len > 0:
            raise MQTTError(f"{what}: previous message was not fully sent")

    def _send(self, payload: bytes) -> None:
        if self.downstream is None:
            raise MQTTError("no downstream to send to")
        self.downstream.send(payload)

    def _next_message_id(self) -> int:
        current = self._message_id
        self._message_id = 1 if current == 0xFFFF else current + 1
        return current

    def send_connect(
        self,
        clean_session: bool,
        keepalive_seconds: int,
        client_id: str | bytes | None = None,
        will_topic: str | bytes | None = None,
        will_message: str | bytes | None = None,
        user: str | bytes | None = None,
        password: str | bytes | None = None,
    ) -> None:
        """Send CONNECT. The will, if given, uses QoS 1 and retain."""
        self._require_idle("send_connect")
        if not 0 <= keepalive_seconds <= 0xFFFF:
            raise MQTTError("keepalive out of range")

        flags = 0
        if will_topic is not None:
            flags = 0x04 | 0x08 | 0x20
        if clean_session:
            flags |= 0x02
        if user is not None:
            flags |= 0x80
            if password is not None:
                flags |= 0x40

        body = bytearray(b"\x00\x04MQTT\x04")
        body.append(flags)
        body += keepalive_seconds.to_bytes(2, "big")

        if client_id is None:
            raise MQTTError("missing id for connect")
        body += _encode_string(_text_bytes(client_id))
        if will_topic is not None and will_message is not None:
            body += _encode_string(_text_bytes(will_topic))
            body += _encode_string(_text_bytes(will_message))
        if user is not None:
            body += _encode_string(_text_bytes(user))
            if password is not None:
                body += _encode_string(_text_bytes(password))

        if len(body) + MQTT_MAX_HEADER_SIZE > MQTT_BUFFER_SIZE:
            raise MQTTError(f"connect message too large: {len(body) + MQTT_MAX_HEADER_SIZE}")

        payload = encode_fixed_header(MessageType.CONNECT, len(body)) + bytes(body)
        self._message_id = 1
        self._last_keepalive = self._clock()
        self._keepalive_seconds = keepalive_seconds
        self._send(payload)

    def send_subscribe(self, topic: str | bytes) -> None:
        """Subscribe to ``topic`` with QoS 1."""
        self._require_idle("send_subscribe")
        raw_topic = _text_bytes(topic)
        message_size = _LENGTH_PREFIX_SIZE + len(raw_topic) + _MESSAGE_ID_SIZE + 1
        if message_size + MQTT_MAX_HEADER_SIZE > MQTT_BUFFER_SIZE:
            raise MQTTError(f"subscribe message too large: {message_size + MQTT_MAX_HEADER_SIZE}")

        payload = (
            encode_fixed_header(MessageType.SUBSCRIBE | MQTTQOS1, message_size)
            + self._next_message_id().to_bytes(2, "big")
            + _encode_string(raw_topic)
            + bytes((1,))
        )
        self._last_keepalive = self._clock()
        self._send(payload)

    def send_publish_header(self, topic: str | bytes, message_length: int) -> None:
        """Start a retained QoS 1 publish; the body follows via send_publish_data."""
        self._require_idle("send_publish_header")
        if message_length < 0:
            raise MQTTError("negative message length")
        raw_topic = _text_bytes(topic)
        header_size = _LENGTH_PREFIX_SIZE + len(raw_topic) + _MESSAGE_ID_SIZE
        message_size = header_size + message_length

        fixed = encode_fixed_header(
            MessageType.PUBLISH | MQTTQOS1 | MQTTRETAIN, message_size, message_length
        )
        payload = fixed + _encode_string(raw_topic) + self._next_message_id().to_bytes(2, "big")
        self._pending_send_data_len = message_length
        self._last_keepalive = self._clock()
        self._send(payload)

    def send_publish_data(self, data: bytes | bytearray | memoryview) -> None:
        """Send part of the body announced by send_publish_header."""
        chunk = bytes(data)
        if self._pending_send_data_len < len(chunk):
            raise MQTTError(
                f"sending {len(chunk)} bytes but only {self._pending_send_data_len} remain"
            )
        self._pending_send_data_len -= len(chunk)
        self._send(chunk)

    def send_ping(self) -> bool:
        """Send PINGREQ if the keepalive interval has passed; returns whether one was sent."""
        if self._pending_send_data_len > 0:
            return False
        if int(self._clock() - self._last_keepalive) < self._keepalive_seconds:
            return False
        payload = encode_fixed_header(MessageType.PINGREQ, 0)
        self._last_keepalive = self._clock()
        self._send(payload)
        return True