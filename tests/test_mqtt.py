import pytest

from picohttps.mqtt import (
    ConnAckCode,
    MessageType,
    MQTTError,
    MQTTSocketHandler,
    MQTTSocketInterface,
    encode_fixed_header,
)


class FakeSender:
    def __init__(self):
        self.sent = []

    def send(self, data):
        self.sent.append(bytes(data))


class Recorder(MQTTSocketInterface):
    def __init__(self, accept=True):
        self.events = []
        self.accept = accept

    def on_pub_ack(self, message_id):
        self.events.append(("puback", message_id))
        return self.accept

    def on_sub_ack(self, message_id):
        self.events.append(("suback", message_id))
        return self.accept

    def on_conn_ack(self, code, flags):
        self.events.append(("connack", code, flags))
        return self.accept

    def on_ping_resp(self):
        self.events.append(("pingresp",))
        return self.accept

    def on_publish_header(self, topic, message_id, message_length):
        self.events.append(("publish", topic, message_id, message_length))
        return self.accept

    def on_publish_data(self, data, last_chunk):
        self.events.append(("data", data, last_chunk))
        return self.accept

    def on_closed(self):
        self.events.append(("closed",))


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make(accept=True):
    up = Recorder(accept)
    down = FakeSender()
    clock = Clock()
    return MQTTSocketHandler(up, down, clock), up, down, clock


def decode_remaining(frame):
    value = 0
    shift = 0
    pos = 1
    while True:
        byte = frame[pos]
        value |= (byte & 0x7F) << shift
        pos += 1
        if not byte & 0x80:
            return value, pos
        shift += 7


@pytest.mark.parametrize("size", [0, 1, 127, 128, 16383, 16384, 2097151, 2097152, (1 << 28) - 1])
def test_fixed_header_round_trip(size):
    frame = encode_fixed_header(MessageType.PUBLISH, size)
    assert frame[0] == MessageType.PUBLISH
    value, end = decode_remaining(frame)
    assert value == size
    assert end == len(frame)
    assert len(frame) <= 5


def test_fixed_header_ping():
    assert encode_fixed_header(MessageType.PINGREQ, 0) == b"\xc0\x00"


def test_fixed_header_too_large():
    with pytest.raises(MQTTError):
        encode_fixed_header(MessageType.PUBLISH, 1 << 28)


def test_send_connect_layout():
    handler, _, down, _ = make()
    handler.send_connect(True, 60, "dev")
    frame = down.sent[0]
    assert frame[0] == MessageType.CONNECT
    assert frame[1] == len(frame) - 2
    assert frame[2:9] == b"\x00\x04MQTT\x04"
    assert frame[9] == 0x02
    assert frame[10:12] == (60).to_bytes(2, "big")
    assert frame.endswith(b"\x00\x03dev")


def test_send_connect_with_credentials_and_will():
    handler, _, down, _ = make()
    password = "password"
    handler.send_connect(False, 10, "dev", "will/t", "bye", "user", password=password)
    frame = down.sent[0]
    flags = frame[9]
    assert flags & 0x80 and flags & 0x40
    assert flags & 0x04 and flags & 0x20
    assert not flags & 0x02
    assert frame.endswith(b"\x00\x04user\x00\x08password")
    assert b"\x00\x06will/t\x00\x03bye" in frame


def test_send_connect_requires_id():
    handler, _, down, _ = make()
    with pytest.raises(MQTTError):
        handler.send_connect(True, 60)
    assert down.sent == []


def test_send_connect_too_large():
    handler, _, _, _ = make()
    with pytest.raises(MQTTError):
        handler.send_connect(True, 60, "x" * 300)


def test_subscribe_increments_message_id():
    handler, _, down, _ = make()
    handler.send_subscribe("a/b")
    handler.send_subscribe("a/b")
    first, second = down.sent
    assert first[0] == MessageType.SUBSCRIBE | 0x02
    assert first[1] == len(first) - 2
    assert first[2:4] == (1).to_bytes(2, "big")
    assert second[2:4] == (2).to_bytes(2, "big")
    assert first[4:9] == b"\x00\x03a/b"
    assert first[-1] == 1


def test_publish_header_and_data():
    handler, _, down, _ = make()
    handler.send_publish_header("t", 4)
    header = down.sent[0]
    assert header[0] == MessageType.PUBLISH | 0x02 | 0x01
    value, end = decode_remaining(header)
    assert value == 2 + 1 + 2 + 4
    assert header[end:] == b"\x00\x01t\x00\x01"
    assert handler.pending_send_length == 4

    with pytest.raises(MQTTError):
        handler.send_subscribe("other")
    assert handler.send_ping() is False

    handler.send_publish_data(b"ab")
    handler.send_publish_data(b"cd")
    assert down.sent[1:] == [b"ab", b"cd"]
    assert handler.pending_send_length == 0


def test_publish_data_overflow_rejected():
    handler, _, _, _ = make()
    handler.send_publish_header("t", 2)
    with pytest.raises(MQTTError):
        handler.send_publish_data(b"abc")


def test_ping_after_keepalive():
    handler, _, down, clock = make()
    handler.send_connect(True, 30, "dev")
    clock.now = 10.0
    assert handler.send_ping() is False
    clock.now = 31.0
    assert handler.send_ping() is True
    assert down.sent[-1] == b"\xc0\x00"
    assert handler.send_ping() is False


def test_decode_connack():
    handler, up, _, _ = make()
    assert handler.on_recv(b"\x20\x02\x00\x00") is True
    assert up.events == [("connack", ConnAckCode.CONNECTION_ACCEPTED, 0)]


def test_decode_fragmented_suback_and_pingresp():
    handler, up, _, _ = make()
    stream = b"\x90\x03\x00\x07\x01" + b"\xd0\x00"
    for byte in stream:
        assert handler.on_recv(bytes((byte,))) is True
    assert up.events == [("suback", 7), ("pingresp",)]


def test_decode_several_messages_in_one_chunk():
    handler, up, _, _ = make()
    assert handler.on_recv(b"\x40\x02\x00\x09\xd0\x00\x90\x03\x00\x02\x01") is True
    assert up.events == [("puback", 9), ("pingresp",), ("suback", 2)]


def test_decode_publish_in_chunks():
    handler, up, _, _ = make()
    body = b"hello"
    message = encode_fixed_header(0x32, 2 + 3 + 2 + len(body)) + b"\x00\x03a/b\x00\x04" + body
    assert handler.on_recv(message[:4]) is True
    assert handler.on_recv(message[4:10]) is True
    assert handler.on_recv(message[10:] + b"\xd0\x00") is True
    assert up.events[0] == ("publish", b"a/b", 4, len(body))
    data = b"".join(event[1] for event in up.events if event[0] == "data")
    assert data == body
    lasts = [event[2] for event in up.events if event[0] == "data"]
    assert lasts[-1] is True and not any(lasts[:-1])
    assert up.events[-1] == ("pingresp",)


def test_decode_length_byte_five_disconnects():
    handler, _, _, _ = make()
    assert handler.on_recv(b"\x90\x05\x00\x01\x01\x00\x00") is False


def test_decode_oversized_message_fails():
    handler, _, _, _ = make()
    assert handler.on_recv(encode_fixed_header(MessageType.SUBACK, 300)) is False


def test_rejecting_upstream_fails_decode():
    handler, up, _, _ = make(accept=False)
    assert handler.on_recv(b"\xd0\x00") is False
    assert up.events == [("pingresp",)]


def test_on_closed_forwarded():
    handler, up, _, _ = make()
    handler.on_closed()
    assert up.events == [("closed",)]