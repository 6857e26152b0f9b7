import base64
import hashlib

from picohttps.digest import WEBSOCKET_GUID, base64_encode, sha1, websocket_accept_key


def test_sha1_known_value():
    assert sha1(b"abc").hex() == "a9993e364706816aba3e25717850c26c9cd0d89d"


def test_sha1_length_and_consistency():
    digest = sha1(bytearray(b"hello"))
    assert len(digest) == 20
    assert digest == sha1(b"hello")


def test_base64_round_trip():
    data = bytes(range(50))
    assert base64.b64decode(base64_encode(data)) == data


def test_base64_of_empty():
    assert base64_encode(b"") == ""


def test_websocket_accept_key_specification_example():
    assert websocket_accept_key("dGhlIHNhbXBsZSBub25jZQ==") == "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def test_websocket_accept_key_decodes_to_digest():
    key = "x3JJHMbDL1EzLkh9GBhXDw=="
    accept = websocket_accept_key(key)
    assert base64.b64decode(accept) == hashlib.sha1((key + WEBSOCKET_GUID).encode()).digest()