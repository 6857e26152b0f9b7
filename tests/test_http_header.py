import pytest

from picohttps.http_header import MAX_HEADERS, HeaderParseError, parse_header

REQUEST = (
    b"GET /index.html HTTP/1.1\r\n"
    b"Host: example.com\r\n"
    b"Upgrade: websocket\r\n"
    b"\r\n"
    b"body"
)


def test_request_start_line():
    header = parse_header(REQUEST)
    assert header.is_request()
    assert not header.is_response()
    assert header.command == "GET"
    assert header.path == "/index.html"
    assert header.response_code == 0


def test_request_header_size_excludes_body():
    header = parse_header(REQUEST)
    assert header.header_size == REQUEST.index(b"\r\n\r\n") + 4
    assert REQUEST[header.header_size:] == b"body"


def test_request_fields():
    header = parse_header(REQUEST)
    assert header.num_headers == 2
    assert header.headers == (("Host", "example.com"), ("Upgrade", "websocket"))


def test_header_value_is_case_insensitive():
    header = parse_header(REQUEST)
    assert header.header_value("host") == "example.com"
    assert header.header_value("UPGRADE") == "websocket"


def test_header_value_missing():
    header = parse_header(REQUEST)
    assert header.header_value("Sec-WebSocket-Key") is None


def test_response():
    data = b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n\r\nhello"
    header = parse_header(data)
    assert header.is_response()
    assert header.response_code == 200
    assert header.command is None
    assert header.path is None
    assert header.header_value("content-length") == "5"


def test_request_without_fields():
    data = b"GET / HTTP/1.0\r\n\r\n"
    header = parse_header(data)
    assert header.num_headers == 0
    assert header.header_size == len(data)
    assert header.path == "/"


def test_bytearray_input():
    header = parse_header(bytearray(REQUEST))
    assert header.command == "GET"


@pytest.mark.parametrize(
    "data",
    [
        b"GET",
        b"GET /index.html",
        b"HTTP/1.1 2x0 OK\r\n\r\n",
        b"GET / HTTP/1.1",
        b"GET / HTTP/1.1\r\nHost: x",
        b"GET / HTTP/1.1\r\nHost: x\rX\r\n\r\n",
        b"GET / HTTP/1.1\r\nHost: x\r\n",
        b"GET / HTTP/1.1\r\nNoColonHere\r\n\r\n",
    ],
)
def test_malformed_or_incomplete(data):
    with pytest.raises(HeaderParseError):
        parse_header(data)


def test_parse_error_is_value_error():
    with pytest.raises(ValueError):
        parse_header(b"")


def test_more_fields_than_limit():
    lines = [f"X-Field-{n}: {n}\r\n".encode() for n in range(MAX_HEADERS + 5)]
    data = b"GET /many HTTP/1.1\r\n" + b"".join(lines) + b"\r\n"
    header = parse_header(data)
    assert header.num_headers == MAX_HEADERS
    assert header.header_size == len(data)
    assert header.header_value("X-Field-0") == "0"
    assert header.header_value(f"X-Field-{MAX_HEADERS + 2}") is None


def test_more_fields_than_limit_without_end():
    lines = [f"X-Field-{n}: {n}\r\n".encode() for n in range(MAX_HEADERS + 5)]
    data = b"GET /many HTTP/1.1\r\n" + b"".join(lines)
    with pytest.raises(HeaderParseError):
        parse_header(data)


def test_describe_request():
    text = parse_header(REQUEST).describe()
    assert "/index.html" in text
    assert "example.com" in text
    assert len(text.splitlines()) == 3


def test_describe_response():
    text = parse_header(b"HTTP/1.1 404 Not Found\r\n\r\n").describe()
    assert "404" in text