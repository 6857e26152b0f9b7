"""Parsing of HTTP request and response headers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_HEADERS = 20

_DIGITS = frozenset(b"0123456789")


class HeaderParseError(ValueError):
    """Raised when data does not hold a complete, well-formed HTTP header."""


@dataclass(frozen=True)
class HTTPHeader:
    """A parsed HTTP header: the start line plus up to MAX_HEADERS fields."""

    first: str
    second: str
    headers: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    header_size: int = 0
    raw_response_code: int = 0

    def is_request(self) -> bool:
        """True when the start line names a path, as requests do."""
        return self.second.startswith("/")

    def is_response(self) -> bool:
        """True when the start line carries a status code."""
        return not self.is_request()

    @property
    def command(self) -> str | None:
        return self.first if self.is_request() else None

    @property
    def path(self) -> str | None:
        return self.second if self.is_request() else None

    @property
    def response_code(self) -> int:
        return self.raw_response_code if self.is_response() else 0

    @property
    def num_headers(self) -> int:
        return len(self.headers)

    def header_value(self, name: str) -> str | None:
        """Value of the first field whose name matches, ignoring case."""
        wanted = name.lower()
        for field_name, value in self.headers:
            if field_name.lower() == wanted:
                logger.debug("found header [%s] value [%s]", name, value)
                return value
        logger.debug("could not find header [%s]", name)
        return None

    def describe(self) -> str:
        """Human-readable summary, one line per item."""
        if self.is_request():
            lines = [f"command[{self.first}] path[{self.second}]"]
        else:
            lines = [f"response[{self.second}]"]
        lines.extend(f"name[{name}] value[{value}]" for name, value in self.headers)
        return "\n".join(lines)


def _text(raw: bytes) -> str:
    return raw.decode("latin-1")


def parse_header(data: bytes | bytearray | memoryview) -> HTTPHeader:
    """Parse the header at the start of ``data``.

    ``header_size`` of the result is the number of bytes the header took,
    including the terminating blank line. Raises HeaderParseError when the
    header is malformed or not yet complete.
    """
    buf = bytes(data)
    size = len(buf)

    space = buf.find(b" ")
    if space < 0:
        raise HeaderParseError("missing space after method or version")
    first = buf[:space]
    pos = space + 1

    space = buf.find(b" ", pos)
    second = buf[pos:] if space < 0 else buf[pos:space]
    response_code = 0
    if not second.startswith(b"/"):
        if any(byte not in _DIGITS for byte in second):
            raise HeaderParseError("status code is not numeric")
        if second:
            response_code = int(second) & 0xFFFF
    if space < 0:
        raise HeaderParseError("missing space after path or status code")
    pos = space + 1

    newline = buf.find(b"\n", pos)
    pos = (newline if newline >= 0 else size) + 1
    if pos + 1 >= size:
        raise HeaderParseError("incomplete start line")

    def build(fields: list[tuple[str, str]], header_size: int) -> HTTPHeader:
        return HTTPHeader(
            first=_text(first),
            second=_text(second),
            headers=tuple(fields),
            header_size=header_size,
            raw_response_code=response_code,
        )

    fields: list[tuple[str, str]] = []
    if buf[pos:pos + 2] == b"\r\n":
        return build(fields, pos + 2)

    while len(fields) < MAX_HEADERS:
        colon = buf.find(b":", pos)
        if colon < 0:
            raise HeaderParseError("header field without ':'")
        name = buf[pos:colon]
        # The byte after the colon is taken to be a single space.
        pos = colon + 2

        carriage = buf.find(b"\r", pos) if pos < size else -1
        if carriage < 0:
            raise HeaderParseError("header field not terminated")
        value = buf[pos:carriage]
        pos = carriage + 1

        if pos >= size or buf[pos] != 0x0A:
            raise HeaderParseError("header field line not ended by CRLF")
        pos += 1
        if pos + 1 >= size:
            raise HeaderParseError("incomplete header")

        fields.append((_text(name), _text(value)))
        if buf[pos:pos + 2] == b"\r\n":
            return build(fields, pos + 2)

    end = buf.find(b"\r\n\r\n", pos)
    if end < 0:
        raise HeaderParseError("header end not found")
    return build(fields, end + 4)