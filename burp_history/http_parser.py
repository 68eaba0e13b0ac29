"""
HTTP/1.x message parsing for captured request and response blobs.

Captures are already framed by the export document, so the parser works on
a complete byte string and never waits for more input. Grammar problems are
recorded as diagnostics and the parser keeps whatever structure it could
recover.
"""

import logging
import re
from enum import Enum
from typing import List, Optional, Tuple

from .errors import HttpParseError
from .models import (
    BodyMode,
    Diagnostic,
    Header,
    HttpMessage,
    MessageKind,
    Severity,
    Stage,
    StartLine,
)

logger = logging.getLogger(__name__)


_TOKEN = re.compile(rb"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_VERSION = re.compile(rb"HTTP/\d(\.\d)?")
_STATUS = re.compile(rb"\d{3}")
_HEX = re.compile(rb"[0-9A-Fa-f]+")
_DIGITS = re.compile(r"\d+")


class ParserState(str, Enum):
    START = "start"
    START_LINE = "start-line"
    HEADERS = "headers"
    BODY = "body"
    DONE = "done"
    ERROR = "error"


def _text(raw: bytes) -> str:
    return raw.decode("latin-1")


def split_request_line(line: bytes) -> Optional[StartLine]:
    """
    Split ``METHOD SP target SP version``.

    Runs of spaces count as one separator and only the first two split
    points are used, so anything after the second one belongs to the version.
    """
    method, sep, rest = line.partition(b" ")
    target, sep2, version = rest.lstrip(b" ").partition(b" ")
    version = version.strip(b" ")
    if not (sep and sep2 and target):
        return None
    if not _TOKEN.fullmatch(method) or not _VERSION.fullmatch(version):
        return None
    return StartLine(method=_text(method), target=_text(target), version=_text(version))


def split_status_line(line: bytes) -> Optional[StartLine]:
    """Split ``version SP status [SP reason]``; the reason may contain spaces."""
    version, sep, rest = line.partition(b" ")
    status, _, reason = rest.lstrip(b" ").partition(b" ")
    if not sep or not _VERSION.fullmatch(version) or not _STATUS.fullmatch(status):
        return None
    return StartLine(version=_text(version), status=int(status), reason=_text(reason.strip(b" \t")))


def split_field(line: bytes) -> Optional[Header]:
    """``name: value`` with the value trimmed; the name is kept byte for byte."""
    name, colon, value = line.partition(b":")
    if not colon or not name:
        return None
    return _text(name), _text(value.strip(b" \t"))


class HttpMessageParser:
    """
    Single-use state machine over one captured message.

    START -> START_LINE -> HEADERS -> BODY -> DONE, with ERROR absorbing a
    start line that cannot be understood. In ERROR the whole payload is kept
    as an unparsed read-to-end body.
    """

    def __init__(self, kind: MessageKind, request_method: Optional[str] = None):
        try:
            self.kind = MessageKind(kind)
        except ValueError:
            raise HttpParseError(f"unknown message kind: {kind!r}")
        self.request_method = request_method.upper() if request_method else None
        self.state = ParserState.START
        self.diagnostics: List[Diagnostic] = []

        self._data = b""
        self._pos = 0
        self._start_line = StartLine()
        self._headers: List[Header] = []
        self._body = b""
        self._body_mode = BodyMode.ABSENT
        self._trailers: Optional[List[Header]] = None

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def parse(self, data: bytes) -> Tuple[Optional[HttpMessage], List[Diagnostic]]:
        """
        Parse one message.

        Returns (None, []) for an empty payload: the message is absent, which
        is not an error.
        """
        if self.state is not ParserState.START:
            raise HttpParseError("HttpMessageParser instances are single-use")
        if not data:
            self.state = ParserState.DONE
            return None, []

        self._data = bytes(data)
        self.state = ParserState.START_LINE
        self._parse_start_line()
        if self.state is ParserState.HEADERS:
            self._parse_headers()
        if self.state is ParserState.BODY:
            self._parse_body()

        if self.state is ParserState.ERROR:
            self._start_line = StartLine()
            self._headers = []
            self._body = self._data
            self._body_mode = BodyMode.READ_TO_END
        else:
            self.state = ParserState.DONE

        message = HttpMessage(
            kind=self.kind,
            start_line=self._start_line,
            headers=tuple(self._headers),
            body=self._body,
            body_mode=self._body_mode,
            trailers=tuple(self._trailers) if self._trailers is not None else None,
        )
        return message, self.diagnostics

    def _note(self, severity: Severity, message: str, offset: Optional[int] = None):
        logger.debug(f"{self.kind.value} parse: {message}")
        self.diagnostics.append(
            Diagnostic(
                stage=Stage.HTTP_PARSE,
                severity=severity,
                message=f"{self.kind.value}: {message}",
                byte_offset=offset,
            )
        )

    def _read_line(self) -> Optional[bytes]:
        """Next line without its terminator (CRLF or bare LF), or None at end of data."""
        end = self._data.find(b"\n", self._pos)
        if end == -1:
            return None
        line = self._data[self._pos:end]
        self._pos = end + 1
        return line[:-1] if line.endswith(b"\r") else line

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _parse_start_line(self):
        line = self._read_line()
        if line is None:
            line = self._data
            self._pos = len(self._data)

        if self.kind is MessageKind.REQUEST:
            start_line = split_request_line(line)
        else:
            start_line = split_status_line(line)

        if start_line is None:
            label = "request line" if self.kind is MessageKind.REQUEST else "status line"
            self._note(Severity.ERROR, f"malformed {label} {line[:80]!r}", 0)
            self.state = ParserState.ERROR
            return

        self._start_line = start_line
        self.state = ParserState.HEADERS

    def _parse_headers(self):
        while True:
            offset = self._pos
            line = self._read_line()
            if line is None:
                remainder = self._data[self._pos:]
                self._pos = len(self._data)
                if remainder:
                    self._add_header_line(remainder, offset)
                    self._note(Severity.WARNING, "header section not terminated by an empty line", offset)
                # Nothing left for a body either way
                self.state = ParserState.DONE
                return
            if not line:
                self.state = ParserState.BODY
                return
            self._add_header_line(line, offset)

    def _add_header_line(self, line: bytes, offset: int):
        if line[:1] in (b" ", b"\t") and self._headers:
            name, value = self._headers[-1]
            folded = _text(line.strip(b" \t"))
            self._headers[-1] = (name, f"{value} {folded}" if value else folded)
            self._note(Severity.WARNING, f"obsolete line folding in header {name!r}", offset)
            return

        field = split_field(line)
        if field is None:
            self._note(Severity.WARNING, f"header line without colon skipped: {line[:80]!r}", offset)
            return
        self._headers.append(field)

    def _parse_body(self):
        rest = self._data[self._pos:]

        if not rest and self._no_body_expected():
            self._body_mode = BodyMode.ABSENT
            return

        if self._is_chunked():
            if self._header_values("content-length"):
                self._note(
                    Severity.WARNING,
                    "Content-Length ignored because Transfer-Encoding is chunked",
                    self._pos,
                )
            self._read_chunked()
            return

        length = self._declared_length()
        if length is not None:
            self._body_mode = BodyMode.CONTENT_LENGTH
            self._body = rest[:length]
            if len(rest) < length:
                self._note(
                    Severity.WARNING,
                    f"body truncated: Content-Length {length}, {len(rest)} bytes captured",
                    len(self._data),
                )
            elif len(rest) > length:
                self._note(
                    Severity.WARNING,
                    f"{len(rest) - length} bytes after the declared body ignored",
                    self._pos + length,
                )
            return

        if rest:
            self._body_mode = BodyMode.READ_TO_END
            self._body = rest

    # ------------------------------------------------------------------
    # Body framing
    # ------------------------------------------------------------------

    def _header_values(self, name: str) -> List[str]:
        return [value for key, value in self._headers if key.lower() == name]

    def _no_body_expected(self) -> bool:
        if self.kind is not MessageKind.RESPONSE:
            return False
        status = self._start_line.status or 0
        return 100 <= status < 200 or status in (204, 304) or self.request_method == "HEAD"

    def _is_chunked(self) -> bool:
        codings = [
            coding.strip().lower()
            for value in self._header_values("transfer-encoding")
            for coding in value.split(",")
            if coding.strip()
        ]
        return bool(codings) and codings[-1] == "chunked"

    def _declared_length(self) -> Optional[int]:
        values = self._header_values("content-length")
        if not values:
            return None

        lengths = set()
        for value in values:
            for part in value.split(","):
                part = part.strip()
                if not _DIGITS.fullmatch(part):
                    self._note(Severity.WARNING, f"invalid Content-Length {value!r}", self._pos)
                    return None
                lengths.add(int(part))

        if len(lengths) > 1:
            self._note(
                Severity.WARNING,
                f"conflicting Content-Length values {sorted(lengths)}",
                self._pos,
            )
            return None
        return lengths.pop()

    def _read_chunked(self):
        data = self._data
        pieces = []
        terminated = False
        self._body_mode = BodyMode.CHUNKED

        while True:
            offset = self._pos
            size_line = self._read_line()
            if size_line is None:
                self._note(Severity.WARNING, "chunked body ended before the terminal chunk", offset)
                self._pos = len(data)
                break

            size_text = size_line.split(b";", 1)[0].strip(b" \t")
            if not _HEX.fullmatch(size_text):
                self._note(Severity.ERROR, f"malformed chunk size {size_line[:40]!r}", offset)
                break

            size = int(size_text, 16)
            if size == 0:
                self._read_trailers()
                terminated = True
                break

            chunk = data[self._pos:self._pos + size]
            pieces.append(chunk)
            if len(chunk) < size:
                self._note(
                    Severity.WARNING,
                    f"chunk truncated: declared {size} bytes, {len(chunk)} captured",
                    len(data),
                )
                self._pos = len(data)
                break
            self._pos += size

            if data.startswith(b"\r\n", self._pos):
                self._pos += 2
            elif data.startswith(b"\n", self._pos):
                self._pos += 1
            elif self._pos >= len(data):
                self._note(Severity.WARNING, "chunked body ended before the terminal chunk", self._pos)
                break
            else:
                self._note(Severity.ERROR, "missing line terminator after chunk data", self._pos)
                break

        self._body = b"".join(pieces)
        if terminated and self._pos < len(data):
            self._note(
                Severity.WARNING,
                f"{len(data) - self._pos} bytes after the chunked body ignored",
                self._pos,
            )

    def _read_trailers(self):
        self._trailers = []
        while True:
            offset = self._pos
            line = self._read_line()
            if line is None:
                remainder = self._data[self._pos:]
                self._pos = len(self._data)
                # A missing final empty line is common in captures and harmless
                if remainder.strip():
                    field = split_field(remainder)
                    if field is not None:
                        self._trailers.append(field)
                    self._note(Severity.WARNING, "trailer section not terminated by an empty line", offset)
                return
            if not line:
                return
            field = split_field(line)
            if field is None:
                self._note(Severity.WARNING, f"trailer line without colon skipped: {line[:80]!r}", offset)
                continue
            self._trailers.append(field)


def parse_request(data: bytes) -> Tuple[Optional[HttpMessage], List[Diagnostic]]:
    return HttpMessageParser(MessageKind.REQUEST).parse(data)


def parse_response(
    data: bytes, request_method: Optional[str] = None
) -> Tuple[Optional[HttpMessage], List[Diagnostic]]:
    """Parse a response; ``request_method`` lets HEAD responses go without a body."""
    return HttpMessageParser(MessageKind.RESPONSE, request_method=request_method).parse(data)
