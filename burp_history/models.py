"""
Pydantic models for Burp Suite HTTP history entries.
"""

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Protocol(str, Enum):
    """Transport protocol of a captured exchange"""
    HTTP = "http"
    HTTPS = "https"


class MessageKind(str, Enum):
    """Which side of the exchange a message belongs to"""
    REQUEST = "request"
    RESPONSE = "response"


class BodyMode(str, Enum):
    """How the body boundaries of a message were determined"""
    ABSENT = "absent"
    CONTENT_LENGTH = "content-length"
    CHUNKED = "chunked"
    READ_TO_END = "read-to-end"


class Stage(str, Enum):
    """Pipeline stage that produced a diagnostic"""
    CONTAINER = "container"
    DECODE = "decode"
    HTTP_PARSE = "http-parse"
    # Store-level only, for a cancelled load; entries never carry it
    LOAD = "load"


class Severity(str, Enum):
    """Diagnostic severity, ordered warning < error"""
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.WARNING: 0, Severity.ERROR: 1}


Header = Tuple[str, str]


class Diagnostic(BaseModel):
    """A non-fatal issue encountered while building an entry"""
    model_config = ConfigDict(frozen=True)

    stage: Stage = Field(description="Stage that recorded the issue")
    severity: Severity = Field(description="warning or error")
    message: str = Field(description="Human readable description")
    byte_offset: Optional[int] = Field(
        default=None,
        description="Stream offset for container issues, payload offset otherwise",
    )

    def __str__(self) -> str:
        where = f" @{self.byte_offset}" if self.byte_offset is not None else ""
        return f"[{self.stage.value}/{self.severity.value}{where}] {self.message}"


class TruncationDiagnostic(Diagnostic):
    """Stream ended before the export document was complete"""
    entries_completed: int = Field(description="Entries fully parsed before the cut")


class StartLine(BaseModel):
    """Request line or status line. Fields are empty when unparseable."""
    model_config = ConfigDict(frozen=True)

    method: str = ""
    target: str = ""
    version: str = ""
    status: Optional[int] = None
    reason: str = ""


class HttpMessage(BaseModel):
    """One HTTP request or response as captured.

    Header names and values are latin-1 text so every original byte is
    kept; ``name.encode("latin-1")`` gives the bytes back.
    """
    model_config = ConfigDict(frozen=True)

    kind: MessageKind = Field(description="request or response")
    start_line: StartLine = Field(default_factory=StartLine)
    headers: Tuple[Header, ...] = Field(default=(), description="Ordered (name, value) pairs")
    body: bytes = Field(default=b"", description="Body with transfer framing removed")
    body_mode: BodyMode = Field(default=BodyMode.ABSENT)
    trailers: Optional[Tuple[Header, ...]] = Field(
        default=None, description="Trailer fields after a chunked body"
    )

    def header_values(self, name: str) -> list:
        """All values for a header, matched case-insensitively."""
        wanted = name.lower()
        return [value for key, value in self.headers if key.lower() == wanted]

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.header_values(name)
        return values[0] if values else default

    @property
    def content_type(self) -> Optional[str]:
        return self.header("Content-Type")

    @property
    def status(self) -> Optional[int]:
        return self.start_line.status


class ExportInfo(BaseModel):
    """Attributes of the <items> root element"""
    model_config = ConfigDict(frozen=True)

    burp_version: Optional[str] = None
    export_time: Optional[datetime] = None


class RawBlob(BaseModel):
    """Still-encoded request or response payload"""
    model_config = ConfigDict(frozen=True)

    data: bytes = b""
    encoded: bool = False
    offset: Optional[int] = None


class RawEntry(BaseModel):
    """One <item> as read from the container, before decoding"""
    offset: int = Field(description="Byte offset of the <item> start tag")
    field_text: Dict[str, str] = Field(default_factory=dict)
    field_offsets: Dict[str, int] = Field(default_factory=dict)
    host_ip: Optional[str] = None
    request: Optional[RawBlob] = None
    response: Optional[RawBlob] = None
    extra: Dict[str, str] = Field(default_factory=dict)
    diagnostics: list = Field(default_factory=list)


class EntryDraft(BaseModel):
    """Mutable, pre-insertion form of an Entry"""
    timestamp: Optional[datetime] = None
    url: Optional[str] = None
    host: Optional[str] = None
    host_ip: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[Protocol] = None
    method: Optional[str] = None
    path: Optional[str] = None
    extension: Optional[str] = None
    status: Optional[int] = None
    response_length: Optional[int] = None
    mime_type: Optional[str] = None
    comment: Optional[str] = None
    highlight: Optional[str] = None
    request: Optional[HttpMessage] = None
    response: Optional[HttpMessage] = None
    extra: Dict[str, str] = Field(default_factory=dict)
    source_offset: Optional[int] = None
    diagnostics: list = Field(default_factory=list)


class Entry(BaseModel):
    """One captured exchange, immutable once stored"""
    model_config = ConfigDict(frozen=True)

    # Identification
    id: int = Field(description="Insertion sequence number, starting at 1")
    timestamp: Optional[datetime] = Field(default=None, description="Capture time")
    url: Optional[str] = None
    host: Optional[str] = None
    host_ip: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[Protocol] = None
    method: Optional[str] = None
    path: Optional[str] = None
    extension: Optional[str] = None

    # Capture tool's view of the response
    status: Optional[int] = Field(default=None, description="Status reported by the export")
    response_length: Optional[int] = None
    mime_type: Optional[str] = None

    # Analyst annotations
    comment: Optional[str] = None
    highlight: Optional[str] = None

    # Messages
    request: Optional[HttpMessage] = None
    response: Optional[HttpMessage] = None

    # Metadata
    extra: Mapping[str, str] = Field(
        default_factory=dict,
        validate_default=True,
        description="Unrecognised export fields (read-only view)",
    )
    source_offset: Optional[int] = None
    diagnostics: Tuple[Diagnostic, ...] = ()

    @field_validator("extra", mode="after")
    @classmethod
    def freeze_extra(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("extra")
    def dump_extra(self, value: Mapping[str, str]) -> Dict[str, str]:
        return dict(value)

    @property
    def status_code(self) -> Optional[int]:
        if self.status is not None:
            return self.status
        if self.response is not None:
            return self.response.status
        return None

    @property
    def is_secure(self) -> bool:
        return self.protocol == Protocol.HTTPS

    @property
    def is_clean(self) -> bool:
        return not self.diagnostics and self.request is not None and self.response is not None
