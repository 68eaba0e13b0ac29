"""
Streaming reader for the Burp Suite "Save items" XML export.

The document is fed to expat (the parser underneath xml.etree) a chunk at a
time, and each completed <item> is handed out as a RawEntry, so memory is
bounded by the largest entry rather than by the whole export.
"""

import logging
from collections import deque
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Union
from xml.parsers import expat
from xml.parsers.expat import errors as expat_errors

from .errors import ContainerError
from .models import (
    Diagnostic,
    EntryDraft,
    ExportInfo,
    Protocol,
    RawBlob,
    RawEntry,
    Severity,
    Stage,
    TruncationDiagnostic,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

ROOT_TAG = "items"
ITEM_TAG = "item"

# Export field name -> canonical field. Different Burp versions and
# third-party exporters disagree on a few spellings.
FIELD_ALIASES: Dict[str, str] = {
    "time": "time",
    "timestamp": "time",
    "url": "url",
    "host": "host",
    "port": "port",
    "protocol": "protocol",
    "method": "method",
    "path": "path",
    "extension": "extension",
    "request": "request",
    "status": "status",
    "responselength": "response_length",
    "response_length": "response_length",
    "responseLength": "response_length",
    "mimetype": "mime_type",
    "mime_type": "mime_type",
    "mimeType": "mime_type",
    "response": "response",
    "comment": "comment",
    "highlight": "highlight",
    "color": "highlight",
}

BLOB_FIELDS = ("request", "response")

# Errors expat reports at end of input when the document is a well-formed
# prefix that simply stops early
_TRUNCATION_CODES = {
    expat_errors.codes[expat_errors.XML_ERROR_NO_ELEMENTS],
    expat_errors.codes[expat_errors.XML_ERROR_UNCLOSED_TOKEN],
    expat_errors.codes[expat_errors.XML_ERROR_PARTIAL_CHAR],
    expat_errors.codes[expat_errors.XML_ERROR_UNCLOSED_CDATA_SECTION],
}


ByteSource = Union[bytes, bytearray, memoryview, Iterable[bytes]]


def iter_chunks(source, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Byte chunks from a bytes object, a binary file object, or an iterable of bytes."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        view = memoryview(source)
        for start in range(0, len(view), chunk_size):
            yield bytes(view[start:start + chunk_size])
        return

    read = getattr(source, "read", None)
    if read is not None:
        while True:
            chunk = read(chunk_size)
            if not chunk:
                return
            if not isinstance(chunk, (bytes, bytearray)):
                raise TypeError("history stream must be opened in binary mode")
            yield bytes(chunk)

    for chunk in source:
        if not isinstance(chunk, (bytes, bytearray, memoryview)):
            raise TypeError(f"history stream yielded {type(chunk).__name__}, expected bytes")
        if chunk:
            yield bytes(chunk)


def parse_export_time(text: str) -> datetime:
    """
    Parse Burp's ``Wed Jan 06 11:27:54 CST 2021`` timestamps.

    The zone name is dropped (Burp writes the local zone of the exporting
    machine and abbreviations are ambiguous), giving a naive datetime.
    ISO-8601 is accepted for exporters that use it.

    Raises:
        ValueError: If the text matches neither form
    """
    parts = text.split()
    if len(parts) == 6:
        del parts[4]
        return datetime.strptime(" ".join(parts), "%a %b %d %H:%M:%S %Y")
    if len(parts) == 5:
        return datetime.strptime(" ".join(parts), "%a %b %d %H:%M:%S %Y")
    return datetime.fromisoformat(text.strip())


class HistoryReader:
    """
    Lazy, single-pass sequence of RawEntry records.

    Attributes available while and after iterating:
        export_info: burpVersion / exportTime of the <items> root
        diagnostics: stream-level diagnostics (not tied to one entry)
        truncation: TruncationDiagnostic if the stream stopped early, else None
        entries_completed: number of complete <item> elements seen

    Raises ContainerError (from iteration) when the document is malformed in
    a way that makes later entry boundaries untrustworthy.
    """

    def __init__(self, source: ByteSource, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._chunks = iter_chunks(source, chunk_size)
        self._parser = expat.ParserCreate()
        self._parser.buffer_text = True
        self._parser.SetParamEntityParsing(expat.XML_PARAM_ENTITY_PARSING_NEVER)
        self._parser.StartElementHandler = self._start_element
        self._parser.EndElementHandler = self._end_element
        self._parser.CharacterDataHandler = self._character_data
        self._parser.EntityDeclHandler = self._entity_decl

        self.export_info = ExportInfo()
        self.diagnostics: List[Diagnostic] = []
        self.truncation: Optional[TruncationDiagnostic] = None
        self.entries_completed = 0

        self._ready = deque()
        self._started = False
        self._root_seen = False
        self._depth = 0
        self._skip_depth = 0
        self._current: Optional[RawEntry] = None
        self._field = None
        self._text: List[str] = []

    def __iter__(self) -> Iterator[RawEntry]:
        if self._started:
            raise ContainerError("history stream can only be iterated once")
        self._started = True
        return self._generate()

    def _generate(self) -> Iterator[RawEntry]:
        for chunk in self._chunks:
            self._feed(chunk, final=False)
            while self._ready:
                yield self._ready.popleft()
        self._feed(b"", final=True)
        while self._ready:
            yield self._ready.popleft()

    def _feed(self, chunk: bytes, final: bool):
        try:
            self._parser.Parse(chunk, final)
        except expat.ExpatError as e:
            offset = self._parser.ErrorByteIndex
            if final and self._root_seen and e.code in _TRUNCATION_CODES:
                self._truncated(offset)
                return
            raise ContainerError(f"malformed history document: {expat.ErrorString(e.code)}", offset) from e

    def _truncated(self, offset: int):
        where = ""
        if self._current is not None:
            where = f", inside <item> starting at byte {self._current.offset}"
        self.truncation = TruncationDiagnostic(
            stage=Stage.CONTAINER,
            severity=Severity.WARNING,
            message=f"history stream truncated after {self.entries_completed} complete entries{where}",
            byte_offset=offset,
            entries_completed=self.entries_completed,
        )
        logger.warning(str(self.truncation))

    def _offset(self) -> int:
        return self._parser.CurrentByteIndex

    def _stream_note(self, message: str):
        self.diagnostics.append(
            Diagnostic(stage=Stage.CONTAINER, severity=Severity.WARNING, message=message, byte_offset=self._offset())
        )

    def _entry_note(self, message: str):
        self._current.diagnostics.append(
            Diagnostic(stage=Stage.CONTAINER, severity=Severity.WARNING, message=message, byte_offset=self._offset())
        )

    # ------------------------------------------------------------------
    # expat handlers
    # ------------------------------------------------------------------

    def _entity_decl(self, name, *args):
        raise ContainerError(f"entity declarations are not allowed ({name!r})", self._offset())

    def _start_element(self, name: str, attrs: Dict[str, str]):
        self._depth += 1
        if self._skip_depth:
            return

        if self._depth == 1:
            if name != ROOT_TAG:
                raise ContainerError(f"unexpected root element <{name}>, expected <{ROOT_TAG}>", self._offset())
            self._root_seen = True
            self._read_export_info(attrs)
        elif self._depth == 2:
            if name != ITEM_TAG:
                self._stream_note(f"unexpected <{name}> element under <{ROOT_TAG}> skipped")
                self._skip_depth = self._depth
                return
            self._current = RawEntry(offset=self._offset())
        elif self._depth == 3:
            self._field = (name, self._offset(), attrs)
            self._text = []
        else:
            parent = self._field[0] if self._field else ITEM_TAG
            self._entry_note(f"unexpected <{name}> inside <{parent}> ignored")
            self._skip_depth = self._depth

    def _end_element(self, name: str):
        depth = self._depth
        self._depth -= 1
        if self._skip_depth:
            if depth == self._skip_depth:
                self._skip_depth = 0
            return

        if depth == 3 and self._field is not None:
            self._finish_field()
        elif depth == 2 and self._current is not None:
            self._ready.append(self._current)
            self._current = None
            self.entries_completed += 1

    def _character_data(self, data: str):
        if self._depth == 3 and self._field is not None and not self._skip_depth:
            self._text.append(data)

    # ------------------------------------------------------------------
    # Field handling
    # ------------------------------------------------------------------

    def _read_export_info(self, attrs: Dict[str, str]):
        version = attrs.get("burpVersion")
        if version is None:
            self._stream_note("burpVersion attribute missing on <items>")
        export_time = None
        raw_time = attrs.get("exportTime")
        if raw_time is None:
            self._stream_note("exportTime attribute missing on <items>")
        else:
            try:
                export_time = parse_export_time(raw_time)
            except ValueError:
                self._stream_note(f"invalid exportTime {raw_time!r}")
        self.export_info = ExportInfo(burp_version=version, export_time=export_time)
        logger.debug(f"history export: burpVersion={version} exportTime={raw_time}")

    def _finish_field(self):
        tag, offset, attrs = self._field
        value = "".join(self._text)
        self._field = None
        self._text = []
        entry = self._current

        canonical = FIELD_ALIASES.get(tag)
        if canonical is None:
            if tag in entry.extra:
                self._entry_note(f"duplicate <{tag}> field, first value kept")
            else:
                entry.extra[tag] = value
            return

        if canonical in BLOB_FIELDS:
            if getattr(entry, canonical) is not None:
                self._entry_note(f"duplicate <{tag}> field, first value kept")
                return
            setattr(entry, canonical, RawBlob(data=value.encode("utf-8"), encoded=self._encoded_flag(tag, attrs), offset=offset))
            return

        if canonical in entry.field_text:
            self._entry_note(f"duplicate <{tag}> field, first value kept")
            return
        entry.field_text[canonical] = value
        entry.field_offsets[canonical] = offset
        if canonical == "host":
            entry.host_ip = attrs.get("ip") or None

    def _encoded_flag(self, tag: str, attrs: Dict[str, str]) -> bool:
        flag = attrs.get("base64")
        if flag is None:
            return False
        flag = flag.strip().lower()
        if flag not in ("true", "false"):
            self._entry_note(f"invalid base64 attribute {attrs['base64']!r} on <{tag}>, treated as plain")
            return False
        return flag == "true"


def iter_raw_entries(source: ByteSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[RawEntry]:
    return iter(HistoryReader(source, chunk_size))


# ----------------------------------------------------------------------
# RawEntry -> EntryDraft metadata
# ----------------------------------------------------------------------

def _optional(value: Optional[str], nulls=("",)) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return None if value in nulls else value


def draft_from_raw(raw: RawEntry) -> EntryDraft:
    """
    Convert the scalar fields of a RawEntry into typed draft metadata.

    Values that fail to convert become None plus a container warning; the
    blobs are left for the decoder.
    """
    draft = EntryDraft(source_offset=raw.offset, host_ip=raw.host_ip, extra=dict(raw.extra), diagnostics=list(raw.diagnostics))
    text = raw.field_text

    def note(field: str, message: str):
        draft.diagnostics.append(
            Diagnostic(
                stage=Stage.CONTAINER,
                severity=Severity.WARNING,
                message=message,
                byte_offset=raw.field_offsets.get(field, raw.offset),
            )
        )

    def integer(field: str, upper: Optional[int] = None) -> Optional[int]:
        value = _optional(text.get(field))
        if value is None:
            return None
        try:
            number = int(value)
        except ValueError:
            note(field, f"invalid {field} {value!r}")
            return None
        if number < 0 or (upper is not None and number > upper):
            note(field, f"{field} {number} out of range")
            return None
        return number

    raw_time = _optional(text.get("time"))
    if raw_time is not None:
        try:
            draft.timestamp = parse_export_time(raw_time)
        except ValueError:
            note("time", f"invalid time {raw_time!r}")

    protocol = _optional(text.get("protocol"))
    if protocol is not None:
        try:
            draft.protocol = Protocol(protocol.lower())
        except ValueError:
            note("protocol", f"unknown protocol {protocol!r}")

    draft.url = _optional(text.get("url"))
    draft.host = _optional(text.get("host"))
    draft.port = integer("port", upper=65535)
    draft.method = _optional(text.get("method"))
    draft.path = _optional(text.get("path"))
    draft.extension = _optional(text.get("extension"), nulls=("", "null"))
    draft.status = integer("status", upper=999)
    draft.response_length = integer("response_length")
    draft.mime_type = _optional(text.get("mime_type"))
    draft.comment = _optional(text.get("comment"))
    draft.highlight = _optional(text.get("highlight"), nulls=("", "null"))
    return draft
