"""
Burp History - load Burp Suite HTTP history exports into a queryable store.

This package provides tools for:
- Streaming the "Save items" XML export without loading it whole
- Decoding and parsing the captured HTTP requests and responses
- Indexed, predicate-based queries over the resulting entries
"""

from .cancel import CancelToken
from .config import LoadOptions
from .container import HistoryReader, iter_raw_entries
from .errors import (
    ContainerError,
    DecodeError,
    EntryRejected,
    HistoryError,
    HttpParseError,
    StoreFrozenError,
)
from .loader import build_entry, load, load_file
from .models import (
    BodyMode,
    Diagnostic,
    Entry,
    EntryDraft,
    ExportInfo,
    HttpMessage,
    MessageKind,
    Protocol,
    Severity,
    Stage,
    StartLine,
    TruncationDiagnostic,
)
from .query import Predicate, paginate, query
from .store import EntryStore

__version__ = "1.0.0"

__all__ = [
    "BodyMode",
    "CancelToken",
    "ContainerError",
    "DecodeError",
    "Diagnostic",
    "Entry",
    "EntryDraft",
    "EntryRejected",
    "EntryStore",
    "ExportInfo",
    "HistoryError",
    "HistoryReader",
    "HttpMessage",
    "HttpParseError",
    "LoadOptions",
    "MessageKind",
    "Predicate",
    "Protocol",
    "Severity",
    "Stage",
    "StartLine",
    "StoreFrozenError",
    "TruncationDiagnostic",
    "build_entry",
    "iter_raw_entries",
    "load",
    "load_file",
    "paginate",
    "query",
]
