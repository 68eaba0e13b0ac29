"""
Append-only, indexed in-memory store of history entries.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, FrozenSet, Iterator, List, Optional, Set

from .errors import StoreFrozenError
from .models import Diagnostic, Entry, EntryDraft, ExportInfo, Stage, TruncationDiagnostic

logger = logging.getLogger(__name__)


# Index keys. The query predicates use the same functions so an index
# lookup and a full scan always agree.

def host_key(entry: Entry) -> Optional[str]:
    return entry.host.lower() if entry.host else None


def status_key(entry: Entry) -> Optional[int]:
    return entry.status_code


def mime_key(entry: Entry) -> Optional[str]:
    return entry.mime_type.lower() if entry.mime_type else None


class EntryStore:
    """
    Owns every Entry produced by a load.

    Mutable only until ``freeze()``; afterwards it is read-only and can be
    shared between any number of reader threads without locking.
    """

    def __init__(self, export_info: Optional[ExportInfo] = None):
        self._export_info = export_info or ExportInfo()
        self._entries: List[Entry] = []
        self._diagnostics: List[Diagnostic] = []
        self._by_host: Dict[str, Set[int]] = defaultdict(set)
        self._by_status: Dict[int, Set[int]] = defaultdict(set)
        self._by_mime: Dict[str, Set[int]] = defaultdict(set)
        self._lock = threading.Lock()
        self._frozen = False

    # ------------------------------------------------------------------
    # Load phase
    # ------------------------------------------------------------------

    def insert(self, draft: EntryDraft) -> int:
        """Assign the next id to a draft, store it and index it."""
        with self._lock:
            if self._frozen:
                raise StoreFrozenError("store is read-only after the load phase")
            entry_id = len(self._entries) + 1
            values = dict(draft)
            values["diagnostics"] = tuple(draft.diagnostics)
            entry = Entry(id=entry_id, **values)
            self._entries.append(entry)
            self._index(entry)
        return entry_id

    def _index(self, entry: Entry):
        host = host_key(entry)
        if host is not None:
            self._by_host[host].add(entry.id)
        status = status_key(entry)
        if status is not None:
            self._by_status[status].add(entry.id)
        mime = mime_key(entry)
        if mime is not None:
            self._by_mime[mime].add(entry.id)

    def add_diagnostic(self, diagnostic: Diagnostic):
        """Record a stream-level diagnostic (not tied to one entry)."""
        with self._lock:
            if self._frozen:
                raise StoreFrozenError("store is read-only after the load phase")
            self._diagnostics.append(diagnostic)

    def set_export_info(self, export_info: ExportInfo):
        with self._lock:
            if self._frozen:
                raise StoreFrozenError("store is read-only after the load phase")
            self._export_info = export_info

    def freeze(self):
        with self._lock:
            self._frozen = True
            # Plain dicts: lookups of missing keys must not grow the index
            self._by_host = dict(self._by_host)
            self._by_status = dict(self._by_status)
            self._by_mime = dict(self._by_mime)
        logger.debug(f"store frozen with {len(self._entries)} entries")

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def export_info(self) -> ExportInfo:
        return self._export_info

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get(self, entry_id: int) -> Optional[Entry]:
        if 1 <= entry_id <= len(self._entries):
            return self._entries[entry_id - 1]
        return None

    def iter(self) -> Iterator[Entry]:
        """Entries in insertion (capture) order."""
        return iter(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return self.iter()

    def __len__(self) -> int:
        return len(self._entries)

    def by_host(self, host: str) -> FrozenSet[int]:
        return frozenset(self._by_host.get(host.lower(), ()))

    def by_status(self, code: int) -> FrozenSet[int]:
        return frozenset(self._by_status.get(code, ()))

    def by_mime(self, mime: str) -> FrozenSet[int]:
        return frozenset(self._by_mime.get(mime.lower(), ()))

    def hosts(self) -> List[str]:
        return sorted(self._by_host)

    def status_codes(self) -> List[int]:
        return sorted(self._by_status)

    def mime_types(self) -> List[str]:
        return sorted(self._by_mime)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        """Stream-level diagnostics such as truncation or cancellation."""
        return list(self._diagnostics)

    @property
    def truncated(self) -> bool:
        return any(isinstance(d, TruncationDiagnostic) for d in self._diagnostics)

    @property
    def cancelled(self) -> bool:
        return any(d.stage == Stage.LOAD for d in self._diagnostics)
