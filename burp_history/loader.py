"""
Load pipeline: container reader -> blob decoder -> HTTP parser -> store.

Runs on the calling thread by default. With ``workers > 1`` a reader thread,
a pool of parser threads and the calling thread (the only store writer) are
connected by bounded queues; results are re-ordered by arrival sequence so
entry ids always follow stream order.
"""

import logging
import queue
import threading
from typing import Dict, Optional
from urllib.parse import urlsplit

from .cancel import CancelToken
from .config import LoadOptions
from .container import ByteSource, HistoryReader, draft_from_raw
from .decoder import decode_blob
from .errors import ContainerError, DecodeError, EntryRejected
from .http_parser import parse_request, parse_response
from .models import (
    Diagnostic,
    EntryDraft,
    HttpMessage,
    Protocol,
    RawBlob,
    RawEntry,
    Severity,
    Stage,
)
from .store import EntryStore

logger = logging.getLogger(__name__)

_DONE = object()
_POLL_SECONDS = 0.1
_DEFAULT_PORTS = {Protocol.HTTP: 80, Protocol.HTTPS: 443}


# ============================================================================
# ENTRY CONSTRUCTION
# ============================================================================

def _decode_and_parse(
    blob: Optional[RawBlob],
    kind: str,
    draft: EntryDraft,
    request_method: Optional[str] = None,
) -> Optional[HttpMessage]:
    if blob is None:
        return None
    try:
        data = decode_blob(blob)
    except DecodeError as e:
        logger.debug(f"{kind} blob of entry at byte {draft.source_offset} not decodable: {e.reason}")
        draft.diagnostics.append(
            Diagnostic(
                stage=Stage.DECODE,
                severity=Severity.WARNING,
                message=f"{kind}: {e.reason}",
                byte_offset=e.byte_offset,
            )
        )
        return None

    if kind == "request":
        message, diagnostics = parse_request(data)
    else:
        message, diagnostics = parse_response(data, request_method=request_method)
    draft.diagnostics.extend(diagnostics)
    return message


def _split_host(value: str):
    """Host header -> (host, port), tolerating IPv6 literals and bad ports."""
    parts = urlsplit(f"//{value.strip()}")
    try:
        port = parts.port
    except ValueError:
        port = None
    return parts.hostname, port


def _derive_missing(draft: EntryDraft):
    """
    Fill method / path / host / port / protocol the export left out from
    the export URL and the parsed request.
    """
    request = draft.request
    start = request.start_line if request is not None else None
    url = urlsplit(draft.url) if draft.url else None

    if draft.method is None and start is not None and start.method:
        draft.method = start.method

    if draft.path is None:
        if start is not None and start.target:
            target = start.target
            if "://" in target:
                absolute = urlsplit(target)
                target = (absolute.path or "/") + (f"?{absolute.query}" if absolute.query else "")
            draft.path = target
        elif url is not None:
            draft.path = (url.path or "/") + (f"?{url.query}" if url.query else "")

    if draft.protocol is None and url is not None and url.scheme in ("http", "https"):
        draft.protocol = Protocol(url.scheme)

    if draft.host is None or draft.port is None:
        host, port = None, None
        if url is not None and url.hostname:
            host = url.hostname
            try:
                port = url.port
            except ValueError:
                port = None
        elif request is not None and request.header("Host"):
            host, port = _split_host(request.header("Host"))
        if draft.host is None:
            draft.host = host
        if draft.port is None:
            draft.port = port or _DEFAULT_PORTS.get(draft.protocol)

    missing = [name for name in ("host", "method", "path") if getattr(draft, name) is None]
    if missing:
        draft.diagnostics.append(
            Diagnostic(
                stage=Stage.CONTAINER,
                severity=Severity.WARNING,
                message=f"missing {', '.join(missing)}, not derivable from the request",
                byte_offset=draft.source_offset,
            )
        )


def build_entry(raw: RawEntry, options: Optional[LoadOptions] = None) -> EntryDraft:
    """
    Turn one RawEntry into an insertable draft.

    Problems confined to the entry end up in ``draft.diagnostics`` (filtered
    by ``options.min_severity``); nothing here raises for bad content.
    """
    options = options or LoadOptions()
    draft = draft_from_raw(raw)
    draft.request = _decode_and_parse(raw.request, "request", draft)

    request_method = draft.method
    if draft.request is not None and draft.request.start_line.method:
        request_method = draft.request.start_line.method
    draft.response = _decode_and_parse(raw.response, "response", draft, request_method)

    _derive_missing(draft)
    draft.diagnostics = [d for d in draft.diagnostics if options.keeps(d)]
    return draft


def _insert(store: EntryStore, draft: EntryDraft, sequence: int, options: LoadOptions) -> int:
    if options.fail_fast and draft.diagnostics:
        raise EntryRejected(sequence, draft.diagnostics[0], draft.source_offset)
    return store.insert(draft)


# ============================================================================
# SEQUENTIAL LOAD
# ============================================================================

def _load_sequential(reader: HistoryReader, store: EntryStore, options: LoadOptions,
                     cancel: Optional[CancelToken]) -> bool:
    """Returns True if the load stopped because of cancellation."""
    entries = iter(reader)
    sequence = 0
    while True:
        if cancel is not None and cancel.cancelled:
            return True
        raw = next(entries, None)
        if raw is None:
            return False
        sequence += 1
        _insert(store, build_entry(raw, options), sequence, options)


# ============================================================================
# PIPELINED LOAD
# ============================================================================

class _Pipeline:
    """One reader thread, N parser threads, the caller as single writer."""

    def __init__(self, reader: HistoryReader, store: EntryStore, options: LoadOptions,
                 cancel: Optional[CancelToken]):
        self.reader = reader
        self.store = store
        self.options = options
        self.cancel = cancel
        self.abort = threading.Event()
        self.cancelled = False
        self.reader_error: Optional[BaseException] = None
        self.writer_error: Optional[BaseException] = None
        self.raw_queue = queue.Queue(maxsize=options.queue_depth)
        self.draft_queue = queue.Queue(maxsize=options.queue_depth)
        # Entries read but not yet inserted, including those parked in the
        # writer's re-order buffer behind a slow entry
        self.in_flight = threading.BoundedSemaphore(options.queue_depth + options.workers)

    def _stopping(self) -> bool:
        if self.cancel is not None and self.cancel.cancelled:
            self.cancelled = True
            return True
        return self.abort.is_set()

    def _acquire_slot(self) -> bool:
        while not self.in_flight.acquire(timeout=_POLL_SECONDS):
            if self._stopping():
                return False
        return True

    def _put_raw(self, item) -> bool:
        """Bounded put that gives up when the pipeline is stopping."""
        while True:
            try:
                self.raw_queue.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                if self._stopping():
                    return False

    def _read(self):
        try:
            for sequence, raw in enumerate(self.reader, 1):
                if self._stopping() or not self._acquire_slot():
                    break
                if not self._put_raw((sequence, raw)):
                    break
        except ContainerError as e:
            self.reader_error = e
            self.abort.set()
        except Exception as e:
            logger.error(f"reader thread failed: {e}", exc_info=True)
            self.reader_error = e
            self.abort.set()
        finally:
            for _ in range(self.options.workers):
                self.raw_queue.put(_DONE)

    def _parse(self):
        while True:
            item = self.raw_queue.get()
            if item is _DONE:
                self.draft_queue.put(_DONE)
                return
            if self._stopping():
                continue
            sequence, raw = item
            try:
                result = build_entry(raw, self.options)
            except Exception as e:
                logger.error(f"parser thread failed on entry #{sequence}: {e}", exc_info=True)
                result = e
            self.draft_queue.put((sequence, result))

    def run(self) -> bool:
        threads = [threading.Thread(target=self._read, name="history-reader", daemon=True)]
        threads += [
            threading.Thread(target=self._parse, name=f"history-parser-{i}", daemon=True)
            for i in range(self.options.workers)
        ]
        for thread in threads:
            thread.start()

        pending: Dict[int, object] = {}
        next_sequence = 1
        finished_workers = 0
        while finished_workers < self.options.workers:
            item = self.draft_queue.get()
            if item is _DONE:
                finished_workers += 1
                continue
            if self.abort.is_set():
                continue

            sequence, result = item
            pending[sequence] = result
            while next_sequence in pending and not self._stopping():
                result = pending.pop(next_sequence)
                try:
                    if isinstance(result, BaseException):
                        raise result
                    _insert(self.store, result, next_sequence, self.options)
                except Exception as e:
                    self.writer_error = e
                    self.abort.set()
                    pending.clear()
                    break
                finally:
                    self.in_flight.release()
                next_sequence += 1

        for thread in threads:
            thread.join()

        if self.reader_error is not None:
            raise self.reader_error
        if self.writer_error is not None:
            raise self.writer_error
        return self.cancelled


# ============================================================================
# ENTRY POINT
# ============================================================================

def load(stream: ByteSource, options: Optional[LoadOptions] = None,
         cancel: Optional[CancelToken] = None) -> EntryStore:
    """
    Load a Burp history export into a frozen EntryStore.

    Args:
        stream: Binary file object, bytes, or iterable of byte chunks
        options: LoadOptions; defaults keep warnings and never fail fast
        cancel: Token checked between entries

    Returns:
        The store, including entries with per-entry diagnostics and any
        stream-level truncation or cancellation diagnostic

    Raises:
        ContainerError: If the document is malformed beyond safe recovery,
            or (EntryRejected) an entry diagnostic under ``fail_fast``
    """
    options = options or LoadOptions()
    reader = HistoryReader(stream, chunk_size=options.chunk_size)
    store = EntryStore()

    logger.info(f"Loading history (workers={options.workers}, min_severity={options.min_severity.value}, "
                f"fail_fast={options.fail_fast})")

    if options.workers > 1:
        cancelled = _Pipeline(reader, store, options, cancel).run()
    else:
        cancelled = _load_sequential(reader, store, options, cancel)

    store.set_export_info(reader.export_info)
    for diagnostic in reader.diagnostics:
        if options.keeps(diagnostic):
            store.add_diagnostic(diagnostic)
    if reader.truncation is not None:
        store.add_diagnostic(reader.truncation)
    if cancelled:
        logger.warning(f"Load cancelled after {len(store)} entries")
        store.add_diagnostic(
            Diagnostic(
                stage=Stage.LOAD,
                severity=Severity.WARNING,
                message=f"load cancelled after {len(store)} entries",
            )
        )
    store.freeze()

    with_issues = sum(1 for entry in store if entry.diagnostics)
    logger.info(f"Loaded {len(store)} entries ({with_issues} with diagnostics), "
                f"burpVersion={store.export_info.burp_version}")
    return store


def load_file(path, options: Optional[LoadOptions] = None,
              cancel: Optional[CancelToken] = None) -> EntryStore:
    """Convenience wrapper opening ``path`` in binary mode."""
    with open(path, "rb") as f:
        return load(f, options=options, cancel=cancel)
