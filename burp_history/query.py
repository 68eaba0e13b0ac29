"""
Composable predicates and lazy queries over stored entries.

A Predicate is a pure function of an Entry. Predicates combine with
``&``, ``|`` and ``~`` (or ``and_``, ``or_``, ``negate``). ``query`` streams
the store in insertion order; when the predicate is, or is a conjunction
containing, a host/status/mime equality it starts from the matching index
instead, and still applies the full predicate, so the result is identical
to the scan.
"""

import logging
import re
from datetime import datetime
from itertools import islice
from typing import Callable, FrozenSet, Iterable, Iterator, Optional, Union

from .cancel import CancelToken
from .models import Entry, HttpMessage, Protocol, Severity, Stage
from .store import EntryStore, host_key, mime_key, status_key

logger = logging.getLogger(__name__)


class Predicate:
    """Boolean test over an Entry"""

    def __init__(self, fn: Callable[[Entry], bool], description: Optional[str] = None):
        self._fn = fn
        self.description = description or getattr(fn, "__name__", "predicate")

    def __call__(self, entry: Entry) -> bool:
        return bool(self._fn(entry))

    def and_(self, other) -> "Predicate":
        return AllOf(self, _coerce(other))

    def or_(self, other) -> "Predicate":
        return AnyOf(self, _coerce(other))

    def negate(self) -> "Predicate":
        return Not(self)

    __and__ = and_
    __or__ = or_
    __invert__ = negate

    def __repr__(self) -> str:
        return f"<Predicate {self.description}>"


class IndexedPredicate(Predicate):
    """Equality on one of the store's secondary indices"""

    def __init__(self, index: str, key, fn: Callable[[Entry], bool], description: str):
        super().__init__(fn, description)
        self.index = index
        self.key = key

    def candidates(self, store: EntryStore) -> FrozenSet[int]:
        if self.index == "host":
            return store.by_host(self.key)
        if self.index == "status":
            return store.by_status(self.key)
        return store.by_mime(self.key)


class AllOf(Predicate):
    def __init__(self, *operands: Predicate):
        flat = []
        for operand in operands:
            flat.extend(operand.operands if isinstance(operand, AllOf) else [operand])
        self.operands = tuple(flat)
        super().__init__(self._all, " and ".join(f"({p.description})" for p in self.operands))

    def _all(self, entry: Entry) -> bool:
        return all(p(entry) for p in self.operands)


class AnyOf(Predicate):
    def __init__(self, *operands: Predicate):
        flat = []
        for operand in operands:
            flat.extend(operand.operands if isinstance(operand, AnyOf) else [operand])
        self.operands = tuple(flat)
        super().__init__(self._any, " or ".join(f"({p.description})" for p in self.operands))

    def _any(self, entry: Entry) -> bool:
        return any(p(entry) for p in self.operands)


class Not(Predicate):
    def __init__(self, operand: Predicate):
        self.operand = operand
        super().__init__(lambda entry: not operand(entry), f"not ({operand.description})")


def _coerce(predicate) -> Predicate:
    if isinstance(predicate, Predicate):
        return predicate
    if callable(predicate):
        return where(predicate)
    raise TypeError(f"expected a Predicate or callable, got {type(predicate).__name__}")


# ============================================================================
# QUERY
# ============================================================================

def paginate(entries: Iterable[Entry], offset: int = 0, limit: Optional[int] = None) -> Iterator[Entry]:
    """Offset/limit window over a lazy sequence; skipped entries are never kept."""
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    stop = None if limit is None else offset + limit
    return islice(entries, offset, stop)


def _index_leaf(predicate: Predicate) -> Optional[IndexedPredicate]:
    if isinstance(predicate, IndexedPredicate):
        return predicate
    if isinstance(predicate, AllOf):
        for operand in predicate.operands:
            if isinstance(operand, IndexedPredicate):
                return operand
    return None


def _candidates(source, predicate: Optional[Predicate]) -> Iterable[Entry]:
    if not isinstance(source, EntryStore):
        return source
    indexed = _index_leaf(predicate) if predicate is not None else None
    if indexed is None:
        return source.iter()
    ids = sorted(indexed.candidates(source))
    logger.debug(f"query narrowed by {indexed.index} index to {len(ids)} candidates")
    return (source.get(entry_id) for entry_id in ids)


def _until_cancelled(entries: Iterable[Entry], cancel: Optional[CancelToken]) -> Iterator[Entry]:
    for entry in entries:
        if cancel is not None and cancel.cancelled:
            logger.info("query cancelled")
            return
        yield entry


def query(
    source: Union[EntryStore, Iterable[Entry]],
    predicate=None,
    offset: int = 0,
    limit: Optional[int] = None,
    cancel: Optional[CancelToken] = None,
) -> Iterator[Entry]:
    """
    Lazily yield entries of ``source`` matching ``predicate`` in capture order.

    Args:
        source: An EntryStore, or any iterable of entries (e.g. another query)
        predicate: Predicate or plain callable; None matches everything
        offset: Matches to skip
        limit: Maximum matches to yield; None for no limit
        cancel: Token checked before each entry is examined
    """
    test = _coerce(predicate) if predicate is not None else None
    entries = _until_cancelled(_candidates(source, test), cancel)
    if test is not None:
        entries = (entry for entry in entries if test(entry))
    return paginate(entries, offset, limit)


# ============================================================================
# PREDICATE BUILDERS
# ============================================================================

def where(fn: Callable[[Entry], bool], description: Optional[str] = None) -> Predicate:
    return Predicate(fn, description)


def host_is(host: str) -> Predicate:
    """Host equality (case-insensitive), served from the host index."""
    key = host.lower()
    return IndexedPredicate("host", key, lambda entry: host_key(entry) == key, f"host == {key}")


def status_is(code: int) -> Predicate:
    code = int(code)
    return IndexedPredicate("status", code, lambda entry: status_key(entry) == code, f"status == {code}")


def mime_is(mime: str) -> Predicate:
    key = mime.lower()
    return IndexedPredicate("mime", key, lambda entry: mime_key(entry) == key, f"mime == {key}")


def method_is(*methods: str) -> Predicate:
    wanted = {m.upper() for m in methods}
    return where(lambda entry: (entry.method or "").upper() in wanted, f"method in {sorted(wanted)}")


def protocol_is(protocol: Union[str, Protocol]) -> Predicate:
    wanted = Protocol(protocol)
    return where(lambda entry: entry.protocol == wanted, f"protocol == {wanted.value}")


def path_contains(text: str) -> Predicate:
    return where(lambda entry: text in (entry.path or ""), f"path contains {text!r}")


def path_matches(pattern: str) -> Predicate:
    regex = re.compile(pattern)
    return where(lambda entry: regex.search(entry.path or "") is not None, f"path ~ {pattern!r}")


def status_between(low: int, high: int) -> Predicate:
    """Inclusive status range, e.g. ``status_between(500, 599)``."""
    def test(entry: Entry) -> bool:
        status = status_key(entry)
        return status is not None and low <= status <= high
    return where(test, f"{low} <= status <= {high}")


def has_request() -> Predicate:
    return where(lambda entry: entry.request is not None, "has request")


def has_response() -> Predicate:
    return where(lambda entry: entry.response is not None, "has response")


def is_clean() -> Predicate:
    return where(lambda entry: entry.is_clean, "clean")


def has_diagnostics(stage: Optional[Union[str, Stage]] = None,
                    severity: Optional[Union[str, Severity]] = None) -> Predicate:
    """Entries with at least one diagnostic of ``stage`` at or above ``severity``."""
    stage = Stage(stage) if stage is not None else None
    severity = Severity(severity) if severity is not None else None

    def test(entry: Entry) -> bool:
        return any(
            (stage is None or d.stage == stage)
            and (severity is None or d.severity.rank >= severity.rank)
            for d in entry.diagnostics
        )
    return where(test, f"diagnostics stage={stage and stage.value} severity>={severity and severity.value}")


def _message_getter(message: str) -> Callable[[Entry], Optional[HttpMessage]]:
    if message not in ("request", "response"):
        raise ValueError(f"message must be 'request' or 'response', got {message!r}")
    return lambda entry: getattr(entry, message)


def header_present(name: str, message: str = "request") -> Predicate:
    get = _message_getter(message)

    def test(entry: Entry) -> bool:
        msg = get(entry)
        return msg is not None and bool(msg.header_values(name))
    return where(test, f"{message} has header {name}")


def header_contains(name: str, text: str, message: str = "request") -> Predicate:
    """Case-insensitive substring match on any value of the header."""
    get = _message_getter(message)
    needle = text.lower()

    def test(entry: Entry) -> bool:
        msg = get(entry)
        return msg is not None and any(needle in v.lower() for v in msg.header_values(name))
    return where(test, f"{message} header {name} contains {text!r}")


def body_contains(needle: Union[bytes, str], message: str = "response") -> Predicate:
    get = _message_getter(message)
    if isinstance(needle, str):
        needle = needle.encode("utf-8")

    def test(entry: Entry) -> bool:
        msg = get(entry)
        return msg is not None and needle in msg.body
    return where(test, f"{message} body contains {needle!r}")


def highlight_is(color: str) -> Predicate:
    wanted = color.lower()
    return where(lambda entry: (entry.highlight or "").lower() == wanted, f"highlight == {wanted}")


def comment_contains(text: str) -> Predicate:
    needle = text.lower()
    return where(lambda entry: needle in (entry.comment or "").lower(), f"comment contains {text!r}")


def time_between(start: Optional[datetime] = None, end: Optional[datetime] = None) -> Predicate:
    """Inclusive capture-time window; entries without a timestamp never match."""
    def test(entry: Entry) -> bool:
        if entry.timestamp is None:
            return False
        if start is not None and entry.timestamp < start:
            return False
        if end is not None and entry.timestamp > end:
            return False
        return True
    return where(test, f"time in [{start}, {end}]")
