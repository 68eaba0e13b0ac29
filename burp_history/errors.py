"""
Exception hierarchy for history loading.

Only ContainerError (and its fail-fast subclass) escapes ``load``; the
entry-scoped errors are caught by the loader and recorded as diagnostics.
"""

from typing import Optional


class HistoryError(Exception):
    """Base class for all burp_history errors"""


class ContainerError(HistoryError):
    """The export document cannot be trusted past ``byte_offset``."""

    def __init__(self, reason: str, byte_offset: Optional[int] = None):
        self.reason = reason
        self.byte_offset = byte_offset
        where = f" at byte {byte_offset}" if byte_offset is not None else ""
        super().__init__(f"{reason}{where}")


class EntryRejected(ContainerError):
    """An entry-level diagnostic escalated by ``fail_fast``."""

    def __init__(self, sequence: int, diagnostic, byte_offset: Optional[int] = None):
        self.sequence = sequence
        self.diagnostic = diagnostic
        super().__init__(f"entry #{sequence} rejected: {diagnostic}", byte_offset)


class DecodeError(HistoryError):
    """An encoded payload is not valid base64."""

    def __init__(self, reason: str, byte_offset: Optional[int] = None):
        self.reason = reason
        self.byte_offset = byte_offset
        super().__init__(reason)


class HttpParseError(HistoryError):
    """Raised for parser misuse; grammar problems become diagnostics."""


class StoreFrozenError(HistoryError, RuntimeError):
    """The store was modified after the load phase ended."""
