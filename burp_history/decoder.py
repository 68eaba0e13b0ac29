"""
Blob decoding: base64 or plain payloads to raw HTTP bytes.
"""

import base64
import binascii
import re

from .errors import DecodeError
from .models import RawBlob

_WHITESPACE = re.compile(rb"\s+")
_OUTSIDE_ALPHABET = re.compile(rb"[^A-Za-z0-9+/=\s]")


def decode_base64(text: bytes) -> bytes:
    """
    Strictly decode standard-alphabet base64.

    ASCII whitespace is ignored. Any other character outside the alphabet,
    or padding that is missing or misplaced, raises DecodeError carrying the
    offset of the problem within ``text``.
    """
    if isinstance(text, str):
        text = text.encode("latin-1", errors="replace")

    bad = _OUTSIDE_ALPHABET.search(text)
    if bad is not None:
        raise DecodeError(f"invalid base64 character {bad.group()!r}", bad.start())

    compact = _WHITESPACE.sub(b"", text)
    if len(compact) % 4:
        raise DecodeError(
            f"bad base64 padding: {len(compact)} characters is not a multiple of 4",
            len(text),
        )

    pad = compact.find(b"=")
    if pad != -1 and (len(compact) - pad > 2 or compact[pad:].strip(b"=")):
        raise DecodeError("bad base64 padding: '=' before end of data", text.find(b"="))

    try:
        return base64.b64decode(compact, validate=True)
    except binascii.Error as e:
        raise DecodeError(f"invalid base64: {e}") from e


def encode_base64(data: bytes) -> bytes:
    return base64.b64encode(data)


def decode_blob(blob: RawBlob) -> bytes:
    """Raw bytes of a blob, decoding it first when flagged as base64."""
    if not blob.encoded:
        return blob.data
    return decode_base64(blob.data)
