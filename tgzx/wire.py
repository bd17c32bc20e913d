from __future__ import annotations

import base64
import binascii
import struct
from typing import List, Tuple


def b64encode_raw(data: bytes) -> str:
    """Standard base64 without padding, as used throughout the envelope header."""
    return base64.b64encode(data).decode("ascii").rstrip("=")


def b64decode_raw(text: str | bytes) -> bytes:
    """Strict inverse of :func:`b64encode_raw`.

    Padding characters and non-canonical encodings are rejected so that a
    header has exactly one valid spelling.
    """
    if isinstance(text, bytes):
        text = text.decode("ascii")
    if "=" in text or "\n" in text or "\r" in text:
        raise ValueError("Unexpected padding or newline in base64 value")
    try:
        out = base64.b64decode(text + "=" * (-len(text) % 4), validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64: {exc}") from None
    if b64encode_raw(out) != text:
        raise ValueError("Non-canonical base64 encoding")
    return out


# SSH wire format (RFC 4251 section 5)


def read_string(buf: bytes, pos: int) -> Tuple[bytes, int]:
    if pos + 4 > len(buf):
        raise ValueError("Truncated SSH string length")
    (n,) = struct.unpack_from(">I", buf, pos)
    pos += 4
    if pos + n > len(buf):
        raise ValueError("Truncated SSH string")
    return buf[pos : pos + n], pos + n


def split_strings(buf: bytes) -> List[bytes]:
    """Split an SSH wire blob into its length-prefixed fields."""
    fields: List[bytes] = []
    pos = 0
    while pos < len(buf):
        item, pos = read_string(buf, pos)
        fields.append(item)
    return fields
