from __future__ import annotations

from dataclasses import dataclass, field
from typing import BinaryIO, List

from Cryptodome.Hash import HMAC, SHA256

from .constants import (
    BODY_COLUMNS,
    ENVELOPE_VERSION_LINE,
    HKDF_INFO_HEADER,
    MAC_PREFIX,
    MAX_HEADER_LINE,
    MAX_STANZAS,
    STANZA_PREFIX,
)
from .stream import hkdf_sha256
from .wire import b64decode_raw, b64encode_raw


# Header layout (text, LF line endings):
#   age-encryption.org/v1
#   -> <type> [<arg> ...]
#   <body: base64 without padding, 64 columns, last line always shorter>
#   ... one stanza per recipient ...
#   --- <base64 HMAC-SHA256 over everything up to and including "---">


@dataclass
class Stanza:
    type: str
    args: List[str] = field(default_factory=list)
    body: bytes = b""


@dataclass
class Header:
    stanzas: List[Stanza]
    mac: bytes
    mac_input: bytes


def _valid_arg(arg: str) -> bool:
    return bool(arg) and all(33 <= ord(c) <= 126 for c in arg)


def marshal_stanza(stanza: Stanza) -> bytes:
    words = [stanza.type] + list(stanza.args)
    if not all(_valid_arg(w) for w in words):
        raise ValueError("Stanza type and arguments must be non-empty printable ASCII")
    out = bytearray(STANZA_PREFIX + " ".join(words).encode("ascii") + b"\n")
    body = b64encode_raw(stanza.body).encode("ascii")
    for i in range(0, len(body), BODY_COLUMNS):
        out += body[i : i + BODY_COLUMNS] + b"\n"
    if len(body) % BODY_COLUMNS == 0:
        out += b"\n"
    return bytes(out)


def marshal_without_mac(stanzas: List[Stanza]) -> bytes:
    out = bytearray(ENVELOPE_VERSION_LINE + b"\n")
    for s in stanzas:
        out += marshal_stanza(s)
    out += MAC_PREFIX
    return bytes(out)


def _hmac_key(file_key: bytes) -> bytes:
    return hkdf_sha256(file_key, b"", HKDF_INFO_HEADER)


def compute_mac(file_key: bytes, mac_input: bytes) -> bytes:
    return HMAC.new(_hmac_key(file_key), mac_input, digestmod=SHA256).digest()


def verify_mac(file_key: bytes, header: Header) -> None:
    """Raise ValueError when the header MAC does not match ``file_key``."""
    HMAC.new(_hmac_key(file_key), header.mac_input, digestmod=SHA256).verify(header.mac)


def write_header(sink: BinaryIO, stanzas: List[Stanza], file_key: bytes) -> int:
    mac_input = marshal_without_mac(stanzas)
    mac = compute_mac(file_key, mac_input)
    data = mac_input + b" " + b64encode_raw(mac).encode("ascii") + b"\n"
    sink.write(data)
    return len(data)


def _read_line(source: BinaryIO) -> bytes:
    line = source.readline(MAX_HEADER_LINE + 1)
    if not line:
        raise ValueError("Unexpected end of header")
    if not line.endswith(b"\n") or len(line) > MAX_HEADER_LINE:
        raise ValueError("Header line too long or unterminated")
    return line


def read_header(source: BinaryIO) -> Header:
    """Parse the envelope header, leaving ``source`` positioned at the payload.

    Raises:
        ValueError: on any structural problem (unknown version, malformed
            stanza, bad base64, missing MAC line).
    """
    raw = bytearray()
    line = _read_line(source)
    if line != ENVELOPE_VERSION_LINE + b"\n":
        raise ValueError("Unsupported envelope version line")
    raw += line
    stanzas: List[Stanza] = []
    while True:
        line = _read_line(source)
        if line.startswith(MAC_PREFIX + b" "):
            raw += MAC_PREFIX
            mac = b64decode_raw(line[len(MAC_PREFIX) + 1 : -1])
            if len(mac) != SHA256.digest_size:
                raise ValueError("Header MAC has wrong length")
            return Header(stanzas=stanzas, mac=mac, mac_input=bytes(raw))
        if not line.startswith(STANZA_PREFIX):
            raise ValueError("Malformed header line")
        if len(stanzas) >= MAX_STANZAS:
            raise ValueError("Too many recipient stanzas")
        raw += line
        words = line[len(STANZA_PREFIX) : -1].decode("ascii", errors="strict").split(" ")
        if not all(_valid_arg(w) for w in words):
            raise ValueError("Malformed stanza arguments")
        body = bytearray()
        while True:
            bline = _read_line(source)
            raw += bline
            text = bline[:-1]
            if len(text) > BODY_COLUMNS:
                raise ValueError("Stanza body line too long")
            body += b64decode_raw(text)
            if len(text) < BODY_COLUMNS:
                break
        stanzas.append(Stanza(type=words[0], args=words[1:], body=bytes(body)))
