"""Hybrid public-key envelope (age v1 with SSH recipients).

A fresh 16-byte file key encrypts the payload (see :mod:`tgzx.stream`). The
file key is wrapped once per recipient into a header stanza:

- ``ssh-rsa``: RSA-OAEP (SHA-256, MGF1-SHA-256) with a fixed label.
- ``ssh-ed25519``: X25519 between an ephemeral key and the recipient's
  Montgomery form, tweaked by a key-specific scalar, then HKDF and
  ChaCha20-Poly1305.

Decryption tries every identity against every stanza; the first stanza that
unwraps yields the file key, which must also authenticate the header MAC.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional

from Cryptodome.Cipher import PKCS1_OAEP
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.DH import import_x25519_private_key, import_x25519_public_key, key_agreement
from Cryptodome.Random import get_random_bytes

from .constants import (
    AEAD_TAG_SIZE,
    COPY_BUFFER_SIZE,
    FILE_KEY_SIZE,
    PAYLOAD_CHUNK_SIZE,
    PAYLOAD_NONCE_SIZE,
    SSH_ED25519_LABEL,
    SSH_RSA_LABEL,
    STANZA_SSH_ED25519,
    STANZA_SSH_RSA,
    X25519_SIZE,
)
from .errors import DecryptFailed, EncryptFailed
from .header import Stanza, read_header, verify_mac, write_header
from .sshkeys import (
    Identity,
    KeyType,
    Recipient,
    ed25519_to_x25519_private,
    ed25519_to_x25519_public,
    tag_matches,
)
from .stream import StreamCipher, aead_open, aead_seal, hkdf_sha256, payload_key
from .wire import b64decode_raw, b64encode_raw


logger = logging.getLogger(__name__)

_X25519_BASEPOINT = (9).to_bytes(X25519_SIZE, "little")
_SEALED_CHUNK_SIZE = PAYLOAD_CHUNK_SIZE + AEAD_TAG_SIZE


def _x25519(scalar: bytes, point: bytes) -> bytes:
    return key_agreement(
        static_priv=import_x25519_private_key(scalar),
        static_pub=import_x25519_public_key(point),
        kdf=lambda z: z,
    )


def _ed25519_tweak(ssh_blob: bytes) -> bytes:
    return hkdf_sha256(b"", ssh_blob, SSH_ED25519_LABEL, X25519_SIZE)


def _rsa_oaep(key):
    return PKCS1_OAEP.new(key, hashAlgo=SHA256, label=SSH_RSA_LABEL)


# -------- wrapping (one entry per KeyType) --------

def _wrap_rsa(recipient: Recipient, file_key: bytes) -> Stanza:
    body = _rsa_oaep(recipient.key).encrypt(file_key)
    return Stanza(type=STANZA_SSH_RSA, args=[recipient.tag], body=body)


def _wrap_ed25519(recipient: Recipient, file_key: bytes) -> Stanza:
    theirs = ed25519_to_x25519_public(recipient.key)
    ephemeral = get_random_bytes(X25519_SIZE)
    ours = _x25519(ephemeral, _X25519_BASEPOINT)
    shared = _x25519(ephemeral, theirs)
    shared = _x25519(_ed25519_tweak(recipient.ssh_blob), shared)
    wrapping_key = hkdf_sha256(shared, ours + theirs, SSH_ED25519_LABEL)
    return Stanza(
        type=STANZA_SSH_ED25519,
        args=[recipient.tag, b64encode_raw(ours)],
        body=aead_seal(wrapping_key, file_key),
    )


_WRAPPERS: Dict[KeyType, Callable[[Recipient, bytes], Stanza]] = {
    KeyType.RSA: _wrap_rsa,
    KeyType.ED25519: _wrap_ed25519,
}


# -------- unwrapping (None means "stanza is not for this identity") --------

def _unwrap_rsa(identity: Identity, stanza: Stanza) -> Optional[bytes]:
    if stanza.type != STANZA_SSH_RSA or len(stanza.args) != 1:
        return None
    if not tag_matches(identity.ssh_blob, stanza.args[0]):
        return None
    return _rsa_oaep(identity.key).decrypt(stanza.body)


def _unwrap_ed25519(identity: Identity, stanza: Stanza) -> Optional[bytes]:
    if stanza.type != STANZA_SSH_ED25519 or len(stanza.args) != 2:
        return None
    if not tag_matches(identity.ssh_blob, stanza.args[0]):
        return None
    share = b64decode_raw(stanza.args[1])
    if len(share) != X25519_SIZE:
        raise ValueError("ssh-ed25519 share has wrong length")
    if len(stanza.body) != FILE_KEY_SIZE + AEAD_TAG_SIZE:
        raise ValueError("ssh-ed25519 body has wrong length")
    ours = ed25519_to_x25519_public(identity.key.public_key())
    shared = _x25519(ed25519_to_x25519_private(identity.key), share)
    shared = _x25519(_ed25519_tweak(identity.ssh_blob), shared)
    wrapping_key = hkdf_sha256(shared, share + ours, SSH_ED25519_LABEL)
    return aead_open(wrapping_key, stanza.body)


_UNWRAPPERS: Dict[KeyType, Callable[[Identity, Stanza], Optional[bytes]]] = {
    KeyType.RSA: _unwrap_rsa,
    KeyType.ED25519: _unwrap_ed25519,
}


def wrap_file_key(recipient: Recipient, file_key: bytes) -> Stanza:
    wrapper = _WRAPPERS.get(recipient.key_type)
    if wrapper is None:
        raise EncryptFailed(f"no key wrapping for recipient type {recipient.key_type}")
    try:
        return wrapper(recipient, file_key)
    except (ValueError, TypeError) as exc:
        raise EncryptFailed(f"wrapping for {recipient.key_type.ssh_name} recipient {recipient.tag}", exc) from exc


def unwrap_file_key(stanzas: List[Stanza], identities: List[Identity], *, log: Optional[logging.Logger] = None) -> bytes:
    """Recover the file key: identities in order, and for each, stanzas in order."""
    log = log or logger
    for identity in identities:
        unwrapper = _UNWRAPPERS.get(identity.key_type)
        if unwrapper is None:
            raise DecryptFailed(f"no key unwrapping for identity type {identity.key_type}")
        for index, stanza in enumerate(stanzas):
            try:
                file_key = unwrapper(identity, stanza)
            except (ValueError, TypeError) as exc:
                log.debug("Stanza %d (%s) did not unwrap with %s identity: %s", index, stanza.type, identity.key_type.ssh_name, exc)
                continue
            if file_key is None:
                continue
            if len(file_key) != FILE_KEY_SIZE:
                log.debug("Stanza %d unwrapped to a key of the wrong size", index)
                continue
            return file_key
    raise DecryptFailed("no identity matched any of the recipients")


class EnvelopeWriter:
    """Streaming encryptor; the header is written on construction.

    Plaintext is buffered up to one chunk. ``close()`` seals the final chunk;
    leaving the ``with`` block on an exception calls ``abort()`` instead, so a
    failed write never produces an envelope that decrypts.
    """

    def __init__(self, sink: BinaryIO, recipients: Iterable[Recipient]):
        recipients = list(recipients)
        if not recipients:
            raise EncryptFailed("no recipients")
        self.sink = sink
        file_key = get_random_bytes(FILE_KEY_SIZE)
        stanzas = [wrap_file_key(r, file_key) for r in recipients]
        nonce = get_random_bytes(PAYLOAD_NONCE_SIZE)
        try:
            self.bytes_written = write_header(sink, stanzas, file_key)
            sink.write(nonce)
        except OSError as exc:
            raise EncryptFailed(exc) from exc
        self.bytes_written += len(nonce)
        self._stream = StreamCipher(payload_key(file_key, nonce))
        self._buf = bytearray()
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def _emit(self, chunk: bytes, *, last: bool) -> None:
        sealed = self._stream.seal(chunk, last=last)
        try:
            self.sink.write(sealed)
        except OSError as exc:
            raise EncryptFailed(exc) from exc
        self.bytes_written += len(sealed)

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed EnvelopeWriter")
        self._buf += data
        # keep at least one byte back so the final chunk is never sealed early
        while len(self._buf) > PAYLOAD_CHUNK_SIZE:
            chunk = bytes(self._buf[:PAYLOAD_CHUNK_SIZE])
            del self._buf[:PAYLOAD_CHUNK_SIZE]
            self._emit(chunk, last=False)
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        self._emit(bytes(self._buf), last=True)
        self._buf.clear()
        self.closed = True

    def abort(self) -> None:
        self._buf.clear()
        self.closed = True


class EnvelopeReader(io.RawIOBase):
    """Streaming decryptor over an envelope; ``source`` stays owned by the caller.

    The header is parsed and authenticated on construction. Payload chunks are
    decrypted lazily; any authentication failure raises :class:`DecryptFailed`
    before the affected bytes are returned.
    """

    def __init__(self, source: BinaryIO, identities: Iterable[Identity], *, log: Optional[logging.Logger] = None):
        super().__init__()
        identities = list(identities)
        if not identities:
            raise DecryptFailed("no identities")
        self._source = source
        try:
            header = read_header(source)
        except (ValueError, OSError) as exc:
            raise DecryptFailed("malformed header", exc) from exc
        file_key = unwrap_file_key(header.stanzas, identities, log=log)
        try:
            verify_mac(file_key, header)
        except ValueError:
            raise DecryptFailed("header MAC mismatch") from None
        nonce = self._read_upto(PAYLOAD_NONCE_SIZE)
        if len(nonce) != PAYLOAD_NONCE_SIZE:
            raise DecryptFailed("truncated payload nonce")
        self._stream = StreamCipher(payload_key(file_key, nonce))
        self._lookahead = b""
        self._plain = b""
        self._pos = 0
        self._eof = False

    def readable(self) -> bool:
        return True

    def _read_upto(self, n: int) -> bytes:
        parts: List[bytes] = []
        remaining = n
        try:
            while remaining > 0:
                data = self._source.read(remaining)
                if not data:
                    break
                parts.append(data)
                remaining -= len(data)
        except OSError as exc:
            raise DecryptFailed(exc) from exc
        return b"".join(parts)

    def _next_chunk(self) -> bytes:
        want = _SEALED_CHUNK_SIZE + 1 - len(self._lookahead)
        data = self._lookahead + self._read_upto(want)
        last = len(data) <= _SEALED_CHUNK_SIZE
        if last:
            sealed, self._lookahead = data, b""
        else:
            sealed, self._lookahead = data[:_SEALED_CHUNK_SIZE], data[_SEALED_CHUNK_SIZE:]
        try:
            plain = self._stream.open(sealed, last=last)
        except ValueError:
            raise DecryptFailed(f"payload chunk {self._stream.counter - 1} failed authentication") from None
        if last and not plain and self._stream.counter > 1:
            raise DecryptFailed("empty final payload chunk")
        self._eof = last
        return plain

    def readinto(self, b) -> int:
        while self._pos >= len(self._plain):
            if self._eof:
                return 0
            self._plain = self._next_chunk()
            self._pos = 0
        n = min(len(b), len(self._plain) - self._pos)
        b[:n] = self._plain[self._pos : self._pos + n]
        self._pos += n
        return n


def encrypt(source: BinaryIO, sink: BinaryIO, recipients: Iterable[Recipient]) -> int:
    """Encrypt everything readable from ``source`` into ``sink``.

    Errors raised by ``source`` that are already tgzx errors (for example a
    producer failure delivered through a pipe) propagate unchanged.

    Returns:
        Number of envelope bytes written.
    """
    with EnvelopeWriter(sink, recipients) as writer:
        while True:
            try:
                data = source.read(COPY_BUFFER_SIZE)
            except OSError as exc:
                raise EncryptFailed(exc) from exc
            if not data:
                break
            writer.write(data)
    return writer.bytes_written


def decrypt(source: BinaryIO, sink: BinaryIO, identities: Iterable[Identity], *, log: Optional[logging.Logger] = None) -> int:
    """Decrypt the envelope in ``source`` into ``sink``; returns plaintext bytes written."""
    reader = EnvelopeReader(source, identities, log=log)
    total = 0
    while True:
        data = reader.read(COPY_BUFFER_SIZE)
        if not data:
            break
        try:
            sink.write(data)
        except OSError as exc:
            raise DecryptFailed(exc) from exc
        total += len(data)
    return total
