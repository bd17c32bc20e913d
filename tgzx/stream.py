"""Chunked payload encryption (STREAM over ChaCha20-Poly1305).

The payload key is derived from the file key and a random 16-byte nonce. The
plaintext is cut into fixed-size chunks; chunk ``i`` is sealed with the
12-byte nonce ``i`` (11 bytes, big endian) followed by a flag byte that is
``0x01`` only on the final chunk. Reordering, truncating or extending the
ciphertext therefore fails authentication.
"""

from __future__ import annotations

from Cryptodome.Cipher import ChaCha20_Poly1305
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import HKDF

from .constants import AEAD_KEY_SIZE, AEAD_TAG_SIZE, HKDF_INFO_PAYLOAD


_MAX_COUNTER = (1 << 88) - 1


def hkdf_sha256(ikm: bytes, salt: bytes, info: bytes, length: int = AEAD_KEY_SIZE) -> bytes:
    return HKDF(ikm, length, salt, SHA256, context=info)


def payload_key(file_key: bytes, nonce: bytes) -> bytes:
    return hkdf_sha256(file_key, nonce, HKDF_INFO_PAYLOAD)


def _chunk_nonce(counter: int, last: bool) -> bytes:
    return counter.to_bytes(11, "big") + (b"\x01" if last else b"\x00")


def aead_seal(key: bytes, plaintext: bytes, nonce: bytes = b"\x00" * 12) -> bytes:
    cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return ciphertext + tag


def aead_open(key: bytes, sealed: bytes, nonce: bytes = b"\x00" * 12) -> bytes:
    """Verify and decrypt ``ciphertext || tag``; raises ValueError on mismatch."""
    if len(sealed) < AEAD_TAG_SIZE:
        raise ValueError("Sealed data shorter than authentication tag")
    cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
    return cipher.decrypt_and_verify(sealed[:-AEAD_TAG_SIZE], sealed[-AEAD_TAG_SIZE:])


class StreamCipher:
    """Sequential sealer/opener for payload chunks under one payload key."""

    def __init__(self, key: bytes):
        if len(key) != AEAD_KEY_SIZE:
            raise ValueError("Payload key must be 32 bytes")
        self._key = key
        self.counter = 0
        self.finished = False

    def _next_nonce(self, last: bool) -> bytes:
        if self.finished:
            raise ValueError("Stream already finished")
        if self.counter > _MAX_COUNTER:
            raise ValueError("Chunk counter overflow")
        nonce = _chunk_nonce(self.counter, last)
        self.counter += 1
        self.finished = last
        return nonce

    def seal(self, chunk: bytes, *, last: bool) -> bytes:
        return aead_seal(self._key, chunk, self._next_nonce(last))

    def open(self, sealed: bytes, *, last: bool) -> bytes:
        return aead_open(self._key, sealed, self._next_nonce(last))


__all__ = [
    "StreamCipher",
    "aead_open",
    "aead_seal",
    "hkdf_sha256",
    "payload_key",
]
