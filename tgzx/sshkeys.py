"""SSH key handling for recipients and identities.

Public keys arrive as ``authorized_keys`` lines (``<type> <base64> [comment]``)
and private keys as OpenSSH or PEM files. Only two algorithms are usable with
the envelope: ``ssh-rsa`` (wrapped with RSA-OAEP) and ``ssh-ed25519`` (wrapped
through its X25519 form). Everything else is reported as
:class:`~tgzx.errors.UnsupportedKeyType`.
"""

from __future__ import annotations

import base64
import binascii
import enum
import hashlib
from dataclasses import dataclass, field
from typing import Any, Optional

from Cryptodome.PublicKey import ECC, RSA
from nacl.signing import SigningKey, VerifyKey

from .constants import MIN_RSA_BITS, STANZA_SSH_ED25519, STANZA_SSH_RSA, TAG_SIZE
from .errors import KeyParseError, ParseIdentityFailed, UnsupportedKeyType
from .wire import b64decode_raw, b64encode_raw, split_strings


class KeyType(enum.Enum):
    RSA = STANZA_SSH_RSA
    ED25519 = STANZA_SSH_ED25519

    @property
    def ssh_name(self) -> str:
        return self.value


@dataclass(frozen=True)
class Recipient:
    key_type: KeyType
    key: Any = field(repr=False)
    ssh_blob: bytes = field(repr=False)

    @property
    def tag(self) -> str:
        return ssh_tag(self.ssh_blob)


@dataclass(frozen=True)
class Identity:
    key_type: KeyType
    key: Any = field(repr=False)
    ssh_blob: bytes = field(repr=False)

    @property
    def tag(self) -> str:
        return ssh_tag(self.ssh_blob)


def ssh_tag(ssh_blob: bytes) -> str:
    """Short recipient tag: first bytes of SHA-256 over the SSH wire key."""
    return b64encode_raw(hashlib.sha256(ssh_blob).digest()[:TAG_SIZE])


def tag_matches(ssh_blob: bytes, tag: str) -> bool:
    try:
        raw = b64decode_raw(tag)
    except ValueError:
        return False
    return len(raw) == TAG_SIZE and hashlib.sha256(ssh_blob).digest()[:TAG_SIZE] == raw


def openssh_blob(public_key) -> bytes:
    """SSH wire encoding of an RSA or Ed25519 public key."""
    line = public_key.export_key(format="OpenSSH")
    if isinstance(line, bytes):
        line = line.decode("ascii")
    return base64.b64decode(line.split()[1])


def ed25519_to_x25519_public(key) -> bytes:
    """Montgomery form of an Ed25519 public key."""
    verify_key = VerifyKey(key.export_key(format="raw"))
    return bytes(verify_key.to_curve25519_public_key())


def ed25519_to_x25519_private(key) -> bytes:
    return bytes(SigningKey(key.seed).to_curve25519_private_key())


def _is_ed25519(key) -> bool:
    return str(getattr(key, "curve", "")).lower() == "ed25519"


def parse_recipient(line: str) -> Recipient:
    """Parse one ``authorized_keys`` line into a :class:`Recipient`.

    Raises:
        UnsupportedKeyType: for well-formed keys of algorithms the envelope
            cannot wrap to (ECDSA, DSA, security keys) or undersized RSA keys.
        KeyParseError: for anything malformed.
    """
    fields = line.strip().split()
    if len(fields) < 2:
        raise KeyParseError("malformed SSH public key line")
    type_name, b64 = fields[0], fields[1]
    try:
        blob = base64.b64decode(b64, validate=True)
    except binascii.Error as exc:
        raise KeyParseError(f"invalid base64: {exc}") from None
    try:
        parts = split_strings(blob)
    except ValueError as exc:
        raise KeyParseError(str(exc)) from None
    if not parts or parts[0] != type_name.encode():
        raise KeyParseError("key type does not match encoded key")

    if type_name == STANZA_SSH_RSA:
        if len(parts) != 3:
            raise KeyParseError("malformed ssh-rsa key")
        e = int.from_bytes(parts[1], "big")
        n = int.from_bytes(parts[2], "big")
        try:
            key = RSA.construct((n, e))
        except ValueError as exc:
            raise KeyParseError(f"invalid RSA key: {exc}") from None
        if key.size_in_bits() < MIN_RSA_BITS:
            raise UnsupportedKeyType(f"RSA key size is too small ({key.size_in_bits()} bits)")
        return Recipient(KeyType.RSA, key, blob)

    if type_name == STANZA_SSH_ED25519:
        if len(parts) != 2 or len(parts[1]) != 32:
            raise KeyParseError("malformed ssh-ed25519 key")
        try:
            key = ECC.import_key(f"{type_name} {b64}")
        except ValueError as exc:
            raise KeyParseError(f"invalid Ed25519 key: {exc}") from None
        return Recipient(KeyType.ED25519, key, blob)

    raise UnsupportedKeyType(type_name)


def parse_identity(data: bytes, passphrase: Optional[str] = None) -> Identity:
    """Parse a private key file (OpenSSH, PKCS#1 or PKCS#8 PEM) into an :class:`Identity`."""
    try:
        rsa_key = RSA.import_key(data, passphrase=passphrase)
    except (ValueError, IndexError, TypeError):
        rsa_key = None
    if rsa_key is not None:
        if not rsa_key.has_private():
            raise ParseIdentityFailed("file holds a public key, not a private key")
        return Identity(KeyType.RSA, rsa_key, openssh_blob(rsa_key.publickey()))

    try:
        ecc_key = ECC.import_key(data, passphrase=passphrase)
    except (ValueError, IndexError, TypeError) as exc:
        raise ParseIdentityFailed(f"unsupported or invalid private key ({exc})") from None
    if not _is_ed25519(ecc_key):
        raise ParseIdentityFailed(f"unsupported key curve {ecc_key.curve}")
    if not ecc_key.has_private():
        raise ParseIdentityFailed("file holds a public key, not a private key")
    return Identity(KeyType.ED25519, ecc_key, openssh_blob(ecc_key.public_key()))

