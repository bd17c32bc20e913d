from __future__ import annotations


class TgzxError(Exception):
    """Base class for tgzx errors.

    Subclasses carry a fixed ``message``; positional arguments add context the
    way ``"failed to extract: path traversal: ../x"`` reads.
    """

    message = "tgzx error"

    def __init__(self, *context: object):
        self.context = context
        parts = [self.message] + [str(c) for c in context if c is not None and c != ""]
        super().__init__(": ".join(parts))


# Key resolution
class FetchFailed(TgzxError):
    message = "failed to fetch keys"


class NoValidKeys(TgzxError):
    message = "no valid keys found"


class KeyParseError(TgzxError):
    message = "failed to parse key"


class UnsupportedKeyType(KeyParseError):
    message = "SSH public key type not supported"


# Archive codec
class CreateArchiveFailed(TgzxError):
    message = "failed to create archive"


class ExtractFailed(TgzxError):
    message = "failed to extract"


class PathTraversal(ExtractFailed):
    message = "failed to extract: path traversal"


# Envelope
class EncryptFailed(TgzxError):
    message = "failed to encrypt"


class DecryptFailed(TgzxError):
    message = "failed to decrypt"


# Identity and local files
class OpenFileFailed(TgzxError):
    message = "failed to open file"


class ParseIdentityFailed(TgzxError):
    message = "failed to parse identity"


class OperationCancelled(TgzxError):
    message = "operation cancelled"
