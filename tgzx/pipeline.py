"""End-to-end operations: create, list and extract encrypted archives.

Create runs the archive producer and the encrypting consumer concurrently,
joined by a bounded :class:`~tgzx.pipe.StreamPipe`, so neither the archive
nor the ciphertext is ever held in memory as a whole. The read direction
decrypts into a spooled temporary file first and only then hands plaintext to
the archive reader; nothing is written under the destination until the whole
envelope has authenticated.
"""

from __future__ import annotations

import concurrent.futures as _fut
import contextlib
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence

from . import archive, envelope, keys
from .constants import DEFAULT_PIPE_CAPACITY, SPOOL_MAX_SIZE
from .errors import OpenFileFailed
from .pipe import StreamPipe
from .sshkeys import Identity, Recipient, parse_identity


logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    file: str
    recipients: int
    size: int


@dataclass
class ListResult:
    entries: List[str] = field(default_factory=list)
    count: int = 0


@dataclass
class ExtractResult:
    files: List[str] = field(default_factory=list)
    count: int = 0


def load_identity(path: str, passphrase: Optional[str] = None) -> Identity:
    """Read and parse one private key file.

    Raises:
        OpenFileFailed: when the file cannot be read.
        ParseIdentityFailed: when it holds no usable private key.
    """
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise OpenFileFailed(path, exc.strerror or exc) from exc
    return parse_identity(data, passphrase=passphrase)


def _produce(pipe: StreamPipe, paths: Sequence[str], log: logging.Logger) -> int:
    try:
        count = archive.create(pipe.writer, paths, log=log)
    except Exception as exc:
        pipe.close_writer(exc)
        raise
    pipe.close_writer()
    return count


def _consume(pipe: StreamPipe, out, recipients: List[Recipient]) -> int:
    try:
        return envelope.encrypt(pipe.reader, out, recipients)
    finally:
        # unblocks a producer still waiting for room
        pipe.close_reader()


def _remove_partial(path: str, log: logging.Logger) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("Could not remove partial output %s: %s", path, exc)


def create_archive(
    identifier: str,
    output: str,
    paths: Sequence[str],
    *,
    resolve: Optional[Callable[..., List[Recipient]]] = None,
    fetch: Optional[keys.Fetcher] = None,
    log: Optional[logging.Logger] = None,
    cancel: Optional[threading.Event] = None,
    pipe_capacity: int = DEFAULT_PIPE_CAPACITY,
) -> CreateResult:
    """Archive ``paths`` and encrypt the result to every key listed for ``identifier``.

    Args:
        identifier: Account whose published public keys become recipients.
        output: Destination file; truncated if present, removed on failure.
        paths: Files and directories to archive.
        resolve: Recipient resolver, defaults to :func:`tgzx.keys.resolve`.
        fetch: Listing fetcher forwarded to the resolver.
        log: Logger for progress and warnings.
        cancel: Event that aborts both stages at their next pipe wait.
        pipe_capacity: Bytes buffered between the two stages.

    Returns:
        A :class:`CreateResult` with the output path, recipient count and size.
    """
    log = log or logger
    resolve = resolve or keys.resolve
    recipients = resolve(identifier, fetch=fetch, log=log)
    log.info("Resolved %d recipient(s) for %s", len(recipients), identifier)

    try:
        out = open(output, "wb")
    except OSError as exc:
        raise OpenFileFailed(output, exc.strerror or exc) from exc

    cancel = cancel or threading.Event()
    pipe = StreamPipe(pipe_capacity, cancel=cancel)
    try:
        with out:
            with _fut.ThreadPoolExecutor(max_workers=2, thread_name_prefix="tgzx") as pool:
                producer = pool.submit(_produce, pipe, list(paths), log)
                consumer = pool.submit(_consume, pipe, out, recipients)
                try:
                    _fut.wait([producer, consumer])
                except BaseException:
                    # interrupted while waiting; stop both stages before the pool joins them
                    cancel.set()
                    raise
            error = consumer.exception() or producer.exception()
            if error is not None:
                raise error
    except BaseException:
        _remove_partial(output, log)
        raise

    size = os.path.getsize(output)
    log.info("Created %s (%d entries, %d bytes)", output, producer.result(), size)
    return CreateResult(file=output, recipients=len(recipients), size=size)


@contextlib.contextmanager
def _decrypted(archive_file: str, identity: Identity, log: logging.Logger) -> Iterator:
    try:
        src = open(archive_file, "rb")
    except OSError as exc:
        raise OpenFileFailed(archive_file, exc.strerror or exc) from exc
    with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
        with src:
            size = envelope.decrypt(src, spool, [identity], log=log)
        log.debug("Decrypted %s (%d plaintext bytes)", archive_file, size)
        spool.seek(0)
        yield spool


def list_archive(
    archive_file: str,
    identity_file: str,
    *,
    passphrase: Optional[str] = None,
    log: Optional[logging.Logger] = None,
) -> ListResult:
    log = log or logger
    identity = load_identity(identity_file, passphrase)
    with _decrypted(archive_file, identity, log) as plain:
        entries = archive.list_entries(plain)
    log.info("Listed %d entries in %s", len(entries), archive_file)
    return ListResult(entries=entries, count=len(entries))


def extract_archive(
    archive_file: str,
    identity_file: str,
    dest: str = ".",
    *,
    passphrase: Optional[str] = None,
    log: Optional[logging.Logger] = None,
) -> ExtractResult:
    """Decrypt ``archive_file`` with the key in ``identity_file`` and unpack it under ``dest``."""
    log = log or logger
    identity = load_identity(identity_file, passphrase)
    with _decrypted(archive_file, identity, log) as plain:
        files = archive.extract(plain, dest, log=log)
    log.info("Extracted %d entries from %s into %s", len(files), archive_file, dest)
    return ExtractResult(files=files, count=len(files))
