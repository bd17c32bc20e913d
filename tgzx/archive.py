from __future__ import annotations

import gzip
import logging
import os
import shutil
import stat
import tarfile
import zlib
from typing import BinaryIO, Iterator, List, Optional, Sequence, Tuple

from .constants import COPY_BUFFER_SIZE
from .errors import CreateArchiveFailed, ExtractFailed, PathTraversal
from .pathutil import archive_name, resolve_under


logger = logging.getLogger(__name__)

_READ_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)

_KIND_NAMES = {
    tarfile.REGTYPE: "file",
    tarfile.AREGTYPE: "file",
    tarfile.DIRTYPE: "dir",
    tarfile.SYMTYPE: "symlink",
    tarfile.LNKTYPE: "hardlink",
}


def _walk(path: str) -> Iterator[Tuple[str, os.stat_result]]:
    """Yield ``path`` and everything below it in lexical order.

    Symbolic links are reported, never followed.
    """
    st = os.lstat(path)
    yield path, st
    if stat.S_ISDIR(st.st_mode):
        for name in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, name))


def _tarinfo(path: str, st: os.stat_result) -> Optional[tarfile.TarInfo]:
    info = tarfile.TarInfo(archive_name(path))
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    info.uid = st.st_uid
    info.gid = st.st_gid
    if stat.S_ISREG(st.st_mode):
        info.type = tarfile.REGTYPE
        info.size = st.st_size
    elif stat.S_ISDIR(st.st_mode):
        info.type = tarfile.DIRTYPE
    elif stat.S_ISLNK(st.st_mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(path)
    else:
        return None
    return info


def _add_tree(tar: tarfile.TarFile, root: str, log: logging.Logger) -> int:
    count = 0
    current = root
    try:
        for current, st in _walk(root):
            info = _tarinfo(current, st)
            if info is None:
                log.warning("Skipping special file %s", current)
                continue
            if info.isreg():
                with open(current, "rb") as fh:
                    tar.addfile(info, fh)
            else:
                tar.addfile(info)
            count += 1
    except (OSError, tarfile.TarError) as exc:
        raise CreateArchiveFailed(getattr(exc, "filename", None) or current, exc) from exc
    return count


def create(sink: BinaryIO, paths: Sequence[str], *, log: Optional[logging.Logger] = None) -> int:
    """Write a gzip-compressed tar stream of ``paths`` into ``sink``.

    Each path is walked recursively; directories are stored without content,
    symlinks as link entries (their targets are not followed), regular files
    with their bytes. Entry names keep the walked path apart from a stripped
    leading root or ``..`` prefix (see :func:`tgzx.pathutil.archive_name`).

    The tar layer writes into the gzip layer, which writes into ``sink``; the
    tar stream is closed (end-of-archive blocks flushed) before the gzip
    stream. ``sink`` itself is left open.

    Returns:
        Number of entries written.

    Raises:
        CreateArchiveFailed: naming the path that could not be read.
    """
    log = log or logger
    count = 0
    try:
        with gzip.GzipFile(fileobj=sink, mode="wb") as gz:
            with tarfile.open(fileobj=gz, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                for p in paths:
                    count += _add_tree(tar, p, log)
    except (OSError, tarfile.TarError) as exc:
        raise CreateArchiveFailed(exc) from exc
    log.debug("Archived %d entries from %d path(s)", count, len(paths))
    return count


def list_entries(source: BinaryIO) -> List[str]:
    """Return every entry name of a gzip-compressed tar stream, in stream order."""
    names: List[str] = []
    try:
        with gzip.GzipFile(fileobj=source, mode="rb") as gz:
            with tarfile.open(fileobj=gz, mode="r|") as tar:
                for member in tar:
                    names.append(member.name)
    except _READ_ERRORS as exc:
        raise ExtractFailed(exc) from exc
    return names


def _write_file(tar: tarfile.TarFile, member: tarfile.TarInfo, target: str) -> None:
    os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
    flags = os.O_CREAT | os.O_WRONLY | os.O_TRUNC | getattr(os, "O_NOFOLLOW", 0) | getattr(os, "O_BINARY", 0)
    fd = os.open(target, flags, member.mode & 0o777)
    with os.fdopen(fd, "wb") as out:
        src = tar.extractfile(member)
        if src is not None:
            shutil.copyfileobj(src, out, COPY_BUFFER_SIZE)


def extract(source: BinaryIO, dest: str, *, log: Optional[logging.Logger] = None) -> List[str]:
    """Materialize a gzip-compressed tar stream under ``dest``.

    Every entry name is joined onto ``dest`` and must stay inside it; the first
    entry that escapes aborts extraction with :class:`PathTraversal` and
    nothing after it is written. Directories and regular files are created
    (existing files are truncated). Symlinks, hard links and special entries
    are reported in the result but not created on disk.

    Returns:
        Entry names processed, in stream order.
    """
    log = log or logger
    root = os.path.normpath(os.path.abspath(dest))
    processed: List[str] = []
    try:
        with gzip.GzipFile(fileobj=source, mode="rb") as gz:
            with tarfile.open(fileobj=gz, mode="r|") as tar:
                for member in tar:
                    try:
                        target = resolve_under(root, member.name)
                    except ValueError:
                        raise PathTraversal(member.name) from None
                    if member.isdir():
                        os.makedirs(target, mode=(member.mode & 0o777) | 0o700, exist_ok=True)
                    elif member.isreg():
                        _write_file(tar, member, target)
                    else:
                        log.debug(
                            "Not materializing %s entry %s",
                            _KIND_NAMES.get(member.type, "special"),
                            member.name,
                        )
                    processed.append(member.name)
    except _READ_ERRORS as exc:
        raise ExtractFailed(exc) from exc
    return processed
