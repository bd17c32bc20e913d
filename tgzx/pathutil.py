from __future__ import annotations

import os


def archive_name(p: str) -> str:
    """Turn a walked filesystem path into an archive entry name.

    Rules:
    - Convert backslashes to slashes
    - Strip any drive and leading slashes
    - Drop leading '..' segments (and the '.' / empty segments around them)

    Everything after the first real segment is kept as walked.
    """
    p = os.path.splitdrive(p)[1].replace("\\", "/")
    parts = p.split("/")
    while parts and parts[0] in ("", ".", ".."):
        parts.pop(0)
    name = "/".join(parts)
    return name or "."


def resolve_under(root: str, name: str) -> str:
    """Join ``name`` onto ``root`` and require the result to stay inside it.

    ``root`` must already be absolute and normalized. Returns the normalized
    target, or raises ValueError when it escapes ``root``.
    """
    target = os.path.normpath(os.path.join(root, name))
    if target != root and not target.startswith(root.rstrip(os.sep) + os.sep):
        raise ValueError(f"{name!r} resolves outside {root!r}")
    return target
