from __future__ import annotations

import os
import sys
import json as _json
import logging
import argparse
import dataclasses
from functools import partial
from typing import Any, List, Optional

import requests

from tgzx import __version__
from tgzx.constants import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_KEYS_URL,
    ENV_KEYS_URL,
    ENV_LOG_FORMAT,
    ENV_LOG_LEVEL,
    ENV_PASSPHRASE,
)
from tgzx.errors import TgzxError
from tgzx.keys import fetch_keys
from tgzx.pipeline import create_archive, extract_archive, list_archive


LOG_LEVELS = ("debug", "info", "warning", "error")
LOG_FORMATS = ("text", "json")

logger = logging.getLogger("tgzx")


class JsonFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, msg (+ error)."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return _json.dumps(payload)


def setup_logging(level: str = "info", fmt: str = "text") -> None:
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler], force=True)


def _emit(result: Any) -> None:
    print(_json.dumps(dataclasses.asdict(result), indent=2))


# -------- commands --------

def cmd_create(username: str, archive: str, paths: List[str], *, keys_url: str = DEFAULT_KEYS_URL) -> None:
    with requests.Session() as session:
        fetch = partial(fetch_keys, session=session, url_template=keys_url, timeout=DEFAULT_FETCH_TIMEOUT)
        result = create_archive(username, archive, paths, fetch=fetch, log=logger)
    _emit(result)


def cmd_list(archive: str, identity: str, *, passphrase: Optional[str] = None) -> None:
    _emit(list_archive(archive, identity, passphrase=passphrase, log=logger))


def cmd_extract(archive: str, identity: str, *, outdir: str = ".", passphrase: Optional[str] = None) -> None:
    _emit(extract_archive(archive, identity, outdir, passphrase=passphrase, log=logger))


def _env_choice(name: str, choices, default: str) -> str:
    value = os.environ.get(name, "").strip().lower()
    return value if value in choices else default


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ssh-tgzx",
        description=(
            "Create tar.gz archives encrypted to a user's published SSH public keys, "
            "and list or extract them with the matching private key."
        ),
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=_env_choice(ENV_LOG_LEVEL, LOG_LEVELS, "info"),
        help=f"Log verbosity (env {ENV_LOG_LEVEL})",
    )
    ap.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=_env_choice(ENV_LOG_FORMAT, LOG_FORMATS, "text"),
        help=f"Log output format (env {ENV_LOG_FORMAT})",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_create = sub.add_parser("create", help="Create an encrypted archive for a user's SSH keys")
    ap_create.add_argument("username", help="Account whose public keys become recipients")
    ap_create.add_argument("archive", help="Output archive file")
    ap_create.add_argument("paths", nargs="+", help="Files and directories to archive")
    ap_create.add_argument(
        "--keys-url",
        default=os.environ.get(ENV_KEYS_URL) or DEFAULT_KEYS_URL,
        help=f"Key listing URL template with one {{}} slot (env {ENV_KEYS_URL})",
    )

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Encrypted archive file")
    ap_list.add_argument("identity", help="SSH private key file")

    ap_extract = sub.add_parser("extract", help="Extract archive contents")
    ap_extract.add_argument("archive", help="Encrypted archive file")
    ap_extract.add_argument("identity", help="SSH private key file")
    ap_extract.add_argument("--outdir", default=".", help="Destination directory (default: current directory)")

    for p in (ap_list, ap_extract):
        p.add_argument(
            "--passphrase",
            default=os.environ.get(ENV_PASSPHRASE),
            help=f"Passphrase for an encrypted private key (env {ENV_PASSPHRASE})",
        )
    return ap


def main(argv: List[str] | None = None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)
    try:
        if args.cmd == "create":
            cmd_create(args.username, args.archive, args.paths, keys_url=args.keys_url)
        elif args.cmd == "list":
            cmd_list(args.archive, args.identity, passphrase=args.passphrase)
        elif args.cmd == "extract":
            cmd_extract(args.archive, args.identity, outdir=args.outdir, passphrase=args.passphrase)
        else:
            raise RuntimeError("Unknown command")
    except TgzxError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
