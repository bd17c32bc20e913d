from __future__ import annotations

import logging
from typing import Callable, List, Optional
from urllib.parse import quote

import requests

from .constants import DEFAULT_FETCH_TIMEOUT, DEFAULT_KEYS_URL, KEY_LOG_PREFIX
from .errors import FetchFailed, KeyParseError, NoValidKeys
from .sshkeys import Recipient, parse_recipient


logger = logging.getLogger(__name__)

Fetcher = Callable[[str], str]


def fetch_keys(
    identifier: str,
    *,
    session: Optional[requests.Session] = None,
    url_template: str = DEFAULT_KEYS_URL,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> str:
    """Download the newline-delimited public key listing for ``identifier``.

    Args:
        identifier: Account name substituted into ``url_template``.
        session: HTTP session to use; a short-lived one is opened when omitted.
        url_template: ``str.format`` template with one positional slot.
        timeout: Per-request timeout in seconds.

    Raises:
        FetchFailed: on transport errors or any non-200 response.
    """
    url = url_template.format(quote(identifier, safe=""))
    own_session = session is None
    http = requests.Session() if own_session else session
    try:
        resp = http.get(url, timeout=timeout)
        if resp.status_code != requests.codes.ok:
            raise FetchFailed(identifier, f"HTTP {resp.status_code}")
        return resp.text
    except requests.RequestException as exc:
        raise FetchFailed(identifier, exc) from exc
    finally:
        if own_session:
            http.close()


def resolve(
    identifier: str,
    *,
    fetch: Optional[Fetcher] = None,
    log: Optional[logging.Logger] = None,
) -> List[Recipient]:
    """Resolve ``identifier`` to the recipients listed for it.

    Each non-blank line of the listing is parsed independently; lines that do
    not parse (malformed, or an algorithm the envelope cannot use) are logged
    and skipped. Order is preserved and duplicates are kept.

    Raises:
        FetchFailed: when the listing cannot be retrieved.
        NoValidKeys: when no line yields a usable recipient.
    """
    log = log or logger
    fetch = fetch or fetch_keys
    try:
        body = fetch(identifier)
    except FetchFailed:
        raise
    except (requests.RequestException, OSError, ValueError) as exc:
        raise FetchFailed(identifier, exc) from exc

    recipients: List[Recipient] = []
    for raw in body.splitlines():
        line = raw.strip()
        if not line:
            continue
        try:
            recipients.append(parse_recipient(line))
        except KeyParseError as exc:
            log.warning("Skipping unsupported key %r: %s", line[:KEY_LOG_PREFIX], exc)

    if not recipients:
        raise NoValidKeys(identifier)
    log.debug("Resolved %d recipient(s) for %s", len(recipients), identifier)
    return recipients
