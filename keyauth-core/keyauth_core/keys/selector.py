"""Candidate key selection.

Turns the directory's key listing into an ordered list of
:class:`~keyauth_core.crypto.keys.KeyHandle` and applies the default-key
policy.

Each listing line is parsed on its own: a malformed or unsupported line is
logged and skipped, so one bad registered key never locks a principal out of
its other keys.
"""
import logging
import re
from typing import Callable, Iterable, Sequence

from keyauth_core.crypto.keys import KeyHandle, KeyParseError, KeyType, parse_public_key
from keyauth_core.errors import KeyNotFound, NoSuitableKey

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r\n?|\n")


def parse_keys(
    blob: str,
    parse: Callable[[str], KeyHandle] = parse_public_key,
    *,
    log: logging.Logger | None = None,
) -> list[KeyHandle]:
    """Parse a newline-delimited key listing, preserving order.

    Lines whose stripped text starts with ``#`` and blank lines are ignored.
    """
    log = log or logger
    keys: list[KeyHandle] = []
    for number, raw_line in enumerate(_LINE_SPLIT.split(blob), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            keys.append(parse(line))
        except KeyParseError as exc:
            log.warning("Skipping key on line %d: %s", number, exc)
    return keys


def pick_default(candidates: Sequence[KeyHandle]) -> KeyHandle:
    """Return the first non-RSA candidate, else the first RSA candidate.

    Raises
    ------
    NoSuitableKey
        If *candidates* is empty.
    """
    for key in candidates:
        if key.key_type is not KeyType.RSA:
            return key
    for key in candidates:
        if key.key_type is KeyType.RSA:
            return key
    raise NoSuitableKey("No suitable key found")


def find_by_fingerprint(candidates: Iterable[KeyHandle], fingerprint: str) -> KeyHandle:
    """Return the candidate whose fingerprint equals *fingerprint*.

    Raises
    ------
    KeyNotFound
        If no candidate matches.
    """
    for key in candidates:
        if key.fingerprint == fingerprint:
            return key
    raise KeyNotFound(f"No suitable key found for fingerprint {fingerprint}")
