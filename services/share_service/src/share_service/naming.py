"""Stored blob names.

A blob is stored as ``<token>-<original name>``. Tokens are lowercase base36
and never contain ``-``, so the original name is everything after the first
``-`` and may itself contain hyphens.
"""

from __future__ import annotations

import os
import secrets
import string
import threading
import time
from dataclasses import dataclass

SEPARATOR = "-"
DEFAULT_NAME = "uploaded.bin"

# leaves room for the token, separator and a dedupe suffix under NAME_MAX (255)
MAX_NAME_BYTES = 200

_ALPHABET = string.digits + string.ascii_lowercase
_SALT_LENGTH = 3
_MAX_EXT_BYTES = 16


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _truncate_utf8(text: str, max_bytes: int) -> str:
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_filename(name: str | None) -> str:
    """Make a client filename safe to embed in a stored name.

    Path separators become ``_``, control characters are dropped and the
    result is cut to ``MAX_NAME_BYTES`` of UTF-8, keeping a short extension.
    """
    safe = (name or "").replace("/", "_").replace("\\", "_")
    safe = "".join(c for c in safe if ord(c) >= 32 and ord(c) != 127)
    if len(safe.encode("utf-8")) > MAX_NAME_BYTES:
        stem, ext = os.path.splitext(safe)
        if len(ext.encode("utf-8")) > _MAX_EXT_BYTES:
            stem, ext = safe, ""
        safe = _truncate_utf8(stem, MAX_NAME_BYTES - len(ext.encode("utf-8"))) + ext
    return safe or DEFAULT_NAME


def dedupe_names(names: list[str]) -> list[str]:
    """Suffix repeated names in a batch: ``a.jpg``, ``a (1).jpg``, ..."""
    taken = set(names)
    seen = set()
    result = []
    for name in names:
        if name in seen:
            stem, ext = os.path.splitext(name)
            n = 1
            while f"{stem} ({n}){ext}" in taken:
                n += 1
            name = f"{stem} ({n}){ext}"
            taken.add(name)
        seen.add(name)
        result.append(name)
    return result


def is_valid_token(token: str) -> bool:
    return bool(token) and all(c in _ALPHABET for c in token)


@dataclass(frozen=True)
class StoredName:
    token: str
    original_name: str

    def __post_init__(self):
        if not is_valid_token(self.token):
            raise ValueError(f"invalid token: {self.token!r}")
        if not self.original_name:
            raise ValueError("original name must not be empty")

    def __str__(self) -> str:
        return f"{self.token}{SEPARATOR}{self.original_name}"

    @classmethod
    def parse(cls, stored: str) -> StoredName:
        """Split ``<token>-<original>``; raises ``ValueError`` if malformed."""
        token, sep, original = stored.partition(SEPARATOR)
        if not sep:
            raise ValueError(f"not a stored name: {stored!r}")
        return cls(token=token, original_name=original)


class TokenGenerator:
    """Issues batch tokens: base36 milliseconds plus a random salt.

    The millisecond part is strictly increasing across tokens issued by one
    generator, so tokens never repeat within a process.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1

    def next_token(self) -> str:
        with self._lock:
            ms = int(self._clock() * 1000)
            if ms <= self._last_ms:
                ms = self._last_ms + 1
            self._last_ms = ms
        salt = "".join(secrets.choice(_ALPHABET) for _ in range(_SALT_LENGTH))
        return to_base36(ms) + salt
