"""
In-process expiring store for email one-time codes.

Entries are single use: the caller discards a checked entry once it has
acted on it. An expired entry is removed the first time it is looked at. The clock is injectable so
tests can move time forward without sleeping.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CodeEntry:
    code: str
    name: str
    expires_at: float


class CodeRejected(Exception):
    """Why a code was refused: 'missing', 'expired' or 'mismatch'."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ExpiringCodeStore:
    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CodeEntry] = {}

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    def put(self, email: str, code: str, name: str = "") -> CodeEntry:
        """Store a code, replacing any earlier code for the same email."""
        self.purge_expired()
        entry = CodeEntry(code=code, name=name, expires_at=self._clock() + self.ttl_seconds)
        self._entries[self._key(email)] = entry
        return entry

    def peek(self, email: str) -> Optional[CodeEntry]:
        key = self._key(email)
        entry = self._entries.get(key)
        if entry is not None and self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def check(self, email: str, code: str) -> CodeEntry:
        """
        Return the entry if `code` matches, leaving it in place.

        Raises CodeRejected; an expired entry is removed, a mismatch keeps it
        so the user can retype.
        """
        key = self._key(email)
        entry = self._entries.get(key)
        if entry is None:
            raise CodeRejected("missing")
        if self._clock() > entry.expires_at:
            del self._entries[key]
            raise CodeRejected("expired")
        if entry.code != code.strip():
            raise CodeRejected("mismatch")
        return entry

    def discard(self, email: str) -> None:
        self._entries.pop(self._key(email), None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired verification codes", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
