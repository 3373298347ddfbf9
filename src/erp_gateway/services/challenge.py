"""One-time challenge (CSRF) tokens held in process memory."""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Final

from erp_gateway.core.errors import ChallengeTokenInvalid
from erp_gateway.core.result import Err, Ok, Result
from erp_gateway.core.settings import settings

logger = logging.getLogger(__name__)

TOKEN_DELIMITER: Final[str] = ":"
SAFE_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD", "OPTIONS"})
MUTATING_METHODS: Final[frozenset[str]] = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class _ChallengeEntry:
    secret: str
    expires_at: float


class ChallengeTokenStore:
    """Registry of short-lived, single-use challenge tokens.

    A token is ``"<key>:<secret>"``. The key locates the registry entry and the
    secret must match it. Validation removes the entry under the same lock that
    reads it, so a token can be spent at most once even when two requests race.
    """

    def __init__(
        self,
        ttl_seconds: float = 60 * 60,
        *,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, _ChallengeEntry] = {}
        self._lock = Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def issue(self) -> str:
        """Create, register and return a new token."""
        key = secrets.token_hex(16)
        secret = secrets.token_hex(32)
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep_locked(now)
            self._entries[key] = _ChallengeEntry(secret=secret, expires_at=now + self._ttl_seconds)
        return f"{key}{TOKEN_DELIMITER}{secret}"

    def validate(self, token: object) -> bool:
        """Spend ``token``; return True only for a live, matching, unused token."""
        if not isinstance(token, str) or not token:
            return False
        parts = token.split(TOKEN_DELIMITER)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return False
        key, secret = parts

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if now > entry.expires_at:
                del self._entries[key]
                return False
            if not hmac.compare_digest(entry.secret.encode(), secret.encode()):
                return False
            del self._entries[key]
        return True

    def redeem(self, token: object) -> Result[None, ChallengeTokenInvalid]:
        """Spend ``token``, reporting a rejection as an error value."""
        if self.validate(token):
            return Ok(None)
        return Err(ChallengeTokenInvalid("Invalid or missing CSRF token"))

    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        self._last_sweep = now
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired challenge tokens", len(expired))
        return len(expired)


_STORE = ChallengeTokenStore(ttl_seconds=settings.csrf_token_ttl_seconds)


def get_challenge_store() -> ChallengeTokenStore:
    """Return the process-wide challenge token store."""
    return _STORE
