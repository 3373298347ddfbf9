"""Signed session tokens built on python-jose.

Tokens are HS256 JWTs carrying the ERP user id, username and display name.
They are self-contained: nothing is stored server-side, so a token stays valid
until its embedded expiry even after the user logs out.
"""

from __future__ import annotations

import base64
import binascii
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from jose import jwt
from jose.exceptions import JOSEError

from erp_gateway.core.errors import (
    TokenError,
    TokenExpired,
    TokenInvalid,
    TokenVerificationFailed,
)
from erp_gateway.core.result import Err, Ok, Result
from erp_gateway.core.settings import settings

BEARER_SCHEME = "Bearer"
_JWT_SEGMENTS = 3


@dataclass(frozen=True)
class IdentityClaim:
    """Verified identity decoded from a session token."""

    uid: int
    username: str
    name: str
    expires_at: datetime | None = None


def _is_canonical_segment(segment: str) -> bool:
    """Return True if ``segment`` is the canonical unpadded base64url form of its bytes.

    Base64 lets the trailing character carry unused bits, so two different
    strings can decode to the same signature. Only the canonical spelling is
    accepted.
    """
    if not segment or "=" in segment:
        return False
    padding = "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(segment + padding)
    except (binascii.Error, ValueError):
        return False
    return base64.urlsafe_b64encode(raw).decode().rstrip("=") == segment


class SessionTokenCodec:
    """Issue and verify time-bound identity tokens."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("A signing secret is required to issue session tokens")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, uid: int, username: str, name: str, *, now: float | None = None) -> str:
        """Create a signed token for an authenticated ERP user."""
        issued_at = int(self._clock() if now is None else now)
        claims: dict[str, Any] = {
            "sub": str(uid),
            "uid": uid,
            "username": username,
            "name": name,
            "iat": issued_at,
            "exp": issued_at + self._ttl_seconds,
        }
        encoded: str = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return encoded

    def verify(self, token: str, *, now: float | None = None) -> Result[IdentityClaim, TokenError]:
        """Verify ``token`` and return its identity claim.

        Returns:
            ``Ok(IdentityClaim)`` on success, otherwise ``Err`` wrapping
            :class:`TokenExpired`, :class:`TokenInvalid` or
            :class:`TokenVerificationFailed`.
        """
        if not isinstance(token, str):
            return Err(TokenInvalid("Token must be a string"))
        segments = token.split(".")
        if len(segments) != _JWT_SEGMENTS or not all(
            _is_canonical_segment(segment) for segment in segments
        ):
            return Err(TokenInvalid("Malformed token"))

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JOSEError as err:
            return Err(TokenInvalid(str(err)))
        except Exception as err:
            return Err(TokenVerificationFailed(str(err)))

        uid = payload.get("uid")
        username = payload.get("username")
        name = payload.get("name")
        expires = payload.get("exp")
        if (
            not isinstance(uid, int)
            or isinstance(uid, bool)
            or not isinstance(username, str)
            or not isinstance(name, str)
            or not isinstance(expires, (int, float))
        ):
            return Err(TokenInvalid("Token payload is malformed"))

        current = self._clock() if now is None else now
        if current >= expires:
            return Err(TokenExpired("Token expired"))

        return Ok(
            IdentityClaim(
                uid=uid,
                username=username,
                name=name,
                expires_at=datetime.fromtimestamp(expires, tz=UTC),
            )
        )


def extract_bearer_token(auth_header: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not auth_header:
        return None
    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0] != BEARER_SCHEME or not parts[1]:
        return None
    return parts[1]


class _SessionTokenCodecSingleton:
    """Singleton wrapper for SessionTokenCodec."""

    _instance: SessionTokenCodec | None = None

    @classmethod
    def get_instance(cls) -> SessionTokenCodec:
        if cls._instance is None:
            cls._instance = SessionTokenCodec(
                settings.jwt_secret,
                algorithm=settings.jwt_algorithm,
                ttl_seconds=settings.access_token_expire_seconds,
            )
        return cls._instance


def get_token_codec() -> SessionTokenCodec:
    """Return the process-wide session token codec."""
    return _SessionTokenCodecSingleton.get_instance()
