"""Error taxonomy for authentication and request-integrity failures.

Each error carries a short ``reason`` tag that is safe to write into security
events and client-facing responses. Components return these wrapped in
:class:`~erp_gateway.core.result.Err` rather than raising them; only the HTTP
layer converts them into responses.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every gateway failure."""

    reason: str = "authentication_error"


class ErpConnectionError(AuthError):
    """The ERP could not be reached or answered with something unusable."""

    reason = "connection_error"


class InvalidCredentials(AuthError):
    """The ERP rejected the login/password pair."""

    reason = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class BackendError(AuthError):
    """The ERP reported an error other than bad credentials."""

    reason = "backend_error"

    def __init__(self, message: str, code: int | str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} (Code: {self.code})"


class TokenError(AuthError):
    """Base class for session token verification failures."""

    reason = "invalid_token"


class TokenExpired(TokenError):
    """The session token's embedded expiry has passed."""

    reason = "token_expired"


class TokenInvalid(TokenError):
    """Signature mismatch or malformed token."""

    reason = "invalid_token"


class TokenVerificationFailed(TokenError):
    """Any other failure while decoding a session token."""

    reason = "authentication_error"


class ChallengeTokenInvalid(AuthError):
    """Challenge token missing, expired, reused or malformed."""

    reason = "csrf_failure"


class RateLimitExceeded(AuthError):
    """Too many requests for a client key within the policy window."""

    reason = "rate_limit_exceeded"

    def __init__(
        self,
        message: str,
        retry_after: float,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = headers or {}


__all__ = [
    "AuthError",
    "BackendError",
    "ChallengeTokenInvalid",
    "ErpConnectionError",
    "InvalidCredentials",
    "RateLimitExceeded",
    "TokenError",
    "TokenExpired",
    "TokenInvalid",
    "TokenVerificationFailed",
]
