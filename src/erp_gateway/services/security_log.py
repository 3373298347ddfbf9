"""Structured audit trail for authentication and request-integrity decisions.

Every event is written once as a single ``[SECURITY] {...}`` JSON line on the
``erp_gateway.security`` logger. Recording is fire-and-forget: a failure to
build or emit an event is reported on the module logger and never reaches the
request being handled.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fastapi import Request

from erp_gateway.core.settings import settings

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("erp_gateway.security")

UNKNOWN = "unknown"


class SecurityEventKind(str, Enum):
    """Kinds of security event the gateway records."""

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    TOKEN_EXPIRED = "token_expired"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CSRF_FAILURE = "csrf_failure"


@dataclass(frozen=True)
class SecurityEvent:
    """Immutable audit record."""

    kind: SecurityEventKind
    timestamp: str
    ip: str
    user_agent: str
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "timestamp": self.timestamp,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "details": self.details,
        }


def client_ip(request: Request) -> str:
    """Best-effort client address.

    Proxy headers are consulted only when ``TRUST_PROXY_HEADERS`` is set;
    otherwise the socket peer is used.
    """
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return UNKNOWN


class SecurityEventLogger:
    """Write-only recorder for security events."""

    def __init__(self, sink: logging.Logger | None = None) -> None:
        self._sink = sink or security_logger

    def record(
        self,
        kind: SecurityEventKind,
        request: Request,
        details: Mapping[str, Any] | None = None,
    ) -> SecurityEvent | None:
        """Record one event. Never raises."""
        try:
            event = SecurityEvent(
                kind=kind,
                timestamp=datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                ip=client_ip(request),
                user_agent=request.headers.get("user-agent") or UNKNOWN,
                details=dict(details or {}),
            )
            level = logging.INFO if kind is SecurityEventKind.LOGIN_SUCCESS else logging.WARNING
            self._sink.log(level, "[SECURITY] %s", json.dumps(event.as_dict(), default=str))
            return event
        except Exception:
            logger.exception("Failed to record security event %s", kind)
            return None

    def login_success(self, request: Request, user_id: int, username: str) -> SecurityEvent | None:
        return self.record(
            SecurityEventKind.LOGIN_SUCCESS,
            request,
            {"userId": user_id, "username": username},
        )

    def login_failure(
        self,
        request: Request,
        username: str | None = None,
        reason: str | None = None,
    ) -> SecurityEvent | None:
        return self.record(
            SecurityEventKind.LOGIN_FAILURE,
            request,
            {"username": username or UNKNOWN, "reason": reason or "invalid_credentials"},
        )

    def token_expired(self, request: Request, user_id: int | None = None) -> SecurityEvent | None:
        return self.record(SecurityEventKind.TOKEN_EXPIRED, request, {"userId": user_id})

    def unauthorized_access(
        self,
        request: Request,
        reason: str | None = None,
    ) -> SecurityEvent | None:
        return self.record(
            SecurityEventKind.UNAUTHORIZED_ACCESS,
            request,
            {
                "endpoint": request.url.path,
                "method": request.method,
                "reason": reason or "missing_or_invalid_token",
            },
        )

    def rate_limit_exceeded(self, request: Request, policy: str) -> SecurityEvent | None:
        return self.record(
            SecurityEventKind.RATE_LIMIT_EXCEEDED,
            request,
            {"endpoint": request.url.path, "method": request.method, "policy": policy},
        )

    def csrf_failure(self, request: Request) -> SecurityEvent | None:
        return self.record(
            SecurityEventKind.CSRF_FAILURE,
            request,
            {"endpoint": request.url.path, "method": request.method},
        )


_SECURITY_LOGGER = SecurityEventLogger()


def get_security_logger() -> SecurityEventLogger:
    """Return the process-wide security event logger."""
    return _SECURITY_LOGGER
