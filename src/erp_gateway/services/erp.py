"""ERP (Odoo) JSON-RPC client and credential verification.

This module provides:

- ``ErpClient``: a thin async HTTP wrapper around the ERP's JSON-RPC web API
- ``CredentialVerifier``: turns the ERP's authenticate call into a single
  ``Result`` outcome (identity, or a typed error)

Session cookies are never kept inside the HTTP client. Every call receives
the cookies it should present explicitly, so an end-user login can never
reuse or overwrite the shared service session.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any

import httpx

from erp_gateway.core.errors import (
    AuthError,
    BackendError,
    ErpConnectionError,
    InvalidCredentials,
)
from erp_gateway.core.result import Err, Ok, Result
from erp_gateway.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

AUTHENTICATE_PATH = "/web/session/authenticate"
CALL_KW_PATH = "/web/dataset/call_kw"

# Odoo reports AccessDenied (bad login/password) with this JSON-RPC error code
ODOO_ACCESS_DENIED_CODE = 200
ACCESS_DENIED_EXCEPTION = "odoo.exceptions.AccessDenied"
_INVALID_CREDENTIAL_MARKERS = ("Wrong login/password", "Invalid credentials")


class _RefuseAllCookiesPolicy(DefaultCookiePolicy):
    """Cookie policy that never stores anything in the client jar."""

    def set_ok(self, cookie: Any, request: Any) -> bool:
        return False


@dataclass(frozen=True)
class ErpConfig:
    """Immutable configuration for ERP access."""

    base_url: str
    db: str
    timeout_seconds: float
    timezone: str
    lang: str


@dataclass(frozen=True)
class ErpReply:
    """Decoded JSON-RPC reply plus any session cookies the ERP set."""

    result: Any
    error: Mapping[str, Any] | None
    cookies: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ErpIdentity:
    """Normalized identity returned by a successful ERP authentication."""

    uid: int
    username: str
    name: str
    partner_display_name: str | None = None
    company_id: int | None = None
    partner_id: int | None = None
    is_admin: bool = False
    is_system: bool = False
    server_version: str | None = None
    db: str | None = None
    user_context: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_result(cls, result: Mapping[str, Any], *, login: str) -> ErpIdentity:
        return cls(
            uid=int(result["uid"]),
            username=str(result.get("username") or login),
            name=str(result.get("name") or result.get("username") or login),
            partner_display_name=result.get("partner_display_name") or None,
            company_id=_as_id(result.get("company_id")),
            partner_id=_as_id(result.get("partner_id")),
            is_admin=bool(result.get("is_admin", False)),
            is_system=bool(result.get("is_system", False)),
            server_version=result.get("server_version") or None,
            db=result.get("db") or None,
            user_context=dict(result.get("user_context") or {}),
        )

    def as_public_dict(self) -> dict[str, Any]:
        """Return the identity fields that may be shown to the client."""
        return {
            "uid": self.uid,
            "name": self.name,
            "username": self.username,
            "partner_display_name": self.partner_display_name,
            "company_id": self.company_id,
            "partner_id": self.partner_id,
            "server_version": self.server_version,
            "db": self.db,
            "is_admin": self.is_admin,
            "is_system": self.is_system,
        }


@dataclass(frozen=True)
class ErpSessionGrant:
    """An authenticated identity together with the cookies that carry its session."""

    identity: ErpIdentity
    cookies: dict[str, str]


def _as_id(value: Any) -> int | None:
    """Coerce Odoo many2one shapes (``5``, ``[5, "Name"]``, ``False``) to an id."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (list, tuple)):
        return _as_id(value[0]) if value else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def load_erp_config() -> ErpConfig:
    """Build configuration object from global settings."""
    return ErpConfig(
        base_url=settings.odoo_base_url,
        db=settings.odoo_db,
        timeout_seconds=float(settings.erp_http_timeout_seconds),
        timezone=settings.erp_timezone,
        lang=settings.erp_lang,
    )


class ErpClient:
    """HTTP client wrapper for ERP JSON-RPC calls."""

    def __init__(
        self,
        config: ErpConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_erp_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    cookies=CookieJar(policy=_RefuseAllCookiesPolicy()),
                    transport=self._transport,
                )
        return self._client

    async def rpc(
        self,
        path: str,
        params: Mapping[str, Any],
        *,
        cookies: Mapping[str, str] | None = None,
    ) -> ErpReply:
        """POST a JSON-RPC ``call`` envelope and decode the reply.

        Raises:
            ErpConnectionError: The ERP was unreachable, answered with a
                non-2xx status, or returned something that is not a JSON-RPC
                reply.
        """
        client = await self._ensure_client()
        body = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": dict(params),
            "id": secrets.randbelow(1_000_000),
        }
        headers = {"Content-Type": "application/json"}
        if cookies:
            headers["Cookie"] = "; ".join(f"{name}={value}" for name, value in cookies.items())

        try:
            response = await client.post(path, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ErpConnectionError(
                f"Could not reach the ERP server at {self.config.base_url}: {exc}"
            ) from exc

        if response.is_error:
            raise ErpConnectionError(
                f"ERP responded with HTTP {response.status_code} {response.reason_phrase}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ErpConnectionError(
                f"Invalid response from the ERP server: {response.text[:200]}"
            ) from exc

        if not isinstance(payload, Mapping) or ("result" not in payload and "error" not in payload):
            raise ErpConnectionError("ERP response is not a JSON-RPC reply")

        error = payload.get("error")
        return ErpReply(
            result=payload.get("result"),
            error=error if isinstance(error, Mapping) else None,
            cookies={name: value for name, value in response.cookies.items()},
        )

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def classify_erp_error(error: Mapping[str, Any]) -> AuthError:
    """Map an ERP JSON-RPC error object onto the gateway's error taxonomy."""
    message = str(error.get("message") or "Unknown ERP error")
    code = error.get("code")
    data = error.get("data") if isinstance(error.get("data"), Mapping) else {}
    exception_name = str(data.get("name") or "")
    detailed = str(data.get("message") or message)

    if (
        code == ODOO_ACCESS_DENIED_CODE
        or exception_name == ACCESS_DENIED_EXCEPTION
        or any(marker in message or marker in detailed for marker in _INVALID_CREDENTIAL_MARKERS)
    ):
        return InvalidCredentials()

    arguments = data.get("arguments")
    if arguments:
        detailed = f"{detailed} - {', '.join(str(arg) for arg in arguments)}"
    return BackendError(detailed, code)


class CredentialVerifier:
    """Check login/password pairs against the ERP's authenticate procedure."""

    def __init__(self, client: ErpClient) -> None:
        self._client = client

    @property
    def client(self) -> ErpClient:
        return self._client

    async def open_session(self, login: str, password: str) -> Result[ErpSessionGrant, AuthError]:
        """Authenticate once and return the identity plus its session cookies.

        The call is never retried: failures are surfaced immediately.
        """
        params = {"db": self._client.config.db, "login": login, "password": password}
        try:
            reply = await self._client.rpc(AUTHENTICATE_PATH, params)
        except ErpConnectionError as err:
            logger.warning("ERP authentication for %s failed: %s", login, err)
            return Err(err)

        if reply.error is not None:
            error = classify_erp_error(reply.error)
            logger.info("ERP rejected authentication for %s: %s", login, error.reason)
            return Err(error)

        result = reply.result
        if not isinstance(result, Mapping) or not result.get("uid"):
            logger.info("ERP returned no uid for %s", login)
            return Err(InvalidCredentials())

        try:
            identity = ErpIdentity.from_result(result, login=login)
        except (TypeError, ValueError) as exc:
            return Err(ErpConnectionError(f"Malformed authentication result: {exc}"))

        logger.info("ERP authentication succeeded for uid=%s (%s)", identity.uid, identity.username)
        return Ok(ErpSessionGrant(identity=identity, cookies=reply.cookies))

    async def authenticate(self, login: str, password: str) -> Result[ErpIdentity, AuthError]:
        """Return the normalized identity for ``login`` or the reason it failed."""
        outcome = await self.open_session(login, password)
        if isinstance(outcome, Err):
            return outcome
        return Ok(outcome.value.identity)


class _ErpClientSingleton:
    """Singleton wrapper for ErpClient."""

    _instance: ErpClient | None = None

    @classmethod
    def get_instance(cls) -> ErpClient:
        if cls._instance is None:
            cls._instance = ErpClient()
        return cls._instance


def get_erp_client() -> ErpClient:
    """Return the process-wide ERP client."""
    return _ErpClientSingleton.get_instance()


def get_credential_verifier() -> CredentialVerifier:
    """Return a credential verifier bound to the shared ERP client."""
    return CredentialVerifier(get_erp_client())
