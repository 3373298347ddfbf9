"""Shared, lazily revalidated ERP session.

All report queries run as one service account. The session is cached in a
single ``ErpSession`` object whose state is one of::

    SessionEmpty -> SessionAuthenticating -> SessionAuthenticated
                                  ^                  |
                                  +-- probe failed --+      clear() -> SessionEmpty

Before an authenticated session is reused it is probed with a cheap read of
the service user. A failed probe triggers exactly one re-authentication; if
that fails too the caller gets an ``Err`` and the session drops back to empty.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from erp_gateway.core.errors import AuthError, ErpConnectionError
from erp_gateway.core.result import Err, Ok, Result
from erp_gateway.core.settings import settings
from erp_gateway.services.erp import (
    CALL_KW_PATH,
    CredentialVerifier,
    ErpClient,
    ErpIdentity,
    classify_erp_error,
    get_credential_verifier,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEmpty:
    """No ERP session is cached."""


@dataclass(frozen=True)
class SessionAuthenticating:
    """An authentication round-trip is in flight."""


@dataclass(frozen=True)
class SessionAuthenticated:
    """A live ERP session and the cookies that carry it."""

    identity: ErpIdentity
    cookies: dict[str, str] = field(default_factory=dict)


ErpSessionState = Union[SessionEmpty, SessionAuthenticating, SessionAuthenticated]


@dataclass(frozen=True)
class ConnectionReport:
    """Outcome of an end-to-end ERP connectivity check."""

    success: bool
    message: str
    odoo_url: str
    odoo_db: str
    identity: ErpIdentity | None = None


class ErpSession:
    """Process-wide ERP session bound to the service credential."""

    def __init__(
        self,
        verifier: CredentialVerifier,
        *,
        service_login: str,
        service_password: str,
    ) -> None:
        self._verifier = verifier
        self._service_login = service_login
        self._service_password = service_password
        self._state: ErpSessionState = SessionEmpty()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ErpSessionState:
        return self._state

    @property
    def client(self) -> ErpClient:
        return self._verifier.client

    def _context(self, identity: ErpIdentity) -> dict[str, Any]:
        context: dict[str, Any] = {
            "tz": self.client.config.timezone,
            "lang": self.client.config.lang,
        }
        context.update(identity.user_context)
        context["uid"] = identity.uid
        return context

    async def _probe(self, state: SessionAuthenticated) -> bool:
        params = {
            "model": "res.users",
            "method": "read",
            "args": [[state.identity.uid], ["id", "name"]],
            "kwargs": {"context": self._context(state.identity)},
        }
        try:
            reply = await self.client.rpc(CALL_KW_PATH, params, cookies=state.cookies)
        except ErpConnectionError as err:
            logger.info("ERP session probe failed: %s", err)
            return False
        if reply.error is not None:
            logger.info("ERP session expired, renewing")
            return False
        return True

    async def ensure_authenticated(self) -> Result[SessionAuthenticated, AuthError]:
        """Return a live session, re-authenticating once if the cached one is stale."""
        async with self._lock:
            current = self._state
            if isinstance(current, SessionAuthenticated) and await self._probe(current):
                return Ok(current)

            self._state = SessionAuthenticating()
            logger.info("Authenticating ERP service session as %s", self._service_login)
            outcome = await self._verifier.open_session(
                self._service_login,
                self._service_password,
            )
            if isinstance(outcome, Err):
                self._state = SessionEmpty()
                logger.warning("ERP service authentication failed: %s", outcome.error)
                return outcome

            grant = outcome.value
            authenticated = SessionAuthenticated(identity=grant.identity, cookies=grant.cookies)
            self._state = authenticated
            return Ok(authenticated)

    async def clear(self) -> None:
        """Forget the cached session (explicit logout)."""
        async with self._lock:
            self._state = SessionEmpty()
        logger.info("ERP session cleared")

    async def call_kw(
        self,
        model: str,
        method: str,
        args: Sequence[Any] = (),
        kwargs: Mapping[str, Any] | None = None,
    ) -> Result[Any, AuthError]:
        """Execute ``model.method(*args, **kwargs)`` on the ERP as the service user."""
        session = await self.ensure_authenticated()
        if isinstance(session, Err):
            return session
        state = session.value

        call_kwargs = dict(kwargs or {})
        call_kwargs.setdefault("context", self._context(state.identity))
        params = {"model": model, "method": method, "args": list(args), "kwargs": call_kwargs}
        try:
            reply = await self.client.rpc(CALL_KW_PATH, params, cookies=state.cookies)
        except ErpConnectionError as err:
            return Err(err)
        if reply.error is not None:
            return Err(classify_erp_error(reply.error))
        return Ok(reply.result)

    async def search_read(
        self,
        model: str,
        domain: Sequence[Any],
        fields: Sequence[str],
        *,
        offset: int = 0,
        limit: int | None = None,
        order: str | None = None,
    ) -> Result[list[dict[str, Any]], AuthError]:
        kwargs: dict[str, Any] = {"fields": list(fields), "offset": offset}
        if limit is not None:
            kwargs["limit"] = limit
        if order:
            kwargs["order"] = order
        outcome = await self.call_kw(model, "search_read", [list(domain)], kwargs)
        if isinstance(outcome, Err):
            return outcome
        return Ok(list(outcome.value or []))

    async def search_count(self, model: str, domain: Sequence[Any]) -> Result[int, AuthError]:
        outcome = await self.call_kw(model, "search_count", [list(domain)])
        if isinstance(outcome, Err):
            return outcome
        return Ok(int(outcome.value or 0))

    async def verify_user(self, uid: int) -> bool:
        """Return True if ``uid`` is an active ERP user; False on any failure."""
        outcome = await self.search_read(
            "res.users",
            [["id", "=", uid], ["active", "=", True]],
            ["id", "name", "login", "email", "active"],
            limit=1,
        )
        if isinstance(outcome, Err):
            logger.warning("ERP user verification for uid=%s failed: %s", uid, outcome.error)
            return False
        return bool(outcome.value)

    async def get_user_info(self, uid: int) -> dict[str, Any] | None:
        """Return the full ERP user record for ``uid`` or None."""
        fields = [
            "id", "name", "login", "email", "groups_id",
            "partner_id", "company_id", "lang", "tz", "active",
        ]
        outcome = await self.call_kw("res.users", "read", [[uid]], {"fields": fields})
        if isinstance(outcome, Err):
            logger.warning("ERP user lookup for uid=%s failed: %s", uid, outcome.error)
            return None
        records = outcome.value or []
        return dict(records[0]) if records else None

    async def test_connection(self) -> ConnectionReport:
        """Authenticate with the service credential and summarise the outcome."""
        config = self.client.config
        outcome = await self._verifier.authenticate(self._service_login, self._service_password)
        if isinstance(outcome, Err):
            return ConnectionReport(
                success=False,
                message=f"Connection error: {outcome.error}",
                odoo_url=config.base_url,
                odoo_db=config.db,
            )
        return ConnectionReport(
            success=True,
            message="Connected to the ERP",
            odoo_url=config.base_url,
            odoo_db=config.db,
            identity=outcome.value,
        )


class _ErpSessionSingleton:
    """Singleton wrapper for ErpSession."""

    _instance: ErpSession | None = None

    @classmethod
    def get_instance(cls) -> ErpSession:
        if cls._instance is None:
            cls._instance = ErpSession(
                get_credential_verifier(),
                service_login=settings.odoo_service_login,
                service_password=settings.odoo_service_password,
            )
        return cls._instance


def get_erp_session() -> ErpSession:
    """Return the process-wide ERP session handle."""
    return _ErpSessionSingleton.get_instance()
