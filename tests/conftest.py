# tests/conftest.py
from __future__ import annotations

import json
import os
from collections.abc import Iterator
from dataclasses import dataclass
from itertools import count
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("JWT_SECRET", "test-signing-secret")
os.environ.setdefault("ODOO_URL", "http://erp.test/")
os.environ.setdefault("ODOO_DB", "testdb")
os.environ.setdefault("ODOO_SERVICE_LOGIN", "service@example.com")
os.environ.setdefault("ODOO_SERVICE_PASSWORD", "service-password")

from erp_gateway.core.security import SessionTokenCodec, get_token_codec  # noqa: E402
from erp_gateway.main import app as fastapi_app  # noqa: E402
from erp_gateway.services.challenge import ChallengeTokenStore, get_challenge_store  # noqa: E402
from erp_gateway.services.erp import (  # noqa: E402
    AUTHENTICATE_PATH,
    CALL_KW_PATH,
    CredentialVerifier,
    ErpClient,
    ErpConfig,
    get_credential_verifier,
)
from erp_gateway.services.erp_session import ErpSession, get_erp_session  # noqa: E402
from erp_gateway.services.rate_limit import (  # noqa: E402
    RateLimiter,
    default_policies,
    get_rate_limiter,
)
from erp_gateway.services.security_log import (  # noqa: E402
    SecurityEventLogger,
    get_security_logger,
)

TEST_SECRET = "test-signing-secret"
SERVICE_LOGIN = "service@example.com"
SERVICE_PASSWORD = "service-password"
USER_LOGIN = "alice@example.com"
USER_PASSWORD = "correct horse"
DAY = 24 * 60 * 60


class FakeClock:
    """Manually advanced clock for expiry and window tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOdoo:
    """In-memory stand-in for the Odoo JSON-RPC endpoints."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {
            USER_LOGIN: {
                "password": USER_PASSWORD,
                "result": {
                    "uid": 7,
                    "username": USER_LOGIN,
                    "name": "Alice Admin",
                    "partner_display_name": "Acme, Alice Admin",
                    "company_id": 1,
                    "partner_id": [3, "Alice Admin"],
                    "is_admin": True,
                    "is_system": False,
                    "server_version": "17.0",
                    "db": "testdb",
                    "user_context": {"lang": "en_US", "tz": "UTC"},
                },
            },
            SERVICE_LOGIN: {
                "password": SERVICE_PASSWORD,
                "result": {
                    "uid": 2,
                    "username": SERVICE_LOGIN,
                    "name": "Reporting Service",
                    "company_id": [1, "Acme"],
                    "partner_id": 4,
                    "server_version": "17.0",
                    "db": "testdb",
                    "user_context": {"lang": "es_MX", "tz": "America/Mexico_City"},
                },
            },
        }
        self.records: dict[str, list[dict[str, Any]]] = {}
        self.sessions: set[str] = set()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failing_models: set[str] = set()
        self.offline = False
        self._session_ids = count(1)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, path: str) -> list[dict[str, Any]]:
        return [params for called, params in self.calls if called == path]

    def expire_sessions(self) -> None:
        self.sessions.clear()

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("Connection refused", request=request)
        payload = json.loads(request.content)
        params = payload["params"]
        self.calls.append((request.url.path, params))

        if request.url.path == AUTHENTICATE_PATH:
            return self._authenticate(payload["id"], params)
        if request.url.path == CALL_KW_PATH:
            session_id = _cookie(request, "session_id")
            if session_id not in self.sessions:
                return _error(payload["id"], 100, "Odoo Session Expired", "odoo.http.SessionExpiredException")
            return self._call_kw(payload["id"], params)
        return httpx.Response(404, text="Not Found")

    def _authenticate(self, rpc_id: int, params: dict[str, Any]) -> httpx.Response:
        user = self.users.get(params["login"])
        if params.get("db") != "testdb":
            return _error(rpc_id, 1, "Database not found", "odoo.exceptions.UserError")
        if user is None or user["password"] != params["password"]:
            return _error(rpc_id, 200, "Odoo Server Error", "odoo.exceptions.AccessDenied")
        session_id = f"sid-{next(self._session_ids)}"
        self.sessions.add(session_id)
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": rpc_id, "result": user["result"]},
            headers={"Set-Cookie": f"session_id={session_id}; Path=/; HttpOnly"},
        )

    def _call_kw(self, rpc_id: int, params: dict[str, Any]) -> httpx.Response:
        model, method = params["model"], params["method"]
        if model in self.failing_models:
            return _error(rpc_id, 1, "Odoo Server Error", "odoo.exceptions.ValidationError")
        rows = self.records.get(model, [])
        kwargs = params.get("kwargs", {})
        if method == "read" and model == "res.users":
            ids = params["args"][0]
            result: Any = [{"id": uid, "name": f"User {uid}"} for uid in ids]
        elif method == "search_count":
            result = len(rows)
        elif method == "search_read":
            offset = kwargs.get("offset", 0)
            limit = kwargs.get("limit")
            result = rows[offset:] if limit is None else rows[offset:offset + limit]
        else:
            result = True
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": rpc_id, "result": result})


def _cookie(request: httpx.Request, name: str) -> str | None:
    for part in request.headers.get("cookie", "").split(";"):
        key, _, value = part.strip().partition("=")
        if key == name:
            return value
    return None


def _error(rpc_id: int, code: int, message: str, name: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "jsonrpc": "2.0",
            "id": rpc_id,
            "error": {
                "code": code,
                "message": message,
                "data": {"name": name, "message": message, "arguments": [message]},
            },
        },
    )


@dataclass
class GatewayServices:
    """Service instances wired into the app for one test."""

    clock: FakeClock
    odoo: FakeOdoo
    client: ErpClient
    codec: SessionTokenCodec
    challenges: ChallengeTokenStore
    limiter: RateLimiter
    audit: SecurityEventLogger
    verifier: CredentialVerifier
    session: ErpSession


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_odoo() -> FakeOdoo:
    return FakeOdoo()


@pytest.fixture()
def erp_config() -> ErpConfig:
    return ErpConfig(
        base_url="http://erp.test",
        db="testdb",
        timeout_seconds=5.0,
        timezone="America/Mexico_City",
        lang="es_MX",
    )


@pytest.fixture()
def erp_client(erp_config: ErpConfig, fake_odoo: FakeOdoo) -> ErpClient:
    return ErpClient(erp_config, transport=fake_odoo.transport)


@pytest.fixture()
def services(clock: FakeClock, fake_odoo: FakeOdoo, erp_client: ErpClient) -> GatewayServices:
    verifier = CredentialVerifier(erp_client)
    return GatewayServices(
        clock=clock,
        odoo=fake_odoo,
        client=erp_client,
        codec=SessionTokenCodec(TEST_SECRET, ttl_seconds=DAY, clock=clock),
        challenges=ChallengeTokenStore(ttl_seconds=3600, clock=clock),
        limiter=RateLimiter(default_policies(), clock=clock),
        audit=SecurityEventLogger(),
        verifier=verifier,
        session=ErpSession(
            verifier,
            service_login=SERVICE_LOGIN,
            service_password=SERVICE_PASSWORD,
        ),
    )


def override_services(app: FastAPI, services: GatewayServices) -> None:
    app.dependency_overrides.update(
        {
            get_token_codec: lambda: services.codec,
            get_challenge_store: lambda: services.challenges,
            get_rate_limiter: lambda: services.limiter,
            get_security_logger: lambda: services.audit,
            get_credential_verifier: lambda: services.verifier,
            get_erp_session: lambda: services.session,
        }
    )


@pytest.fixture()
def app(services: GatewayServices) -> Iterator[FastAPI]:
    override_services(fastapi_app, services)
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def fetch_csrf_token(client: TestClient) -> str:
    """Return a fresh challenge token from the API."""
    response = client.get("/api/csrf-token")
    assert response.status_code == 200
    return response.json()["csrfToken"]


def login(client: TestClient, username: str = USER_LOGIN, password: str = USER_PASSWORD) -> str:
    """Log in and return the session token."""
    response = client.post("/api/auth/login", json={"login": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["token"]


@pytest.fixture()
def auth_token(client: TestClient) -> str:
    return login(client)


@pytest.fixture()
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}
