# tests/v1/test_integration.py
"""End-to-end flow across login, challenge tokens, reports and expiry."""

from __future__ import annotations

import json
import logging

import pytest
from fastapi import status

from tests.conftest import DAY, USER_LOGIN, USER_PASSWORD, GatewayServices

REPORT_QUERY = {"dateFrom": "2024-01-01", "dateTo": "2024-01-31", "pageSize": 5}


def test_full_session_lifecycle(client, services: GatewayServices, caplog: pytest.LogCaptureFixture) -> None:
    """Login, spend a challenge once, then watch the session token expire."""
    caplog.set_level(logging.INFO, logger="erp_gateway.security")
    services.odoo.records["sale.order"] = [{"id": n} for n in range(7)]

    login = client.post("/api/auth/login", json={"login": USER_LOGIN, "password": USER_PASSWORD})
    assert login.status_code == status.HTTP_200_OK
    auth = {"Authorization": f"Bearer {login.json()['token']}"}

    challenge = client.get("/api/csrf-token", headers=auth).json()["csrfToken"]
    first = client.post(
        "/api/reports/quotations",
        headers={**auth, "X-CSRF-Token": challenge},
        json=REPORT_QUERY,
    )
    assert first.status_code == status.HTTP_200_OK
    assert first.json()["pagination"]["total"] == 7
    assert len(first.json()["data"]) == 5

    replay = client.post(
        "/api/reports/quotations",
        headers={**auth, "X-CSRF-Token": challenge},
        json=REPORT_QUERY,
    )
    assert replay.status_code == status.HTTP_403_FORBIDDEN

    services.clock.advance(DAY - 1)
    assert client.get("/api/auth/me", headers=auth).status_code == status.HTTP_200_OK

    services.clock.advance(1)
    fresh_challenge = client.get("/api/csrf-token").json()["csrfToken"]
    expired = client.post(
        "/api/reports/quotations",
        headers={**auth, "X-CSRF-Token": fresh_challenge},
        json=REPORT_QUERY,
    )
    assert expired.status_code == status.HTTP_401_UNAUTHORIZED
    assert expired.json()["code"] == "token_expired"

    events = [
        json.loads(record.getMessage().removeprefix("[SECURITY] "))["type"]
        for record in caplog.records
        if record.name == "erp_gateway.security"
    ]
    assert events == ["login_success", "csrf_failure", "token_expired"]


def test_erp_session_renewed_after_expiry(client, services: GatewayServices, auth_headers) -> None:
    """A stale shared ERP session is re-established transparently."""
    services.odoo.records["account.payment"] = [{"id": 1}]

    def fetch() -> int:
        challenge = client.get("/api/csrf-token").json()["csrfToken"]
        response = client.post(
            "/api/reports/payments",
            headers={**auth_headers, "X-CSRF-Token": challenge},
            json=REPORT_QUERY,
        )
        return response.status_code

    assert fetch() == status.HTTP_200_OK
    services.odoo.expire_sessions()
    assert fetch() == status.HTTP_200_OK

    service_logins = [
        call for call in services.odoo.calls_to("/web/session/authenticate")
        if call["login"] == "service@example.com"
    ]
    assert len(service_logins) == 2


def test_erp_outage_is_reported_not_retried(client, services: GatewayServices, auth_headers) -> None:
    challenge = client.get("/api/csrf-token").json()["csrfToken"]
    services.odoo.offline = True

    response = client.post(
        "/api/reports/invoices",
        headers={**auth_headers, "X-CSRF-Token": challenge},
        json=REPORT_QUERY,
    )

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["success"] is False
