# tests/v1/test_csrf.py
"""Tests for challenge token issuance."""

from __future__ import annotations

from fastapi import status

from tests.conftest import GatewayServices


def test_csrf_endpoint_returns_token_in_body_and_header(client, services: GatewayServices) -> None:
    response = client.get("/api/csrf-token")

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["success"] is True
    assert body["csrfToken"] == response.headers["X-CSRF-Token"]
    assert services.challenges.validate(body["csrfToken"]) is True


def test_csrf_endpoint_answers_head(client, services: GatewayServices) -> None:
    response = client.head("/api/csrf-token")

    assert response.status_code == status.HTTP_200_OK
    assert services.challenges.validate(response.headers["X-CSRF-Token"]) is True


def test_every_admitted_safe_request_gets_a_fresh_token(client, auth_headers) -> None:
    first = client.get("/api/auth/me", headers=auth_headers).headers["X-CSRF-Token"]
    second = client.get("/api/auth/me", headers=auth_headers).headers["X-CSRF-Token"]

    assert first != second
    key, secret = first.split(":")
    assert len(key) == 32 and len(secret) == 64


def test_mutating_requests_do_not_get_a_token(client) -> None:
    response = client.post("/api/auth/login", json={})
    assert "X-CSRF-Token" not in response.headers


def test_header_token_from_any_safe_response_is_accepted(client, auth_headers) -> None:
    token = client.get("/api/auth/me", headers=auth_headers).headers["X-CSRF-Token"]
    response = client.post("/api/auth/logout", headers={**auth_headers, "X-CSRF-Token": token})
    assert response.status_code == status.HTTP_200_OK


def test_csrf_endpoint_does_not_require_authentication(client) -> None:
    response = client.get("/api/csrf-token")
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["RateLimit-Limit"] == "100"


def test_unprotected_routes_do_not_issue_tokens(client, services: GatewayServices) -> None:
    for _ in range(20):
        response = client.get("/health")
        assert "X-CSRF-Token" not in response.headers
    client.get("/")

    assert len(services.challenges) == 0


def test_rejected_safe_requests_do_not_issue_tokens(client, services: GatewayServices) -> None:
    unauthorized = client.get("/api/auth/me")
    assert unauthorized.status_code == status.HTTP_401_UNAUTHORIZED
    assert "X-CSRF-Token" not in unauthorized.headers
    assert len(services.challenges) == 0

    for _ in range(99):
        assert client.get("/api/csrf-token").status_code == status.HTTP_200_OK
    assert len(services.challenges) == 99

    for _ in range(50):
        blocked = client.get("/api/csrf-token")
        assert blocked.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert "X-CSRF-Token" not in blocked.headers

    assert len(services.challenges) == 99
