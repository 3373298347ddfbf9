# tests/test_settings.py
"""Tests for configuration loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from erp_gateway.core.settings import Settings

REQUIRED = {
    "JWT_SECRET": "secret",
    "ODOO_URL": "https://erp.example.com/",
    "ODOO_DB": "prod",
    "ODOO_SERVICE_LOGIN": "svc",
    "ODOO_SERVICE_PASSWORD": "pw",
}


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in REQUIRED:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir("/")
    return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    for name, value in REQUIRED.items():
        clean_env.setenv(name, value)
    settings = Settings()

    assert settings.access_token_expire_seconds == 24 * 60 * 60
    assert settings.csrf_token_ttl_seconds == 3600
    assert (settings.login_rate_limit, settings.login_rate_window_seconds) == (5, 900)
    assert (settings.reports_rate_limit, settings.reports_rate_window_seconds) == (30, 60)
    assert (settings.general_rate_limit, settings.general_rate_window_seconds) == (100, 60)
    assert settings.odoo_base_url == "https://erp.example.com"


@pytest.mark.parametrize("missing", sorted(REQUIRED))
def test_missing_required_setting_refuses_to_start(
    clean_env: pytest.MonkeyPatch,
    missing: str,
) -> None:
    for name, value in REQUIRED.items():
        if name != missing:
            clean_env.setenv(name, value)
    with pytest.raises(ValidationError):
        Settings()


def test_empty_signing_secret_is_rejected(clean_env: pytest.MonkeyPatch) -> None:
    for name, value in REQUIRED.items():
        clean_env.setenv(name, value)
    clean_env.setenv("JWT_SECRET", "")
    with pytest.raises(ValidationError):
        Settings()
