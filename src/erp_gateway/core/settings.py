"""Application settings and configuration.

This module defines all configuration options for the ERP gateway. Settings
are loaded from environment variables (or a ``.env`` file). The signing secret,
the ERP location and the service-account credential have no defaults: if any
of them is missing, instantiating :class:`Settings` raises and the process
refuses to start.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="ERP Reporting Gateway", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Session token signing
    jwt_secret: str = Field(alias="JWT_SECRET", min_length=1)
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_hours: int = Field(
        default=24,
        alias="ACCESS_TOKEN_EXPIRE_HOURS",
        ge=1,
    )

    # ERP (Odoo) connection
    odoo_url: str = Field(alias="ODOO_URL", min_length=1)
    odoo_db: str = Field(alias="ODOO_DB", min_length=1)
    odoo_service_login: str = Field(alias="ODOO_SERVICE_LOGIN", min_length=1)
    odoo_service_password: str = Field(alias="ODOO_SERVICE_PASSWORD", min_length=1)
    erp_http_timeout_seconds: float = Field(default=15.0, alias="ERP_HTTP_TIMEOUT_SECONDS")
    erp_timezone: str = Field(default="America/Mexico_City", alias="ERP_TIMEZONE")
    erp_lang: str = Field(default="es_MX", alias="ERP_LANG")

    # One-time challenge (CSRF) tokens
    csrf_token_ttl_seconds: int = Field(default=60 * 60, alias="CSRF_TOKEN_TTL_SECONDS", ge=1)

    # Rate limiting policies
    login_rate_limit: int = Field(default=5, alias="LOGIN_RATE_LIMIT", ge=1)
    login_rate_window_seconds: int = Field(
        default=15 * 60,
        alias="LOGIN_RATE_WINDOW_SECONDS",
        ge=1,
    )
    reports_rate_limit: int = Field(default=30, alias="REPORTS_RATE_LIMIT", ge=1)
    reports_rate_window_seconds: int = Field(
        default=60,
        alias="REPORTS_RATE_WINDOW_SECONDS",
        ge=1,
    )
    general_rate_limit: int = Field(default=100, alias="GENERAL_RATE_LIMIT", ge=1)
    general_rate_window_seconds: int = Field(
        default=60,
        alias="GENERAL_RATE_WINDOW_SECONDS",
        ge=1,
    )
    trust_proxy_headers: bool = Field(default=False, alias="TRUST_PROXY_HEADERS")

    # CORS configuration for the dashboard frontend
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def access_token_expire_seconds(self) -> int:
        """Return the session token lifetime in seconds."""
        return self.access_token_expire_hours * 60 * 60

    @property
    def odoo_base_url(self) -> str:
        """Return the ERP base URL without a trailing slash."""
        return self.odoo_url.rstrip("/")


settings = Settings()  # type: ignore[call-arg]
