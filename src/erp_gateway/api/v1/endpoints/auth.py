"""Authentication endpoints for the ERP gateway."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from erp_gateway.api.v1.dependencies import (
    CredentialVerifierDep,
    ErpSessionDep,
    SecurityLoggerDep,
    TokenCodecDep,
)
from erp_gateway.api.v1.gateway import GatewayContext, RequestGateway
from erp_gateway.core.errors import (
    AuthError,
    BackendError,
    ErpConnectionError,
    InvalidCredentials,
)
from erp_gateway.core.result import Err
from erp_gateway.core.settings import settings
from erp_gateway.schemas.auth import LoginRequest
from erp_gateway.services.rate_limit import GENERAL_POLICY, LOGIN_POLICY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

LoginGatewayDep = Annotated[
    GatewayContext[LoginRequest],
    Depends(
        RequestGateway(LOGIN_POLICY, body=LoginRequest, authenticate=False, verify_challenge=False)
    ),
]
AuthenticatedGatewayDep = Annotated[GatewayContext[Any], Depends(RequestGateway(GENERAL_POLICY))]


def _login_failure_detail(error: AuthError) -> dict[str, Any]:
    """Build the 401 body for a failed login, hiding internals unless debugging."""
    if isinstance(error, InvalidCredentials):
        message = "Invalid credentials. Check your username and password."
    elif isinstance(error, ErpConnectionError):
        message = (
            f"Could not connect to the ERP server at {settings.odoo_base_url}. "
            "Check the URL and network connectivity."
        )
    elif isinstance(error, BackendError):
        message = "The ERP server rejected the authentication request."
    else:
        message = "Authentication error"

    detail: dict[str, Any] = {"message": message}
    if settings.debug:
        detail["details"] = str(error)
        detail["config"] = {"odooUrl": settings.odoo_base_url, "odooDb": settings.odoo_db}
    return detail


@router.post("/login")
async def login(
    request: Request,
    gateway: LoginGatewayDep,
    verifier: CredentialVerifierDep,
    codec: TokenCodecDep,
    audit: SecurityLoggerDep,
) -> dict[str, Any]:
    """Verify ERP credentials and issue a signed session token.

    Args:
        request: Incoming request, used for audit metadata
        gateway: Rate-limited, validated login submission
        verifier: ERP credential verifier
        codec: Session token codec
        audit: Security event logger

    Returns:
        Success flag, message, the session token and the ERP identity

    Raises:
        HTTPException: 401 if the ERP rejects the credentials or is unreachable
    """
    credentials = gateway.require_body()

    outcome = await verifier.authenticate(credentials.login, credentials.password)
    if isinstance(outcome, Err):
        error = outcome.error
        logger.info("Login failed for %s: %s", credentials.login, error.reason)
        audit.login_failure(request, credentials.login, error.reason)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_login_failure_detail(error),
        )

    identity = outcome.value
    token = codec.issue(identity.uid, identity.username, identity.name)
    audit.login_success(request, identity.uid, identity.username)

    return {
        "success": True,
        "message": "Authentication successful",
        "token": token,
        "data": {**identity.as_public_dict(), "token": token},
    }


@router.post("/logout")
async def logout(gateway: AuthenticatedGatewayDep, session: ErpSessionDep) -> dict[str, Any]:
    """Drop the cached ERP session.

    The caller's session token is not revoked; it stays valid until it expires.
    """
    await session.clear()
    logger.info("User %s logged out", gateway.user.uid)
    return {
        "success": True,
        "message": "Session closed",
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/me")
async def me(gateway: AuthenticatedGatewayDep) -> dict[str, Any]:
    """Return the identity carried by the caller's session token."""
    user = gateway.user
    return {
        "success": True,
        "data": {
            "uid": user.uid,
            "username": user.username,
            "name": user.name,
            "expiresAt": user.expires_at.isoformat() if user.expires_at else None,
        },
    }
