"""System endpoints for the ERP gateway."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from erp_gateway.api.v1.dependencies import ErpSessionDep
from erp_gateway.api.v1.gateway import GatewayContext, RequestGateway
from erp_gateway.core.settings import settings
from erp_gateway.services.rate_limit import GENERAL_POLICY

router = APIRouter(prefix="/system", tags=["system"])

AuthenticatedGatewayDep = Annotated[GatewayContext[Any], Depends(RequestGateway(GENERAL_POLICY))]


@router.get("/erp-status")
async def erp_status(gateway: AuthenticatedGatewayDep, session: ErpSessionDep) -> dict[str, Any]:
    """Check that the service credential can authenticate against the ERP.

    Args:
        gateway: Authenticated request context
        session: Shared ERP session

    Returns:
        ERP location and the service identity on success

    Raises:
        HTTPException: 500 if the ERP cannot be reached or rejects the credential
    """
    report = await session.test_connection()
    if not report.success or report.identity is None:
        detail: dict[str, Any] = {"message": "Could not connect to the ERP"}
        if settings.debug:
            detail["details"] = report.message
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

    return {
        "success": True,
        "message": report.message,
        "data": {
            "odooUrl": report.odoo_url,
            "odooDb": report.odoo_db,
            "authResult": report.identity.as_public_dict(),
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }
