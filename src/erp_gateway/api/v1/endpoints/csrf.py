"""Challenge (CSRF) token endpoint."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from erp_gateway.api.v1.gateway import GatewayContext, RequestGateway
from erp_gateway.services.rate_limit import GENERAL_POLICY

router = APIRouter(tags=["security"])

PublicGatewayDep = Annotated[
    GatewayContext[Any],
    Depends(RequestGateway(GENERAL_POLICY, authenticate=False, verify_challenge=False)),
]


@router.api_route("/csrf-token", methods=["GET", "HEAD"])
async def get_csrf_token(gateway: PublicGatewayDep) -> dict[str, Any]:
    """Return the challenge token issued for this response.

    The same token is also sent in the ``X-CSRF-Token`` response header.
    """
    return {"success": True, "csrfToken": gateway.challenge_token}
