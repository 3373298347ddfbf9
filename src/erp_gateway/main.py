# src/erp_gateway/main.py
"""Main entry point for the ERP reporting gateway."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from erp_gateway.api.v1 import (
    auth_router,
    csrf_router,
    reports_router,
    system_router,
)
from erp_gateway.api.v1.dependencies import CSRF_HEADER
from erp_gateway.core.logging import configure_logging
from erp_gateway.core.settings import settings
from erp_gateway.services.erp import get_erp_client

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Authenticated reporting gateway in front of an Odoo ERP",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=[
        CSRF_HEADER,
        "RateLimit-Limit",
        "RateLimit-Remaining",
        "RateLimit-Reset",
        "RateLimit-Policy",
        "Retry-After",
    ],
)

# Include API routers
app.include_router(auth_router, prefix="/api")
app.include_router(csrf_router, prefix="/api")
app.include_router(reports_router, prefix="/api")
app.include_router(system_router, prefix="/api")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render every HTTP error as ``{"success": false, "message": ...}``.

    Rate limit headers recorded by the request gateway are kept on the error
    response, with the exception's own headers taking precedence.
    """
    body: dict[str, Any] = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
    else:
        body["message"] = str(exc.detail)
    headers = {**getattr(request.state, "rate_limit_headers", {}), **(exc.headers or {})}
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers or None)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body: dict[str, Any] = {"success": False, "message": "Internal server error"}
    if settings.debug:
        body["details"] = repr(exc)
    return JSONResponse(status_code=500, content=body)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_erp_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Authenticated reporting gateway in front of an Odoo ERP",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("erp_gateway.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
