# src/erp_gateway/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    auth_router,
    csrf_router,
    reports_router,
    system_router,
)

__all__ = [
    "auth_router",
    "csrf_router",
    "reports_router",
    "system_router",
]
