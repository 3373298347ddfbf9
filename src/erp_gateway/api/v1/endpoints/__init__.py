# src/erp_gateway/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .csrf import router as csrf_router
from .reports import router as reports_router
from .system import router as system_router

__all__ = [
    "auth_router",
    "csrf_router",
    "reports_router",
    "system_router",
]
