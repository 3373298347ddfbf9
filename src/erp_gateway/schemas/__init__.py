"""Pydantic schemas for request validation and responses."""

from .auth import LoginRequest
from .common import Pagination
from .reports import ReportQuery

__all__ = ["LoginRequest", "Pagination", "ReportQuery"]
