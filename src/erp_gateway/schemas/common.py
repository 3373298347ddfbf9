"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    """Page metadata returned by list endpoints."""

    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1, serialization_alias="pageSize")
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0, serialization_alias="totalPages")

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> Pagination:
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=(total + page_size - 1) // page_size,
        )
