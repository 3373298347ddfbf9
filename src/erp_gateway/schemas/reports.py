"""Report query schemas."""

from __future__ import annotations

import re
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(\.\d{3})?Z?)?$")


def _parse_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


class ReportQuery(BaseModel):
    """Date range plus pagination accepted by every report endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    date_from: str = Field(..., alias="dateFrom", description="YYYY-MM-DD or ISO-8601")
    date_to: str = Field(..., alias="dateTo", description="YYYY-MM-DD or ISO-8601")
    state: str | None = Field(None, max_length=64, description="Optional ERP state filter")
    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=100, alias="pageSize")

    @field_validator("date_from", "date_to")
    @classmethod
    def validate_date(cls, value: str) -> str:
        if not DATE_PATTERN.match(value):
            raise ValueError("must be a valid date in YYYY-MM-DD or ISO-8601 format")
        try:
            _parse_date(value)
        except ValueError as err:
            raise ValueError("must be a valid date") from err
        return value

    @model_validator(mode="after")
    def validate_range(self) -> ReportQuery:
        if _parse_date(self.date_to) < _parse_date(self.date_from):
            raise ValueError("dateTo must not be earlier than dateFrom")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def start_date(self) -> str:
        return _parse_date(self.date_from).date().isoformat()

    @property
    def end_date(self) -> str:
        return _parse_date(self.date_to).date().isoformat()
