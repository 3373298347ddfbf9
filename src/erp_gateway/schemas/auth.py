"""Authentication-related Pydantic schemas."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class LoginRequest(BaseModel):
    """Schema for login submissions."""

    login: str = Field(..., min_length=3, max_length=255, description="ERP login (trimmed)")
    password: str = Field(..., min_length=1, description="ERP password")

    @field_validator("login", mode="before")
    @classmethod
    def strip_login(cls, value: Any) -> Any:
        """Trim surrounding whitespace before length checks."""
        if isinstance(value, str):
            return value.strip()
        return value
