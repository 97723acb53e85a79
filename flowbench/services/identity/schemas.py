"""Schemas for the sign-in callback and account routes."""

from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator


class SignInEvent(BaseModel):
    """Identity the mail provider verified for a magic-link sign-in."""

    email: EmailStr
    name: str | None = Field(default=None, max_length=200)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("name")
    @classmethod
    def blank_name_is_missing(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class UserRef(BaseModel):
    """Caller identity taken from the session header for account routes."""

    userId: str = Field(min_length=1)
