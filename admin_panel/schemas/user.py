"""Pydantic schemas for users and password changes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from admin_panel.core.roles import UserRole
from admin_panel.core.security import password_policy_errors


def _check_policy(v: str) -> str:
    errors = password_policy_errors(v)
    if errors:
        raise ValueError("; ".join(errors))
    return v


class UserCreate(BaseModel):
    email: str
    password: str
    full_name: str | None = None
    role: UserRole = UserRole.STAFF

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def _password_policy(cls, v: str) -> str:
        return _check_policy(v)


class UserRead(BaseModel):
    id: int
    email: str
    full_name: str | None
    role: UserRole
    is_active: bool
    mfa_enabled: bool
    created_at: datetime | None

    model_config = {"from_attributes": True}


class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _password_policy(cls, v: str) -> str:
        return _check_policy(v)
