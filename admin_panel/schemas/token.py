"""Pydantic schemas for JWT tokens."""

from __future__ import annotations

from pydantic import BaseModel

from admin_panel.schemas.user import UserRead


class TokenData(BaseModel):
    token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserRead


class RefreshRequest(BaseModel):
    refresh_token: str
