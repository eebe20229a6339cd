"""Pydantic schemas for the admin login, MFA and logout endpoints.

Wire names follow the admin dashboard's camelCase contract
(``mfaToken``, ``requiresMFA``, ...); Python attributes stay snake_case.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from admin_panel.schemas.token import TokenData
from admin_panel.schemas.user import UserRead

_CAMEL = {"populate_by_name": True}


def _strip_code(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if len(v) > 16:
        raise ValueError("MFA code is too long")
    return v


# ── Login ───────────────────────────────────────────────────────────
class AdminLoginRequest(BaseModel):
    """Either ``{email, password}`` or ``{mfaToken, mfaLoginToken}``."""

    email: str | None = None
    password: str | None = None
    mfa_token: str | None = Field(default=None, alias="mfaToken")
    mfa_login_token: str | None = Field(default=None, alias="mfaLoginToken")

    model_config = _CAMEL

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str | None) -> str | None:
        return v.strip().lower() if v is not None else None

    @field_validator("mfa_token")
    @classmethod
    def _code(cls, v: str | None) -> str | None:
        return _strip_code(v)

    @model_validator(mode="after")
    def _one_step(self) -> "AdminLoginRequest":
        if self.mfa_login_token:
            if not self.mfa_token:
                raise ValueError("mfaToken is required with mfaLoginToken")
        elif not self.email or not self.password:
            raise ValueError("email and password are required")
        return self

    @property
    def is_mfa_step(self) -> bool:
        return bool(self.mfa_login_token)


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Login successful"
    data: TokenData


class MFAChallengeResponse(BaseModel):
    success: bool = True
    requires_mfa: bool = Field(default=True, alias="requiresMFA")
    mfa_login_token: str = Field(alias="mfaLoginToken")
    message: str = "Please provide your MFA token"

    model_config = _CAMEL


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ProfileResponse(BaseModel):
    success: bool = True
    message: str = "Profile retrieved successfully"
    data: UserRead


# ── MFA management ──────────────────────────────────────────────────
class MFASetupData(BaseModel):
    secret: str
    otpauth_url: str = Field(alias="otpauthUrl")
    backup_codes: list[str] = Field(alias="backupCodes")

    model_config = _CAMEL


class MFASetupResponse(BaseModel):
    success: bool = True
    message: str = "MFA setup generated"
    data: MFASetupData


class MFAConfirmRequest(BaseModel):
    token: str

    @field_validator("token")
    @classmethod
    def _code(cls, v: str) -> str:
        return _strip_code(v)  # type: ignore[return-value]


class MFAReconfirmRequest(BaseModel):
    """Password plus a current MFA code, required for destructive MFA changes."""

    password: str
    mfa_token: str = Field(alias="mfaToken")

    model_config = _CAMEL

    @field_validator("mfa_token")
    @classmethod
    def _code(cls, v: str | None) -> str | None:
        return _strip_code(v)


class BackupCodesData(BaseModel):
    backup_codes: list[str] = Field(alias="backupCodes")

    model_config = _CAMEL


class BackupCodesResponse(BaseModel):
    success: bool = True
    message: str = "New backup codes generated"
    data: BackupCodesData


class MFAStatusData(BaseModel):
    mfa_enabled: bool = Field(alias="mfaEnabled")
    backup_codes_remaining: int = Field(alias="backupCodesRemaining")

    model_config = _CAMEL


class MFAStatusResponse(BaseModel):
    success: bool = True
    data: MFAStatusData
