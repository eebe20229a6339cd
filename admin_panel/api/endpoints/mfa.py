"""
MFA management endpoints. Every route needs a valid panel bearer token;
disabling MFA and regenerating backup codes additionally need the
account password and a current MFA code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from admin_panel.api.deps import get_current_user, get_db
from admin_panel.core.audit import audit
from admin_panel.models.user import User
from admin_panel.schemas.auth import (
    BackupCodesData,
    BackupCodesResponse,
    MessageResponse,
    MFAConfirmRequest,
    MFAReconfirmRequest,
    MFASetupData,
    MFASetupResponse,
    MFAStatusData,
    MFAStatusResponse,
)
from admin_panel.services import mfa_service

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


@router.post("/setup", response_model=MFASetupResponse)
async def setup_mfa(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MFASetupResponse:
    """Generate a pending TOTP secret and a fresh set of backup codes."""
    setup = await mfa_service.setup(db, current_user)
    audit("mfa_setup", request, current_user.id)
    return MFASetupResponse(
        data=MFASetupData(
            secret=setup.secret,
            otpauth_url=setup.otpauth_url,
            backup_codes=setup.backup_codes,
        )
    )


@router.post("/confirm", response_model=MessageResponse)
async def confirm_mfa(
    request: Request,
    body: MFAConfirmRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    await mfa_service.confirm(db, current_user, body.token)
    audit("mfa_enabled", request, current_user.id)
    return MessageResponse(message="MFA enabled successfully")


@router.post("/disable", response_model=MessageResponse)
async def disable_mfa(
    request: Request,
    body: MFAReconfirmRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    await mfa_service.disable(db, current_user, body.password, body.mfa_token)
    audit("mfa_disabled", request, current_user.id)
    return MessageResponse(message="MFA disabled successfully")


@router.post("/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    request: Request,
    body: MFAReconfirmRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BackupCodesResponse:
    codes = await mfa_service.regenerate_backup_codes(
        db, current_user, body.password, body.mfa_token
    )
    audit("mfa_backup_codes_regenerated", request, current_user.id)
    return BackupCodesResponse(data=BackupCodesData(backup_codes=codes))


@router.api_route("/status", methods=["GET", "POST"], response_model=MFAStatusResponse)
async def mfa_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MFAStatusResponse:
    remaining = (
        await mfa_service.remaining_backup_codes(db, current_user.id)
        if current_user.mfa_enabled
        else 0
    )
    return MFAStatusResponse(
        data=MFAStatusData(mfa_enabled=current_user.mfa_enabled, backup_codes_remaining=remaining)
    )
