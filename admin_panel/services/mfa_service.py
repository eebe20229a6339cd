"""
TOTP / backup-code verification and MFA lifecycle (setup, confirm,
disable, backup-code regeneration).

Functions here stage their writes on the given session; the public
lifecycle operations commit, ``verify_code`` leaves committing to the caller
so a consumed backup code shares the caller's transaction.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pyotp
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from admin_panel.core.config import settings
from admin_panel.core.exceptions import InvalidCredentials, InvalidMFACode, MFAStateError
from admin_panel.core.security import (
    digest,
    generate_backup_codes,
    generate_opaque_token,
    normalize_backup_code,
    verify_password,
)
from admin_panel.models.mfa import MFABackupCode, MFALoginToken
from admin_panel.models.user import User

logger = logging.getLogger(__name__)

_TOTP_RE = re.compile(r"^\d{6}$")
_BACKUP_RE = re.compile(r"^[0-9A-F]{8}$")


@dataclass(frozen=True)
class MFASetup:
    secret: str
    otpauth_url: str
    backup_codes: list[str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


# ── Verification ────────────────────────────────────────────────────
def verify_totp(secret: str, code: str) -> bool:
    if not _TOTP_RE.match(code):
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=settings.MFA_VALID_WINDOW)


async def consume_backup_code(db: AsyncSession, user_id: int, code: str) -> bool:
    """Atomically mark an unused backup code as spent. True if this call won."""
    normalized = normalize_backup_code(code)
    if not _BACKUP_RE.match(normalized):
        return False
    result = await db.execute(
        update(MFABackupCode)
        .where(
            MFABackupCode.user_id == user_id,
            MFABackupCode.code_hash == digest(normalized),
            MFABackupCode.used_at.is_(None),
        )
        .values(used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def verify_code(db: AsyncSession, user: User, code: str) -> bool:
    """Accept a live TOTP code, or spend one backup code (uncommitted)."""
    if not user.mfa_enabled or not user.mfa_secret:
        return False
    if verify_totp(user.mfa_secret, code):
        return True
    if await consume_backup_code(db, user.id, code):
        logger.info("Backup code used by user %s", user.id)
        return True
    return False


# ── Pending login tokens ────────────────────────────────────────────
async def create_login_token(db: AsyncSession, user: User) -> str:
    raw = generate_opaque_token()
    db.add(
        MFALoginToken(
            token_hash=digest(raw),
            user_id=user.id,
            expires_at=utcnow() + timedelta(minutes=settings.MFA_LOGIN_TOKEN_EXPIRE_MINUTES),
        )
    )
    await db.commit()
    return raw


async def purge_expired_login_tokens(db: AsyncSession) -> int:
    """Drop pending tokens that can no longer be redeemed."""
    result = await db.execute(
        delete(MFALoginToken).where(
            (MFALoginToken.expires_at <= utcnow()) | MFALoginToken.redeemed_at.is_not(None)
        )
    )
    await db.commit()
    return result.rowcount or 0


# ── Backup codes ────────────────────────────────────────────────────
async def _replace_backup_codes(db: AsyncSession, user_id: int) -> list[str]:
    await db.execute(delete(MFABackupCode).where(MFABackupCode.user_id == user_id))
    codes = generate_backup_codes()
    db.add_all(MFABackupCode(user_id=user_id, code_hash=digest(c)) for c in codes)
    return codes


async def remaining_backup_codes(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count(MFABackupCode.id)).where(
            MFABackupCode.user_id == user_id,
            MFABackupCode.used_at.is_(None),
        )
    )
    return int(result.scalar_one())


# ── Lifecycle ───────────────────────────────────────────────────────
async def setup(db: AsyncSession, user: User) -> MFASetup:
    """Start enrolment: a pending secret that only ``confirm`` activates."""
    if user.mfa_enabled:
        raise MFAStateError("MFA is already enabled")

    secret = pyotp.random_base32()
    user.mfa_pending_secret = secret
    user.mfa_pending_expires_at = utcnow() + timedelta(minutes=settings.MFA_SETUP_EXPIRE_MINUTES)
    codes = await _replace_backup_codes(db, user.id)
    await db.commit()

    uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=settings.MFA_ISSUER)
    logger.info("MFA setup started for user %s", user.id)
    return MFASetup(secret=secret, otpauth_url=uri, backup_codes=codes)


async def confirm(db: AsyncSession, user: User, code: str) -> None:
    if user.mfa_enabled:
        raise MFAStateError("MFA is already enabled")
    pending = user.mfa_pending_secret
    expires = user.mfa_pending_expires_at
    if not pending or expires is None or as_aware(expires) <= utcnow():
        raise MFAStateError("No MFA setup in progress")
    if not verify_totp(pending, code):
        raise InvalidMFACode()

    user.mfa_secret = pending
    user.mfa_enabled = True
    user.mfa_pending_secret = None
    user.mfa_pending_expires_at = None
    await db.commit()
    logger.info("MFA enabled for user %s", user.id)


async def _reconfirm(db: AsyncSession, user: User, password: str, code: str) -> None:
    if not verify_password(password, user.hashed_password):
        raise InvalidCredentials("Invalid password")
    if not user.mfa_enabled:
        raise MFAStateError()
    if not await verify_code(db, user, code):
        raise InvalidMFACode()


async def disable(db: AsyncSession, user: User, password: str, code: str) -> None:
    await _reconfirm(db, user, password, code)
    user.mfa_enabled = False
    user.mfa_secret = None
    user.mfa_pending_secret = None
    user.mfa_pending_expires_at = None
    await db.execute(delete(MFABackupCode).where(MFABackupCode.user_id == user.id))
    await db.execute(delete(MFALoginToken).where(MFALoginToken.user_id == user.id))
    await db.commit()
    logger.info("MFA disabled for user %s", user.id)


async def regenerate_backup_codes(db: AsyncSession, user: User, password: str, code: str) -> list[str]:
    await _reconfirm(db, user, password, code)
    codes = await _replace_backup_codes(db, user.id)
    await db.commit()
    logger.info("Backup codes regenerated for user %s", user.id)
    return codes
