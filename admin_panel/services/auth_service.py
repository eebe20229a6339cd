"""
Token issuance for the admin panel: password step, MFA step and refresh.

``authenticate`` and ``verify_mfa`` are the two halves of the login
protocol. Neither touches the HTTP layer; they raise ``AuthError``
subclasses that the exception handlers turn into generic responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from admin_panel.core.config import settings
from admin_panel.core.exceptions import (
    MFA_FAILED,
    AccessDenied,
    InvalidCredentials,
    InvalidMFACode,
    MalformedToken,
    TokenAlreadyUsed,
    TokenExpired,
)
from admin_panel.core.roles import UserRole, can_access_panel
from admin_panel.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    digest,
    dummy_verify,
    verify_password,
)
from admin_panel.models.mfa import MFALoginToken
from admin_panel.models.user import User
from admin_panel.services import mfa_service
from admin_panel.services.mfa_service import as_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginOutcome:
    """Either a final token pair or a pending MFA challenge."""

    user: User
    token: str | None = None
    refresh_token: str | None = None
    mfa_login_token: str | None = None

    @property
    def requires_mfa(self) -> bool:
        return self.mfa_login_token is not None


def panel_role(user: User) -> UserRole:
    """Return the user's role if it may hold a panel session, else raise."""
    role = user.user_role
    if role is None or not can_access_panel(role):
        raise AccessDenied()
    return role


def issue_tokens(user: User, role: UserRole) -> LoginOutcome:
    return LoginOutcome(
        user=user,
        token=create_access_token(user.id, role),
        refresh_token=create_refresh_token(user.id, role),
    )


async def authenticate(db: AsyncSession, email: str, password: str) -> LoginOutcome:
    if not email or not password:
        raise InvalidCredentials()

    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    user = result.scalar_one_or_none()

    if user is None:
        dummy_verify(password)
        raise InvalidCredentials()
    if not verify_password(password, user.hashed_password):
        raise InvalidCredentials()
    if not user.is_active:
        raise AccessDenied()
    role = panel_role(user)

    if user.mfa_enabled:
        pending = await mfa_service.create_login_token(db, user)
        logger.info("Password accepted for user %s, MFA required", user.id)
        return LoginOutcome(user=user, mfa_login_token=pending)

    logger.info("User %s logged in", user.id)
    return issue_tokens(user, role)


async def pending_login_owner(db: AsyncSession, mfa_login_token: str) -> User | None:
    """The account a pending login token was issued to, whatever the token's state."""
    result = await db.execute(
        select(User)
        .join(MFALoginToken, MFALoginToken.user_id == User.id)
        .where(MFALoginToken.token_hash == digest(mfa_login_token))
    )
    return result.scalar_one_or_none()


async def verify_mfa(db: AsyncSession, code: str, mfa_login_token: str) -> LoginOutcome:
    """Redeem a pending login token with a TOTP or backup code.

    The token is spent by a conditional UPDATE in the same transaction as
    any backup-code consumption, so a replay or a concurrent duplicate
    submission loses with ``TokenAlreadyUsed`` and leaves no side effects.
    """
    now = utcnow()
    result = await db.execute(
        select(MFALoginToken)
        .where(MFALoginToken.token_hash == digest(mfa_login_token))
        .execution_options(populate_existing=True)
    )
    pending = result.scalar_one_or_none()

    if pending is None:
        raise MalformedToken(MFA_FAILED)
    if pending.redeemed_at is not None:
        raise TokenAlreadyUsed()
    if as_aware(pending.expires_at) <= now or pending.failed_attempts >= settings.MFA_MAX_ATTEMPTS:
        raise TokenExpired(MFA_FAILED)

    user = await db.get(User, pending.user_id)
    if user is None or not user.is_active or not user.mfa_enabled:
        raise MalformedToken(MFA_FAILED)
    role = panel_role(user)

    if not await mfa_service.verify_code(db, user, code):
        await db.execute(
            update(MFALoginToken)
            .where(MFALoginToken.id == pending.id)
            .values(failed_attempts=MFALoginToken.failed_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        raise InvalidMFACode()

    redeemed = await db.execute(
        update(MFALoginToken)
        .where(MFALoginToken.id == pending.id, MFALoginToken.redeemed_at.is_(None))
        .values(redeemed_at=now)
        .execution_options(synchronize_session=False)
    )
    if redeemed.rowcount != 1:
        await db.rollback()
        raise TokenAlreadyUsed()
    await db.commit()

    logger.info("User %s completed MFA login", user.id)
    return issue_tokens(user, role)


async def refresh(db: AsyncSession, refresh_token: str) -> LoginOutcome:
    """Swap a refresh token for a new pair after re-checking the user row."""
    identity = decode_token(refresh_token, REFRESH)
    user = await db.get(User, identity.user_id)
    if user is None or not user.is_active:
        raise MalformedToken()
    return issue_tokens(user, panel_role(user))
