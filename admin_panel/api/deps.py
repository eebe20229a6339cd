"""
FastAPI dependencies: database session and the admin-panel route guards.

Two guard entry points share one verification path:

- ``require_panel_api`` for JSON endpoints (401 / 403 error bodies),
- ``require_panel_page`` for browser navigation (302 to the login page).

Token verification is pure computation (signature, expiry, role); only
``get_current_user`` goes to the database.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Depends, Request, Response
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from admin_panel.core.config import settings
from admin_panel.core.exceptions import (
    PANEL_ACCESS_REQUIRED,
    AccessDenied,
    AuthError,
    LoginRedirect,
    MalformedToken,
)
from admin_panel.core.grace import grace_markers
from admin_panel.core.roles import UserRole, can_access_panel
from admin_panel.core.security import GRACE, TokenIdentity, decode_token
from admin_panel.db.session import async_session_factory
from admin_panel.models.user import User

logger = logging.getLogger(__name__)

# auto_error=False so we can fall back to the cookies when the header is missing
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_PREFIX}/auth/admin-login", auto_error=False
)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Token extraction & verification ─────────────────────────────────
def _clean(value: str | None) -> str | None:
    if not value:
        return None
    if value.startswith("Bearer "):
        value = value[len("Bearer "):]
    value = value.strip().strip('"')
    return value or None


def _cookie_token(request: Request) -> str | None:
    for name in (settings.ADMIN_TOKEN_COOKIE, settings.SESSION_COOKIE):
        token = _clean(request.cookies.get(name))
        if token:
            return token
    return None


def verify_panel_token(token: str) -> TokenIdentity:
    identity = decode_token(token)
    if not can_access_panel(identity.role):
        raise AccessDenied(PANEL_ACCESS_REQUIRED)
    return identity


# ── API guard ───────────────────────────────────────────────────────
async def require_panel_api(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
) -> TokenIdentity:
    """Header token first, then cookies. Rejects with a JSON error."""
    final_token = _clean(token) or _cookie_token(request)
    if not final_token:
        raise MalformedToken("Access token required")

    identity = verify_panel_token(final_token)
    request.state.identity = identity
    return identity


async def optional_identity(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
) -> TokenIdentity | None:
    final_token = _clean(token) or _cookie_token(request)
    if not final_token:
        return None
    try:
        return verify_panel_token(final_token)
    except AuthError:
        return None


async def get_current_user(
    identity: TokenIdentity = Depends(require_panel_api),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the token's user and re-check it is still an active panel account."""
    user = await db.get(User, identity.user_id)
    if user is None or not user.is_active:
        raise MalformedToken()
    role = user.user_role
    if role is None or not can_access_panel(role):
        raise AccessDenied(PANEL_ACCESS_REQUIRED)
    return user


def require_roles(*roles: UserRole):
    """Dependency factory restricting an endpoint to the given roles."""
    allowed = frozenset(roles)

    async def _dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.user_role not in allowed:
            raise AccessDenied("You do not have permission to perform this action")
        return current_user

    return _dependency


require_admin = require_roles(UserRole.ADMIN)


# ── Page guard ──────────────────────────────────────────────────────
def _redeem_grace_marker(request: Request) -> TokenIdentity | None:
    marker = request.cookies.get(settings.GRACE_COOKIE)
    if not marker:
        return None
    try:
        identity = decode_token(marker, GRACE)
    except AuthError:
        return None
    if not can_access_panel(identity.role) or not identity.jti:
        return None
    if not grace_markers.consume(identity.jti, identity.expires_at):
        logger.warning("Replayed login grace marker for user %s", identity.user_id)
        return None
    return identity


async def require_panel_page(request: Request, response: Response) -> TokenIdentity:
    """Browser-navigation guard. Rejections redirect to the login page."""
    path = request.url.path
    header = request.headers.get("authorization", "")
    token = (_clean(header) if header.startswith("Bearer ") else None) or _cookie_token(request)

    if token:
        try:
            identity = verify_panel_token(token)
        except AccessDenied:
            raise LoginRedirect(path, "access_denied") from None
        except AuthError:
            raise LoginRedirect(path, "invalid_token") from None
        request.state.identity = identity
        return identity

    identity = _redeem_grace_marker(request)
    if identity is None:
        raise LoginRedirect(path)

    logger.info("Login grace marker accepted for user %s on %s", identity.user_id, path)
    response.delete_cookie(settings.GRACE_COOKIE, path="/")
    request.state.identity = identity
    return identity
