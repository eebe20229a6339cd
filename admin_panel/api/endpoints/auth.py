"""
Auth endpoints: admin login (password + optional MFA step), profile,
token refresh, password change, logout and user creation.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from admin_panel.api.deps import get_current_user, get_db, optional_identity, require_admin
from admin_panel.core.audit import audit
from admin_panel.core.brute_force import brute_force
from admin_panel.core.config import settings
from admin_panel.core.exceptions import AuthError, TooManyAttempts
from admin_panel.core.rate_limit import limiter
from admin_panel.core.security import (
    TokenIdentity,
    create_grace_marker,
    get_password_hash,
    verify_password,
)
from admin_panel.models.user import User
from admin_panel.schemas.auth import (
    AdminLoginRequest,
    LoginResponse,
    MessageResponse,
    MFAChallengeResponse,
    ProfileResponse,
)
from admin_panel.schemas.token import RefreshRequest, TokenData
from admin_panel.schemas.user import PasswordChange, UserCreate, UserRead
from admin_panel.services import auth_service
from admin_panel.services.auth_service import LoginOutcome, panel_role

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _set_session_cookies(response: Response, outcome: LoginOutcome) -> None:
    """Server-side session cookie plus the short-lived post-login grace marker."""
    response.set_cookie(
        key=settings.SESSION_COOKIE,
        value=outcome.token or "",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    response.set_cookie(
        key=settings.GRACE_COOKIE,
        value=create_grace_marker(outcome.user.id, panel_role(outcome.user)),
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.LOGIN_GRACE_SECONDS,
    )


def _login_response(outcome: LoginOutcome) -> LoginResponse:
    return LoginResponse(
        data=TokenData(
            token=outcome.token or "",
            refresh_token=outcome.refresh_token or "",
            user=UserRead.model_validate(outcome.user),
        )
    )


def _attempt_key(request: Request, email: str) -> str:
    return f"{_client_ip(request)}:{email}"


def _ensure_not_blocked(request: Request, identifier: str, email: str) -> None:
    if brute_force.is_blocked(identifier):
        audit("admin_login_blocked", request, email=email)
        raise TooManyAttempts()


@router.post("/admin-login", response_model=LoginResponse | MFAChallengeResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def admin_login(
    request: Request,
    response: Response,
    body: AdminLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse | MFAChallengeResponse:
    """Password step, or MFA step when ``mfaLoginToken`` is supplied.

    Both steps feed one ``ip:email`` failure counter. It is cleared only
    once a session is issued, never after the password step alone.
    """
    if body.is_mfa_step:
        owner = await auth_service.pending_login_owner(db, body.mfa_login_token or "")
        identifier = _attempt_key(request, owner.email) if owner is not None else None
        if identifier is not None:
            _ensure_not_blocked(request, identifier, owner.email)
        try:
            outcome = await auth_service.verify_mfa(
                db, body.mfa_token or "", body.mfa_login_token or ""
            )
        except AuthError as exc:
            if identifier is not None:
                brute_force.record_failure(identifier)
            owner_id = owner.id if owner is not None else None
            audit("admin_login_mfa_failed", request, owner_id, reason=exc.kind)
            raise
        audit("admin_login", request, outcome.user.id, mfa=True)
    else:
        identifier = _attempt_key(request, body.email or "")
        _ensure_not_blocked(request, identifier, body.email or "")
        try:
            outcome = await auth_service.authenticate(db, body.email or "", body.password or "")
        except AuthError as exc:
            brute_force.record_failure(identifier)
            audit("admin_login_failed", request, email=body.email, reason=exc.kind)
            raise

        if outcome.requires_mfa:
            audit("admin_login_mfa_challenge", request, outcome.user.id)
            return MFAChallengeResponse(mfa_login_token=outcome.mfa_login_token or "")
        audit("admin_login", request, outcome.user.id, mfa=False)

    brute_force.clear(_attempt_key(request, outcome.user.email))
    _set_session_cookies(response, outcome)
    return _login_response(outcome)


@router.post("/refresh", response_model=LoginResponse)
async def refresh_access_token(
    response: Response,
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    outcome = await auth_service.refresh(db, body.refresh_token)
    _set_session_cookies(response, outcome)
    return _login_response(outcome)


@router.get("/profile", response_model=ProfileResponse)
async def read_profile(current_user: User = Depends(get_current_user)) -> ProfileResponse:
    """Return profile of the currently authenticated user."""
    return ProfileResponse(data=UserRead.model_validate(current_user))


@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: PasswordChange,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    if not verify_password(body.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    current_user.hashed_password = get_password_hash(body.new_password)
    await db.commit()
    audit("password_changed", request, current_user.id)
    return MessageResponse(message="Password changed successfully")


@router.post("/logout", response_model=MessageResponse)
@router.post("/enhanced-logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    identity: TokenIdentity | None = Depends(optional_identity),
) -> MessageResponse:
    """Clear server-set cookies. Tokens are stateless and simply expire."""
    response.delete_cookie(settings.SESSION_COOKIE, path="/")
    response.delete_cookie(settings.GRACE_COOKIE, path="/")
    audit("logout", request, identity.user_id if identity else None)
    return MessageResponse(message="Logout successful")


# ── User management (admin-only) ───────────────────────────────────
@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: Request,
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> User:
    """Create a new user account (admin only)."""
    existing = await db.execute(select(User).where(User.email == body.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=body.email,
        hashed_password=get_password_hash(body.password),
        full_name=body.full_name,
        role=body.role.value,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    audit("user_created", request, admin.id, created_user_id=user.id, role=user.role)
    return user
