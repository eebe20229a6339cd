"""
JWT token creation / verification, password hashing (bcrypt) and the
random secrets used by the MFA flow.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from admin_panel.core.config import settings
from admin_panel.core.exceptions import MalformedToken, TokenExpired
from admin_panel.core.roles import UserRole, parse_role

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"
GRACE = "grace"


@dataclass(frozen=True)
class TokenIdentity:
    """Identity carried by a verified token."""

    user_id: int
    role: UserRole
    token_type: str
    expires_at: datetime
    jti: str | None = None


# ── Passwords ───────────────────────────────────────────────────────
def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def get_password_hash(plain: str) -> str:
    return pwd_context.hash(plain)


_DUMMY_HASH: str | None = None


def dummy_verify(plain: str) -> bool:
    """Burn one bcrypt check so unknown emails cost as much as bad passwords."""
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = pwd_context.hash(secrets.token_hex(16))
    pwd_context.verify(plain, _DUMMY_HASH)
    return False


_POLICY = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"\d"), "Password must contain at least one number"),
    (re.compile(r"[^A-Za-z0-9\s]"), "Password must contain at least one special character"),
)


def password_policy_errors(password: str) -> list[str]:
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    errors.extend(msg for pattern, msg in _POLICY if not pattern.search(password))
    return errors


# ── JWT tokens ──────────────────────────────────────────────────────
def _encode(claims: dict, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {**claims, "iat": now, "exp": now + lifetime},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


def create_access_token(
    user_id: int,
    role: UserRole,
    expires_delta: timedelta | None = None,
) -> str:
    return _encode(
        {"sub": str(user_id), "role": role.value, "type": ACCESS},
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(user_id: int, role: UserRole) -> str:
    return _encode(
        {"sub": str(user_id), "role": role.value, "type": REFRESH},
        timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def create_grace_marker(user_id: int, role: UserRole) -> str:
    """Short-lived signed marker that covers the first page load after login."""
    return _encode(
        {
            "sub": str(user_id),
            "role": role.value,
            "type": GRACE,
            "jti": secrets.token_urlsafe(16),
        },
        timedelta(seconds=settings.LOGIN_GRACE_SECONDS),
    )


def decode_token(token: str, expected_type: str = ACCESS) -> TokenIdentity:
    """Verify signature, expiry and type; raise ``TokenExpired`` / ``MalformedToken``."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise MalformedToken() from exc

    if payload.get("type") != expected_type:
        raise MalformedToken()
    role = parse_role(payload.get("role"))
    sub = payload.get("sub")
    if role is None or not isinstance(sub, str) or not sub.isdigit():
        raise MalformedToken()

    return TokenIdentity(
        user_id=int(sub),
        role=role,
        token_type=expected_type,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        jti=payload.get("jti"),
    )


# ── Opaque secrets ──────────────────────────────────────────────────
def generate_opaque_token() -> str:
    return secrets.token_hex(32)


def digest(value: str) -> str:
    """SHA-256 hex digest used to store opaque tokens and backup codes."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_backup_codes(count: int | None = None) -> list[str]:
    """Distinct 8-character upper-case hex codes."""
    wanted = count or settings.BACKUP_CODE_COUNT
    codes: list[str] = []
    while len(codes) < wanted:
        code = secrets.token_hex(4).upper()
        if code not in codes:
            codes.append(code)
    return codes


def normalize_backup_code(code: str) -> str:
    return code.replace("-", "").replace(" ", "").upper()
