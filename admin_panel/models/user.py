"""
User model: credentials, panel role and MFA state.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from admin_panel.core.roles import UserRole, parse_role
from admin_panel.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    hashed_password: str = Column(String(128), nullable=False)  # type: ignore[assignment]
    full_name: str | None = Column(String(200), nullable=True)  # type: ignore[assignment]
    role: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default=UserRole.CUSTOMER.value,
        server_default=UserRole.CUSTOMER.value,
    )  # customer | staff | manager | admin
    is_active: bool = Column(Boolean, default=True, server_default="1")  # type: ignore[assignment]

    # MFA
    mfa_enabled: bool = Column(Boolean, nullable=False, default=False, server_default="0")  # type: ignore[assignment]
    mfa_secret: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    mfa_pending_secret: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    mfa_pending_expires_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]

    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def user_role(self) -> UserRole | None:
        return parse_role(self.role)
