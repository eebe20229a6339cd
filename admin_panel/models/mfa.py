"""
MFA persistence: backup codes and pending login tokens.

Both hold single-use secrets. Only SHA-256 digests are stored, and each
row is spent through one conditional UPDATE so concurrent redemptions
produce exactly one winner.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from admin_panel.db.base import Base


class MFABackupCode(Base):
    __tablename__ = "mfa_backup_codes"

    id: int = Column(Integer, primary_key=True)  # type: ignore[assignment]
    user_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code_hash: str = Column(String(64), nullable=False, index=True)  # type: ignore[assignment]
    used_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )


class MFALoginToken(Base):
    __tablename__ = "mfa_login_tokens"

    id: int = Column(Integer, primary_key=True)  # type: ignore[assignment]
    token_hash: str = Column(String(64), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    user_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    redeemed_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    failed_attempts: int = Column(Integer, nullable=False, default=0)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
