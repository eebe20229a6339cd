"""
Shared test fixtures for the admin panel auth test suite.

Every test gets its own in-memory aiosqlite engine, so tables, pending
MFA tokens and backup codes never leak between tests.
"""

import os
import sys
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-entropy-for-hs256"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CORS_ORIGINS"] = '["*"]'

import pyotp
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from admin_panel.api.deps import get_db
from admin_panel.core.brute_force import brute_force
from admin_panel.core.grace import grace_markers
from admin_panel.core.roles import UserRole
from admin_panel.core.security import create_access_token, digest, get_password_hash
from admin_panel.db.base import Base
from admin_panel.db.session import build_engine
from admin_panel.main import app
from admin_panel.models.mfa import MFABackupCode
from admin_panel.models.user import User

PASSWORD = "Str0ng!Pass"
MFA_SECRET = "JBSWY3DPEHPK3PXP"
BACKUP_CODES = ["A1B2C3D4", "0F0F0F0F"]


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database with all tables, wired into ``get_db``."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    yield factory
    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """On-disk database, so separate sessions use separate connections."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'admin_panel.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_auth_state():
    """Brute-force counters and consumed grace markers are process-wide."""
    brute_force.reset()
    grace_markers.reset()
    yield
    brute_force.reset()
    grace_markers.reset()


@pytest.fixture
async def async_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


# ── User factories ──────────────────────────────────────────────────
async def create_user(
    factory: async_sessionmaker,
    email: str = "admin@freshcounty.test",
    role: UserRole = UserRole.ADMIN,
    password: str = PASSWORD,
    *,
    mfa: bool = False,
    is_active: bool = True,
) -> User:
    async with factory() as session:
        user = User(
            email=email,
            hashed_password=get_password_hash(password),
            full_name=email.split("@")[0].title(),
            role=role.value,
            is_active=is_active,
            mfa_enabled=mfa,
            mfa_secret=MFA_SECRET if mfa else None,
        )
        session.add(user)
        await session.flush()
        if mfa:
            session.add_all(
                MFABackupCode(user_id=user.id, code_hash=digest(code)) for code in BACKUP_CODES
            )
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
def make_user(session_factory):
    async def _make(*args, **kwargs) -> User:
        return await create_user(session_factory, *args, **kwargs)

    return _make


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user()


@pytest.fixture
async def mfa_user(make_user) -> User:
    return await make_user("mfa@freshcounty.test", UserRole.MANAGER, mfa=True)


@pytest.fixture
async def customer_user(make_user) -> User:
    return await make_user("customer@freshcounty.test", UserRole.CUSTOMER)


def auth_header(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, UserRole(user.role))}"}


def current_totp(secret: str = MFA_SECRET) -> str:
    return pyotp.TOTP(secret).now()
