"""
Admin panel auth service, application entry point.

Assembles the FastAPI app: JSON API under ``API_PREFIX`` plus the guarded
browser pages. Business logic lives in ``services/``; request guards in
``api/deps.py``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from admin_panel.api.api import api_router
from admin_panel.api.endpoints import pages
from admin_panel.core.config import settings
from admin_panel.core.exceptions import register_exception_handlers
from admin_panel.core.rate_limit import limiter
from admin_panel.core.roles import UserRole
from admin_panel.core.security import get_password_hash
from admin_panel.db.base import Base
from admin_panel.db.session import async_session_factory, engine
from admin_panel.models import mfa  # noqa: F401  (registers MFA tables on Base.metadata)
from admin_panel.models.user import User
from admin_panel.services import mfa_service

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_first_admin(session: AsyncSession) -> User | None:
    """Create the bootstrap admin account if no user holds that email yet."""
    existing = await session.execute(select(User).where(User.email == settings.FIRST_ADMIN_EMAIL))
    if existing.scalar_one_or_none() is not None:
        return None

    admin = User(
        email=settings.FIRST_ADMIN_EMAIL,
        hashed_password=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
        full_name="System Administrator",
        role=UserRole.ADMIN.value,
    )
    session.add(admin)
    await session.commit()
    logger.info("Default admin created: %s (password: <redacted>)", settings.FIRST_ADMIN_EMAIL)
    return admin


@asynccontextmanager
async def lifespan(_app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    async with async_session_factory() as session:
        await seed_first_admin(session)
        purged = await mfa_service.purge_expired_login_tokens(session)
        if purged:
            logger.info("Purged %d stale MFA login tokens", purged)

    logger.info("🚀 %s v%s started", settings.PROJECT_NAME, settings.VERSION)
    yield
    await engine.dispose()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Admin panel authentication, MFA and route guarding",
        version=settings.VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )

    # Cookies carry the session, so origins must be explicit
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    application.state.limiter = limiter
    register_exception_handlers(application)

    application.include_router(api_router, prefix=settings.API_PREFIX)
    application.include_router(pages.router)
    return application


app = create_app()
