"""
Async engine and session factory for the auth database.

PostgreSQL (asyncpg) in production gets a bounded connection pool; a
SQLite URL (aiosqlite) is accepted for local runs. An in-memory SQLite
database is pinned to one shared connection so the tables created at
startup are the ones requests see; a file database starts every
transaction with ``BEGIN IMMEDIATE`` so concurrent writers queue on the
database lock instead of failing with "database is locked".
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from admin_panel.core.config import settings


def _is_memory_sqlite(database: str | None) -> bool:
    return database in (None, "", ":memory:")


def _engine_options(database_url: str) -> dict:
    url = make_url(database_url)
    options: dict = {"echo": False}

    if url.get_backend_name() == "postgresql":
        options.update(pool_pre_ping=True, pool_size=10, max_overflow=5, pool_recycle=300)
    elif url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(url.database):
            options["poolclass"] = StaticPool
    return options


def serialize_sqlite_transactions(engine: AsyncEngine) -> AsyncEngine:
    """Take the SQLite write lock at BEGIN, so the second writer waits rather than deadlocks."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _connection_record):
        # pysqlite otherwise emits its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str) -> AsyncEngine:
    engine = create_async_engine(database_url, **_engine_options(database_url))
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and not _is_memory_sqlite(url.database):
        serialize_sqlite_transactions(engine)
    return engine


engine = build_engine(settings.DATABASE_URL)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
