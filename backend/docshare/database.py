from dataclasses import dataclass
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .config import settings


class Base(DeclarativeBase):
    """Declarative base for all models."""


def build_database_url(base_url: str, user: str = "", password: str = "") -> str:
    """Splice a role's credentials into the store URL. Blank user keeps the URL as is."""
    url = make_url(base_url)
    if user and url.get_backend_name() != "sqlite":
        url = url.set(username=user, password=password or None)
    return url.render_as_string(hide_password=False)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine; SQLite gets foreign keys so cascades apply."""
    if make_url(url).get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_async_engine(url, echo=False, **kwargs)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_recycle", 3600)
    kwargs.setdefault("pool_size", 10)
    kwargs.setdefault("max_overflow", 20)
    return create_async_engine(url, echo=False, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@dataclass(frozen=True)
class StoreHandles:
    """The two store clients handed to the access-control core.

    ``admin`` bypasses row-level authorization and serves the authenticated
    owner paths. ``public`` runs under the anonymous role and serves the
    anonymous link-access paths.
    """

    admin: async_sessionmaker[AsyncSession]
    public: async_sessionmaker[AsyncSession]


admin_engine = make_engine(
    build_database_url(settings.DATABASE_URL, settings.DATABASE_ADMIN_USER, settings.DATABASE_ADMIN_PASSWORD)
)
public_engine = make_engine(
    build_database_url(settings.DATABASE_URL, settings.DATABASE_ANON_USER, settings.DATABASE_ANON_PASSWORD)
)

stores = StoreHandles(
    admin=make_session_factory(admin_engine),
    public=make_session_factory(public_engine),
)


async def create_db_and_tables(engine: AsyncEngine = admin_engine) -> None:
    """Create tables if missing. Production schemas are managed outside the app."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_admin_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for the privileged store session."""
    async with stores.admin() as session:
        yield session


async def get_public_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for the anonymous-role store session."""
    async with stores.public() as session:
        yield session
