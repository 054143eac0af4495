from __future__ import annotations

from typing import AsyncIterator
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from payments.config import Settings


def convert_database_url(url: str) -> str:
    """Point postgres URLs at asyncpg and sqlite URLs at aiosqlite."""
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        # swap only the driver; urlunparse would drop the empty netloc's "//"
        return "sqlite+aiosqlite:" + url.split(":", 1)[1]
    query_params = parse_qs(parsed.query)
    query_params.pop('sslmode', None)
    new_query = urlencode(query_params, doseq=True)
    new_parsed = parsed._replace(scheme="postgresql+asyncpg", query=new_query)
    return urlunparse(new_parsed)


def build_engine(settings: Settings) -> AsyncEngine:
    database_url = convert_database_url(settings.database_url)

    if database_url.startswith("sqlite"):
        # in-memory sqlite must share one connection across sessions
        pool_kwargs = {"poolclass": StaticPool} if ":memory:" in database_url else {}
        return create_async_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            **pool_kwargs,
        )

    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args={"ssl": True} if "neon" in settings.database_url else {},
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


class Base(DeclarativeBase):
    pass


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    session_maker: async_sessionmaker[AsyncSession] = request.app.state.session_maker
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine) -> None:
    import payments.models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
