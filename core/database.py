# core/database.py
from __future__ import annotations

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, timeout_seconds: float = 15.0, echo: bool = False) -> AsyncEngine:
    # Connect/command timeout is inherited by every query on this engine
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": timeout_seconds}
    else:
        kwargs["pool_timeout"] = timeout_seconds
    return create_async_engine(database_url, **kwargs)


def build_sessionmaker(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    # Import models so they register on Base.metadata
    import models.credential  # noqa: F401
    import models.refresh_token  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.sessionmaker
    async with session_factory() as session:
        yield session
