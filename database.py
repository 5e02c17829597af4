"""
Database engine, session factory and unit-of-work helpers.

The engine is owned by a ``Database`` instance that the application lifespan
creates and disposes; request handlers receive sessions through ``get_db``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import normalize_database_url
from services.errors import StorageUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Holds the async engine and session factory for one process."""

    def __init__(self, url: str, *, echo: bool = False, pool_timeout: Optional[int] = None):
        self.url = normalize_database_url(url)
        self._echo = echo
        self._pool_timeout = pool_timeout
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    def connect(self) -> None:
        if self.engine is not None:
            return
        engine_kwargs = {"echo": self._echo}
        if self._pool_timeout and not self.url.startswith("sqlite"):
            engine_kwargs["pool_timeout"] = self._pool_timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine = create_async_engine(self.url, **engine_kwargs)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        logger.info("Database engine created for %s", self.engine.url.render_as_string(hide_password=True))

    async def disconnect(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_maker = None

    async def create_schema(self) -> None:
        if self.engine is None:
            raise RuntimeError("Database is not connected.")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self.session_maker is None:
            raise RuntimeError("Database is not connected.")
        async with self.session_maker() as session:
            yield session


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session from the application's database."""
    database: Optional[Database] = getattr(request.app.state, "database", None)
    if database is None:
        raise StorageUnavailable("Database is not connected.")
    async with database.session() as session:
        yield session


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit everything staged inside the block, or roll all of it back."""
    try:
        yield session
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise
    except DBAPIError as exc:
        await session.rollback()
        logger.exception("Storage failure inside unit of work: %s", exc)
        raise StorageUnavailable("Credit store is unavailable. Retry the request.") from exc
    except BaseException:
        await session.rollback()
        raise
