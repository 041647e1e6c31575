"""
Database service for async SQLAlchemy session management.

Usage:
    database = Database(settings.database_url)
    await database.init_db()

    async with database.session() as session:
        demande = await session.get(Demande, 42)
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from macommune.db.models import Base

logger = logging.getLogger("macommune.database")


class Database:
    """
    Owns the async engine and session factory.

    SQLite (aiosqlite) is used for development and tests; any async
    driver URL works in production.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self._url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._initialize_engine(echo=echo)

    def _initialize_engine(self, *, echo: bool) -> None:
        logger.info(
            "database_engine_init",
            extra={"database": self._url.split("@")[-1].split("?")[0]},
        )

        if self._url.startswith("sqlite"):
            if ":///" in self._url:
                db_path = self._url.split("///")[1].split("?")[0]
                db_dir = os.path.dirname(db_path)
                if db_dir and db_path != ":memory:":
                    os.makedirs(db_dir, exist_ok=True)

            self._engine = create_async_engine(
                self._url,
                connect_args={"check_same_thread": False},
                echo=echo,
            )
        else:
            self._engine = create_async_engine(
                self._url,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=echo,
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database engine not initialized")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Async session as a context manager.

        Commits on success, rolls back on error.
        """
        if self._session_factory is None:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_ready")

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("database_health_check_failed")
            return False

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
