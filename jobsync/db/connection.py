"""Relational store connection and session management.

``Database`` owns one pooled async engine per process. It is opened at
process start, passed to whatever needs it, and closed on shutdown.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobsync.config import DBConfig
from jobsync.db.models import Base


class Database:
    """Pooled async SQLAlchemy engine with an explicit open/close lifecycle."""

    def __init__(self, config: DBConfig):
        self.config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open; call open() first")
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.config.url.lower()

    def open(self) -> Database:
        """Create the engine and session factory."""
        if self._engine is not None:
            return self

        engine_kwargs: dict = {"echo": self.config.echo}

        # SQLite doesn't support connection pooling parameters
        if not self.is_sqlite:
            engine_kwargs.update({
                "pool_size": self.config.pool_size,
                "max_overflow": self.config.pool_max_overflow,
                "pool_timeout": self.config.pool_timeout,
                "pool_pre_ping": True,  # Verify connections before using
                "pool_recycle": 3600,
            })

        self._engine = create_async_engine(self.config.url, **engine_kwargs)

        if self.is_sqlite:
            # Rate sub-tables rely on ON DELETE CASCADE
            @event.listens_for(self._engine.sync_engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        return self

    async def close(self) -> None:
        """Dispose pooled connections. Call on process shutdown."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session: commit on success, rollback on error.

        Usage:
            async with database.session() as session:
                await session.execute(stmt)
        """
        if self._session_factory is None:
            raise RuntimeError("Database is not open; call open() first")

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> None:
        """Round-trip a trivial query; raises on connectivity failure."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def create_schema(self, drop: bool = False) -> None:
        """Create all tables from metadata.

        Note: For production, manage the schema with migrations.
        """
        async with self.engine.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
