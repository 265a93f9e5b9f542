"""
Database module for the local system of record and the sync ledger
"""

from typing import Optional, Dict, Any, AsyncIterator
from datetime import datetime
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool
from sqlalchemy import String, DateTime, Text, JSON, Integer, UniqueConstraint, text
import structlog

from .config import DatabaseConfig
from .utils.time_utils import utc_now

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base"""
    pass


class LocalRecordModel(Base):
    """Local record, one row per entity of any collection"""
    __tablename__ = "local_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    collection: Mapped[str] = mapped_column(String(100), index=True)
    fields: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class SyncStatusModel(Base):
    """Per-record sync ledger"""
    __tablename__ = "sync_statuses"
    __table_args__ = (
        UniqueConstraint("collection", "local_id", name="uq_sync_status_collection_local"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(100), index=True)
    local_id: Mapped[str] = mapped_column(String(64), index=True)
    state: Mapped[str] = mapped_column(String(20), default="unsynced")
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    synced_local_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    synced_external_edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class LinkedDatabaseModel(Base):
    """Collection to external database link"""
    __tablename__ = "linked_databases"

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    external_database_id: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class DatabaseError(Exception):
    """Database operation error"""
    pass


class Database:
    """Async database manager for SQLite and PostgreSQL"""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        config = DatabaseConfig()
        self.database_url = database_url or config.database_url
        self.echo = config.echo if echo is None else echo
        self.engine = None
        self.session_factory = None

    async def initialize(self):
        """Initialize database connection and create tables"""
        try:
            if self.database_url.startswith("postgresql") and "+asyncpg" not in self.database_url:
                logger.warning("Database URL missing +asyncpg driver specification, adding it")
                self.database_url = self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

            engine_kwargs = {"echo": self.echo}

            if self.database_url.startswith("sqlite"):
                if ":memory:" in self.database_url or self.database_url.endswith("://"):
                    # In-memory databases live on a single shared connection
                    engine_kwargs.update({
                        "poolclass": StaticPool,
                        "connect_args": {"check_same_thread": False},
                    })
            else:
                engine_kwargs.update({
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_pre_ping": True,
                    "pool_recycle": 3600
                })

            logger.info("Creating async engine", url=self.database_url.split("@")[-1])
            self.engine = create_async_engine(self.database_url, **engine_kwargs)

            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Failed to initialize database", error=str(e))
            raise DatabaseError(f"Database initialization failed: {str(e)}")

    @asynccontextmanager
    async def transaction(self, session: Optional[AsyncSession] = None) -> AsyncIterator[AsyncSession]:
        """Run a unit of work atomically

        When ``session`` is given the caller owns the transaction and the
        session is yielded unchanged.
        """
        if session is not None:
            yield session
            return

        if self.session_factory is None:
            raise DatabaseError("Database not initialized")

        async with self.session_factory() as new_session:
            async with new_session.begin():
                yield new_session

    async def close(self):
        """Close database connections"""
        try:
            if self.engine:
                await self.engine.dispose()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error("Error closing database connections", error=str(e))

    async def health_check(self) -> str:
        """Check database health"""
        try:
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
                return "healthy"
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return "unhealthy"
