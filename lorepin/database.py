"""Database connection utilities"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import sqlalchemy as sa
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_config

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models"""
    pass


class DatabaseManager:
    """Database connection manager"""

    def __init__(self):
        self.engine = None
        self.session_factory = None
        self._initialized = False

    async def initialize(self, database_url: Optional[str] = None):
        """Initialize database connection"""
        if self._initialized:
            return

        config = get_config()
        db_url = database_url or config.database_url

        engine_options = {"echo": config.log_level == "DEBUG"}
        if db_url.startswith("sqlite"):
            # One shared connection so in-memory databases survive across sessions
            engine_options.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine_options.update(pool_pre_ping=True, pool_recycle=3600)
            if config.environment == "test":
                engine_options["poolclass"] = NullPool

        self.engine = create_async_engine(db_url, **engine_options)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self._initialized = True
        logger.info("Database connection initialized")

    async def create_tables(self):
        """Create all tables known to the metadata"""
        if not self._initialized:
            await self.initialize()

        # Register the models on the metadata before creating
        from . import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections"""
        if self.engine:
            await self.engine.dispose()
            self._initialized = False
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session context manager"""
        if not self._initialized:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get database manager instance"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


class BaseRepository:
    """Base repository class with common CRUD operations"""

    def __init__(self, session: AsyncSession, model_class):
        self.session = session
        self.model_class = model_class

    async def create(self, **kwargs):
        """Create a new record"""
        instance = self.model_class(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id, refresh: bool = False):
        """Get record by ID"""
        return await self.session.get(self.model_class, id, populate_existing=refresh)

    async def update(self, id, **kwargs):
        """Update record by ID"""
        instance = await self.get_by_id(id)
        if instance:
            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            await self.session.flush()
            await self.session.refresh(instance)
        return instance

    async def compare_and_set(self, id, column: str, expected: Any, **values):
        """Update record only while ``column`` still holds ``expected``.

        Returns the refreshed instance, or None when no row matched (the
        record is gone or another writer changed ``column`` first).
        """
        stmt = (
            update(self.model_class)
            .where(self.model_class.id == id)
            .where(getattr(self.model_class, column) == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.get_by_id(id, refresh=True)

    async def delete(self, id):
        """Delete record by ID"""
        instance = await self.get_by_id(id)
        if instance:
            await self.session.delete(instance)
            await self.session.flush()
            return True
        return False


async def check_database_health(db_manager: Optional[DatabaseManager] = None) -> dict:
    """Check database connection health"""
    try:
        db_manager = db_manager or get_db_manager()
        async with db_manager.get_session() as session:
            result = await session.execute(sa.text("SELECT 1"))
            result.scalar()

            return {
                "status": "healthy",
                "message": "Database connection successful"
            }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}"
        }

