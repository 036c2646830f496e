# PostgreSQL connection management
import time
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from contextlib import asynccontextmanager
from typing import AsyncIterator

from core.logging import (
    get_logger,
    get_database_logger_safe,
    get_error_logger_safe,
    get_performance_logger_safe,
)
from core.utils.exceptions import DatabaseError

logger = get_logger(__name__, component="database")

db_logger = get_database_logger_safe("database_manager")
error_logger = get_error_logger_safe("database_manager")
perf_logger = get_performance_logger_safe("database_manager")

# The base class for all SQLAlchemy models
Base = declarative_base()

LONG_SESSION_THRESHOLD_MS = 5000


class DatabaseManager:
    """Manages the connection to the PostgreSQL database"""

    def __init__(self, db_url: str, environment: str = "development", schema_management: str = "auto"):
        self._engine = create_async_engine(
            db_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession
        )
        self._environment = environment
        self._schema_management = schema_management

    async def init(self):
        """Initialize database with environment-specific approach"""
        if self._environment in ("production", "staging") or self._schema_management == "migrations_only":
            await self._verify_migrations_current()
            logger.info("Database ready - using migrations for schema management")
            return

        # Importing registers the ORM tables on Base.metadata
        from core.database import models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized with create_all", schema_management=self._schema_management)

    async def _verify_migrations_current(self):
        """Verify that all migrations have been applied"""
        async with self.get_session() as session:
            try:
                result = await session.execute(text("SELECT version_num FROM alembic_version"))
            except Exception as e:
                raise DatabaseError(
                    "Database schema not initialized. Run 'alembic upgrade head' to create schema.",
                    operation="verify_migrations",
                    table="alembic_version",
                ) from e

            current_version = result.scalar()
            if current_version is None:
                raise DatabaseError(
                    "No migration version found in database. Run 'alembic upgrade head' to initialize schema.",
                    operation="verify_migrations",
                    table="alembic_version",
                )
            logger.info("Database schema version", version=current_version)

    async def verify_connection(self) -> bool:
        """Verify database connection is ready"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error("Database connection verification failed", error=str(e))
            return False

    async def shutdown(self):
        """Closes the database connection pool"""
        await self._engine.dispose()
        logger.info("Database connection pool closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Provides a new database session context manager WITHOUT auto-commit.

        Callers own their transaction boundaries and commit explicitly.
        """
        session_start_time = time.time()
        async with self._session_factory() as session:
            db_logger.debug("Database session opened", operation="session_open")
            try:
                yield session
            except Exception as session_error:
                await session.rollback()
                error_logger.error("Database session error with rollback",
                                   error=str(session_error),
                                   session_duration_ms=(time.time() - session_start_time) * 1000,
                                   environment=self._environment,
                                   exc_info=True)
                raise
            finally:
                session_duration = (time.time() - session_start_time) * 1000
                if session_duration > LONG_SESSION_THRESHOLD_MS:
                    perf_logger.warning("Long-running database session",
                                        session_duration_ms=session_duration,
                                        threshold_ms=LONG_SESSION_THRESHOLD_MS)
                db_logger.debug("Database session closed",
                                operation="session_close",
                                session_duration_ms=session_duration)
