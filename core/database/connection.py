# PostgreSQL connection management
import asyncio
import time
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from contextlib import asynccontextmanager
from typing import AsyncIterator

from core.logging import (
    get_database_logger_safe,
    get_error_logger_safe,
    get_performance_logger_safe,
)

# Initialize specialized loggers
db_logger = get_database_logger_safe("database_manager")
error_logger = get_error_logger_safe("database_manager")
perf_logger = get_performance_logger_safe("database_manager")

# The base class for all SQLAlchemy models
Base = declarative_base()


class DatabaseManager:
    """Manages the connection pool for the relational order store"""

    def __init__(self, db_url: str, environment: str = "development", schema_management: str = "auto"):
        engine_options = {"echo": False, "pool_pre_ping": True}
        # sqlite (tests, local runs) does not take queue-pool sizing
        if not db_url.startswith("sqlite"):
            engine_options.update(pool_size=20, max_overflow=30, pool_recycle=3600)
        self._engine = create_async_engine(db_url, **engine_options)
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession
        )
        self._environment = environment
        self._schema_management = schema_management

    async def init(self) -> None:
        """Create tables unless schema management is delegated elsewhere."""
        # Import models so they register on Base.metadata
        from core.database import models  # noqa: F401

        if self._schema_management == "none":
            db_logger.info("Schema management disabled; expecting tables to exist")
            return

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        db_logger.info("Database initialized with create_all",
                       environment=self._environment,
                       schema_management=self._schema_management)

    async def verify_connection(self) -> bool:
        """Verify database connection is ready"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            error_logger.error("Database connection verification failed", error=str(e))
            return False

    async def wait_for_ready(self, timeout: int = 30, check_interval: float = 1.0) -> bool:
        """Wait for database to be ready with timeout"""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while (loop.time() - start_time) < timeout:
            if await self.verify_connection():
                db_logger.info("Database connection verified")
                return True

            db_logger.info("Database not ready, waiting...")
            await asyncio.sleep(check_interval)

        raise RuntimeError(f"Database not ready after {timeout} seconds")

    async def shutdown(self) -> None:
        """Closes the database connection pool"""
        await self._engine.dispose()
        db_logger.info("Database connection pool closed.")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Provides a new database session WITHOUT auto-commit.

        Callers own transaction boundaries; the session is rolled back if the
        block raises.
        """
        session_start_time = time.time()
        async with self._session_factory() as session:
            try:
                yield session
            except Exception as session_error:
                await session.rollback()
                error_logger.error("Database session error with rollback",
                                   error=str(session_error),
                                   environment=self._environment)
                raise
            finally:
                session_duration = (time.time() - session_start_time) * 1000
                if session_duration > 5000:
                    perf_logger.warning("Long-running database session",
                                        session_duration_ms=session_duration,
                                        threshold_ms=5000)
