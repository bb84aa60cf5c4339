import logging
import os
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
logger = logging.getLogger("WorkQueue.Database")


class Database:
    """
    Owns the async engine and session factory for the jobs table.
    Constructed by the application's composition root and injected into the queue driver.
    """

    def __init__(self, connection_string: Optional[str] = None, **engine_options):
        self._engine: Optional[AsyncEngine] = None
        self._session_factory = None
        self.connection_string = None
        if connection_string:
            self.configure(connection_string, **engine_options)

    @property
    def is_enabled(self) -> bool:
        return self._engine is not None

    @staticmethod
    def url_from_env() -> str:
        """Build the connection string from DATABASE_URL or the DB_* variables."""
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        connection = os.getenv("DB_CONNECTION", "sqlite").lower()
        if connection == "sqlite":
            db_file = os.getenv("DB_DATABASE", "workqueue.db")
            return f"sqlite+aiosqlite:///{db_file}"

        if connection == "mysql":
            db_host = os.getenv("DB_HOST", "localhost")
            db_port = os.getenv("DB_PORT", "3306")
            db_name = os.getenv("DB_NAME", "workqueue")
            db_user = os.getenv("DB_USER", "root")
            db_pass = os.getenv("DB_PASS", "")
            return f"mysql+aiomysql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}"

        raise RuntimeError(f"Unknown database connection: {connection}")

    def configure(self, connection_string: str, **engine_options) -> None:
        """Configure the database connection."""
        if connection_string.startswith("sqlite"):
            # Concurrent writers wait on SQLite's file lock instead of failing immediately
            engine_options.setdefault("connect_args", {"timeout": 30})
        else:
            engine_options.setdefault("pool_pre_ping", True)

        self._engine = create_async_engine(connection_string, **engine_options)
        self._session_factory = sessionmaker(
            self._engine, expire_on_commit=False, class_=AsyncSession
        )
        self.connection_string = connection_string
        logger.info(f"Database connection configured ({self._engine.dialect.name})")

    def session(self) -> AsyncSession:
        """Get a new session for database operations."""
        if self._session_factory is None:
            raise RuntimeError("Database not configured. Call Database.configure() first.")
        return self._session_factory()

    async def create_tables(self) -> None:
        """Create all tables defined in models."""
        # Registers the queue_jobs table on Base.metadata
        import app.models.queue_job  # noqa: F401

        if self._engine is None:
            raise RuntimeError("Database not configured. Call Database.configure() first.")

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created")

    async def dispose(self) -> None:
        """Close pooled connections and release the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")
