"""Database connection and session management utilities."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, Engine, event, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from issue_dispatch.config.settings import DatabaseConfig
from ..models.database import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """Initialize database manager.

        Args:
            config: Database configuration; defaults to a local SQLite file
        """
        self.config = config or DatabaseConfig()
        self.database_url = self.config.url
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._initialized = False

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite')

    def initialize(self) -> None:
        """Initialize database engine and session factory."""
        if self._initialized:
            return

        try:
            if self.is_sqlite:
                # In-memory databases must share one connection across threads
                in_memory = ':memory:' in self.database_url or self.database_url == 'sqlite://'
                self.engine = create_engine(
                    self.database_url,
                    connect_args={'check_same_thread': False},
                    poolclass=StaticPool if in_memory else None,
                    echo=self.config.echo,
                )

                @event.listens_for(self.engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()
            else:
                self.engine = create_engine(
                    self.database_url,
                    poolclass=QueuePool,
                    pool_size=5,
                    max_overflow=10,
                    pool_pre_ping=True,  # Verify connections before use
                    pool_recycle=3600,
                    echo=self.config.echo,
                )

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            self._initialized = True
            logger.info("Database manager initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def create_tables(self) -> None:
        """Create all database tables."""
        if not self._initialized:
            self.initialize()

        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session with automatic cleanup."""
        if not self._initialized:
            self.initialize()

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Close database connections and cleanup."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connections closed")


def init_database(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """Create a manager, initialize it and create tables."""
    manager = DatabaseManager(config)
    manager.initialize()
    manager.create_tables()
    return manager
