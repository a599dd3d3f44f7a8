"""
Database session management for the content approval store.
Provides SQLAlchemy engine and session lifecycle for any SQL backend.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from content_approval.core.settings import get_settings
from content_approval.db.models import Base

logger = logging.getLogger(__name__)


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


class DatabaseSessionManager:
    """Manages database sessions and connections."""

    def __init__(self, database_url: Optional[str] = None, *, create_tables: bool = True):
        self.database_url = database_url or get_settings().database_url
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._create_tables = create_tables
        # An in-memory SQLite database lives on one shared connection, so
        # sessions from worker threads must take turns.
        self._single_connection = _is_sqlite_memory(self.database_url)
        self._connection_lock = threading.Lock()
        self._initialize_database()

    def _initialize_database(self):
        """Initialize database engine and session factory."""
        try:
            if self._single_connection:
                self._engine = create_engine(
                    self.database_url,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            elif self.database_url.startswith("sqlite"):
                self._engine = create_engine(
                    self.database_url,
                    connect_args={"check_same_thread": False, "timeout": 30},
                )
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_pre_ping=True,
                    pool_recycle=3600,  # 1 hour
                )

            self._session_factory = sessionmaker(
                bind=self._engine, autocommit=False, autoflush=False, expire_on_commit=False
            )

            if self._create_tables:
                Base.metadata.create_all(self._engine)

            logger.info("Database session manager initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def get_session(self) -> Session:
        """Get a new database session."""
        if not self._session_factory:
            self._initialize_database()
        assert self._session_factory is not None
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        if self._single_connection:
            self._connection_lock.acquire()
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            if self._single_connection:
                self._connection_lock.release()

    def close(self):
        """Close the database engine."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


# Global database session manager
_db_manager: Optional[DatabaseSessionManager] = None


def get_database_manager(database_url: Optional[str] = None) -> DatabaseSessionManager:
    """Get or create the global database session manager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseSessionManager(database_url)
    return _db_manager


def close_database_manager() -> None:
    """Dispose the global database session manager, if one was created."""
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
