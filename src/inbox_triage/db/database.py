"""
Database connection and session management.

Wraps a SQLAlchemy engine and session factory. Every service receives a
``Database`` and performs each logical operation inside one ``session()``
block, so a status change and its paired audit write commit together or not
at all.
"""

from contextlib import contextmanager
from typing import Generator, Optional

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

logger = structlog.get_logger(__name__)


class Database:
    """
    Engine plus session factory for one database URL.

    Examples:
        >>> db = Database("sqlite:///./inbox.db")
        >>> db.create_all()
        >>> with db.session() as session:
        ...     session.add(item)
    """

    def __init__(self, url: str, echo: bool = False, pool_size: Optional[int] = None):
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            # Sessions are used from request threads and background workers
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        elif pool_size:
            engine_kwargs["pool_size"] = pool_size

        self.engine: Engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(
            "database_engine_created",
            dialect=self.engine.dialect.name,
            database=self.engine.url.database,
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions with automatic commit/rollback.

        Yields:
            SQLAlchemy Session instance

        Raises:
            Exception: Any database exception (after rollback)
        """
        session = self._session_factory()

        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("db_session_rollback", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """
        Create all database tables.

        For production, manage the schema with migrations.
        """
        Base.metadata.create_all(self.engine)
        logger.info("db_tables_created")

    def drop_all(self) -> None:
        """Drop all database tables. Destructive; only use for testing."""
        Base.metadata.drop_all(self.engine)
        logger.warning("db_tables_dropped")

    def dispose(self) -> None:
        self.engine.dispose()


# Global singleton
_database: Optional[Database] = None


def get_database() -> Database:
    """
    Get or create the process-wide Database from settings (singleton).

    Returns:
        Database instance
    """
    global _database

    if _database is None:
        from inbox_triage.config import settings

        _database = Database(
            settings.database_url,
            echo=settings.database_echo_sql,
            pool_size=settings.database_pool_size,
        )

    return _database


def set_database(database: Optional[Database]) -> None:
    """Replace the process-wide Database (used by tests and the CLI)."""
    global _database
    _database = database
