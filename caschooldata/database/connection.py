"""
Cache database connection management.

Provides the engine, session factory and a transactional session scope for
the processed-table cache. Defaults to a SQLite file in the user cache
directory; any SQLAlchemy URL (e.g. PostgreSQL) can be configured instead.
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from caschooldata.utilities.common import get_cache_dir, load_settings

logger = logging.getLogger(__name__)

# Environment variables from a .env file, if present
load_dotenv()

DATABASE_URL_ENV = "CASCHOOLDATA_DATABASE_URL"
DEFAULT_DB_FILENAME = "caschooldata.db"

# Global engine instance (created lazily)
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_database_url(database_url: Optional[str] = None) -> str:
    """
    Get the cache database URL.

    Priority:
    1. Explicit argument
    2. CASCHOOLDATA_DATABASE_URL environment variable
    3. cache.database_url setting
    4. SQLite file caschooldata.db in the user cache directory

    Returns:
        Database connection URL string
    """
    if database_url:
        return database_url

    if os.getenv(DATABASE_URL_ENV):
        return os.getenv(DATABASE_URL_ENV)

    configured = load_settings().get("cache", {}).get("database_url")
    if configured:
        return configured

    return f"sqlite:///{get_cache_dir() / DEFAULT_DB_FILENAME}"


def create_cache_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create a new engine for a cache database URL.

    Pool sizing applies to server databases only; SQLite uses SQLAlchemy's
    default pool.
    """
    url = get_database_url(database_url)
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo)
    return create_engine(
        url,
        echo=echo,
        pool_size=5,  # Maximum number of connections in pool
        max_overflow=10,  # Additional connections beyond pool_size
        pool_timeout=30,  # Seconds to wait for available connection
        pool_recycle=1800,  # Recycle connections after 30 minutes
    )


def get_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Get or create the shared SQLAlchemy engine.

    Args:
        database_url: Optional override for database URL
        echo: If True, log all SQL statements (useful for debugging)

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine

    if _engine is None or database_url is not None:
        _engine = create_cache_engine(database_url, echo=echo)
        logger.debug(f"Cache engine: {_engine.url!r}")

    return _engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """
    Get the session factory.

    Args:
        engine: Optional engine instance (uses global if not provided)

    Returns:
        SQLAlchemy sessionmaker instance
    """
    global _SessionLocal

    if _SessionLocal is None or engine is not None:
        eng = engine or get_engine()
        _SessionLocal = sessionmaker(
            bind=eng,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    return _SessionLocal


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Usage:
        with session_scope() as session:
            session.add(entry)
            # Commits automatically on success
            # Rolls back on exception

    Yields:
        SQLAlchemy Session instance
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Create the cache tables if they don't exist.

    Args:
        engine: Optional engine instance (uses global if not provided)
    """
    from .models import Base

    eng = engine or get_engine()
    Base.metadata.create_all(bind=eng)


def check_connection(engine: Optional[Engine] = None) -> bool:
    """
    Test the database connection.

    Returns:
        True if connection successful, False otherwise
    """
    eng = engine or get_engine()
    try:
        with eng.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Cache database connection failed: {e}")
        return False
