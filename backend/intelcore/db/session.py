"""
Database session management with SQLAlchemy 2.0.

Provides engine construction, session factories and a transaction context
manager. Nothing is created at import time: the core and the API build their
own engine from settings so tests can run against in-memory SQLite.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from intelcore.config import settings
from intelcore.utils.errors import ConfigurationError
from intelcore.log_config import logger


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create a SQLAlchemy engine.

    Args:
        database_url: Connection URL (defaults to settings.database_url)
        echo: Log SQL statements (defaults to settings.debug)

    Raises:
        ConfigurationError: If the URL is malformed or names an unknown dialect

    Returns:
        Configured engine. In-memory SQLite shares one connection across threads.
    """
    url = database_url or settings.database_url
    echo = settings.debug if echo is None else echo

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {
            "pool_pre_ping": True,  # Verify connections before using
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 1800,  # Recycle connections after 30 minutes
        }

    try:
        return create_engine(url, echo=echo, **kwargs)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid database_url: {e}", details={"database_url": url}) from e


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the engine."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,  # Prevent lazy load issues after commit
    )


def init_db(engine: Engine) -> None:
    """Initialize database schema (create all tables).

    Note: This is idempotent - it only creates tables/indexes that don't exist.
    """
    from intelcore.db.models import Base

    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Database schema initialized successfully")


@contextmanager
def transaction_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Provide a transactional session scope.

    Usage:
        with transaction_scope(factory) as db:
            db.add(record)
            # Transaction automatically committed on success

    Yields:
        SQLAlchemy session instance

    The transaction is committed on success and rolled back (then re-raised) on error.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.debug(f"Database transaction rolled back: {e}")
        raise
    finally:
        db.close()


def check_db_health(engine: Engine) -> bool:
    """Run a trivial query to confirm the database is reachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
