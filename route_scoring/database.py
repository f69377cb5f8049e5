"""
Route Scoring - Database Engine.

============================================================
PURPOSE
============================================================
SQLAlchemy engine, session and transaction helpers backing
the SQL store implementations.

- Synchronous SQLAlchemy 2.0 engine with pooling
- Explicit transaction boundaries (commit or full rollback)
- Table creation at startup

Async callers reach the database through asyncio.to_thread
(see repository.py).

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DatabaseConfig
from .exceptions import TransientStoreError


logger = logging.getLogger(__name__)


# =============================================================
# DECLARATIVE BASE
# =============================================================

Base = declarative_base()


DEFAULT_DATABASE_URL = "sqlite:///route_scoring.db"


def get_database_url(config: Optional[DatabaseConfig] = None) -> str:
    """Resolve the database URL: config, then environment, then local SQLite."""
    url = config.url if config is not None else None
    if not url:
        url = os.getenv("ROUTE_SCORING_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")
    return url


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def create_database_engine(
    url: Optional[str] = None,
    config: Optional[DatabaseConfig] = None,
) -> Engine:
    """
    Create a SQLAlchemy engine.

    Args:
        url: Database URL (resolved from config/env when omitted)
        config: Pool settings

    Returns:
        SQLAlchemy Engine
    """
    config = config or DatabaseConfig()
    url = url or get_database_url(config)

    logger.info(f"Creating database engine for: {url.split('@')[-1]}")

    if _is_sqlite_memory(url):
        # One shared connection so every thread sees the same database
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=config.echo,
        )
    elif url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=config.echo,
        )
    else:
        engine = create_engine(
            url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            echo=config.echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# SESSION MANAGEMENT
# =============================================================


@contextmanager
def transaction_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs; rolls back on ANY exception.

    Usage:
        with transaction_scope(factory) as session:
            session.merge(record)
            # Commits automatically at end
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database transaction failed, rolling back: {e}")
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"Transaction failed with unexpected error: {e}")
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


def verify_database_connection(engine: Engine) -> bool:
    """
    Verify the database connection is working.

    Raises:
        TransientStoreError if the connection fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise TransientStoreError("connect", str(e)) from e


def create_all_tables(engine: Engine) -> None:
    """Create all tables defined in ORM models."""
    # Register models with Base
    from . import models  # noqa: F401

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
