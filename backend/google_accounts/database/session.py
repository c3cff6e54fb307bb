"""
Database engine and session factory.

The engine is created lazily from the configured DATABASE_URL and shared
for the lifetime of the process.
"""

import logging
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from google_accounts.credentials.errors import ConfigurationError
from google_accounts.db_base import Base

logger = logging.getLogger(__name__)


def create_session_factory(database_url: Optional[str]) -> sessionmaker:
    """
    Build a session factory for the given URL.

    Raises:
        ConfigurationError: If no database URL is configured
    """
    if not database_url:
        raise ConfigurationError("Database not configured")

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create all tables for the registered models."""
    # Import models to register them with Base
    import google_accounts.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session from the app's session factory."""
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        raise ConfigurationError("Database not configured")

    session = session_factory()
    try:
        yield session
    finally:
        session.close()
