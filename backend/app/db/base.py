import logging
import os
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Get database URL from environment variables
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./strongbond.db")


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    # In-memory SQLite must share one connection or every session sees an empty database
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


# Create SQLAlchemy engine
engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

# Plain factory: one independent Session per call, for concurrent async callers
SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Thread-scoped sessions for the request handlers and scripts
SessionLocal = scoped_session(SessionFactory)

# Base class for SQLAlchemy models
Base = declarative_base()


def get_db() -> Generator:
    """Dependency for getting database session.

    Yields:
        Session: A database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize the database by creating all tables."""
    # Import models so they are registered on Base.metadata
    from ..models import sql_models  # noqa: F401

    logger.info("Creating database tables on %s", engine.url.render_as_string(hide_password=True))
    Base.metadata.create_all(bind=engine)


def drop_db() -> None:
    """Drop every table. Used by the test suite."""
    from ..models import sql_models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
