"""Database configuration and session management."""

import logging
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from kardia_engine.llm.base import PersistenceFailure

logger = logging.getLogger(__name__)

# Base class for all models
Base = declarative_base()

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite file databases get WAL-friendly connect args; ``sqlite://`` (in-memory)
    shares one connection across threads so tests and the API see the same data.
    """
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,  # Needed for SQLite
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=False,
            )
        return create_engine(database_url, connect_args=connect_args, echo=False)
    return create_engine(database_url, pool_pre_ping=True, echo=False)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Yield a database session and close it afterwards.

    Usage in FastAPI endpoints (wrapped by a dependency):
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """
    Initialize the database.

    Creates all tables if they don't exist.
    Should be called on application startup.
    """
    url = engine.url
    if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    # Import all models so they're registered with Base
    from kardia_engine.models import conversation  # noqa: F401

    Base.metadata.create_all(bind=engine)

    if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        # WAL mode allows readers during writes
        with engine.connect() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.execute(text("PRAGMA synchronous=NORMAL"))
            conn.commit()

    logger.info(f"Database initialized at: {url.render_as_string(hide_password=True)}")


def commit_or_fail(db: Session, action: str) -> None:
    """
    Commit the session, rolling back and raising PersistenceFailure on error.

    Args:
        db: Session with pending changes
        action: Short description used in the error message
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database write failed ({action}): {e}")
        raise PersistenceFailure(f"Failed to {action}: {e}") from e
