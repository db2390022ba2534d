"""Database connection and session management."""
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from .config import get_settings
from .errors import Conflict

logger = logging.getLogger("agentflow-core.database")

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sync loop and request handlers share the file from different threads
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 3,
        "max_overflow": 7,
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


# Create database engine
engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[Session, None, None]:
    """
    Run a read-modify-write block as one unit.

    Commits when the block exits cleanly and rolls back on any exception, so
    an activity log row and the entity mutation it describes are persisted
    together or not at all.

    Raises:
        Conflict: If a versioned Task/Agent row was changed concurrently
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent write detected, transaction rolled back: {e}")
        raise Conflict("The record was modified concurrently; reload and retry") from e
    except SQLAlchemyError:
        db.rollback()
        logger.error("Database error, transaction rolled back", exc_info=True)
        raise
    except Exception:
        db.rollback()
        raise
