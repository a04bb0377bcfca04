# database.py - Database configuration with PostgreSQL and SQLite support
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
from pathlib import Path

from settings import get_settings

logger = logging.getLogger(__name__)

DATABASE_URL = get_settings().DATABASE_URL

# Create data directory for SQLite if needed
if DATABASE_URL.startswith("sqlite"):
    DATA_DIR = Path(__file__).resolve().parent / "data"
    # Ensure the URL points to the correct path
    if DATABASE_URL == "sqlite:///./data/square_sync.db":
        DATA_DIR.mkdir(exist_ok=True)
        DATABASE_URL = f"sqlite:///{DATA_DIR}/square_sync.db"

# Database engine configuration
connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False  # Needed for SQLite with FastAPI

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,  # Handle stale connections for PostgreSQL
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session) -> bool:
    """
    Safely commit a database transaction with rollback on failure.

    Args:
        db: SQLAlchemy session

    Returns:
        True if commit succeeded

    Raises:
        Re-raises the exception after rollback
    """
    try:
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database commit failed, rolling back: {e}")
        db.rollback()
        raise
    except Exception as e:
        logger.error(f"Unexpected error during commit, rolling back: {e}")
        db.rollback()
        raise


@contextmanager
def transaction() -> Iterator[Session]:
    """
    Run one unit of work on its own connection.

    Commits when the block exits cleanly, rolls back and re-raises on any
    error, and always returns the connection to the pool.
    """
    db = SessionLocal()
    try:
        yield db
        safe_commit(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
