"""
Database connection and session management.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import NullPool

from proforma.config import get_settings
from proforma.db.models import Base

settings = get_settings()


def build_engine(database_url: str) -> Engine:
    """Create an engine for the configured database."""
    if database_url.startswith("postgresql"):
        return create_engine(database_url, poolclass=NullPool)
    # SQLite connections are shared with the request threadpool
    return create_engine(database_url, connect_args={"check_same_thread": False})


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine):
    """Create any missing tables."""
    Base.metadata.create_all(bind=bind)


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Transactional session for scripts: commits on success, rolls back on error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
