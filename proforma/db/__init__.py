"""
Database engine, sessions and models.
"""

from proforma.db.database import engine, SessionLocal, get_db, get_db_context, init_db
from proforma.db.models import Base

__all__ = ["engine", "SessionLocal", "get_db", "get_db_context", "init_db", "Base"]
