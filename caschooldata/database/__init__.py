"""Processed-table cache (SQLAlchemy)."""

from .cache import TableCache
from .connection import get_database_url, get_engine, init_db, session_scope
from .models import Base, CachedTable

__all__ = [
    "Base",
    "CachedTable",
    "TableCache",
    "get_database_url",
    "get_engine",
    "init_db",
    "session_scope",
]
