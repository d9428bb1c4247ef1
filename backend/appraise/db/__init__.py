"""Database module."""

from appraise.db.base import Base
from appraise.db.session import async_session_factory, engine, get_db

__all__ = ["Base", "async_session_factory", "engine", "get_db"]
