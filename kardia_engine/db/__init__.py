"""Database package."""

from .database import Base, create_db_engine, create_session_factory, session_scope, init_db, commit_or_fail

__all__ = ["Base", "create_db_engine", "create_session_factory", "session_scope", "init_db", "commit_or_fail"]
