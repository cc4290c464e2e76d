"""Database package: declarative base, engine and session factory helpers."""

from proclaim.db.base import Base, close_db, create_engine, create_session_factory, init_db

__all__ = [
    "Base",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
]
