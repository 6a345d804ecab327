"""Database package."""

from db.base import Base
from db.session import async_session_factory, engine, get_async_session

__all__ = ["Base", "async_session_factory", "engine", "get_async_session"]
