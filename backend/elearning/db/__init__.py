"""Database utilities for the SQL document store."""

from .base import Base
from .models import DocumentNodeModel
from .session import (
    build_engine,
    dispose_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    session_scope,
)

__all__ = [
    "Base",
    "DocumentNodeModel",
    "build_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
]
