"""Document store backends and the factory selecting one from settings."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import Settings, get_settings
from ..db.session import build_engine
from .base import DocumentStore, descend, join_path, split_path
from .firebase import FirebaseDocumentStore
from .memory import MemoryDocumentStore
from .sql import SqlDocumentStore

logger = logging.getLogger(__name__)


def build_store(settings: Optional[Settings] = None) -> DocumentStore:
    settings = settings or get_settings()
    backend = settings.store_backend
    logger.info("Using %s document store backend", backend)
    if backend == "database":
        return SqlDocumentStore(build_engine(settings.database_url, settings))
    if backend == "firebase":
        return FirebaseDocumentStore(
            settings.firebase_url or "",
            auth_token=settings.firebase_auth_token,
            timeout_seconds=settings.firebase_timeout_seconds,
        )
    return MemoryDocumentStore()


__all__ = [
    "DocumentStore",
    "FirebaseDocumentStore",
    "MemoryDocumentStore",
    "SqlDocumentStore",
    "build_store",
    "descend",
    "join_path",
    "split_path",
]
