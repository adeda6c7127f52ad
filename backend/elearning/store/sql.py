"""Relational backend: the document tree stored as path-addressed JSON subtrees."""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from contextlib import nullcontext
from typing import Any, ContextManager, List, Mapping, Optional

from sqlalchemy import Engine, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.base import Base
from ..db.models import DocumentNodeModel
from ..db.session import get_engine, make_session_factory, session_scope
from ..errors import StoreError
from .base import descend, prune_tree, split_path, write_into

logger = logging.getLogger(__name__)


def _ancestor_paths(segments: List[str], *, include_self: bool = True) -> List[str]:
    stop = len(segments) + 1 if include_self else len(segments)
    return ["/".join(segments[:index]) for index in range(1, stop)]


def _below(path: str):
    return DocumentNodeModel.path.startswith(path + "/", autoescape=True)


class SqlDocumentStore:
    """Document tree persisted in the ``document_nodes`` table.

    Each row holds the subtree rooted at its ``path``. Reads descend into the
    nearest ancestor row or assemble the descendant rows; writes below an
    existing row rewrite that row's payload. The synchronous session runs in
    a worker thread so the async interface never blocks the event loop.

    The ancestor row is read ``FOR UPDATE`` before it is patched, so
    concurrent writes to sibling paths cannot drop each other. SQLite ignores
    row locks and is serialized by a process-wide lock instead.
    """

    def __init__(self, engine: Optional[Engine] = None, *, create_schema: bool = True) -> None:
        self._engine = engine or get_engine()
        self._factory = make_session_factory(self._engine)
        if create_schema:
            Base.metadata.create_all(self._engine)
        # SQLite shares one connection between worker threads
        self._lock: ContextManager[Any] = threading.Lock() if self._engine.dialect.name == "sqlite" else nullcontext()

    async def get(self, path: str) -> Optional[Any]:
        return await asyncio.to_thread(self._guarded, self._read, path)

    async def set(self, path: str, value: Any) -> None:
        await asyncio.to_thread(self._guarded, self._write_many, path, {"": value})

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._guarded, self._write_many, path, dict(fields))

    async def exists(self, path: str) -> bool:
        return await self.get(path) is not None

    def _guarded(self, operation, *args: Any) -> Any:
        try:
            with self._lock:
                return operation(*args)
        except SQLAlchemyError as exc:
            logger.warning("Document store operation %s failed: %s", operation.__name__, exc)
            raise StoreError(f"Document store {operation.__name__.strip('_')} failed: {exc}") from exc

    def _read(self, path: str) -> Optional[Any]:
        segments = split_path(path)
        normalized = "/".join(segments)
        with session_scope(self._factory, commit=False) as session:
            ancestor = session.execute(
                select(DocumentNodeModel).where(DocumentNodeModel.path.in_(_ancestor_paths(segments)))
            ).scalars().first()
            if ancestor is not None:
                remainder = segments[len(split_path(ancestor.path)) :]
                return copy.deepcopy(descend(ancestor.payload, remainder))
            rows = session.execute(select(DocumentNodeModel).where(_below(normalized))).scalars().all()
            tree: Any = None
            for row in rows:
                tree = write_into(tree, split_path(row.path)[len(segments) :], copy.deepcopy(row.payload))
            return tree

    def _write_many(self, path: str, fields: Mapping[str, Any]) -> None:
        base = split_path(path)
        with session_scope(self._factory) as session:
            for key, value in fields.items():
                segments = base + (split_path(key) if key else [])
                self._write(session, segments, prune_tree(copy.deepcopy(value)))
                session.flush()

    def _write(self, session: Session, segments: List[str], value: Any) -> None:
        normalized = "/".join(segments)
        strict_ancestors = _ancestor_paths(segments, include_self=False)
        ancestor = None
        if strict_ancestors:
            # row lock: sibling writes patch the same ancestor payload
            ancestor = session.execute(
                select(DocumentNodeModel)
                .where(DocumentNodeModel.path.in_(strict_ancestors))
                .with_for_update()
            ).scalars().first()
        if ancestor is not None:
            remainder = segments[len(split_path(ancestor.path)) :]
            payload = write_into(copy.deepcopy(ancestor.payload), remainder, value)
            if payload is None:
                session.delete(ancestor)
            else:
                ancestor.payload = payload
            return
        session.execute(
            delete(DocumentNodeModel).where(or_(DocumentNodeModel.path == normalized, _below(normalized))),
            execution_options={"synchronize_session": False},
        )
        if value is not None:
            session.add(DocumentNodeModel(path=normalized, payload=value))


__all__ = ["SqlDocumentStore"]
