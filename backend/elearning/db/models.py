"""ORM models backing the SQL document store."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class DocumentNodeModel(TimestampMixin, Base):
    """One stored subtree of the document tree, rooted at ``path``.

    No stored path is ever a strict prefix of another: a write below an
    existing node rewrites that node's payload, and a write above existing
    nodes replaces them.
    """

    __tablename__ = "document_nodes"
    __table_args__ = (Index("ix_document_nodes_path", "path", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(String(512), nullable=False)
    payload: Mapped[Any] = mapped_column(JSONType, nullable=True)
