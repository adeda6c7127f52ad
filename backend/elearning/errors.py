"""Exceptions raised by the path, store and migration layers.

Absent entities are never signalled with an exception: the resolver returns a
``found=False`` result instead. Write-back failures are logged and swallowed,
and migration failures are collected into reports.
"""

from __future__ import annotations


class UnknownEntityTypeError(ValueError):
    """Raised when a path is requested for an entity type with no layout."""


class MissingKeyError(ValueError):
    """Raised when a required key (course id, module id, ...) is missing or blank."""


class MalformedRecordError(ValueError):
    """Raised when a stored record does not have the shape of a document."""


class StoreError(RuntimeError):
    """Raised by document store backends when a read or write fails."""


__all__ = [
    "MalformedRecordError",
    "MissingKeyError",
    "StoreError",
    "UnknownEntityTypeError",
]
