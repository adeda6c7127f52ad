"""Structured events for write-backs, resolver misses and migration runs.

Every event is written as one ``TELEMETRY {...}`` JSON line on the
``elearning.telemetry`` logger and fanned out to in-process listeners, which
tests use to assert on side effects the resolver otherwise swallows.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel

logger = logging.getLogger("elearning.telemetry")


class EventName(str, Enum):
    ENTITY_WRITE_BACK = "entity_write_back"
    ENTITY_RESOLVE_MISS = "entity_resolve_miss"
    MIGRATION_COLLECTION_COMPLETED = "migration_collection_completed"
    MIGRATION_RUN_COMPLETED = "migration_run_completed"


# high-volume events are logged at DEBUG; listeners still see them
_QUIET_EVENTS = frozenset({EventName.ENTITY_RESOLVE_MISS.value})


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []
_lock = RLock()


def _event_name(name: Union[EventName, str]) -> str:
    return name.value if isinstance(name, EventName) else str(name)


def register_listener(listener: Listener, *, events: Optional[Iterable[Union[EventName, str]]] = None) -> None:
    """Subscribe ``listener`` to every event, or only to the names in ``events``."""
    names = frozenset(_event_name(name) for name in events) if events is not None else None
    with _lock:
        _listeners.append((listener, names))


def unregister_listener(listener: Listener) -> None:
    with _lock:
        _listeners[:] = [entry for entry in _listeners if entry[0] != listener]


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def emit_event(name: Union[EventName, str], **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=_event_name(name), payload={key: _plain(value) for key, value in fields.items()})

    with _lock:
        targets = [listener for listener, names in _listeners if names is None or event.name in names]

    for listener in targets:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", event.name)

    level = logging.DEBUG if event.name in _QUIET_EVENTS else logging.INFO
    if logger.isEnabledFor(level):
        line = {"event": event.name, "at": event.recorded_at.isoformat(), **event.payload}
        logger.log(level, "TELEMETRY %s", json.dumps(line, default=str))
    return event


def _plain(value: Any) -> Any:
    """Reduce enums, models, tuples and datetimes to JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (tuple, list, set, frozenset)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    return value


__all__ = [
    "EventName",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
