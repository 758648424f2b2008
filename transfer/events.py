"""
transfer/events.py
------------------
In-process event bus for metadata change notifications.

Events are published from whatever thread noticed the change (a connection
watchdog, a metadata refresh) and delivered synchronously to listeners
registered for that data source.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from logger import get_logger

log = get_logger(__name__)


class EventAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"


@dataclass(frozen=True)
class DataSourceEvent:
    """
    Attributes:
        action:         What happened.
        data_source_id: Data source the event is keyed by.
        obj:            Changed object (table, column, container) if any.
        enabled:        For UPDATE of the data source itself, ``False`` means
                        it was disconnected.
    """
    action: EventAction
    data_source_id: str
    obj: Any = None
    enabled: bool | None = None

    @property
    def is_disconnect(self) -> bool:
        return self.action == EventAction.UPDATE and self.enabled is False


Listener = Callable[[DataSourceEvent], None]


class EventBus:
    """Listener registry keyed by data source id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, data_source_id: str, listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(data_source_id, []).append(listener)

    def unsubscribe(self, data_source_id: str, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(data_source_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(data_source_id, None)

    def listener_count(self, data_source_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(data_source_id, []))

    def publish(self, event: DataSourceEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event.data_source_id, []))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                log.exception(
                    "Listener failed on %s event for '%s'.",
                    event.action.value, event.data_source_id,
                )
