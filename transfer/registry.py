"""
transfer/registry.py
--------------------
Reference-counted registry of target containers in active use.

The first acquire of a container attaches a listener on the event bus, the
last release detaches it.  Counting and (de)registration happen under one
lock because disconnect notifications arrive on other threads than the
transfer driver.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field

from logger import get_logger
from models.metadata import ContainerInfo
from transfer.events import DataSourceEvent, EventBus, Listener
from transfer.target import TargetContainerRef

log = get_logger(__name__)

ContainerKey = tuple[str, str]  # (data_source_id, path)


def container_key(container: ContainerInfo) -> ContainerKey:
    return (container.data_source_id, container.path)


@dataclass
class _Entry:
    container: ContainerInfo
    listener: Listener
    count: int = 0
    refs: list[TargetContainerRef] = field(default_factory=list)


class UsedTargetRegistry:
    """
    Tracks which target containers are being written to.

    Example::

        registry = UsedTargetRegistry(bus)
        registry.acquire(container, ref)
        try:
            ...
        finally:
            registry.release(container)
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._lock = threading.Lock()
        self._entries: dict[ContainerKey, _Entry] = {}

    def acquire(self, container: ContainerInfo, ref: TargetContainerRef | None = None) -> int:
        """Increment the use count of *container*; returns the new count."""
        key = container_key(container)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry(container=container, listener=self._make_listener(key))
                self._entries[key] = entry
                self._bus.subscribe(container.data_source_id, entry.listener)
                log.debug("Target container '%s' activated.", container.path)
            entry.count += 1
            if ref is not None and ref not in entry.refs:
                entry.refs.append(ref)
            return entry.count

    def release(self, container: ContainerInfo) -> int:
        """Decrement the use count; returns what is left (0 once released)."""
        key = container_key(container)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                log.warning("Target container '%s' is not registered.", container.path)
                return 0
            entry.count -= 1
            if entry.count > 0:
                return entry.count
            del self._entries[key]
            self._bus.unsubscribe(container.data_source_id, entry.listener)
            log.debug("Target container '%s' deactivated.", container.path)
            return 0

    def count(self, container: ContainerInfo) -> int:
        with self._lock:
            entry = self._entries.get(container_key(container))
            return entry.count if entry else 0

    def is_active(self, container: ContainerInfo) -> bool:
        return self.count(container) > 0

    def active_containers(self) -> list[ContainerInfo]:
        with self._lock:
            return [e.container for e in self._entries.values()]

    def _make_listener(self, key: ContainerKey) -> Listener:
        def _listener(event: DataSourceEvent) -> None:
            self._handle_event(key, event)
        return _listener

    def _handle_event(self, key: ContainerKey, event: DataSourceEvent) -> None:
        if not event.is_disconnect:
            return
        with self._lock:
            entry = self._entries.get(key)
            refs = list(entry.refs) if entry else []
        for ref in refs:
            ref.invalidate()
        if refs:
            log.warning(
                "Data source '%s' disconnected; %d target handle(s) dropped.",
                event.data_source_id, len(refs),
            )
