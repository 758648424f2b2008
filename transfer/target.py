"""
transfer/target.py
------------------
Reference to the destination schema/catalog of a transfer.

The path is known at configuration time; the live handle is resolved lazily
through the metadata provider, cached, and dropped again when the owning
data source disconnects.
"""
from __future__ import annotations

import threading

from logger import get_logger
from models.metadata import ContainerInfo, TableInfo
from transfer.cancel import CancelToken, Outcome, run_cancellable
from transfer.errors import ResolutionError
from transfer.providers import ConnectionProvider, MetadataProvider

log = get_logger(__name__)


class TargetContainerRef:
    """
    Path plus cached live handle of a target container.

    Example::

        ref = TargetContainerRef("mysql-prod/shop")
        outcome = ref.resolve(metadata, connections, token)
        if outcome.ok:
            tables = metadata.list_children(outcome.value)
    """

    def __init__(self, path: str | None = None, handle: ContainerInfo | None = None) -> None:
        self._lock = threading.Lock()
        self._path = path if path else (handle.path if handle else None)
        self._handle = handle

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def handle(self) -> ContainerInfo | None:
        with self._lock:
            return self._handle

    @property
    def is_resolved(self) -> bool:
        return self.handle is not None

    def set_handle(self, handle: ContainerInfo) -> None:
        with self._lock:
            self._handle = handle
            self._path = handle.path

    def invalidate(self) -> None:
        """Forget the live handle; the next use resolves it again."""
        with self._lock:
            if self._handle is not None:
                log.info("Target container '%s' invalidated.", self._path)
            self._handle = None

    def resolve(
        self,
        metadata: MetadataProvider,
        connections: ConnectionProvider | None = None,
        token: CancelToken | None = None,
        producer_table: TableInfo | None = None,
    ) -> Outcome[ContainerInfo]:
        """
        Resolve (or return the cached) live container handle.

        Resolution goes by path when one is set, otherwise by the owner of
        *producer_table*.  If the resolved container's data source is not
        connected yet, the connection is initialised in the same cancellable
        step.

        Returns:
            :class:`Outcome` with the handle, ``cancelled=True``, or an
            ``error`` (a :class:`ResolutionError`).
        """
        container = self.handle
        if container is None:
            if not self._path and producer_table is None:
                return Outcome(error=ResolutionError("No target container configured."))
            path = self._path

            def _lookup(tok: CancelToken) -> ContainerInfo:
                if path:
                    found = metadata.resolve_by_path(path, tok)
                else:
                    found = metadata.resolve_by_object(producer_table, tok)  # type: ignore[arg-type]
                tok.raise_if_cancelled()
                if found is None:
                    raise ResolutionError(f"Target container '{path or producer_table}' not found.")
                return found

            outcome = run_cancellable(_lookup, token, name="container-resolve")
            if not outcome.ok or outcome.value is None:
                return _as_resolution_outcome(outcome, path)
            container = outcome.value
            self.set_handle(container)
            log.debug("Resolved target container '%s'.", container.path)

        if connections is not None and not connections.is_open(container):
            log.info("Initialising connection for '%s'...", container.path)
            resolved = container

            def _initialise(tok: CancelToken) -> ContainerInfo:
                connections.initialize(resolved, tok)
                return resolved

            outcome = run_cancellable(_initialise, token, name="connection-init")
            if not outcome.ok:
                return _as_resolution_outcome(outcome, container.path)
        return Outcome(value=container)

    def __repr__(self) -> str:
        state = "resolved" if self.is_resolved else "unresolved"
        return f"TargetContainerRef({self._path!r}, {state})"


def _as_resolution_outcome(outcome: Outcome, path: str | None) -> Outcome[ContainerInfo]:
    if outcome.cancelled:
        return Outcome(cancelled=True)
    error = outcome.error
    if not isinstance(error, ResolutionError):
        error = ResolutionError(f"Cannot resolve '{path}': {error}")
    return Outcome(error=error)
