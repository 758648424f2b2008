"""
transfer/providers.py
---------------------
Collaborator interfaces the engine consumes.

Catalog introspection and connection management are dialect specific and
live outside the engine.  These protocols describe the boundary; anything
with matching methods can be plugged in (tests use small in-memory fakes).
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from models.mapping import ContainerMapping
from models.metadata import ContainerInfo, TableInfo
from transfer.cancel import CancelToken

if TYPE_CHECKING:
    from transfer.database import TargetConnection


class MetadataProvider(Protocol):
    def list_children(self, container: ContainerInfo) -> list[TableInfo]:
        """Tables of *container* in natural catalog order."""
        ...

    def resolve_by_path(self, path: str, token: CancelToken) -> ContainerInfo | None:
        """Resolve a navigator node path to a live container handle."""
        ...

    def resolve_by_object(self, table: TableInfo, token: CancelToken) -> ContainerInfo | None:
        """Resolve the container owning *table*."""
        ...

    def prepare_target(
        self, mapping: ContainerMapping, connection: "TargetConnection"
    ) -> TableInfo:
        """
        Make the target of a CREATE/RECREATE mapping exist and describe it.

        DDL is the provider's business; the engine never generates it.
        Raises :class:`transfer.errors.ResolutionError` when impossible.
        """
        ...


class ConnectionProvider(Protocol):
    def open(self, container: ContainerInfo) -> "TargetConnection":
        """Open a new connection to the data source owning *container*."""
        ...

    def initialize(self, container: ContainerInfo, token: CancelToken) -> None:
        """Connect and initialise the data source (long-running, cancellable)."""
        ...

    def is_open(self, container: ContainerInfo) -> bool:
        ...
