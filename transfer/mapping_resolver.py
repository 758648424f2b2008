"""
transfer/mapping_resolver.py
----------------------------
Binds each source container to a target table and each source column to a
target column.

Design Decisions:
    * One :class:`ContainerMapping` per source identity (``full_id``); the
      registry is an insertion-ordered dict so persisted settings come out
      in pipe order.  Resolving the same pipe twice returns the same object.
    * Target lookup is by name: exact case first, otherwise the first
      case-insensitive match in the provider's natural catalog order.
    * Persisted sub-settings restore names and kinds; the resolver then
      re-binds them to live metadata and reconciles kinds that no longer
      fit (e.g. "existing" for a table that has since been dropped).
    * A mapping created before its target container resolves stays
      UNSPECIFIED and is bound, with its persisted block, on the first
      resolve that has a container.
    * Column type differences are classified with
      :func:`transfer.type_converter.classify_conversion`; UNSAFE pairings are
      left UNSPECIFIED so the transfer refuses to start until the user
      skips or overrides the column.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Sequence

from logger import get_logger
from models.mapping import (
    AttributeMapping,
    AttributeMappingType,
    ContainerMapping,
    ContainerMappingType,
)
from models.metadata import ContainerInfo, SourceContainer, TableInfo
from transfer.providers import MetadataProvider
from transfer.target import TargetContainerRef
from transfer.type_converter import (
    ConversionSafety,
    classify_conversion,
    needs_conversion,
    target_type_for,
)

if TYPE_CHECKING:
    from transfer.pipes import Pipe

log = get_logger(__name__)


def find_table(tables: Sequence[TableInfo], name: str | None) -> TableInfo | None:
    """Exact-case match first, else first case-insensitive match in catalog order."""
    if not name:
        return None
    for table in tables:
        if table.name == name:
            return table
    lowered = name.lower()
    for table in tables:
        if table.name.lower() == lowered:
            return table
    return None


class MappingResolver:
    """
    Mapping registry for one transfer session.

    Example::

        resolver = MappingResolver(metadata)
        mapping = resolver.resolve_target(pipe, target_ref)
        if not resolver.is_complete(pipe):
            print(mapping.missing_attributes())
    """

    def __init__(self, metadata: MetadataProvider) -> None:
        self._metadata = metadata
        self._mappings: dict[str, ContainerMapping] = {}
        self._persisted: dict[str, dict[str, Any]] = {}
        self._unbound: set[str] = set()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def mapping_for(self, source: SourceContainer | None) -> ContainerMapping | None:
        if source is None:
            return None
        return self._mappings.get(source.full_id)

    def mappings(self) -> list[ContainerMapping]:
        return list(self._mappings.values())

    def persisted_for(self, source: SourceContainer) -> dict[str, Any] | None:
        block = self._persisted.get(source.full_id)
        return block if isinstance(block, dict) else None

    def is_complete(self, pipe: "Pipe") -> bool:
        mapping = self.mapping_for(pipe.source)
        if mapping is None:
            return False
        if mapping.mapping_type == ContainerMappingType.UNSPECIFIED:
            return False
        return mapping.is_complete()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_target(self, pipe: "Pipe", target_ref: TargetContainerRef) -> ContainerMapping:
        """
        Look up or create the mapping for *pipe*'s source.

        A new mapping is auto-bound against the target container's tables and
        then overlaid with any persisted sub-settings for the same source.

        Raises:
            ValueError: If the pipe has no producer.
        """
        source = pipe.source
        if source is None:
            raise ValueError(f"Pipe '{pipe.name}' has no source container.")
        container = target_ref.handle
        existing = self._mappings.get(source.full_id)
        if existing is not None:
            if source.full_id in self._unbound and container is not None:
                log.debug("Binding '%s' now that its target container is resolved.", source.full_id)
                self._bind_new(existing, container)
            return existing

        mapping = ContainerMapping(
            source=source,
            attribute_mappings=[AttributeMapping(source=col) for col in source.columns],
        )
        self._mappings[source.full_id] = mapping
        if container is None:
            log.warning(
                "Target container for '%s' is not resolved; mapping left unspecified.",
                source.full_id,
            )
            self._unbound.add(source.full_id)
        else:
            self._bind_new(mapping, container)

        log.debug(
            "Resolved '%s' → '%s' (%s).",
            source.full_id, mapping.target_name, mapping.mapping_type.value,
        )
        return mapping

    def _bind_new(self, mapping: ContainerMapping, container: ContainerInfo) -> None:
        self._unbound.discard(mapping.key)
        self._auto_bind(mapping, container)
        persisted = self.persisted_for(mapping.source)
        if persisted is not None:
            self.apply_settings(mapping, persisted, container)

    def register(self, mapping: ContainerMapping) -> None:
        """Add or replace the mapping for ``mapping.source``."""
        self._unbound.discard(mapping.key)
        self._mappings[mapping.key] = mapping

    def remember_persisted(self, persisted: dict[str, Any]) -> None:
        """Keep persisted sub-settings for pipes created later."""
        self._persisted = {k: v for k, v in persisted.items() if isinstance(v, dict)}

    def apply_persisted(
        self,
        persisted: dict[str, Any],
        pipes: Iterable["Pipe"],
        target_ref: TargetContainerRef,
    ) -> int:
        """
        Apply persisted sub-settings to the current pipes.

        Entries for sources that are part of the pipe set are applied
        (creating the mapping when needed); the rest are dropped silently.

        Returns:
            Number of entries applied.
        """
        self.remember_persisted(persisted)
        by_id = {p.source.full_id: p for p in pipes if p.source is not None}
        applied = 0
        for key, block in self._persisted.items():
            pipe = by_id.get(key)
            if pipe is None:
                log.debug("Discarding stale mapping settings for '%s'.", key)
                continue
            if target_ref.handle is None:
                log.debug("Target container unresolved; settings for '%s' wait for its pipe.", key)
                continue
            mapping = self._mappings.get(key)
            if mapping is None or key in self._unbound:
                self.resolve_target(pipe, target_ref)
            else:
                self.apply_settings(mapping, block, target_ref.handle)
            applied += 1
        return applied

    def apply_settings(
        self,
        mapping: ContainerMapping,
        settings: dict[str, Any],
        container: ContainerInfo,
    ) -> None:
        """Overlay a persisted block on *mapping* and re-bind it."""
        self._unbound.discard(mapping.key)
        mapping.load_settings(settings)
        tables = self._metadata.list_children(container)
        mtype = mapping.mapping_type

        if mtype == ContainerMappingType.UNSPECIFIED:
            self._auto_bind(mapping, container, tables)
            return
        if mtype == ContainerMappingType.SKIP:
            return

        table = find_table(tables, mapping.target_name)
        if mtype == ContainerMappingType.EXISTING and table is None:
            log.info(
                "Target '%s' no longer exists; '%s' will be created.",
                mapping.target_name, mapping.source.full_id,
            )
            mapping.mapping_type = ContainerMappingType.CREATE
        elif mtype == ContainerMappingType.CREATE and table is not None:
            mapping.mapping_type = ContainerMappingType.EXISTING
        elif mtype not in (
            ContainerMappingType.EXISTING,
            ContainerMappingType.CREATE,
            ContainerMappingType.RECREATE,
        ):
            raise AssertionError(f"Unhandled container mapping type: {mtype}")

        mapping.target = table
        if table is not None:
            mapping.target_name = table.name
        self._bind_attributes(mapping, container.dialect)

    def set_target(
        self,
        mapping: ContainerMapping,
        target_name: str,
        container: ContainerInfo,
        mapping_type: ContainerMappingType | None = None,
    ) -> None:
        """Point *mapping* at another target table (or a new one)."""
        self._unbound.discard(mapping.key)
        table = find_table(self._metadata.list_children(container), target_name)
        mapping.target = table
        mapping.target_name = table.name if table else target_name
        if mapping_type is not None:
            mapping.mapping_type = mapping_type
        else:
            mapping.mapping_type = (
                ContainerMappingType.EXISTING if table else ContainerMappingType.CREATE
            )
        for attr in mapping.attribute_mappings:
            if attr.mapping_type != AttributeMappingType.SKIP:
                attr.mapping_type = AttributeMappingType.UNSPECIFIED
            attr.target = None
        self._bind_attributes(mapping, container.dialect)

    def set_mapping_type(
        self,
        mapping: ContainerMapping,
        mapping_type: ContainerMappingType,
        container: ContainerInfo,
    ) -> None:
        """Change what happens to a whole source container."""
        self._unbound.discard(mapping.key)
        if mapping_type in (ContainerMappingType.SKIP, ContainerMappingType.UNSPECIFIED):
            mapping.mapping_type = mapping_type
            return
        self.set_target(
            mapping, mapping.target_name or mapping.source.name, container, mapping_type
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _auto_bind(
        self,
        mapping: ContainerMapping,
        container: ContainerInfo,
        tables: Sequence[TableInfo] | None = None,
    ) -> None:
        if tables is None:
            tables = self._metadata.list_children(container)
        table = find_table(tables, mapping.source.name)
        mapping.target = table
        if table is not None:
            mapping.target_name = table.name
            mapping.mapping_type = ContainerMappingType.EXISTING
        else:
            mapping.target_name = mapping.source.name
            mapping.mapping_type = ContainerMappingType.CREATE
        self._bind_attributes(mapping, container.dialect)

    def _bind_attributes(self, mapping: ContainerMapping, dialect: str) -> None:
        recreate = mapping.mapping_type == ContainerMappingType.RECREATE
        table = None if recreate else mapping.target
        for attr in mapping.attribute_mappings:
            self._bind_attribute(attr, table, dialect)

    @staticmethod
    def _bind_attribute(attr: AttributeMapping, table: TableInfo | None, dialect: str) -> None:
        name = attr.target_name or attr.source.name
        column = table.find_column(name) if table is not None else None
        mtype = attr.mapping_type

        if mtype == AttributeMappingType.SKIP:
            attr.target = column
            attr.target_name = column.name if column else name
            return
        if mtype not in (
            AttributeMappingType.UNSPECIFIED,
            AttributeMappingType.EXISTING,
            AttributeMappingType.CREATE,
            AttributeMappingType.CONVERT,
        ):
            raise AssertionError(f"Unhandled attribute mapping type: {mtype}")

        if column is None:
            attr.target = None
            attr.target_name = name
            attr.mapping_type = AttributeMappingType.CREATE
            if not attr.target_type_override:
                attr.target_type_override = target_type_for(attr.source.type_name, dialect) or None
            return

        attr.target = column
        attr.target_name = column.name
        if not needs_conversion(attr.source.type_name, column.type_name):
            attr.mapping_type = AttributeMappingType.EXISTING
            return
        safety = classify_conversion(attr.source.type_name, column.type_name)
        if safety == ConversionSafety.UNSAFE:
            log.warning(
                "Unsafe conversion %s.%s (%s → %s); column left unmapped.",
                table.name if table else "?", column.name,
                attr.source.type_name, column.type_name,
            )
            attr.mapping_type = AttributeMappingType.UNSPECIFIED
            return
        if safety == ConversionSafety.LOSSY:
            log.info(
                "Lossy conversion %s (%s → %s).",
                column.name, attr.source.type_name, column.type_name,
            )
        attr.mapping_type = AttributeMappingType.CONVERT
