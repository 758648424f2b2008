"""
models/metadata.py
------------------
Generic descriptions of database objects.

Dialect-specific introspection lives behind the metadata provider; whatever
catalog it reads, it hands the engine these plain structures.  They are
frozen so they can be shared between worker threads and used as dict keys.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ColumnInfo:
    """One column (attribute) of a table or result set."""
    name: str
    type_name: str
    nullable: bool = True
    auto_generated: bool = False
    primary_key: bool = False


@dataclass(frozen=True)
class TableInfo:
    """
    A target table as listed by the metadata provider.

    Attributes:
        name:           Table name as stored in the catalog.
        columns:        Columns in catalog (ordinal) order.
        container_path: Path of the schema/catalog node owning the table.
    """
    name: str
    columns: tuple[ColumnInfo, ...] = ()
    container_path: str = ""

    def find_column(self, name: str) -> ColumnInfo | None:
        """Exact-case match first, then first case-insensitive match."""
        for col in self.columns:
            if col.name == name:
                return col
        lowered = name.lower()
        for col in self.columns:
            if col.name.lower() == lowered:
                return col
        return None

    @property
    def primary_key_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.primary_key]


@dataclass(frozen=True)
class ContainerInfo:
    """A live schema/catalog handle resolved from a node path."""
    path: str
    name: str
    data_source_id: str
    dialect: str = "mysql"


@dataclass(frozen=True)
class SourceContainer:
    """
    A source data container: a table or a query result.

    ``full_id`` is the stable identity used as the key of persisted mapping
    settings, so two containers with the same name on different data sources
    never collide.
    """
    name: str
    data_source_id: str
    columns: tuple[ColumnInfo, ...] = field(default_factory=tuple)

    @property
    def full_id(self) -> str:
        return f"{self.data_source_id}/{self.name}"

    def __str__(self) -> str:
        return self.full_id
