"""
models/mapping.py
-----------------
Typed data models for container (table) and attribute (column) mappings.

Design Decision:
    Mapping kinds are closed ``Enum`` types rather than strings so every
    decision point (completeness, statement building, persistence) handles
    each kind explicitly.  Persisted forms are plain dicts produced by
    ``to_dict`` and consumed by ``load_settings``; unknown kinds coming from
    old or hand-edited settings degrade to ``UNSPECIFIED`` instead of failing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from models.metadata import ColumnInfo, SourceContainer, TableInfo


class ContainerMappingType(str, Enum):
    """What to do with a whole source container."""
    UNSPECIFIED = "unspecified"
    EXISTING = "existing"
    CREATE = "create"
    SKIP = "skip"
    RECREATE = "recreate"

    @classmethod
    def parse(cls, raw: Any) -> "ContainerMappingType":
        try:
            return cls(str(raw).lower())
        except ValueError:
            return cls.UNSPECIFIED


class AttributeMappingType(str, Enum):
    """What to do with a single source column."""
    UNSPECIFIED = "unspecified"
    EXISTING = "existing"
    CREATE = "create"
    SKIP = "skip"
    CONVERT = "convert"

    @classmethod
    def parse(cls, raw: Any) -> "AttributeMappingType":
        try:
            return cls(str(raw).lower())
        except ValueError:
            return cls.UNSPECIFIED


@dataclass
class AttributeMapping:
    """
    Maps one source column to a target column.

    Attributes:
        source:               Source column description.
        target:               Resolved target column, if the target exists.
        target_name:          Column name used in generated statements.
        mapping_type:         Action for this column.
        target_type_override: Explicit target type (required for CREATE when
                              no target column exists yet).
    """
    source: ColumnInfo
    target: ColumnInfo | None = None
    target_name: str | None = None
    mapping_type: AttributeMappingType = AttributeMappingType.UNSPECIFIED
    target_type_override: str | None = None

    @property
    def target_type(self) -> str | None:
        if self.target_type_override:
            return self.target_type_override
        if self.target is not None:
            return self.target.type_name
        return None

    @property
    def is_written(self) -> bool:
        """True when the column takes part in INSERT statements."""
        return self.mapping_type in (
            AttributeMappingType.EXISTING,
            AttributeMappingType.CREATE,
            AttributeMappingType.CONVERT,
        )

    def is_complete(self) -> bool:
        mtype = self.mapping_type
        if mtype == AttributeMappingType.UNSPECIFIED:
            return False
        if mtype == AttributeMappingType.SKIP:
            return True
        if not self.target_name:
            return False
        if mtype == AttributeMappingType.CREATE:
            return bool(self.target_type)
        if mtype in (AttributeMappingType.EXISTING, AttributeMappingType.CONVERT):
            return self.target is not None
        raise AssertionError(f"Unhandled attribute mapping type: {mtype}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mappingType": self.mapping_type.value}
        if self.target_name:
            data["target"] = self.target_name
        if self.target_type_override:
            data["targetType"] = self.target_type_override
        return data


@dataclass
class ContainerMapping:
    """
    Maps one source container to a target table.

    ``attribute_mappings`` keeps source column order so persisted settings
    and generated statements are deterministic.
    """
    source: SourceContainer
    target: TableInfo | None = None
    target_name: str | None = None
    mapping_type: ContainerMappingType = ContainerMappingType.UNSPECIFIED
    attribute_mappings: list[AttributeMapping] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.source.full_id

    def attribute(self, source_name: str) -> AttributeMapping | None:
        for attr in self.attribute_mappings:
            if attr.source.name == source_name:
                return attr
        return None

    def written_attributes(self, include_auto_generated: bool = True) -> list[AttributeMapping]:
        """Attributes that take part in INSERT statements, in source order."""
        return [
            a for a in self.attribute_mappings
            if a.is_written and (include_auto_generated or not a.source.auto_generated)
        ]

    def is_complete(self) -> bool:
        mtype = self.mapping_type
        if mtype == ContainerMappingType.UNSPECIFIED:
            return False
        if mtype == ContainerMappingType.SKIP:
            return True
        if not self.target_name:
            return False
        if mtype == ContainerMappingType.EXISTING and self.target is None:
            return False
        if mtype not in (
            ContainerMappingType.EXISTING,
            ContainerMappingType.CREATE,
            ContainerMappingType.RECREATE,
        ):
            raise AssertionError(f"Unhandled container mapping type: {mtype}")
        return all(a.is_complete() for a in self.attribute_mappings)

    def missing_attributes(self) -> list[str]:
        """Names of source columns whose mapping is not complete."""
        return [a.source.name for a in self.attribute_mappings if not a.is_complete()]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mappingType": self.mapping_type.value}
        if self.target_name:
            data["target"] = self.target_name
        data["attributes"] = {
            a.source.name: a.to_dict() for a in self.attribute_mappings
        }
        return data

    def load_settings(self, settings: dict[str, Any]) -> None:
        """
        Apply a persisted sub-settings block.

        Only names and kinds are restored here; binding ``target`` handles
        to live metadata is the resolver's job.  Columns that no longer exist
        in the source are ignored.
        """
        target_name = settings.get("target")
        if isinstance(target_name, str) and target_name:
            self.target_name = target_name
        if "mappingType" in settings:
            self.mapping_type = ContainerMappingType.parse(settings.get("mappingType"))

        attributes = settings.get("attributes")
        if not isinstance(attributes, dict):
            return
        for source_name, attr_settings in attributes.items():
            attr = self.attribute(source_name)
            if attr is None or not isinstance(attr_settings, dict):
                continue
            mtype = AttributeMappingType.parse(attr_settings.get("mappingType"))
            if mtype != AttributeMappingType.UNSPECIFIED:
                attr.mapping_type = mtype
            name = attr_settings.get("target")
            if isinstance(name, str) and name:
                attr.target_name = name
            type_override = attr_settings.get("targetType")
            if isinstance(type_override, str) and type_override:
                attr.target_type_override = type_override
