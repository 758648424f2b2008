"""models/__init__.py"""
from models.mapping import (
    AttributeMapping,
    AttributeMappingType,
    ContainerMapping,
    ContainerMappingType,
)
from models.metadata import ColumnInfo, ContainerInfo, SourceContainer, TableInfo
from models.settings import DuplicateKeyStrategy, FrozenTransferSettings, TransferSettings

__all__ = [
    "AttributeMapping",
    "AttributeMappingType",
    "ContainerMapping",
    "ContainerMappingType",
    "ColumnInfo",
    "ContainerInfo",
    "SourceContainer",
    "TableInfo",
    "DuplicateKeyStrategy",
    "FrozenTransferSettings",
    "TransferSettings",
]
