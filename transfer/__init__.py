"""transfer/__init__.py"""
from transfer.cancel import CancelToken, Outcome, run_cancellable
from transfer.context import TransferContext
from transfer.database import (
    ConnectionLostError,
    DatabaseError,
    MySQLTargetConnection,
    PostgresTargetConnection,
    TargetConnection,
)
from transfer.dialects import DialectError, get_dialect
from transfer.engine import TransferEngine
from transfer.errors import (
    CancellationError,
    ConfigError,
    MappingIncompleteError,
    ResolutionError,
    SourceReadError,
    TransferError,
    WriteError,
)
from transfer.events import DataSourceEvent, EventAction, EventBus
from transfer.mapping_resolver import MappingResolver
from transfer.pipes import Consumer, Pipe, PipeCoordinator, PipeState, Producer
from transfer.registry import UsedTargetRegistry
from transfer.settings_store import (
    TransferSettingsStore,
    load_settings_file,
    save_settings_file,
)
from transfer.target import TargetContainerRef
from transfer.writer import (
    BatchWriter,
    ExecutionResult,
    IntegrityRestoreError,
    referential_integrity_suspended,
)

__all__ = [
    "CancelToken",
    "Outcome",
    "run_cancellable",
    "TransferContext",
    "ConnectionLostError",
    "DatabaseError",
    "MySQLTargetConnection",
    "PostgresTargetConnection",
    "TargetConnection",
    "DialectError",
    "get_dialect",
    "TransferEngine",
    "CancellationError",
    "ConfigError",
    "MappingIncompleteError",
    "ResolutionError",
    "SourceReadError",
    "TransferError",
    "WriteError",
    "DataSourceEvent",
    "EventAction",
    "EventBus",
    "MappingResolver",
    "Consumer",
    "Pipe",
    "PipeCoordinator",
    "PipeState",
    "Producer",
    "UsedTargetRegistry",
    "TransferSettingsStore",
    "load_settings_file",
    "save_settings_file",
    "TargetContainerRef",
    "BatchWriter",
    "ExecutionResult",
    "IntegrityRestoreError",
    "referential_integrity_suspended",
]
