"""
models/settings.py
------------------
Transfer-wide policy, validated with pydantic.

The persisted form is a loose key/value map (see
:mod:`transfer.settings_store`); it is parsed field by field and then
validated into :class:`TransferSettings` immediately, so nothing past the
store ever sees the loose map.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DuplicateKeyStrategy(str, Enum):
    """Conflict-resolution strategies for rows whose key already exists."""
    IGNORE = "ignore"
    REPLACE = "replace"
    UPDATE = "update"


class TransferSettings(BaseModel):
    """Policy applied to every pipe of one transfer session."""
    model_config = ConfigDict(validate_assignment=True)

    open_new_connections: bool = True
    use_transactions: bool = True
    commit_after_rows: int = Field(default=10000, gt=0)
    transfer_auto_generated_columns: bool = True
    truncate_before_load: bool = False
    open_table_on_finish: bool = True
    use_multi_row_insert: bool = False
    multi_row_insert_batch: int = Field(default=100, gt=0)
    disable_batches: bool = False
    on_duplicate_key_strategy: Optional[DuplicateKeyStrategy] = None
    disable_referential_integrity: bool = False

    def frozen(self) -> "FrozenTransferSettings":
        """Snapshot taken when execution starts."""
        return FrozenTransferSettings(**self.model_dump())


class FrozenTransferSettings(TransferSettings):
    """Immutable copy handed to writers while a transfer runs."""
    model_config = ConfigDict(frozen=True)

    def frozen(self) -> "FrozenTransferSettings":
        return self
