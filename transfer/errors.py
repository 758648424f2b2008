"""
transfer/errors.py
------------------
Exception taxonomy of the transfer engine.

Per-pipe failures reach the orchestrator's caller only as data on a result
object (normally ResolutionError or WriteError), never as raised exceptions.
ConfigError is swallowed (with a log line) inside the settings store.
"""
from __future__ import annotations

from typing import Iterable


class TransferError(Exception):
    """Base class for all transfer engine errors."""


class ConfigError(TransferError):
    """A persisted settings value could not be parsed."""

    def __init__(self, key: str, value: object, reason: str) -> None:
        super().__init__(f"Invalid value {value!r} for '{key}': {reason}")
        self.key = key
        self.value = value


class ResolutionError(TransferError):
    """A container, target table or connection could not be resolved."""


class MappingIncompleteError(TransferError):
    """Execution was requested while some pipes lack a complete mapping."""

    def __init__(self, pipes: Iterable[str]) -> None:
        self.pipes = list(pipes)
        super().__init__(
            "Transfer is not fully mapped; unresolved pipes: " + ", ".join(self.pipes)
        )


class WriteError(TransferError):
    """A row, batch or commit failed at the target."""

    def __init__(self, pipe: str, rows_written: int, cause: BaseException | str) -> None:
        self.pipe = pipe
        self.rows_written = rows_written
        self.cause = cause
        super().__init__(
            f"Write to '{pipe}' failed after {rows_written} committed row(s): {cause}"
        )


class SourceReadError(TransferError):
    """The source row stream failed while a pipe was being written."""


class CancellationError(TransferError):
    """The user aborted a long-running resolution or execution step."""
