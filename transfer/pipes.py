"""
transfer/pipes.py
-----------------
Pipes (source → target pairings) and the coordinator that decides when a
transfer is ready to run.

Per-pipe state machine::

    UNMAPPED → MAPPING_IN_PROGRESS → MAPPED_COMPLETE
                                   ↘ MAPPED_INCOMPLETE

A transfer may start only when every pipe is MAPPED_COMPLETE.  Pipes without
a producer are complete by definition.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from logger import get_logger
from models.mapping import ContainerMapping
from models.metadata import SourceContainer
from transfer.context import TransferContext
from transfer.errors import MappingIncompleteError, ResolutionError
from transfer.mapping_resolver import MappingResolver
from transfer.target import TargetContainerRef

log = get_logger(__name__)

RowFactory = Callable[[], Iterable[Sequence[Any]]]


class PipeState(str, Enum):
    UNMAPPED = "unmapped"
    MAPPING_IN_PROGRESS = "mapping_in_progress"
    MAPPED_COMPLETE = "mapped_complete"
    MAPPED_INCOMPLETE = "mapped_incomplete"


@dataclass
class Producer:
    """
    Source side of a pipe.

    ``rows`` is called once per execution and must yield row tuples whose
    values follow ``source.columns`` order.
    """
    source: SourceContainer
    rows: RowFactory
    connection: Any = None


@dataclass
class Consumer:
    """Target side of a pipe."""
    target_ref: TargetContainerRef
    mapping: ContainerMapping | None = None


@dataclass(eq=False)
class Pipe:
    consumer: Consumer
    producer: Producer | None = None
    name: str = ""
    state: PipeState = PipeState.UNMAPPED

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.producer.source.name if self.producer else "<scripted>"

    @property
    def source(self) -> SourceContainer | None:
        return self.producer.source if self.producer else None

    @property
    def mapping(self) -> ContainerMapping | None:
        return self.consumer.mapping


class PipeCoordinator:
    """
    Owns the ordered pipe list of a session and their mapping state.

    Example::

        coordinator = PipeCoordinator(context, resolver)
        coordinator.map_all()
        coordinator.ensure_complete()   # raises MappingIncompleteError
    """

    def __init__(self, context: TransferContext, resolver: MappingResolver) -> None:
        self._context = context
        self._resolver = resolver
        self._lock = threading.Lock()

    @property
    def pipes(self) -> list[Pipe]:
        return list(self._context.pipes)

    @property
    def resolver(self) -> MappingResolver:
        return self._resolver

    def add_pipe(self, pipe: Pipe) -> None:
        """Append a pipe created after the initial settings load."""
        self._context.pipes.append(pipe)

    def _set_state(self, pipe: Pipe, state: PipeState) -> None:
        with self._lock:
            pipe.state = state

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map_pipe(self, pipe: Pipe) -> ContainerMapping | None:
        """
        Drive *pipe* through the mapping state machine.

        A target container that cannot be resolved leaves the pipe
        MAPPED_INCOMPLETE and records a :class:`ResolutionError` on the
        context; cancellation leaves it UNMAPPED.
        """
        if pipe.producer is None:
            self._set_state(pipe, PipeState.MAPPED_COMPLETE)
            return None

        self._set_state(pipe, PipeState.MAPPING_IN_PROGRESS)
        ref = pipe.consumer.target_ref
        outcome = ref.resolve(
            self._context.metadata,
            self._context.connections,
            self._context.cancel_token,
        )
        if outcome.cancelled:
            log.info("Mapping of '%s' cancelled.", pipe.name)
            self._set_state(pipe, PipeState.UNMAPPED)
            return None
        if outcome.error is not None:
            error = outcome.error
            if not isinstance(error, ResolutionError):
                error = ResolutionError(str(error))
            self._context.errors.append(error)
            log.error("Cannot resolve target for '%s': %s", pipe.name, error)
            self._set_state(pipe, PipeState.MAPPED_INCOMPLETE)
            return None

        mapping = self._resolver.resolve_target(pipe, ref)
        pipe.consumer.mapping = mapping
        self._refresh_state(pipe)
        return mapping

    def map_all(self) -> bool:
        """Map every pipe in declaration order; returns completeness."""
        for pipe in self.pipes:
            if self._context.cancel_token.cancelled:
                break
            self.map_pipe(pipe)
        return self.is_transfer_complete()

    def add_mapping(self, pipe: Pipe, mapping: ContainerMapping) -> None:
        """
        Register a mapping resolved outside :meth:`map_pipe`.

        If the mapping has no target yet, persisted sub-settings for its
        source are applied first (late-bound pipes).
        """
        if mapping.target is None and mapping.target_name is None:
            block = self._resolver.persisted_for(mapping.source)
            container = pipe.consumer.target_ref.handle
            if block is not None and container is not None:
                self._resolver.apply_settings(mapping, block, container)
        self._resolver.register(mapping)
        pipe.consumer.mapping = mapping
        self._refresh_state(pipe)

    def _refresh_state(self, pipe: Pipe) -> None:
        complete = self._resolver.is_complete(pipe)
        self._set_state(
            pipe, PipeState.MAPPED_COMPLETE if complete else PipeState.MAPPED_INCOMPLETE
        )

    # ------------------------------------------------------------------
    # Completeness
    # ------------------------------------------------------------------

    def is_transfer_complete(self) -> bool:
        for pipe in self.pipes:
            if pipe.producer is None:
                continue
            if not self._resolver.is_complete(pipe):
                return False
        return True

    def incomplete_pipes(self) -> list[str]:
        return [
            p.name for p in self.pipes
            if p.producer is not None and not self._resolver.is_complete(p)
        ]

    def ensure_complete(self) -> None:
        missing = self.incomplete_pipes()
        if missing:
            raise MappingIncompleteError(missing)

    def states(self) -> dict[str, PipeState]:
        with self._lock:
            return {p.name: p.state for p in self.pipes}
