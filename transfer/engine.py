"""
transfer/engine.py
------------------
Transfer engine: runs every pipe of a fully mapped session.

Design Decisions:
    * The engine is a plain class with injected dependencies (context,
      coordinator, settings).  No global state.
    * Execution never starts on an incomplete transfer:
      :class:`MappingIncompleteError` is raised before anything is written.
    * Settings are frozen when ``run`` starts; edits made while the transfer
      runs do not reach the writers.
    * With ``open_new_connections`` every pipe gets its own connection and
      its own worker.  Otherwise pipes sharing a target container share one
      connection and run strictly in declaration order, one at a time.
    * A failing pipe is reported in its :class:`ExecutionResult`; its
      siblings keep going.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Mapping

from config import CONFIG
from logger import get_logger
from models.mapping import ContainerMappingType
from models.metadata import ContainerInfo, TableInfo
from models.settings import TransferSettings
from transfer.context import TransferContext
from transfer.database import DatabaseError, TargetConnection
from transfer.errors import ResolutionError, TransferError
from transfer.pipes import Pipe, PipeCoordinator
from transfer.registry import ContainerKey, UsedTargetRegistry, container_key
from transfer.writer import BatchWriter, ExecutionResult, ProgressCallback

log = get_logger(__name__)

TableReadyCallback = Callable[[Pipe, TableInfo | None], None]


class TransferEngine:
    """
    Orchestrates the data transfer of one session.

    Args:
        context:        Session collaborators and pipes.
        coordinator:    Pipe coordinator holding the mapping state.
        settings:       Transfer policy; snapshotted when ``run`` starts.
        registry:       Used-target registry (one per session by default).
        max_workers:    Worker threads; defaults to config.
        progress_cb:    Optional ``(message, current, total)`` callback.
        on_table_ready: Called for each successfully loaded pipe when
                        ``open_table_on_finish`` is set.

    Example::

        engine = TransferEngine(context, coordinator, settings)
        for result in engine.run():
            print(result)
    """

    def __init__(
        self,
        context: TransferContext,
        coordinator: PipeCoordinator,
        settings: TransferSettings,
        registry: UsedTargetRegistry | None = None,
        max_workers: int | None = None,
        progress_cb: ProgressCallback | None = None,
        on_table_ready: TableReadyCallback | None = None,
    ) -> None:
        if context.connections is None:
            raise ValueError("TransferEngine needs a connection provider.")
        self._context = context
        self._coordinator = coordinator
        self._settings = settings
        self._registry = registry or UsedTargetRegistry(context.bus)
        self._max_workers = max_workers or CONFIG.transfer.max_workers
        self._progress_cb = progress_cb
        self._on_table_ready = on_table_ready

    @property
    def registry(self) -> UsedTargetRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def run(self, resume_from: Mapping[str, int] | None = None) -> list[ExecutionResult]:
        """
        Execute every pipe and return one result per pipe, in pipe order.

        Args:
            resume_from: Optional ``{source full_id: rows to skip}``.  Target
                         preparation is skipped for a resumed pipe.

        Raises:
            MappingIncompleteError: If any pipe lacks a complete mapping.
        """
        self._coordinator.ensure_complete()
        snapshot = self._settings.frozen()
        resume_from = resume_from or {}
        pipes = [p for p in self._coordinator.pipes if p.producer is not None]
        log.info(
            "Starting transfer of %d pipe(s) (%s connections).",
            len(pipes), "new" if snapshot.open_new_connections else "shared",
        )

        results: dict[int, ExecutionResult] = {}
        groups: dict[ContainerKey, tuple[ContainerInfo, list[Pipe]]] = {}
        for pipe in pipes:
            try:
                container = self._container_for(pipe)
            except ResolutionError as exc:
                log.error("Pipe '%s' cannot run: %s", pipe.name, exc)
                results[id(pipe)] = ExecutionResult(pipe_name=pipe.name, errors=[exc])
                continue
            key = container_key(container)
            groups.setdefault(key, (container, []))[1].append(pipe)

        for container, group in groups.values():
            for pipe in group:
                self._registry.acquire(container, pipe.consumer.target_ref)
        try:
            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="transfer"
            ) as pool:
                futures = []
                for container, group in groups.values():
                    if snapshot.open_new_connections:
                        for pipe in group:
                            futures.append(([pipe], pool.submit(
                                self._run_isolated, pipe, container, snapshot, resume_from
                            )))
                    else:
                        futures.append((group, pool.submit(
                            self._run_shared, group, container, snapshot, resume_from
                        )))
                for submitted, future in futures:
                    try:
                        done = future.result()
                    except Exception as exc:
                        log.exception("Worker for %s crashed.", ", ".join(p.name for p in submitted))
                        done = [(pipe, self._crashed(pipe, exc)) for pipe in submitted]
                    for pipe, result in done:
                        results[id(pipe)] = result
        finally:
            for container, group in groups.values():
                for _ in group:
                    self._registry.release(container)

        ordered = [results[id(p)] for p in pipes]
        failed = sum(1 for r in ordered if not r.success)
        log.info(
            "Transfer finished: %d pipe(s), %d row(s), %d not successful.",
            len(ordered), sum(r.rows_written for r in ordered), failed,
        )
        return ordered

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _run_isolated(
        self,
        pipe: Pipe,
        container: ContainerInfo,
        settings: TransferSettings,
        resume_from: Mapping[str, int],
    ) -> list[tuple[Pipe, ExecutionResult]]:
        try:
            connection = self._open(container)
        except ResolutionError as exc:
            return [(pipe, self._failed(pipe, exc))]
        try:
            offset = _resume_offset(pipe, resume_from)
            return [(pipe, self._run_guarded(pipe, connection, settings, offset))]
        finally:
            connection.close()

    def _run_shared(
        self,
        pipes: list[Pipe],
        container: ContainerInfo,
        settings: TransferSettings,
        resume_from: Mapping[str, int],
    ) -> list[tuple[Pipe, ExecutionResult]]:
        try:
            connection = self._open(container)
        except ResolutionError as exc:
            return [(pipe, self._failed(pipe, exc)) for pipe in pipes]

        done: list[tuple[Pipe, ExecutionResult]] = []
        try:
            for pipe in pipes:
                if self._context.cancel_token.cancelled:
                    done.append((pipe, ExecutionResult(pipe_name=pipe.name, cancelled=True)))
                    continue
                offset = _resume_offset(pipe, resume_from)
                result = self._run_guarded(pipe, connection, settings, offset)
                done.append((pipe, result))
        finally:
            connection.close()
        return done

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _container_for(self, pipe: Pipe) -> ContainerInfo:
        ref = pipe.consumer.target_ref
        outcome = ref.resolve(
            self._context.metadata, self._context.connections, self._context.cancel_token
        )
        if outcome.cancelled:
            raise ResolutionError(f"Resolution of the target of '{pipe.name}' was cancelled.")
        if outcome.error is not None:
            raise ResolutionError(str(outcome.error))
        return outcome.value

    def _open(self, container: ContainerInfo) -> TargetConnection:
        try:
            return self._context.connections.open(container)
        except (DatabaseError, TransferError) as exc:
            log.error("Cannot open a connection to '%s': %s", container.path, exc)
            raise ResolutionError(f"Cannot open '{container.path}': {exc}") from exc

    def _run_guarded(
        self,
        pipe: Pipe,
        connection: TargetConnection,
        settings: TransferSettings,
        resume_from: int,
    ) -> ExecutionResult:
        try:
            return self._run_pipe(pipe, connection, settings, resume_from)
        except Exception as exc:
            log.exception("Pipe '%s' crashed.", pipe.name)
            return self._crashed(pipe, exc)

    def _run_pipe(
        self,
        pipe: Pipe,
        connection: TargetConnection,
        settings: TransferSettings,
        resume_from: int,
    ) -> ExecutionResult:
        mapping = pipe.mapping
        recreates = mapping.mapping_type in (ContainerMappingType.CREATE, ContainerMappingType.RECREATE)
        if recreates and resume_from > 0:
            log.info("Resuming '%s' at row %d; target preparation skipped.", pipe.name, resume_from)
        elif recreates:
            try:
                table = self._context.metadata.prepare_target(mapping, connection)
            except (ResolutionError, DatabaseError) as exc:
                return self._failed(pipe, exc)
            mapping.target = table
            mapping.target_name = table.name

        writer = BatchWriter(connection)
        result = writer.execute(
            pipe,
            settings,
            token=self._context.cancel_token,
            resume_from=resume_from,
            progress_cb=self._progress_cb,
        )
        log.info("%s", result)
        if result.success and settings.open_table_on_finish and self._on_table_ready:
            self._on_table_ready(pipe, mapping.target)
        return result

    @staticmethod
    def _failed(pipe: Pipe, exc: BaseException) -> ExecutionResult:
        error = exc if isinstance(exc, ResolutionError) else ResolutionError(str(exc))
        log.error("Pipe '%s' failed before writing: %s", pipe.name, error)
        return ExecutionResult(pipe_name=pipe.name, errors=[error])

    @staticmethod
    def _crashed(pipe: Pipe, exc: Exception) -> ExecutionResult:
        error = exc if isinstance(exc, TransferError) else TransferError(f"Pipe '{pipe.name}' crashed: {exc}")
        return ExecutionResult(pipe_name=pipe.name, errors=[error])


def _resume_offset(pipe: Pipe, resume_from: Mapping[str, int]) -> int:
    return resume_from.get(pipe.source.full_id, 0)
