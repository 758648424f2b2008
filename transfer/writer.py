"""
transfer/writer.py
------------------
Batch writer: streams a pipe's rows into its target table.

Design Decisions:
    * One writer per target connection.  Statement shape is decided once per
      pipe (column list, duplicate-key clause) before the first row is read,
      so an inexpressible strategy fails the pipe with nothing written.
    * Three batching modes, chosen by the settings:
        - ``disable_batches``       one INSERT per row;
        - ``use_multi_row_insert``  one INSERT carrying up to
                                    ``multi_row_insert_batch`` rows;
        - otherwise                 a native driver batch (``executemany``)
                                    of up to ``CONFIG.transfer.batch_size``.
      A buffered chunk is always flushed before the commit point is reached,
      so no statement ever spans a commit boundary.
    * With transactions enabled the writer commits every
      ``commit_after_rows`` rows and once at the end of the stream.  On
      failure it rolls back to the last commit; ``rows_written`` then counts
      exactly the rows that are durable at the target.  There is no retry.
    * A failing source stream is handled like a failing statement: rollback
      to the last commit and a :class:`WriteError` on the result.
    * Progress is reported via a callback (``progress_cb``) so any front end
      can display updates without coupling to this module.
"""
from __future__ import annotations

import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Iterator, Sequence

from config import CONFIG
from logger import get_logger
from models.mapping import ContainerMapping, ContainerMappingType
from models.settings import TransferSettings
from transfer.cancel import CancelToken
from transfer.database import DatabaseError, TargetConnection
from transfer.dialects import Dialect, DialectError
from transfer.errors import CancellationError, SourceReadError, TransferError, WriteError
from transfer.pipes import Pipe

log = get_logger(__name__)

ProgressCallback = Callable[[str, int, int], None]  # message, current, total


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class ExecutionResult:
    """Outcome of writing one pipe."""
    pipe_name: str
    rows_written: int = 0
    commits: int = 0
    statements: int = 0
    errors: list[TransferError] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors and not self.cancelled

    def __str__(self) -> str:
        if self.cancelled:
            status = "CANCELLED"
        else:
            status = "OK" if self.success else "FAILED"
        parts = [
            f"[{status}] {self.pipe_name}: {self.rows_written} rows, "
            f"{self.commits} commit(s), {self.elapsed_seconds:.2f}s"
        ]
        if self.errors:
            parts.append(f"  Errors: {'; '.join(str(e) for e in self.errors)}")
        return "\n".join(parts)


# ---------------------------------------------------------------------------
# Referential integrity
# ---------------------------------------------------------------------------

class IntegrityRestoreError(DatabaseError):
    """Enforcement could not be restored after the load had already failed."""

    def __init__(self, cause: DatabaseError, interrupted: Exception) -> None:
        super().__init__(f"Referential integrity not restored: {cause}")
        self.cause = cause
        self.interrupted = interrupted


def _restore_integrity(connection: TargetConnection, dialect: Dialect, original: Any) -> None:
    sql, params = dialect.integrity_restore_sql(original)
    connection.execute(sql, params)
    log.info("Referential integrity restored to %s.", original)


@contextmanager
def referential_integrity_suspended(
    connection: TargetConnection,
    dialect: Dialect,
) -> Iterator[Any]:
    """
    Turn off foreign-key enforcement for the duration of the block.

    The original enforcement state is read first and restored on exit,
    whether the block succeeded or not.

    Raises:
        DialectError: If the dialect cannot suspend enforcement.
        DatabaseError: If reading, disabling or restoring fails.
        IntegrityRestoreError: If the block failed and the restore failed
            too; both errors are carried on it.
    """
    original = connection.scalar(dialect.integrity_state_sql())
    connection.execute(dialect.integrity_disable_sql())
    log.info("Referential integrity suspended (was %s).", original)
    try:
        yield original
    except BaseException as exc:
        try:
            _restore_integrity(connection, dialect, original)
        except DatabaseError as restore_exc:
            log.error("Could not restore referential integrity to %s: %s", original, restore_exc)
            if isinstance(exc, Exception):
                raise IntegrityRestoreError(restore_exc, exc) from exc
        raise
    _restore_integrity(connection, dialect, original)


# ---------------------------------------------------------------------------
# Statement plan
# ---------------------------------------------------------------------------

@dataclass
class _InsertPlan:
    table: str
    columns: list[str]
    source_indices: list[int]
    dialect: Dialect
    settings: TransferSettings
    key_columns: list[str]
    _sql_cache: dict[int, str] = field(default_factory=dict)

    def sql(self, row_count: int = 1) -> str:
        sql = self._sql_cache.get(row_count)
        if sql is None:
            sql = self.dialect.insert_sql(
                self.table,
                self.columns,
                row_count=row_count,
                strategy=self.settings.on_duplicate_key_strategy,
                key_columns=self.key_columns,
            )
            self._sql_cache[row_count] = sql
        return sql

    def values(self, row: Sequence[Any]) -> tuple:
        return tuple(row[i] for i in self.source_indices)


def _build_plan(pipe: Pipe, mapping: ContainerMapping, settings: TransferSettings, dialect: Dialect) -> _InsertPlan:
    source = pipe.source
    positions = {col.name: i for i, col in enumerate(source.columns)}
    attrs = mapping.written_attributes(settings.transfer_auto_generated_columns)
    if not attrs:
        raise DialectError(f"Nothing to write for '{pipe.name}': every column is skipped.")

    table = mapping.target.name if mapping.target is not None else mapping.target_name
    if mapping.target is not None and mapping.target.primary_key_columns:
        key_columns = mapping.target.primary_key_columns
    else:
        key_columns = [a.target_name for a in mapping.attribute_mappings
                       if a.source.primary_key and a.is_written]

    plan = _InsertPlan(
        table=table,
        columns=[a.target_name for a in attrs],
        source_indices=[positions[a.source.name] for a in attrs],
        dialect=dialect,
        settings=settings,
        key_columns=key_columns,
    )
    plan.sql(1)  # an inexpressible duplicate-key clause fails here
    return plan


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class BatchWriter:
    """
    Writes pipes to one target connection.

    Args:
        connection: Connected :class:`TargetConnection`.
        dialect:    Statement dialect; defaults to the connection's own.
        batch_size: Native batch flush size; defaults to config.

    Example::

        writer = BatchWriter(conn)
        result = writer.execute(pipe, settings.frozen(), token)
        print(result)
    """

    def __init__(
        self,
        connection: TargetConnection,
        dialect: Dialect | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._conn = connection
        self._dialect = dialect or connection.dialect
        self._batch_size = batch_size or CONFIG.transfer.batch_size

    @staticmethod
    def _default_progress(msg: str, current: int, total: int) -> None:
        log.debug("%s (%d/%s)", msg, current, total if total else "?")

    def _chunk_limit(self, settings: TransferSettings) -> int:
        if settings.disable_batches:
            return 1
        if settings.use_multi_row_insert:
            return settings.multi_row_insert_batch
        return self._batch_size

    def execute(
        self,
        pipe: Pipe,
        settings: TransferSettings,
        token: CancelToken | None = None,
        resume_from: int = 0,
        progress_cb: ProgressCallback | None = None,
    ) -> ExecutionResult:
        """
        Copy every row of *pipe* into its mapped target table.

        Args:
            pipe:        A pipe with a complete mapping.
            settings:    Policy for this run (normally a frozen snapshot).
            token:       Checked before every row.
            resume_from: Number of leading source rows to skip.
            progress_cb: ``(message, rows_written, total)``; total is 0 when
                         the source size is unknown.

        Returns:
            :class:`ExecutionResult`.  Failures are recorded on it as
            :class:`WriteError`; nothing is raised for per-pipe problems.
        """
        start = time.monotonic()
        result = ExecutionResult(pipe_name=pipe.name)
        mapping = pipe.mapping
        if pipe.producer is None or mapping is None or mapping.mapping_type == ContainerMappingType.SKIP:
            log.info("Nothing to write for '%s'.", pipe.name)
            return result

        token = token or CancelToken()
        progress = progress_cb or self._default_progress
        state = _LoadState()
        try:
            plan = _build_plan(pipe, mapping, settings, self._dialect)
            self._conn.set_autocommit(not settings.use_transactions)
            with self._integrity_guard(settings):
                try:
                    self._load(pipe, plan, settings, token, resume_from, state, result, progress)
                except (DatabaseError, CancellationError, SourceReadError):
                    self._conn.rollback()
                    raise
        except IntegrityRestoreError as exc:
            self._record_failure(pipe, exc.interrupted, state, result)
            self._record_failure(pipe, exc.cause, state, result)
        except (CancellationError, DatabaseError, DialectError, SourceReadError) as exc:
            self._record_failure(pipe, exc, state, result)

        result.rows_written = state.durable
        result.elapsed_seconds = time.monotonic() - start
        log.info(
            "Write of '%s' finished: %d rows, %d commit(s), %.2fs",
            pipe.name, result.rows_written, result.commits, result.elapsed_seconds,
        )
        return result

    @staticmethod
    def _record_failure(pipe: Pipe, exc: Exception, state: "_LoadState", result: ExecutionResult) -> None:
        if isinstance(exc, CancellationError):
            result.cancelled = True
            log.warning("Write to '%s' cancelled after %d committed row(s).", pipe.name, state.durable)
            return
        error = WriteError(pipe.name, state.durable, exc)
        result.errors.append(error)
        log.error("%s", error)

    @staticmethod
    def _source_rows(pipe: Pipe) -> Iterator[Sequence[Any]]:
        try:
            yield from pipe.producer.rows()
        except CancellationError:
            raise
        except Exception as exc:
            raise SourceReadError(f"Reading '{pipe.name}' failed: {exc}") from exc

    def _integrity_guard(self, settings: TransferSettings) -> ContextManager[Any]:
        if settings.disable_referential_integrity:
            return referential_integrity_suspended(self._conn, self._dialect)
        return nullcontext()

    def _load(
        self,
        pipe: Pipe,
        plan: _InsertPlan,
        settings: TransferSettings,
        token: CancelToken,
        resume_from: int,
        state: "_LoadState",
        result: ExecutionResult,
        progress: ProgressCallback,
    ) -> None:
        if settings.truncate_before_load and resume_from == 0:
            log.info("Truncating '%s' before load.", plan.table)
            self._conn.execute(self._dialect.truncate_sql(plan.table))
            result.statements += 1
        elif settings.truncate_before_load:
            log.info("Resuming '%s' at row %d; truncate skipped.", pipe.name, resume_from)

        transactional = settings.use_transactions
        commit_every = settings.commit_after_rows
        chunk_limit = self._chunk_limit(settings)
        buffer: list[tuple] = []

        progress(f"Writing → {plan.table}", 0, 0)
        for index, row in enumerate(self._source_rows(pipe)):
            if index < resume_from:
                continue
            token.raise_if_cancelled()
            buffer.append(plan.values(row))

            at_commit_point = transactional and state.pending + len(buffer) >= commit_every
            if len(buffer) >= chunk_limit or at_commit_point:
                self._flush(plan, settings, buffer, state, result)
                buffer = []
                progress(f"Writing → {plan.table}: {state.sent} rows", state.sent, 0)
            if at_commit_point:
                self._commit(state, result)

        if buffer:
            self._flush(plan, settings, buffer, state, result)
            progress(f"Writing → {plan.table}: {state.sent} rows", state.sent, 0)
        if transactional and state.pending:
            self._commit(state, result)

    def _flush(
        self,
        plan: _InsertPlan,
        settings: TransferSettings,
        rows: list[tuple],
        state: "_LoadState",
        result: ExecutionResult,
    ) -> None:
        if settings.disable_batches:
            for values in rows:
                self._conn.execute(plan.sql(1), values)
                result.statements += 1
        elif settings.use_multi_row_insert:
            flat = [value for values in rows for value in values]
            self._conn.execute(plan.sql(len(rows)), flat)
            result.statements += 1
        else:
            self._conn.executemany(plan.sql(1), rows)
            result.statements += 1

        state.sent += len(rows)
        if settings.use_transactions:
            state.pending += len(rows)
        else:
            state.durable += len(rows)
        log.debug("Flushed %d row(s) into '%s'.", len(rows), plan.table)

    def _commit(self, state: "_LoadState", result: ExecutionResult) -> None:
        self._conn.commit()
        state.durable += state.pending
        state.pending = 0
        result.commits += 1
        log.debug("Committed; %d row(s) durable.", state.durable)


@dataclass
class _LoadState:
    sent: int = 0      # rows handed to the driver
    pending: int = 0   # sent but not yet committed
    durable: int = 0   # committed (or autocommitted)
