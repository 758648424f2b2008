"""
tests/conftest.py
-----------------
In-memory collaborators shared by the test modules.

The fake target connection separates pending from committed rows so tests
can assert exactly what survives a rollback.
"""
from __future__ import annotations

from typing import Any, Callable, Sequence

import pytest

from models.mapping import ContainerMapping
from models.metadata import ColumnInfo, ContainerInfo, SourceContainer, TableInfo
from transfer.cancel import CancelToken
from transfer.context import TransferContext
from transfer.database import DatabaseError
from transfer.dialects import MySQLDialect
from transfer.pipes import Consumer, Pipe, Producer
from transfer.target import TargetContainerRef

CONTAINER_PATH = "mysql-prod/shop"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeTargetConnection:
    """Records statements; rows become durable on commit (or autocommit)."""

    dialect = MySQLDialect()

    def __init__(self, fail_at_row: int | None = None, fk_checks: int = 1) -> None:
        self.fail_at_row = fail_at_row
        self.fk_checks = fk_checks
        self.autocommit = False
        self.pending: list[tuple] = []
        self.committed: list[tuple] = []
        self.statements: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    @property
    def is_connected(self) -> bool:
        return not self.closed

    def set_autocommit(self, enabled: bool) -> None:
        self.autocommit = enabled

    def commit(self) -> None:
        self.committed.extend(self.pending)
        self.pending = []
        self.commits += 1

    def rollback(self) -> None:
        self.pending = []
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True

    def _insert(self, rows: list[tuple]) -> None:
        if self.fail_at_row is not None:
            already = len(self.pending) + len(self.committed)
            if already + len(rows) > self.fail_at_row:
                raise DatabaseError(f"Duplicate entry at row {self.fail_at_row}")
        if self.autocommit:
            self.committed.extend(rows)
        else:
            self.pending.extend(rows)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        self.statements.append(sql)
        if sql.startswith(("INSERT", "REPLACE")):
            row_count = sql.count("(%s")
            params = list(params or [])
            width = len(params) // row_count
            rows = [tuple(params[i * width:(i + 1) * width]) for i in range(row_count)]
            self._insert(rows)
            return row_count
        if sql.startswith("TRUNCATE"):
            self.committed = []
            self.pending = []
        elif sql.startswith("SET FOREIGN_KEY_CHECKS="):
            self.fk_checks = int(sql.rsplit("=", 1)[1])
        return 0

    def executemany(self, sql: str, seq_params: Sequence[Sequence[Any]]) -> int:
        self.statements.append(sql)
        rows = [tuple(p) for p in seq_params]
        self._insert(rows)
        return len(rows)

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        self.statements.append(sql)
        if sql == "SELECT @@FOREIGN_KEY_CHECKS":
            return self.fk_checks
        return None


class FakeMetadataProvider:
    def __init__(self, containers: list[ContainerInfo], tables: dict[str, list[TableInfo]]) -> None:
        self.containers = {c.path: c for c in containers}
        self.tables = tables
        self.resolve_calls = 0
        self.prepared: list[str] = []

    def list_children(self, container: ContainerInfo) -> list[TableInfo]:
        return list(self.tables.get(container.path, []))

    def resolve_by_path(self, path: str, token: CancelToken) -> ContainerInfo | None:
        self.resolve_calls += 1
        return self.containers.get(path)

    def resolve_by_object(self, table: TableInfo, token: CancelToken) -> ContainerInfo | None:
        self.resolve_calls += 1
        return self.containers.get(table.container_path)

    def prepare_target(self, mapping: ContainerMapping, connection: Any) -> TableInfo:
        table = TableInfo(
            name=mapping.target_name,
            columns=tuple(
                ColumnInfo(a.target_name, a.target_type or "TEXT", primary_key=a.source.primary_key)
                for a in mapping.attribute_mappings if a.is_written
            ),
            container_path=CONTAINER_PATH,
        )
        self.prepared.append(table.name)
        self.tables.setdefault(CONTAINER_PATH, []).append(table)
        return table


class FakeConnectionProvider:
    def __init__(self, factory: Callable[[], FakeTargetConnection] = FakeTargetConnection) -> None:
        self.factory = factory
        self.opened: list[FakeTargetConnection] = []
        self.initialised: list[str] = []
        self.open_paths: set[str] = set()

    def open(self, container: ContainerInfo) -> FakeTargetConnection:
        conn = self.factory()
        self.opened.append(conn)
        return conn

    def initialize(self, container: ContainerInfo, token: CancelToken) -> None:
        self.initialised.append(container.path)
        self.open_paths.add(container.path)

    def is_open(self, container: ContainerInfo) -> bool:
        return container.path in self.open_paths


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def source_columns() -> tuple[ColumnInfo, ...]:
    return (
        ColumnInfo("id", "INT", nullable=False, auto_generated=True, primary_key=True),
        ColumnInfo("name", "VARCHAR(100)"),
        ColumnInfo("email", "VARCHAR(200)"),
    )


@pytest.fixture
def container() -> ContainerInfo:
    return ContainerInfo(path=CONTAINER_PATH, name="shop", data_source_id="mysql-prod")


@pytest.fixture
def users_table() -> TableInfo:
    return TableInfo(
        name="users",
        columns=(
            ColumnInfo("id", "BIGINT", nullable=False, auto_generated=True, primary_key=True),
            ColumnInfo("name", "VARCHAR(100)"),
            ColumnInfo("email", "VARCHAR(200)"),
        ),
        container_path=CONTAINER_PATH,
    )


@pytest.fixture
def metadata(container, users_table) -> FakeMetadataProvider:
    return FakeMetadataProvider([container], {CONTAINER_PATH: [users_table]})


@pytest.fixture
def connections() -> FakeConnectionProvider:
    return FakeConnectionProvider()


@pytest.fixture
def context(metadata, connections) -> TransferContext:
    return TransferContext(metadata=metadata, connections=connections)


@pytest.fixture
def make_pipe(source_columns) -> Callable[..., Pipe]:
    """Factory: ``make_pipe("users", rows=10)`` → pipe with generated rows."""

    def _make(
        name: str = "users",
        rows: int | list[tuple] = 0,
        path: str | None = CONTAINER_PATH,
        data_source_id: str = "pg-legacy",
        columns: tuple[ColumnInfo, ...] | None = None,
    ) -> Pipe:
        source = SourceContainer(name, data_source_id, columns or source_columns)
        if isinstance(rows, int):
            data = [(i + 1, f"user{i + 1}", f"user{i + 1}@example.com") for i in range(rows)]
        else:
            data = rows
        producer = Producer(source=source, rows=lambda: iter(data))
        return Pipe(consumer=Consumer(TargetContainerRef(path)), producer=producer)

    return _make


@pytest.fixture
def fake_connection() -> FakeTargetConnection:
    return FakeTargetConnection()


@pytest.fixture
def connection_cls() -> type[FakeTargetConnection]:
    return FakeTargetConnection
