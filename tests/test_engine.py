"""
tests/test_engine.py
--------------------
Unit tests for transfer/engine.py using in-memory collaborators.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from models.mapping import ContainerMappingType
from models.settings import TransferSettings
from transfer.context import TransferContext
from transfer.engine import TransferEngine
from transfer.errors import (
    MappingIncompleteError,
    ResolutionError,
    SourceReadError,
    TransferError,
    WriteError,
)
from transfer.mapping_resolver import MappingResolver
from transfer.pipes import PipeCoordinator
from transfer.registry import UsedTargetRegistry


@pytest.fixture
def coordinator(context) -> PipeCoordinator:
    return PipeCoordinator(context, MappingResolver(context.metadata))


@pytest.fixture
def session(coordinator, make_pipe):
    """Factory: add pipes ``{name: rows}`` in order and map them."""

    def _build(**pipes: int) -> PipeCoordinator:
        for name, rows in pipes.items():
            coordinator.add_pipe(make_pipe(name, rows=rows))
        coordinator.map_all()
        return coordinator

    return _build


def _engine(context, coordinator, settings=None, **kwargs) -> TransferEngine:
    return TransferEngine(context, coordinator, settings or TransferSettings(), max_workers=1, **kwargs)


class TestPreconditions:
    def test_refuses_incomplete_transfer(self, context, coordinator, make_pipe, connections) -> None:
        coordinator.add_pipe(make_pipe("users", rows=3))
        with pytest.raises(MappingIncompleteError):
            _engine(context, coordinator).run()
        assert connections.opened == []

    def test_requires_connection_provider(self, metadata, coordinator) -> None:
        with pytest.raises(ValueError):
            TransferEngine(TransferContext(metadata=metadata), coordinator, TransferSettings())


class TestScheduling:
    def test_new_connection_per_pipe(self, context, session, connections) -> None:
        coordinator = session(users=3, orders=4)
        results = _engine(context, coordinator).run()
        assert [r.pipe_name for r in results] == ["users", "orders"]
        assert [r.rows_written for r in results] == [3, 4]
        assert len(connections.opened) == 2
        assert all(conn.closed for conn in connections.opened)

    def test_shared_connection_in_declaration_order(self, context, session, connections) -> None:
        coordinator = session(users=2, orders=2)
        settings = TransferSettings(open_new_connections=False)
        results = _engine(context, coordinator, settings).run()
        assert all(r.success for r in results)
        assert len(connections.opened) == 1
        conn = connections.opened[0]
        assert [s.split("`")[1] for s in conn.statements] == ["users", "orders"]
        assert conn.closed

    def test_failure_does_not_abort_siblings(self, context, session, connections, connection_cls) -> None:
        conns = iter([connection_cls(fail_at_row=1), connection_cls()])
        connections.factory = lambda: next(conns)
        coordinator = session(users=3, orders=3)
        results = _engine(context, coordinator).run()
        assert isinstance(results[0].errors[0], WriteError)
        assert results[1].success
        assert results[1].rows_written == 3

    def test_resume_per_pipe(self, context, session) -> None:
        coordinator = session(users=10)
        results = _engine(context, coordinator).run(resume_from={"pg-legacy/users": 7})
        assert results[0].rows_written == 3

    def test_resume_keyed_by_source_identity(self, context, coordinator, make_pipe) -> None:
        coordinator.add_pipe(make_pipe("users", rows=10))
        coordinator.add_pipe(make_pipe("users", rows=10, data_source_id="mysql-archive"))
        coordinator.map_all()
        results = _engine(context, coordinator).run(resume_from={"pg-legacy/users": 7})
        assert [r.rows_written for r in results] == [3, 10]

    def test_source_failure_reported_per_pipe(self, context, session, connections) -> None:
        coordinator = session(users=5, orders=0)

        def _rows():
            for i in range(250):
                if i == 150:
                    raise RuntimeError("source cursor lost")
                yield (i + 1, f"order{i + 1}", f"order{i + 1}@example.com")

        coordinator.pipes[1].producer.rows = _rows
        results = _engine(context, coordinator, TransferSettings(commit_after_rows=100)).run()

        assert results[0].success
        assert results[0].rows_written == 5
        error = results[1].errors[0]
        assert isinstance(error, WriteError)
        assert isinstance(error.cause, SourceReadError)
        assert results[1].rows_written == 100
        orders_conn = connections.opened[1]
        assert orders_conn.rollbacks == 1
        assert len(orders_conn.committed) == 100
        assert orders_conn.pending == []

    @pytest.mark.parametrize("new_connections", [True, False])
    def test_crashing_pipe_keeps_sibling_results(self, context, session, new_connections) -> None:
        def _ready(pipe, table):
            if pipe.name == "users":
                raise RuntimeError("viewer unavailable")

        coordinator = session(users=2, orders=3)
        settings = TransferSettings(open_new_connections=new_connections)
        results = _engine(context, coordinator, settings, on_table_ready=_ready).run()
        assert [r.pipe_name for r in results] == ["users", "orders"]
        assert isinstance(results[0].errors[0], TransferError)
        assert results[1].success
        assert results[1].rows_written == 3


class TestTargets:
    def test_create_mapping_prepares_target(self, context, session, metadata) -> None:
        coordinator = session(customers=2)
        mapping = coordinator.pipes[0].mapping
        assert mapping.mapping_type == ContainerMappingType.CREATE
        results = _engine(context, coordinator).run()
        assert metadata.prepared == ["customers"]
        assert mapping.target.name == "customers"
        assert results[0].rows_written == 2

    def test_existing_mapping_not_prepared(self, context, session, metadata) -> None:
        _engine(context, session(users=1)).run()
        assert metadata.prepared == []

    def test_prepare_failure_reported(self, context, session, metadata) -> None:
        metadata.prepare_target = MagicMock(side_effect=ResolutionError("no DDL rights"))
        results = _engine(context, session(customers=2)).run()
        assert isinstance(results[0].errors[0], ResolutionError)
        assert results[0].rows_written == 0

    def test_resume_skips_target_preparation(self, context, session, metadata, connections) -> None:
        coordinator = session(users=10)
        coordinator.pipes[0].mapping.mapping_type = ContainerMappingType.RECREATE
        results = _engine(context, coordinator).run(resume_from={"pg-legacy/users": 5})
        assert metadata.prepared == []
        assert results[0].rows_written == 5
        assert connections.opened[0].statements[0].startswith("INSERT INTO `users`")

    def test_unresolvable_target_reported(self, context, session, metadata) -> None:
        coordinator = session(users=2)
        metadata.containers.clear()
        coordinator.pipes[0].consumer.target_ref.invalidate()
        results = _engine(context, coordinator).run()
        assert isinstance(results[0].errors[0], ResolutionError)

    def test_registry_acquired_during_run_and_released(self, context, session, container) -> None:
        coordinator = session(users=2, orders=2)
        registry = UsedTargetRegistry(context.bus)
        counts = []
        engine = _engine(
            context, coordinator, registry=registry,
            progress_cb=lambda msg, cur, total: counts.append(registry.count(container)),
        )
        engine.run()
        assert counts and set(counts) == {2}
        assert registry.active_containers() == []
        assert context.bus.listener_count("mysql-prod") == 0


class TestCompletion:
    def test_table_ready_callback(self, context, session) -> None:
        ready = MagicMock()
        _engine(context, session(users=1), on_table_ready=ready).run()
        ready.assert_called_once()
        assert ready.call_args.args[1].name == "users"

    def test_table_ready_suppressed_by_setting(self, context, session) -> None:
        ready = MagicMock()
        settings = TransferSettings(open_table_on_finish=False)
        _engine(context, session(users=1), settings, on_table_ready=ready).run()
        ready.assert_not_called()

    def test_cancelled_session(self, context, session) -> None:
        coordinator = session(users=5, orders=5)
        context.cancel_token.cancel()
        results = _engine(context, coordinator, TransferSettings(open_new_connections=False)).run()
        assert all(r.cancelled for r in results)
        assert all(r.rows_written == 0 for r in results)
