"""
tests/test_target.py
--------------------
Unit tests for transfer/cancel.py and transfer/target.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import threading

import pytest

from transfer.cancel import CancelToken, Outcome, run_cancellable
from transfer.errors import CancellationError, ResolutionError
from transfer.target import TargetContainerRef


class TestRunCancellable:
    def test_returns_value(self) -> None:
        outcome = run_cancellable(lambda tok: 42)
        assert outcome.ok
        assert outcome.value == 42

    def test_error_returned_as_data(self) -> None:
        def _fail(tok):
            raise ValueError("bad")

        outcome = run_cancellable(_fail)
        assert not outcome.ok
        assert isinstance(outcome.error, ValueError)

    def test_already_cancelled_never_runs(self) -> None:
        token = CancelToken()
        token.cancel()
        called = []
        outcome = run_cancellable(lambda tok: called.append(1), token)
        assert outcome.cancelled
        assert called == []

    def test_cancel_releases_waiting_caller(self) -> None:
        token = CancelToken()
        started = threading.Event()
        release = threading.Event()

        def _slow(tok):
            started.set()
            release.wait(5)
            return "late"

        def _cancel_when_started():
            started.wait(5)
            token.cancel()

        canceller = threading.Thread(target=_cancel_when_started)
        canceller.start()
        outcome = run_cancellable(_slow, token)
        release.set()
        canceller.join()
        assert outcome.cancelled
        assert outcome.value is None

    def test_cancellation_error_reported_as_cancelled(self) -> None:
        def _abort(tok):
            raise CancellationError("stop")

        outcome = run_cancellable(_abort)
        assert outcome.cancelled
        assert outcome.error is None

    def test_outcome_ok(self) -> None:
        assert Outcome(value=1).ok
        assert not Outcome(cancelled=True).ok


class TestCancelToken:
    def test_raise_if_cancelled(self) -> None:
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(CancellationError):
            token.raise_if_cancelled()


class TestTargetContainerRef:
    def test_path_from_handle(self, container) -> None:
        ref = TargetContainerRef(handle=container)
        assert ref.path == "mysql-prod/shop"
        assert ref.is_resolved

    def test_resolve_caches_handle(self, metadata) -> None:
        ref = TargetContainerRef("mysql-prod/shop")
        assert ref.resolve(metadata).value.name == "shop"
        ref.resolve(metadata)
        assert metadata.resolve_calls == 1

    def test_invalidate_forces_new_lookup(self, metadata) -> None:
        ref = TargetContainerRef("mysql-prod/shop")
        ref.resolve(metadata)
        ref.invalidate()
        assert not ref.is_resolved
        ref.resolve(metadata)
        assert metadata.resolve_calls == 2

    def test_resolve_by_producer_table(self, metadata, users_table) -> None:
        ref = TargetContainerRef()
        outcome = ref.resolve(metadata, producer_table=users_table)
        assert outcome.ok
        assert ref.path == "mysql-prod/shop"

    def test_nothing_to_resolve(self, metadata) -> None:
        outcome = TargetContainerRef().resolve(metadata)
        assert isinstance(outcome.error, ResolutionError)

    def test_unknown_path(self, metadata) -> None:
        outcome = TargetContainerRef("x/y").resolve(metadata)
        assert isinstance(outcome.error, ResolutionError)
        assert "x/y" in str(outcome.error)

    def test_provider_failure_wrapped(self, metadata) -> None:
        def _boom(path, token):
            raise OSError("network down")

        metadata.resolve_by_path = _boom
        outcome = TargetContainerRef("mysql-prod/shop").resolve(metadata)
        assert isinstance(outcome.error, ResolutionError)
        assert "network down" in str(outcome.error)

    def test_initialises_closed_connection(self, metadata, connections) -> None:
        ref = TargetContainerRef("mysql-prod/shop")
        ref.resolve(metadata, connections)
        ref.resolve(metadata, connections)
        assert connections.initialised == ["mysql-prod/shop"]

    def test_initialisation_failure(self, metadata, connections) -> None:
        def _fail(container, token):
            raise RuntimeError("auth failed")

        connections.initialize = _fail
        outcome = TargetContainerRef("mysql-prod/shop").resolve(metadata, connections)
        assert isinstance(outcome.error, ResolutionError)
