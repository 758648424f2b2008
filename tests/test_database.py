"""
tests/test_database.py
----------------------
Unit tests for transfer/database.py with the drivers mocked out.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import mysql.connector
import psycopg2
import pytest

from transfer.database import (
    ConnectionLostError,
    DatabaseError,
    MySQLTargetConnection,
    PostgresTargetConnection,
)
from transfer.dialects import MySQLDialect, PostgreSQLDialect


@pytest.fixture
def raw_conn() -> MagicMock:
    raw = MagicMock()
    raw.is_connected.return_value = True
    raw.closed = False
    return raw


def _mysql(**kwargs) -> MySQLTargetConnection:
    return MySQLTargetConnection(host="db", user="etl", password="secret", database="shop",
                                 retry_delay=0, **kwargs)


class TestConnect:
    def test_connects_with_autocommit_off(self, raw_conn) -> None:
        with patch("mysql.connector.connect", return_value=raw_conn) as connect:
            conn = _mysql()
            conn.connect()
        assert conn.is_connected
        kwargs = connect.call_args.kwargs
        assert kwargs["autocommit"] is False
        assert kwargs["database"] == "shop"

    def test_retries_then_succeeds(self, raw_conn) -> None:
        side_effect = [mysql.connector.Error("refused"), raw_conn]
        with patch("mysql.connector.connect", side_effect=side_effect) as connect:
            conn = _mysql(max_retries=3)
            conn.connect()
        assert connect.call_count == 2
        assert conn.is_connected

    def test_gives_up_after_max_retries(self) -> None:
        with patch("mysql.connector.connect", side_effect=mysql.connector.Error("refused")) as connect:
            conn = _mysql(max_retries=2)
            with pytest.raises(DatabaseError):
                conn.connect()
        assert connect.call_count == 2

    def test_postgres_default_port(self, raw_conn) -> None:
        with patch("psycopg2.connect", return_value=raw_conn) as connect:
            conn = PostgresTargetConnection(host="db", user="etl", password="secret", database="shop")
            conn.connect()
        assert connect.call_args.kwargs["port"] == 5432
        assert connect.call_args.kwargs["dbname"] == "shop"
        assert conn.is_connected

    def test_dialects(self) -> None:
        assert isinstance(MySQLTargetConnection.dialect, MySQLDialect)
        assert isinstance(PostgresTargetConnection.dialect, PostgreSQLDialect)


class TestStatements:
    @pytest.fixture
    def conn(self, raw_conn) -> MySQLTargetConnection:
        with patch("mysql.connector.connect", return_value=raw_conn):
            conn = _mysql()
            conn.connect()
        return conn

    def test_execute_returns_rowcount(self, conn, raw_conn) -> None:
        raw_conn.cursor.return_value.rowcount = 3
        assert conn.execute("DELETE FROM t WHERE a = %s", [1]) == 3
        raw_conn.cursor.return_value.execute.assert_called_once_with("DELETE FROM t WHERE a = %s", (1,))
        raw_conn.cursor.return_value.close.assert_called_once()

    def test_executemany_passes_tuples(self, conn, raw_conn) -> None:
        conn.executemany("INSERT", [[1, "a"], [2, "b"]])
        raw_conn.cursor.return_value.executemany.assert_called_once_with(
            "INSERT", [(1, "a"), (2, "b")]
        )

    def test_driver_error_wrapped(self, conn, raw_conn) -> None:
        raw_conn.cursor.return_value.execute.side_effect = mysql.connector.Error("syntax")
        with pytest.raises(DatabaseError):
            conn.execute("BAD SQL")
        raw_conn.cursor.return_value.close.assert_called_once()

    def test_scalar(self, conn, raw_conn) -> None:
        raw_conn.cursor.return_value.fetchone.return_value = (1,)
        assert conn.scalar("SELECT @@FOREIGN_KEY_CHECKS") == 1

    def test_commit_error_wrapped(self, conn, raw_conn) -> None:
        raw_conn.commit.side_effect = mysql.connector.Error("lost")
        with pytest.raises(DatabaseError):
            conn.commit()

    def test_rollback_failure_only_logged(self, conn, raw_conn) -> None:
        raw_conn.rollback.side_effect = mysql.connector.Error("lost")
        conn.rollback()

    def test_set_autocommit(self, conn, raw_conn) -> None:
        conn.set_autocommit(True)
        assert raw_conn.autocommit is True


class TestLifecycle:
    def test_statement_without_connection(self) -> None:
        with pytest.raises(ConnectionLostError):
            _mysql().commit()

    def test_context_manager_rolls_back_on_error(self, raw_conn) -> None:
        with patch("mysql.connector.connect", return_value=raw_conn):
            with pytest.raises(RuntimeError):
                with _mysql():
                    raise RuntimeError("boom")
        raw_conn.rollback.assert_called_once()
        raw_conn.close.assert_called_once()

    def test_postgres_close(self, raw_conn) -> None:
        with patch("psycopg2.connect", return_value=raw_conn):
            with PostgresTargetConnection(host="db", user="u", password="p") as conn:
                assert conn.is_connected
        raw_conn.close.assert_called_once()
        assert not conn.is_connected

    def test_postgres_driver_error_wrapped(self, raw_conn) -> None:
        raw_conn.cursor.return_value.executemany.side_effect = psycopg2.Error("deadlock")
        with patch("psycopg2.connect", return_value=raw_conn):
            conn = PostgresTargetConnection(host="db", user="u", password="p")
            conn.connect()
        with pytest.raises(DatabaseError):
            conn.executemany("INSERT", [(1,)])
