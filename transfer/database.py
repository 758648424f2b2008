"""
transfer/database.py
--------------------
Target connections used by the batch writer.

Design Decisions:
    * ``TargetConnection`` is a context manager so callers can use it with
      ``with`` statements and be guaranteed the connection is closed on exit;
      an exception inside the block rolls back first.
    * Retry logic for the initial connect uses linear back-off
      (``max_retries`` / ``retry_delay`` from config).
    * Values are always passed as parameters (``%s``); only quoted
      identifiers built by :mod:`transfer.dialects` appear in SQL text.
    * Driver exceptions are wrapped in :class:`DatabaseError` here so no
      raw driver error ever escapes to the orchestrator.
"""
from __future__ import annotations

import time
from typing import Any, Sequence

import mysql.connector
import psycopg2

from config import CONFIG
from logger import get_logger
from transfer.dialects import Dialect, MySQLDialect, PostgreSQLDialect

log = get_logger(__name__)


class DatabaseError(Exception):
    """Raised for database-level failures reported by this module."""


class ConnectionLostError(DatabaseError):
    """Raised when the target connection is detected as lost."""


class TargetConnection:
    """
    Driver-neutral target connection.

    Subclasses provide ``_connect_raw`` and the driver's error class; the
    base class implements transaction control, statement execution and the
    retrying connect loop.

    Example::

        with MySQLTargetConnection(host="db", user="etl", password="...",
                                   database="shop") as conn:
            conn.set_autocommit(False)
            conn.executemany(sql, rows)
            conn.commit()
    """

    dialect: Dialect
    driver_error: type[BaseException] = Exception
    label = "database"
    default_port = 0

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int | None = None,
        database: str | None = None,
        connect_timeout: int | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self._host = host
        self._port = port or self.default_port
        self._user = user
        self._password = password
        self._database = database
        self._connect_timeout = connect_timeout or CONFIG.db.connect_timeout
        self._max_retries = max_retries or CONFIG.db.max_retries
        self._retry_delay = CONFIG.db.retry_delay if retry_delay is None else retry_delay
        self._conn: Any = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "TargetConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            log.warning("Unhandled exception in %s connection context: %s", self.label, exc_val)
            self.rollback()
        self.close()
        return False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _connect_raw(self) -> Any:
        raise NotImplementedError

    def _raw_is_connected(self) -> bool:
        raise NotImplementedError

    def connect(self) -> None:
        """
        Open the connection, retrying with back-off.

        Raises:
            DatabaseError: If connection fails after all retries.
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                log.info(
                    "Connecting to %s at %s:%s (attempt %d/%d)",
                    self.label, self._host, self._port, attempt, self._max_retries,
                )
                self._conn = self._connect_raw()
                log.info("Connected to %s successfully.", self.label)
                return
            except self.driver_error as exc:
                log.warning("Connection attempt %d failed: %s", attempt, exc)
                if attempt < self._max_retries:
                    time.sleep(self._retry_delay * attempt)
        raise DatabaseError(
            f"Could not connect to {self.label} at {self._host}:{self._port} "
            f"after {self._max_retries} attempts."
        )

    def close(self) -> None:
        if self._conn is not None and self._raw_is_connected():
            try:
                self._conn.close()
                log.info("%s connection closed.", self.label)
            except self.driver_error as exc:
                log.warning("Error closing %s connection: %s", self.label, exc)
        self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and self._raw_is_connected()

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise ConnectionLostError(
                f"{self.label} connection is not open. Call connect() first."
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def set_autocommit(self, enabled: bool) -> None:
        self._ensure_connected()
        self._conn.autocommit = enabled

    def commit(self) -> None:
        self._ensure_connected()
        try:
            self._conn.commit()
        except self.driver_error as exc:
            raise DatabaseError(f"Commit failed: {exc}") from exc

    def rollback(self) -> None:
        """Roll back, logging (not raising) on failure."""
        if not self.is_connected:
            return
        try:
            self._conn.rollback()
            log.debug("Transaction rolled back.")
        except self.driver_error as exc:
            log.warning("Rollback failed: %s", exc)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """
        Execute one statement and return its row count.

        Raises:
            ConnectionLostError: If not connected.
            DatabaseError: On driver execution errors.
        """
        self._ensure_connected()
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(params) if params else None)
            return cursor.rowcount
        except self.driver_error as exc:
            log.error("SQL execution error: %s | SQL: %.500s", exc, sql)
            raise DatabaseError(str(exc)) from exc
        finally:
            cursor.close()

    def executemany(self, sql: str, seq_params: Sequence[Sequence[Any]]) -> int:
        """Execute *sql* once per parameter row (a native driver batch)."""
        self._ensure_connected()
        cursor = self._conn.cursor()
        try:
            cursor.executemany(sql, [tuple(p) for p in seq_params])
            return cursor.rowcount
        except self.driver_error as exc:
            log.error("Batch execution error: %s | SQL: %.500s", exc, sql)
            raise DatabaseError(str(exc)) from exc
        finally:
            cursor.close()

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """Execute a query and return the first column of the first row."""
        self._ensure_connected()
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(params) if params else None)
            row = cursor.fetchone()
            return row[0] if row else None
        except self.driver_error as exc:
            raise DatabaseError(str(exc)) from exc
        finally:
            cursor.close()


class MySQLTargetConnection(TargetConnection):
    """MySQL / MariaDB target through mysql-connector-python."""

    dialect = MySQLDialect()
    driver_error = mysql.connector.Error
    label = "MySQL"
    default_port = CONFIG.db.port

    def __init__(self, *args: Any, charset: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._charset = charset or CONFIG.db.charset

    def _connect_raw(self) -> Any:
        return mysql.connector.connect(
            host=self._host,
            port=self._port,
            user=self._user,
            password=self._password,
            database=self._database,
            charset=self._charset,
            connect_timeout=self._connect_timeout,
            autocommit=False,
        )

    def _raw_is_connected(self) -> bool:
        return bool(self._conn.is_connected())


class PostgresTargetConnection(TargetConnection):
    """PostgreSQL target through psycopg2."""

    dialect = PostgreSQLDialect()
    driver_error = psycopg2.Error
    label = "PostgreSQL"
    default_port = 5432

    def _connect_raw(self) -> Any:
        return psycopg2.connect(
            host=self._host,
            port=self._port,
            user=self._user,
            password=self._password,
            dbname=self._database,
            connect_timeout=self._connect_timeout,
        )

    def _raw_is_connected(self) -> bool:
        return not self._conn.closed
