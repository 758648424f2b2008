"""
transfer/dialects.py
--------------------
SQL spelling of the statements the batch writer issues.

Each dialect knows how to quote identifiers, build single- and multi-row
INSERT statements (including the duplicate-key clause), truncate a table,
and read/suspend/restore referential-integrity enforcement.

Values are never interpolated: every statement uses ``%s`` placeholders,
which both mysql-connector and psycopg2 accept.
"""
from __future__ import annotations

from typing import Sequence

from models.settings import DuplicateKeyStrategy
from transfer.errors import TransferError


class DialectError(TransferError):
    """The dialect cannot express the requested statement."""


class Dialect:
    """Base class; subclasses fill in the vendor-specific parts."""
    name = "generic"
    quote_char = '"'
    placeholder = "%s"

    def quote(self, identifier: str) -> str:
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def qualified(self, table: str, schema: str | None = None) -> str:
        if schema:
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(table)

    def supports_strategy(self, strategy: DuplicateKeyStrategy | None) -> bool:
        return strategy is None

    def insert_sql(
        self,
        table: str,
        columns: Sequence[str],
        row_count: int = 1,
        strategy: DuplicateKeyStrategy | None = None,
        key_columns: Sequence[str] = (),
        schema: str | None = None,
    ) -> str:
        """
        Build an INSERT carrying *row_count* rows of *columns*.

        Raises:
            DialectError: If *strategy* cannot be expressed for this table.
        """
        if not columns:
            raise DialectError(f"No columns to insert into '{table}'.")
        if row_count < 1:
            raise DialectError("row_count must be positive.")
        if not self.supports_strategy(strategy):
            raise DialectError(
                f"Duplicate key strategy '{strategy.value}' is not supported by {self.name}."  # type: ignore[union-attr]
            )
        col_list = ", ".join(self.quote(c) for c in columns)
        row_values = "(" + ", ".join([self.placeholder] * len(columns)) + ")"
        values = ", ".join([row_values] * row_count)
        head = self._insert_head(strategy)
        tail = self._insert_tail(strategy, columns, key_columns, table)
        sql = f"{head} {self.qualified(table, schema)} ({col_list}) VALUES {values}"
        return f"{sql} {tail}" if tail else sql

    def _insert_head(self, strategy: DuplicateKeyStrategy | None) -> str:
        return "INSERT INTO"

    def _insert_tail(
        self,
        strategy: DuplicateKeyStrategy | None,
        columns: Sequence[str],
        key_columns: Sequence[str],
        table: str,
    ) -> str:
        return ""

    def truncate_sql(self, table: str, schema: str | None = None) -> str:
        return f"TRUNCATE TABLE {self.qualified(table, schema)}"

    # Referential integrity -------------------------------------------------

    def integrity_state_sql(self) -> str:
        raise DialectError(f"{self.name} cannot suspend referential integrity.")

    def integrity_disable_sql(self) -> str:
        raise DialectError(f"{self.name} cannot suspend referential integrity.")

    def integrity_restore_sql(self, original: object) -> tuple[str, tuple]:
        raise DialectError(f"{self.name} cannot suspend referential integrity.")


class MySQLDialect(Dialect):
    name = "mysql"
    quote_char = "`"

    def supports_strategy(self, strategy: DuplicateKeyStrategy | None) -> bool:
        return True

    def _insert_head(self, strategy: DuplicateKeyStrategy | None) -> str:
        if strategy is None or strategy == DuplicateKeyStrategy.UPDATE:
            return "INSERT INTO"
        if strategy == DuplicateKeyStrategy.IGNORE:
            return "INSERT IGNORE INTO"
        if strategy == DuplicateKeyStrategy.REPLACE:
            return "REPLACE INTO"
        raise AssertionError(f"Unhandled strategy: {strategy}")

    def _insert_tail(self, strategy, columns, key_columns, table) -> str:
        if strategy != DuplicateKeyStrategy.UPDATE:
            return ""
        keys = set(key_columns)
        updatable = [c for c in columns if c not in keys] or [columns[0]]
        assignments = ", ".join(
            f"{self.quote(c)}=VALUES({self.quote(c)})" for c in updatable
        )
        return f"ON DUPLICATE KEY UPDATE {assignments}"

    def integrity_state_sql(self) -> str:
        return "SELECT @@FOREIGN_KEY_CHECKS"

    def integrity_disable_sql(self) -> str:
        return "SET FOREIGN_KEY_CHECKS=0"

    def integrity_restore_sql(self, original: object) -> tuple[str, tuple]:
        value = 0 if str(original).strip() in ("0", "OFF", "False") else 1
        return f"SET FOREIGN_KEY_CHECKS={value}", ()


class PostgreSQLDialect(Dialect):
    name = "postgresql"

    def supports_strategy(self, strategy: DuplicateKeyStrategy | None) -> bool:
        return True

    def _insert_tail(self, strategy, columns, key_columns, table) -> str:
        if strategy is None:
            return ""
        if strategy == DuplicateKeyStrategy.IGNORE:
            return "ON CONFLICT DO NOTHING"
        if strategy in (DuplicateKeyStrategy.UPDATE, DuplicateKeyStrategy.REPLACE):
            if not key_columns:
                raise DialectError(
                    f"'{strategy.value}' on conflict needs a primary key on '{table}'."
                )
            keys = set(key_columns)
            conflict = ", ".join(self.quote(c) for c in key_columns)
            updatable = [c for c in columns if c not in keys]
            if not updatable:
                return f"ON CONFLICT ({conflict}) DO NOTHING"
            assignments = ", ".join(
                f"{self.quote(c)} = EXCLUDED.{self.quote(c)}" for c in updatable
            )
            return f"ON CONFLICT ({conflict}) DO UPDATE SET {assignments}"
        raise AssertionError(f"Unhandled strategy: {strategy}")

    def integrity_state_sql(self) -> str:
        return "SHOW session_replication_role"

    def integrity_disable_sql(self) -> str:
        return "SET session_replication_role = 'replica'"

    def integrity_restore_sql(self, original: object) -> tuple[str, tuple]:
        return "SET session_replication_role = %s", (str(original or "origin"),)


_DIALECTS: dict[str, Dialect] = {
    "mysql": MySQLDialect(),
    "mariadb": MySQLDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
}


def get_dialect(name: str) -> Dialect:
    """Look up a dialect by name (case-insensitive)."""
    try:
        return _DIALECTS[name.lower()]
    except KeyError:
        raise DialectError(f"Unknown SQL dialect '{name}'.") from None
