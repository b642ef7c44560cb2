"""
Relational Store for Occurrence Tables

Table-level operations over a SQLAlchemy engine: list, create, drop, rename,
insert, fetch, query and describe. The production target is a Microsoft
Access file through the sqlalchemy-access dialect, which supports neither
primary keys nor row updates on these tables; the store has no update
operation.

Every method checks a connection out of the engine for its own scope and
returns it on exit, success or failure. Methods that write also accept an
open `connection` so several of them can share one transaction.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional

import pandas as pd
from sqlalchemy import Column, MetaData, Table, inspect, text
from sqlalchemy.engine import Connection, Engine

from occurrence_db.errors import SchemaError, TableExistsError, TableNotFoundError
from occurrence_db.monitoring import timed_query
from occurrence_db.schema import ColumnSpec

logger = logging.getLogger(__name__)


class RelationalStore:
    """Table operations on one database."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def begin(self) -> Generator[Connection, None, None]:
        """Connection inside a transaction: commits on success, rolls back on error."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _scope(self, connection: Optional[Connection]) -> Generator[Connection, None, None]:
        if connection is not None:
            yield connection
        else:
            with self.engine.begin() as conn:
                yield conn

    def _resolve_name(self, name: str, connection: Connection) -> Optional[str]:
        # Access and SQLite compare table names case-insensitively
        for existing in inspect(connection).get_table_names():
            if existing.lower() == name.lower():
                return existing
        return None

    @timed_query("list_tables")
    def list_tables(self) -> List[str]:
        """Names of all user tables."""
        with self.engine.connect() as conn:
            return list(inspect(conn).get_table_names())

    def table_exists(self, name: str, connection: Optional[Connection] = None) -> bool:
        if connection is not None:
            return self._resolve_name(name, connection) is not None
        with self.engine.connect() as conn:
            return self._resolve_name(name, conn) is not None

    @timed_query("drop_table")
    def drop_table(self, name: str, connection: Optional[Connection] = None) -> None:
        """
        Drop a table.

        Raises:
            TableNotFoundError: If the table is absent
        """
        with self._scope(connection) as conn:
            existing = self._resolve_name(name, conn)
            if existing is None:
                raise TableNotFoundError(name)
            Table(existing, MetaData()).drop(conn)
        logger.debug(f"Dropped table {name}")

    @timed_query("create_table")
    def create_table(
        self,
        name: str,
        column_specs: Iterable[ColumnSpec],
        connection: Optional[Connection] = None
    ) -> None:
        """
        Create an empty table. No primary key or constraints are declared.

        Raises:
            TableExistsError: If a table with this name is present
            SchemaError: If no columns are given
        """
        specs = list(column_specs)
        if not specs:
            raise SchemaError(f"Table {name} needs at least one column")

        table = Table(name, MetaData(), *[Column(spec.name, spec.sqlalchemy_type()) for spec in specs])
        with self._scope(connection) as conn:
            if self._resolve_name(name, conn) is not None:
                raise TableExistsError(name)
            table.create(conn)
        logger.debug(
            "Created table %s (%s)", name,
            ", ".join(f"{spec.name} {spec.column_type.value}" for spec in specs)
        )

    @timed_query("rename_table")
    def rename_table(self, old_name: str, new_name: str, connection: Optional[Connection] = None) -> None:
        """
        Rename a table with ALTER TABLE ... RENAME TO.

        Not available on Access.

        Raises:
            TableNotFoundError: If old_name is absent
            TableExistsError: If new_name is present
        """
        quote = self.engine.dialect.identifier_preparer.quote
        with self._scope(connection) as conn:
            existing = self._resolve_name(old_name, conn)
            if existing is None:
                raise TableNotFoundError(old_name)
            if self._resolve_name(new_name, conn) is not None:
                raise TableExistsError(new_name)
            conn.execute(text(f"ALTER TABLE {quote(existing)} RENAME TO {quote(new_name)}"))
        logger.debug(f"Renamed table {old_name} to {new_name}")

    @timed_query("insert_rows")
    def insert_rows(self, name: str, rows: pd.DataFrame, connection: Optional[Connection] = None) -> int:
        """
        Append rows to an existing table.

        Returns:
            Number of rows inserted

        Raises:
            TableNotFoundError: If the table is absent
            SchemaError: If rows has columns the table lacks
        """
        with self._scope(connection) as conn:
            existing = self._resolve_name(name, conn)
            if existing is None:
                raise TableNotFoundError(name)

            table_columns = {column['name'] for column in inspect(conn).get_columns(existing)}
            unknown = [str(column) for column in rows.columns if column not in table_columns]
            if unknown:
                raise SchemaError(
                    f"Table {name} has no column(s): {', '.join(unknown)}",
                    column=unknown[0]
                )

            if rows.empty:
                return 0
            rows.to_sql(existing, conn, if_exists="append", index=False)

        logger.debug(f"Inserted {len(rows)} row(s) into {name}")
        return len(rows)

    @timed_query("fetch_table")
    def fetch_table(self, name: str) -> pd.DataFrame:
        """
        All rows of a table, columns in creation order.

        Raises:
            TableNotFoundError: If the table is absent
        """
        with self.engine.connect() as conn:
            existing = self._resolve_name(name, conn)
            if existing is None:
                raise TableNotFoundError(name)
            return pd.read_sql_table(existing, conn)

    @timed_query("run_query")
    def run_query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> pd.DataFrame:
        """
        Run a read-only SQL statement and return its result set.

        The statement is passed to the database as written; validating it is
        up to the caller.
        """
        with self.engine.connect() as conn:
            return pd.read_sql_query(text(sql), conn, params=dict(params) if params else None)

    @timed_query("list_columns")
    def list_columns(self, name: str) -> List[Dict[str, Any]]:
        """
        Column name, type and nullability for a table, in creation order.

        Raises:
            TableNotFoundError: If the table is absent
        """
        with self.engine.connect() as conn:
            existing = self._resolve_name(name, conn)
            if existing is None:
                raise TableNotFoundError(name)
            return [
                {
                    'name': column['name'],
                    'type': str(column['type']),
                    'nullable': column.get('nullable', True)
                }
                for column in inspect(conn).get_columns(existing)
            ]
