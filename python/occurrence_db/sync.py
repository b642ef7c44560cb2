"""
Table Synchronization

Keeps a store table identical to an in-memory record set by replacing it
wholesale. The Access target cannot enforce keys, so appending would
duplicate rows and there is no way to update a row in place: every change,
including a one-value correction, is made in memory and written back with
replace_table().

Per table the lifecycle is ABSENT -> PRESENT on the first replace, then
PRESENT -> ABSENT -> PRESENT on every later one. By default the drop and the
recreate are separate statements, so an interrupted replace leaves the table
ABSENT and the next fetch raises TableNotFoundError. Stores that support
ALTER TABLE ... RENAME can use transactional=True, which builds the new
table under a staging name first and swaps it in.
"""

import logging
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from occurrence_db.schema import (
    SHORT_TEXT_MAX_LENGTH,
    ColumnSpec,
    infer_column_specs,
    validate_column_specs,
)
from occurrence_db.store import RelationalStore

logger = logging.getLogger(__name__)

STAGING_SUFFIX = "__staging"
PREVIOUS_SUFFIX = "__previous"


class TableState(str, PyEnum):
    """Whether a named table is present in the store"""
    ABSENT = "absent"
    PRESENT = "present"


def table_state(store: RelationalStore, name: str) -> TableState:
    return TableState.PRESENT if store.table_exists(name) else TableState.ABSENT


def replace_table(
    store: RelationalStore,
    name: str,
    rows: pd.DataFrame,
    short_text_max_length: int = SHORT_TEXT_MAX_LENGTH,
    column_specs: Optional[Iterable[ColumnSpec]] = None,
    transactional: bool = False
) -> List[ColumnSpec]:
    """
    Make table `name` hold exactly `rows`.

    Drops the table if present, recreates it with column types inferred from
    rows (or the given column_specs), and inserts every row. Repeating the
    call with the same rows leaves the same table behind.

    Args:
        store: Target store
        name: Table name
        rows: Complete new contents of the table
        short_text_max_length: Text columns with every value shorter than this
            are short text, others long text
        column_specs: Explicit column types instead of inferred ones
        transactional: Build under a staging name and swap in

    Returns:
        The column specs the table was created with

    Raises:
        SchemaError: If rows do not fit column_specs; raised before any
            table is touched
    """
    if column_specs is None:
        specs = infer_column_specs(rows, short_text_max_length)
    else:
        specs = list(column_specs)
    validate_column_specs(rows, specs, short_text_max_length)

    if transactional:
        _replace_via_staging(store, name, rows, specs)
    else:
        if store.table_exists(name):
            store.drop_table(name)
            logger.debug(f"Table {name} is ABSENT until it is recreated")
        store.create_table(name, specs)
        store.insert_rows(name, rows)

    logger.info(f"Replaced table {name} with {len(rows)} row(s) and {len(specs)} column(s)")
    return specs


def _replace_via_staging(
    store: RelationalStore,
    name: str,
    rows: pd.DataFrame,
    specs: List[ColumnSpec]
) -> None:
    staging = f"{name}{STAGING_SUFFIX}"
    previous = f"{name}{PREVIOUS_SUFFIX}"

    # Leftovers from an interrupted swap
    if store.table_exists(staging):
        store.drop_table(staging)
    if store.table_exists(previous):
        if store.table_exists(name):
            store.drop_table(previous)
        else:
            logger.warning(f"Restoring {name} from {previous} left by an interrupted replace")
            store.rename_table(previous, name)

    store.create_table(staging, specs)
    store.insert_rows(staging, rows)

    with store.begin() as conn:
        present = store.table_exists(name, connection=conn)
        if present:
            store.rename_table(name, previous, connection=conn)
        store.rename_table(staging, name, connection=conn)
        if present:
            store.drop_table(previous, connection=conn)


def replace_tables(
    store: RelationalStore,
    tables: Mapping[str, pd.DataFrame],
    **options: Any
) -> Dict[str, List[ColumnSpec]]:
    """replace_table() for each table in mapping order."""
    return {
        name: replace_table(store, name, rows, **options)
        for name, rows in tables.items()
    }


def fetch_table(store: RelationalStore, name: str) -> pd.DataFrame:
    """
    All rows of a table as last written, up to store-side type coercion.

    Raises:
        TableNotFoundError: If the table is absent
    """
    return store.fetch_table(name)


def query(store: RelationalStore, sql: str, params: Optional[Mapping[str, Any]] = None) -> pd.DataFrame:
    """Pass a read-only SQL statement through to the store."""
    return store.run_query(sql, params)
