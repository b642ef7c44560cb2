"""
Relational store package for normalized occurrence data

This package provides:
- RelationalStore: table-level operations over a SQLAlchemy engine
- StoreProvider / open_store: scoped engine ownership
- Column type inference for tables recreated on every write
- replace_table / fetch_table / query: the synchronization primitives
- Timing of store operations
"""

from occurrence_db.errors import (
    StoreError,
    StoreConnectionError,
    TableNotFoundError,
    TableExistsError,
    SchemaError,
)
from occurrence_db.schema import (
    ColumnType,
    ColumnSpec,
    SHORT_TEXT_MAX_LENGTH,
    infer_column_type,
    infer_column_specs,
    validate_column_specs,
)
from occurrence_db.store import RelationalStore
from occurrence_db.connection import (
    StoreSettings,
    StoreProvider,
    build_access_url,
    open_store,
    create_test_provider,
    enable_sqlite_transactions,
)
from occurrence_db.sync import (
    TableState,
    table_state,
    replace_table,
    replace_tables,
    fetch_table,
    query,
)
from occurrence_db.monitoring import (
    query_timer,
    timed_query,
    configure_monitoring,
    get_store_metrics,
    get_slow_operation_report,
    reset_metrics,
)

__all__ = [
    # Errors
    'StoreError',
    'StoreConnectionError',
    'TableNotFoundError',
    'TableExistsError',
    'SchemaError',
    # Schema inference
    'ColumnType',
    'ColumnSpec',
    'SHORT_TEXT_MAX_LENGTH',
    'infer_column_type',
    'infer_column_specs',
    'validate_column_specs',
    # Store and connections
    'RelationalStore',
    'StoreSettings',
    'StoreProvider',
    'build_access_url',
    'open_store',
    'create_test_provider',
    'enable_sqlite_transactions',
    # Synchronization
    'TableState',
    'table_state',
    'replace_table',
    'replace_tables',
    'fetch_table',
    'query',
    # Monitoring
    'query_timer',
    'timed_query',
    'configure_monitoring',
    'get_store_metrics',
    'get_slow_operation_report',
    'reset_metrics',
]
