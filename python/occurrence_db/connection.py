"""
Store Connection Management for the occurrence database

This module provides:
- StoreSettings built from config.yaml or the environment
- Access (.accdb) URLs for the sqlalchemy-access ODBC dialect
- StoreProvider: creates and verifies the engine, hands out a RelationalStore,
  and disposes of the engine on close
- open_store(): scoped acquisition that always releases the engine
- SQLite engines get transactions that also cover DDL

The store handle is passed explicitly to every operation; there is no
module-level connection.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional, Union
from urllib.parse import quote_plus

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.exc import DBAPIError

from occurrence_db.errors import StoreConnectionError
from occurrence_db.store import RelationalStore

logger = logging.getLogger(__name__)

ACCESS_DRIVER = "Microsoft Access Driver (*.mdb, *.accdb)"


def _sqlite_disable_driver_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


def _sqlite_emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


def enable_sqlite_transactions(engine: Engine) -> None:
    """
    Make SQLite transactions cover DDL.

    pysqlite only opens a transaction before DML, so CREATE, DROP and
    ALTER TABLE would otherwise commit on their own. Driver-level
    transaction handling is turned off and SQLAlchemy emits BEGIN itself.
    Must be applied before the engine's first connection.
    """
    if not event.contains(engine, "connect", _sqlite_disable_driver_transactions):
        event.listen(engine, "connect", _sqlite_disable_driver_transactions)
    if not event.contains(engine, "begin", _sqlite_emit_begin):
        event.listen(engine, "begin", _sqlite_emit_begin)


def build_access_url(database_file: Union[str, Path], driver: str = ACCESS_DRIVER) -> str:
    """
    Build a SQLAlchemy URL for an Access database file.

    Args:
        database_file: Path to an existing .accdb/.mdb file
        driver: Name of the installed ODBC driver

    Returns:
        access+pyodbc URL carrying an ODBC connection string
    """
    database_path = Path(database_file).resolve()
    connection_string = (
        f"DRIVER={{{driver}}};"
        f"DBQ={database_path};"
        "ExtendedAnsiSQL=1;"
    )
    return f"access+pyodbc:///?odbc_connect={quote_plus(connection_string)}"


@dataclass
class StoreSettings:
    """Store connection settings."""
    url: str
    echo: bool = False

    @classmethod
    def from_config(cls, config) -> 'StoreSettings':
        """
        Settings from a ConfigManager.

        DATABASE_URL takes precedence over database.url, which takes
        precedence over database.access_file.
        """
        db_config = config.database
        url = os.getenv("DATABASE_URL") or db_config.url
        if not url:
            url = build_access_url(db_config.access_file, db_config.driver)
        return cls(url=url, echo=db_config.echo)

    @classmethod
    def from_env(cls) -> 'StoreSettings':
        """Settings from DATABASE_URL and DB_ECHO."""
        url = os.getenv("DATABASE_URL")
        if not url:
            raise StoreConnectionError("DATABASE_URL is not set")
        return cls(url=url, echo=os.getenv("DB_ECHO", "false").lower() == "true")


class StoreProvider:
    """
    Owns the engine for one store.

    Usage:
        provider = StoreProvider(StoreSettings(url="sqlite:///fen.db"))
        try:
            store = provider.init()
            ...
        finally:
            provider.close()
    """

    def __init__(self, settings: Optional[StoreSettings] = None, engine: Optional[Engine] = None):
        """
        Args:
            settings: Connection settings (required unless engine is given)
            engine: Pre-created engine (for testing)
        """
        if settings is None and engine is None:
            raise ValueError("StoreProvider needs settings or an engine")
        self._settings = settings
        self._engine = engine
        self._store: Optional[RelationalStore] = None

    def init(self) -> RelationalStore:
        """
        Create the engine if needed and verify the store is reachable.

        Raises:
            StoreConnectionError: If the driver or database cannot be reached
        """
        if self._store is not None:
            return self._store

        if self._engine is None:
            self._engine = create_engine(self._settings.url, echo=self._settings.echo)
            self._setup_event_listeners()
        if self._engine.dialect.name == "sqlite":
            enable_sqlite_transactions(self._engine)

        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except DBAPIError as e:
            self._engine.dispose()
            raise StoreConnectionError(f"Cannot connect to store: {e}") from e

        self._store = RelationalStore(self._engine)
        logger.info(f"Connected to store ({self._engine.dialect.name})")
        return self._store

    def _setup_event_listeners(self) -> None:
        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New store connection established")

        @event.listens_for(self._engine, "checkin")
        def on_checkin(dbapi_connection, connection_record):
            logger.debug("Store connection released")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Store not initialized. Call init() first.")
        return self._engine

    @property
    def store(self) -> RelationalStore:
        if self._store is None:
            raise RuntimeError("Store not initialized. Call init() first.")
        return self._store

    def health_check(self) -> bool:
        """True if the store answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except DBAPIError as e:
            logger.error(f"Store health check failed: {e}")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Store engine disposed")
        self._store = None


@contextmanager
def open_store(
    settings: Optional[StoreSettings] = None,
    engine: Optional[Engine] = None
) -> Generator[RelationalStore, None, None]:
    """
    Scoped store access; the engine is disposed on every exit path.

    Usage:
        with open_store(StoreSettings.from_config(config)) as store:
            replace_table(store, "location", tables.location)
    """
    provider = StoreProvider(settings=settings, engine=engine)
    try:
        yield provider.init()
    finally:
        provider.close()


def create_test_provider(engine: Engine) -> StoreProvider:
    """
    Create a provider around a pre-built engine (e.g., SQLite for unit tests).
    """
    return StoreProvider(engine=engine)
