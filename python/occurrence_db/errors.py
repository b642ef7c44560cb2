"""
Exceptions raised by the relational store layer.
"""


class StoreError(Exception):
    """Base exception for store errors."""
    pass


class StoreConnectionError(StoreError):
    """Raised when the store cannot be reached."""
    pass


class TableNotFoundError(StoreError):
    """Raised when a table is absent from the store."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Table not found: {name}")


class TableExistsError(StoreError):
    """Raised when creating a table that is already present."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Table already exists: {name}")


class SchemaError(StoreError):
    """Raised when rows do not fit the declared column types."""

    def __init__(self, message: str, column: str = ""):
        self.column = column
        super().__init__(message)
