"""
Column Type Inference for Replaced Tables

Tables are recreated on every write, so their schema is inferred from the
rows being written rather than declared up front:

- integer and boolean columns -> INTEGER
- float columns -> FLOAT
- datetime columns -> DATETIME
- anything else is text: SHORT_TEXT (VARCHAR(threshold)) when every value is
  shorter than the threshold, LONG_TEXT otherwise

The Access short text type holds at most 255 characters, hence the default.
"""

from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd
from pandas.api import types as ptypes
from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.types import TypeEngine

from occurrence_db.errors import SchemaError

SHORT_TEXT_MAX_LENGTH = 255


class ColumnType(str, PyEnum):
    """Store column type"""
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    INTEGER = "integer"
    FLOAT = "float"
    DATETIME = "datetime"


@dataclass(frozen=True)
class ColumnSpec:
    """Name and type of one column of a table to create"""
    name: str
    column_type: ColumnType
    length: Optional[int] = None

    def sqlalchemy_type(self) -> TypeEngine:
        if self.column_type is ColumnType.SHORT_TEXT:
            return String(self.length or SHORT_TEXT_MAX_LENGTH)
        if self.column_type is ColumnType.LONG_TEXT:
            return Text()
        if self.column_type is ColumnType.INTEGER:
            return Integer()
        if self.column_type is ColumnType.FLOAT:
            return Float()
        return DateTime()


def _text_lengths(values: pd.Series) -> pd.Series:
    return values.dropna().astype(str).str.len()


def infer_column_type(
    values: Union[pd.Series, Sequence],
    threshold: int = SHORT_TEXT_MAX_LENGTH
) -> ColumnType:
    """
    Infer the store type of a column from its values.

    Args:
        values: Column values
        threshold: Text values must all be shorter than this to be SHORT_TEXT

    Returns:
        ColumnType for the column
    """
    if not isinstance(values, pd.Series):
        values = pd.Series(list(values))

    if ptypes.is_bool_dtype(values) or ptypes.is_integer_dtype(values):
        return ColumnType.INTEGER
    if ptypes.is_float_dtype(values):
        return ColumnType.FLOAT
    if ptypes.is_datetime64_any_dtype(values):
        return ColumnType.DATETIME

    lengths = _text_lengths(values)
    if lengths.empty or lengths.max() < threshold:
        return ColumnType.SHORT_TEXT
    return ColumnType.LONG_TEXT


def infer_column_specs(frame: pd.DataFrame, threshold: int = SHORT_TEXT_MAX_LENGTH) -> List[ColumnSpec]:
    """Column specs for every column of frame, in frame order."""
    specs = []
    for name in frame.columns:
        column_type = infer_column_type(frame[name], threshold)
        length = threshold if column_type is ColumnType.SHORT_TEXT else None
        specs.append(ColumnSpec(name=str(name), column_type=column_type, length=length))
    return specs


def validate_column_specs(
    frame: pd.DataFrame,
    specs: Iterable[ColumnSpec],
    threshold: int = SHORT_TEXT_MAX_LENGTH
) -> None:
    """
    Check that frame fits specs exactly, before anything is written.

    Raises:
        SchemaError: On missing or extra columns, text longer than a short
            text column allows, or non-numeric values in a numeric column
    """
    specs = list(specs)
    declared = [spec.name for spec in specs]
    actual = [str(name) for name in frame.columns]

    missing = [name for name in actual if name not in declared]
    if missing:
        raise SchemaError(f"No column spec for: {', '.join(missing)}", column=missing[0])
    extra = [name for name in declared if name not in actual]
    if extra:
        raise SchemaError(f"Column spec without data: {', '.join(extra)}", column=extra[0])

    for spec in specs:
        values = frame[spec.name]

        if spec.column_type is ColumnType.SHORT_TEXT:
            limit = spec.length or threshold
            lengths = _text_lengths(values)
            if not lengths.empty and lengths.max() > limit:
                raise SchemaError(
                    f"Column {spec.name} holds {int(lengths.max())}-character text, "
                    f"longer than its {limit}-character short text type",
                    column=spec.name
                )

        elif spec.column_type in (ColumnType.INTEGER, ColumnType.FLOAT):
            present = values.dropna()
            numbers = pd.to_numeric(present, errors="coerce")
            if numbers.isna().any():
                raise SchemaError(f"Column {spec.name} holds non-numeric values", column=spec.name)
            if spec.column_type is ColumnType.INTEGER and not (numbers == numbers.round()).all():
                raise SchemaError(f"Column {spec.name} holds fractional values", column=spec.name)
