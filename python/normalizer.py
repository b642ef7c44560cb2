"""
Occurrence Normalizer
Decomposes a flat Darwin Core occurrence table into location, event and
occurrence tables linked by natural keys.

Features:
- Projection and distinct-by-key deduplication with an explicit duplicate policy
- Event dates reparsed into ISO 8601 calendar dates (fails loudly on bad input)
- Candidate key exploration and referential integrity checks
- In-memory edits: appending keyed rows and value substitution
- Denormalizing the three tables back into one flat view

Record sets are pandas DataFrames. No function here mutates its input.
"""

import logging
from dataclasses import dataclass
from enum import Enum as PyEnum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

import pandas as pd

logger = logging.getLogger(__name__)

LOCATION_COLUMNS = ['locationID', 'locality', 'countryCode', 'stateProvince', 'county']
EVENT_COLUMNS = [
    'eventID', 'eventDate', 'year', 'month', 'day',
    'decimalLatitude', 'decimalLongitude', 'locationID'
]
OCCURRENCE_COLUMNS = [
    'scientificName', 'recordedBy', 'catalogNumber', 'recordNumber',
    'occurrenceRemarks', 'eventID'
]
FLAT_COLUMNS = [
    'occurrenceID', 'eventID', 'locationID', 'scientificName', 'recordedBy',
    'catalogNumber', 'recordNumber', 'occurrenceRemarks', 'eventDate', 'year',
    'month', 'day', 'decimalLatitude', 'decimalLongitude', 'locality',
    'countryCode', 'stateProvince', 'county'
]
NUMERIC_COLUMNS = ['year', 'month', 'day', 'decimalLatitude', 'decimalLongitude']

# Natural key of each normalized table
TABLE_KEYS = {'location': 'locationID', 'event': 'eventID', 'occurrence': 'catalogNumber'}

ISO_DATE_FORMAT = "%Y-%m-%d"
DEFAULT_DATE_FORMAT = "%m/%d/%Y"


class DuplicatePolicy(str, PyEnum):
    """What to do when rows sharing a key disagree on other columns"""
    FIRST = "first"  # keep the first row, warn
    ERROR = "error"


class NormalizationError(ValueError):
    """Raised when the flat records cannot be decomposed

    Attributes:
        field: The column that failed validation
        code: Error code for programmatic handling
        suggestion: Optional suggestion for fixing the input
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.suggestion = suggestion
        super().__init__(message)


@dataclass
class NormalizedTables:
    """The three related tables produced from one flat record set"""
    location: pd.DataFrame
    event: pd.DataFrame
    occurrence: pd.DataFrame

    def as_dict(self) -> Dict[str, pd.DataFrame]:
        """Tables keyed by name, parents first"""
        return {
            'location': self.location,
            'event': self.event,
            'occurrence': self.occurrence
        }

    @property
    def row_counts(self) -> Dict[str, int]:
        return {name: len(frame) for name, frame in self.as_dict().items()}


def _require_columns(records: pd.DataFrame, columns: Iterable[str]) -> None:
    missing = [column for column in columns if column not in records.columns]
    if missing:
        raise NormalizationError(
            f"Required column(s) missing from records: {', '.join(missing)}",
            field=missing[0],
            code="MISSING_COLUMN",
            suggestion="Check the header row of the flat file"
        )


def _require_values(records: pd.DataFrame, column: str) -> None:
    blank = records[column].isna()
    if blank.any():
        first_row = int(blank.to_numpy().nonzero()[0][0])
        raise NormalizationError(
            f"{int(blank.sum())} row(s) have no {column} (first at row {first_row})",
            field=column,
            code="MISSING_VALUE"
        )


def read_flat_file(path: Union[str, Path], encoding: str = "utf-8-sig", sep: str = ",") -> pd.DataFrame:
    """Read a delimited flat occurrence file with a header row

    Every column is read as text, then the date parts and coordinates are
    converted to numbers. The default encoding tolerates a byte order mark.

    Raises:
        NormalizationError: If a numeric column holds a non-numeric value
    """
    records = pd.read_csv(path, sep=sep, encoding=encoding, dtype=str)

    for column in NUMERIC_COLUMNS:
        if column not in records.columns:
            continue
        converted = pd.to_numeric(records[column], errors="coerce")
        bad = converted.isna() & records[column].notna()
        if bad.any():
            sample = records.loc[bad, column].iloc[0]
            raise NormalizationError(
                f"Column {column} holds non-numeric value '{sample}'",
                field=column,
                code="INVALID_NUMBER"
            )
        records[column] = converted

    logger.info(f"Read {len(records)} flat record(s) with {len(records.columns)} column(s) from {path}")
    return records


def select_distinct(
    records: pd.DataFrame,
    columns: Sequence[str],
    key: str,
    policy: Union[DuplicatePolicy, str] = DuplicatePolicy.FIRST
) -> pd.DataFrame:
    """Project records onto columns and keep one row per key

    Identical duplicates are always collapsed. When rows sharing a key differ
    in other columns, DuplicatePolicy.FIRST keeps the first one and logs a
    warning; DuplicatePolicy.ERROR raises.

    Raises:
        NormalizationError: On missing columns, null keys, or conflicting
            duplicates under DuplicatePolicy.ERROR
    """
    policy = DuplicatePolicy(policy)
    _require_columns(records, columns)
    projected = records.loc[:, list(columns)].copy()
    _require_values(projected, key)

    distinct_rows = projected.drop_duplicates()
    conflicting = distinct_rows.loc[distinct_rows.duplicated(subset=[key], keep=False), key].unique()
    if len(conflicting):
        sample = ", ".join(str(value) for value in conflicting[:5])
        if policy is DuplicatePolicy.ERROR:
            raise NormalizationError(
                f"{len(conflicting)} {key} value(s) carry conflicting attributes: {sample}",
                field=key,
                code="CONFLICTING_DUPLICATE",
                suggestion="Reconcile the flat file or use the 'first' duplicate policy"
            )
        logger.warning(
            f"{len(conflicting)} {key} value(s) carry conflicting attributes, "
            f"keeping the first row of each: {sample}"
        )

    return projected.drop_duplicates(subset=[key], keep='first').reset_index(drop=True)


def parse_event_dates(values: pd.Series, date_format: str = DEFAULT_DATE_FORMAT) -> pd.Series:
    """Reparse textual dates into YYYY-MM-DD strings

    Raises:
        NormalizationError: If any value is missing or does not match date_format
    """
    text = values.astype(str).str.strip()
    missing = values.isna() | (text == "")
    if missing.any():
        raise NormalizationError(
            f"{int(missing.sum())} event(s) have no eventDate",
            field="eventDate",
            code="MISSING_VALUE"
        )

    parsed = pd.to_datetime(text, format=date_format, errors="coerce")
    invalid = parsed.isna()
    if invalid.any():
        sample = ", ".join(f"'{value}'" for value in text[invalid].head(5))
        raise NormalizationError(
            f"eventDate value(s) do not match format '{date_format}': {sample}",
            field="eventDate",
            code="INVALID_DATE",
            suggestion="Set normalization.date_format to the format used in the flat file"
        )

    return parsed.dt.strftime(ISO_DATE_FORMAT)


def normalize_occurrences(
    records: pd.DataFrame,
    date_format: str = DEFAULT_DATE_FORMAT,
    duplicate_policy: Union[DuplicatePolicy, str] = DuplicatePolicy.FIRST
) -> NormalizedTables:
    """Decompose flat occurrence records into location, event and occurrence tables

    location has one row per locationID, event one row per eventID with an
    ISO 8601 eventDate, and occurrence one row per input record pointing at
    its event. occurrenceID is not carried over.

    Raises:
        NormalizationError: On missing columns, missing keys, bad dates, or
            conflicting duplicates under DuplicatePolicy.ERROR
    """
    _require_columns(records, dict.fromkeys(LOCATION_COLUMNS + EVENT_COLUMNS + OCCURRENCE_COLUMNS))

    location = select_distinct(records, LOCATION_COLUMNS, 'locationID', duplicate_policy)
    event = select_distinct(records, EVENT_COLUMNS, 'eventID', duplicate_policy)
    event['eventDate'] = parse_event_dates(event['eventDate'], date_format)

    occurrence = records.loc[:, OCCURRENCE_COLUMNS].reset_index(drop=True).copy()
    _require_values(occurrence, 'eventID')

    tables = NormalizedTables(location=location, event=event, occurrence=occurrence)
    logger.info(
        "Normalized %d record(s) into %d location(s), %d event(s), %d occurrence(s)",
        len(records), len(location), len(event), len(occurrence)
    )
    return tables


def key_candidates(records: pd.DataFrame, columns: Sequence[str]) -> Dict[str, int]:
    """Distinct value count per column, for choosing a primary key"""
    _require_columns(records, columns)
    return {column: int(records[column].nunique(dropna=False)) for column in columns}


def is_candidate_key(records: pd.DataFrame, column: str) -> bool:
    """True when column is non-null and unique across all records"""
    _require_columns(records, [column])
    values = records[column]
    return bool(values.notna().all() and values.is_unique)


def check_referential_integrity(tables: NormalizedTables) -> None:
    """Verify keys are unique and every foreign key has a parent row

    Raises:
        NormalizationError: DUPLICATE_KEY or ORPHANED_REFERENCE
    """
    for frame, key in ((tables.location, 'locationID'), (tables.event, 'eventID')):
        duplicated = frame.loc[frame[key].duplicated(), key]
        if len(duplicated):
            raise NormalizationError(
                f"Duplicate {key} value(s): {', '.join(map(str, duplicated.unique()[:5]))}",
                field=key,
                code="DUPLICATE_KEY"
            )

    links = (
        (tables.event, tables.location, 'locationID'),
        (tables.occurrence, tables.event, 'eventID'),
    )
    for child, parent, key in links:
        orphans = child.loc[~child[key].isin(parent[key]), key]
        if len(orphans):
            raise NormalizationError(
                f"{len(orphans)} row(s) reference unknown {key}: "
                f"{', '.join(map(str, orphans.unique()[:5]))}",
                field=key,
                code="ORPHANED_REFERENCE"
            )


def denormalize(tables: NormalizedTables) -> pd.DataFrame:
    """Full outer join occurrence -> event -> location back into one flat frame"""
    return (
        tables.occurrence
        .merge(tables.event, on='eventID', how='outer')
        .merge(tables.location, on='locationID', how='outer')
    )


def append_rows(
    table: pd.DataFrame,
    new_rows: Union[pd.DataFrame, Mapping[str, Any], List[Mapping[str, Any]]],
    key: str
) -> pd.DataFrame:
    """Return table with new_rows appended, refusing keys that already exist

    Columns missing from new_rows are left null.

    Raises:
        NormalizationError: UNKNOWN_COLUMN, MISSING_VALUE or DUPLICATE_KEY
    """
    if isinstance(new_rows, Mapping):
        new_rows = [new_rows]
    additions = new_rows if isinstance(new_rows, pd.DataFrame) else pd.DataFrame(list(new_rows))

    unknown = [column for column in additions.columns if column not in table.columns]
    if unknown:
        raise NormalizationError(
            f"Unknown column(s): {', '.join(unknown)}",
            field=unknown[0],
            code="UNKNOWN_COLUMN"
        )
    _require_columns(additions, [key])
    _require_values(additions, key)

    clashes = additions.loc[additions[key].isin(table[key]) | additions[key].duplicated(), key]
    if len(clashes):
        raise NormalizationError(
            f"{key} already present: {', '.join(map(str, clashes.unique()))}",
            field=key,
            code="DUPLICATE_KEY",
            suggestion="Use apply_correction to change an existing row"
        )

    combined = pd.concat([table, additions.reindex(columns=table.columns)], ignore_index=True)
    logger.info(f"Appended {len(additions)} row(s) keyed by {key}")
    return combined


def apply_correction(
    table: pd.DataFrame,
    match: Mapping[str, Any],
    updates: Mapping[str, Any]
) -> Tuple[pd.DataFrame, int]:
    """Substitute values in rows matching every column of match

    Returns the corrected copy and the number of rows changed; rows that do
    not match are left untouched.

    Raises:
        NormalizationError: If match or updates name an unknown column
    """
    if not match:
        raise NormalizationError("A correction needs at least one match column", code="EMPTY_MATCH")

    unknown = [column for column in list(match) + list(updates) if column not in table.columns]
    if unknown:
        raise NormalizationError(
            f"Unknown column(s) in correction: {', '.join(unknown)}",
            field=unknown[0],
            code="UNKNOWN_COLUMN"
        )

    mask = pd.Series(True, index=table.index)
    for column, value in match.items():
        mask &= table[column] == value

    corrected = table.copy()
    for column, value in updates.items():
        corrected.loc[mask, column] = value

    changed = int(mask.sum())
    logger.info(f"Correction matched {changed} row(s): {dict(match)} -> {dict(updates)}")
    return corrected, changed


def memory_footprint(frame: pd.DataFrame) -> int:
    """Deep memory usage in bytes"""
    return int(frame.memory_usage(index=True, deep=True).sum())
