"""
Tests for table synchronization against a SQLite store.

Covers the ABSENT -> PRESENT lifecycle, round trips of the normalized
tables, the non-atomic failure window of a plain replace, and the staging
variant that swaps tables in one transaction.
"""

import logging

import pandas as pd
import pytest
from unittest.mock import patch

from sqlalchemy import create_engine

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from normalizer import apply_correction, normalize_occurrences, read_flat_file
from occurrence_db import queries
from occurrence_db.connection import create_test_provider
from occurrence_db.errors import SchemaError, TableNotFoundError
from occurrence_db.schema import ColumnSpec, ColumnType
from occurrence_db.store import RelationalStore
from occurrence_db.sync import (
    PREVIOUS_SUFFIX,
    STAGING_SUFFIX,
    TableState,
    fetch_table,
    query,
    replace_table,
    replace_tables,
    table_state,
)

SAMPLE_FILE = Path(__file__).parent.parent / "data" / "prairie-fen-data-flat.csv"


@pytest.fixture
def store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'fen.db'}")
    provider = create_test_provider(engine)
    yield provider.init()
    provider.close()


@pytest.fixture
def tables():
    return normalize_occurrences(read_flat_file(SAMPLE_FILE))


@pytest.fixture
def loaded(store, tables):
    replace_tables(store, tables.as_dict())
    return store


def leftover_tables(store):
    return [
        name for name in store.list_tables()
        if name.endswith(STAGING_SUFFIX) or name.endswith(PREVIOUS_SUFFIX)
    ]


class TestReplaceTable:
    """Tests for replacing a table with an in-memory record set."""

    def test_absent_to_present(self, store, tables):
        assert table_state(store, 'location') == TableState.ABSENT
        replace_table(store, 'location', tables.location)
        assert table_state(store, 'location') == TableState.PRESENT

    def test_returns_inferred_specs(self, store, tables):
        specs = replace_table(store, 'event', tables.event)
        types = {spec.name: spec.column_type for spec in specs}
        assert types['eventDate'] == ColumnType.SHORT_TEXT
        assert types['year'] == ColumnType.INTEGER
        assert types['decimalLatitude'] == ColumnType.FLOAT

    def test_round_trip(self, loaded, tables):
        """Fetched tables hold the rows that were written."""
        pd.testing.assert_frame_equal(fetch_table(loaded, 'location'), tables.location, check_dtype=False)
        pd.testing.assert_frame_equal(fetch_table(loaded, 'event'), tables.event, check_dtype=False)
        # Missing remarks come back as NULL
        pd.testing.assert_frame_equal(
            fetch_table(loaded, 'occurrence').fillna(""),
            tables.occurrence.fillna(""),
            check_dtype=False
        )

    def test_replace_is_idempotent(self, loaded, tables):
        """Replacing twice with the same rows leaves the same rows behind."""
        replace_table(loaded, 'location', tables.location)
        first = fetch_table(loaded, 'location')
        replace_table(loaded, 'location', tables.location)
        second = fetch_table(loaded, 'location')

        pd.testing.assert_frame_equal(second, first)
        pd.testing.assert_frame_equal(second, tables.location, check_dtype=False)

    def test_replace_overwrites_rows(self, loaded, tables):
        replace_table(loaded, 'location', tables.location.iloc[:1])
        assert list(fetch_table(loaded, 'location')['locationID']) == ['BVF']

    def test_long_text_column(self, store):
        rows = pd.DataFrame({'eventID': ['BVF11'], 'occurrenceRemarks': ['x' * 300]})
        replace_table(store, 'notes', rows)
        columns = {column['name']: column['type'] for column in store.list_columns('notes')}
        assert columns['occurrenceRemarks'] == 'TEXT'
        assert fetch_table(store, 'notes')['occurrenceRemarks'].iloc[0] == 'x' * 300

    def test_schema_error_leaves_table_untouched(self, loaded, tables):
        """Rows that do not fit explicit specs fail before the old table is dropped."""
        specs = [
            ColumnSpec(name, ColumnType.SHORT_TEXT, 3) for name in tables.location.columns
        ]
        with pytest.raises(SchemaError):
            replace_table(loaded, 'location', tables.location, column_specs=specs)
        assert len(fetch_table(loaded, 'location')) == 2

    def test_interrupted_replace_leaves_table_absent(self, loaded, tables):
        """A failure between drop and recreate leaves no table behind."""
        with patch.object(RelationalStore, 'create_table', side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                replace_table(loaded, 'location', tables.location)

        assert table_state(loaded, 'location') == TableState.ABSENT
        with pytest.raises(TableNotFoundError):
            fetch_table(loaded, 'location')

    def test_replace_tables_in_order(self, store, tables):
        specs = replace_tables(store, tables.as_dict())
        assert list(specs) == ['location', 'event', 'occurrence']
        assert {'location', 'event', 'occurrence'} <= set(store.list_tables())


class TestTransactionalReplace:
    """Tests for the staging-table replace."""

    def test_replaces_without_leftovers(self, loaded, tables):
        replace_table(loaded, 'location', tables.location.iloc[:1], transactional=True)
        assert list(fetch_table(loaded, 'location')['locationID']) == ['BVF']
        assert leftover_tables(loaded) == []

    def test_first_replace(self, store, tables):
        replace_table(store, 'event', tables.event, transactional=True)
        assert len(fetch_table(store, 'event')) == 4
        assert leftover_tables(store) == []

    def test_failed_fill_keeps_old_table(self, loaded, tables):
        """The live table is not touched until the staging table is complete."""
        with patch.object(RelationalStore, 'insert_rows', side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                replace_table(loaded, 'location', tables.location.iloc[:1], transactional=True)
        assert len(fetch_table(loaded, 'location')) == 2

    def test_failed_swap_rolls_back(self, loaded, tables):
        """A rename failing mid-swap leaves the live table and its rows in place."""
        original_rename = RelationalStore.rename_table
        renames = []

        def fail_second_rename(self, old_name, new_name, connection=None):
            renames.append((old_name, new_name))
            if len(renames) == 2:
                raise RuntimeError("rename failed")
            return original_rename(self, old_name, new_name, connection=connection)

        with patch.object(RelationalStore, 'rename_table', autospec=True, side_effect=fail_second_rename):
            with pytest.raises(RuntimeError):
                replace_table(loaded, 'location', tables.location.iloc[:1], transactional=True)

        assert renames[0] == ('location', f"location{PREVIOUS_SUFFIX}")
        assert table_state(loaded, 'location') == TableState.PRESENT
        assert not loaded.table_exists(f"location{PREVIOUS_SUFFIX}")
        pd.testing.assert_frame_equal(fetch_table(loaded, 'location'), tables.location, check_dtype=False)

    def test_cleans_up_leftover_staging(self, loaded, tables):
        loaded.create_table(f"location{STAGING_SUFFIX}", [ColumnSpec('junk', ColumnType.INTEGER)])
        replace_table(loaded, 'location', tables.location, transactional=True)
        assert leftover_tables(loaded) == []
        assert list(fetch_table(loaded, 'location').columns) == list(tables.location.columns)

    def test_restores_previous_table(self, loaded, tables, caplog):
        """A swap interrupted after the live table was renamed is recovered."""
        loaded.rename_table('location', f"location{PREVIOUS_SUFFIX}")
        with caplog.at_level(logging.WARNING):
            replace_table(loaded, 'location', tables.location, transactional=True)
        assert "Restoring location" in caplog.text
        assert leftover_tables(loaded) == []
        assert len(fetch_table(loaded, 'location')) == 2


class TestQuery:
    """Tests for the example queries over the loaded tables."""

    def test_occurrences_in_event(self, loaded):
        result = query(loaded, queries.OCCURRENCES_IN_EVENT, {'event_id': 'BVF11'})
        assert len(result) > 0
        assert set(result['eventID']) == {'BVF11'}

    def test_species_in_events(self, loaded):
        result = query(loaded, queries.SPECIES_IN_EVENTS, {'first_event': 'BVF11', 'second_event': 'BVF12'})
        assert result['scientificName'].is_unique
        assert 'Carex prairea Dewey' in set(result['scientificName'])

    def test_species_counts(self, loaded):
        result = query(loaded, queries.SPECIES_COUNTS)
        assert int(result['observations'].sum()) == 12
        counts = result['observations'].tolist()
        assert counts == sorted(counts, reverse=True)

    def test_species_at_location(self, loaded):
        result = query(loaded, queries.SPECIES_AT_LOCATION, {
            'scientific_name': 'Dasiphora fruticosa (L.) Rydb.',
            'location_id': 'LAL',
        })
        assert int(result['observations'].iloc[0]) == 2

    def test_species_points(self, loaded):
        result = query(loaded, queries.SPECIES_POINTS, {'scientific_name': 'Carex prairea Dewey'})
        assert list(result.columns) == ['eventID', 'decimalLatitude', 'decimalLongitude']
        assert sorted(result['eventID']) == ['BVF11', 'BVF12', 'LAL10']

    def test_query_missing_table(self, store):
        with pytest.raises(Exception, match="no such table"):
            query(store, queries.SPECIES_COUNTS)

    def test_correction_then_replace(self, loaded, tables):
        """A corrected value is visible after the table is replaced."""
        corrected, changed = apply_correction(
            tables.occurrence,
            {'scientificName': 'Betula pumila L.', 'catalogNumber': 'LAL9-4'},
            {'scientificName': 'Betula papyrifera Marshall'}
        )
        assert changed == 1
        replace_table(loaded, 'occurrence', corrected)

        result = query(loaded, queries.NAME_BY_CATALOG_NUMBER, {'catalog_number': 'LAL9-4'})
        assert list(result['scientificName']) == ['Betula papyrifera Marshall']
        untouched = query(loaded, queries.NAME_BY_CATALOG_NUMBER, {'catalog_number': 'BVF12-3'})
        assert list(untouched['scientificName']) == ['Betula pumila L.']
