"""
End-to-end tests for the pipeline script.

Runs the whole flow (read, normalize, replace, fetch back, query, correct,
export) over the bundled sample file with a SQLite database standing in for
the Access file.
"""

import pytest
from sqlalchemy import create_engine

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from occurrence_db import create_test_provider, query, queries
from run_pipeline import DEFAULT_INPUT, main, run

SHIPPED_CONFIG = Path(__file__).parent.parent / "config.yaml"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'fen.db'}"


@pytest.fixture
def summary(tmp_path, database_url):
    config = ConfigManager(str(SHIPPED_CONFIG))
    return run(config, DEFAULT_INPUT, tmp_path / "out" / "points.txt", database_url)


class TestRun:
    """Tests for one pipeline run."""

    def test_row_counts(self, summary):
        assert summary['row_counts'] == {'location': 2, 'event': 4, 'occurrence': 12}

    def test_normalized_tables_are_smaller(self, summary):
        assert summary['normalized_bytes'] < summary['flat_bytes']

    def test_query_summary(self, summary):
        assert summary['total_observations'] == 12
        assert summary['occurrences_in_event'] > 0
        assert summary['species_counts'].iloc[0]['observations'] == 3

    def test_correction_applied(self, summary, database_url):
        assert summary['corrections'] == {'occurrence': 1}

        provider = create_test_provider(create_engine(database_url))
        try:
            store = provider.init()
            result = query(store, queries.NAME_BY_CATALOG_NUMBER, {'catalog_number': 'LAL9-4'})
        finally:
            provider.close()
        assert list(result['scientificName']) == ['Betula papyrifera Marshall']

    def test_location_added(self, summary, database_url):
        """The configured WLQ location is written along with the others."""
        assert summary['additions'] == {'location': 1}
        assert summary['final_row_counts']['location'] == 3

        provider = create_test_provider(create_engine(database_url))
        try:
            store = provider.init()
            result = query(store, "SELECT locality FROM location WHERE locationID = :location_id",
                           {'location_id': 'WLQ'})
            total = len(store.fetch_table('location'))
        finally:
            provider.close()
        assert list(result['locality']) == ['Whelan Lake Fen']
        assert total == 3

    def test_points_exported(self, summary):
        assert summary['points'] == 3
        lines = summary['output_path'].read_text(encoding="utf-8").splitlines()
        assert lines[0] == "eventID\tdecimalLatitude\tdecimalLongitude"
        assert len(lines) == 4


class TestMain:
    """Tests for the command line entry point."""

    def test_main_returns_zero(self, tmp_path, database_url):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "logging:\n"
            "  console: false\n"
            f"  file: {(tmp_path / 'pipeline.log').as_posix()}\n",
            encoding="utf-8"
        )
        output = tmp_path / "points.txt"

        exit_code = main([
            "--config", str(config_file),
            "--database-url", database_url,
            "--output", str(output),
        ])

        assert exit_code == 0
        assert output.exists()

    def test_main_propagates_failure(self, tmp_path, database_url):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("logging:\n  console: false\n  file: ''\n", encoding="utf-8")

        with pytest.raises(FileNotFoundError):
            main([
                "--config", str(config_file),
                "--database-url", database_url,
                "--input", str(tmp_path / "missing.csv"),
            ])
