#!/usr/bin/env python3
"""
Occurrence Database Pipeline

Takes a flat occurrence file through the relational round trip:
- Reads the flat file and reports candidate primary keys
- Normalizes it into location, event and occurrence tables
- Replaces the three tables in the store (Access or any SQLAlchemy URL)
- Fetches them back and checks referential integrity
- Runs the example queries
- Applies configured corrections and additions and replaces the changed tables
- Exports the species points query to a tab-separated file

Usage:
    python run_pipeline.py [--input FILE] [--config FILE] [--database-url URL] [--output FILE] [-v]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from config_manager import AdditionRule, ConfigManager, CorrectionRule, LoggingConfig
from exporter import export_delimited
from normalizer import (
    TABLE_KEYS,
    NormalizedTables,
    append_rows,
    apply_correction,
    check_referential_integrity,
    key_candidates,
    memory_footprint,
    normalize_occurrences,
    read_flat_file,
)
from occurrence_db import (
    RelationalStore,
    StoreSettings,
    fetch_table,
    get_store_metrics,
    configure_monitoring,
    open_store,
    query,
    replace_table,
    replace_tables,
)
from occurrence_db import queries

logger = logging.getLogger(__name__)

DEFAULT_INPUT = Path(__file__).parent / "data" / "prairie-fen-data-flat.csv"
POINTS_FILE_NAME = "prairie_sedge_points.txt"
POINTS_SPECIES = "Carex prairea Dewey"
KEY_COLUMNS = ('occurrenceID', 'catalogNumber', 'recordNumber')


def setup_logging(logging_config: LoggingConfig, verbose: bool = False) -> None:
    """Configure the root logger from the logging section of config.yaml"""
    handlers: List[logging.Handler] = []
    if logging_config.console:
        handlers.append(logging.StreamHandler())
    if logging_config.file:
        log_path = Path(logging_config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging_config.level,
        format=logging_config.format,
        handlers=handlers
    )


def report_candidate_keys(records) -> Dict[str, int]:
    columns = [column for column in KEY_COLUMNS if column in records.columns]
    candidates = key_candidates(records, columns)
    for column, distinct in candidates.items():
        verdict = "unique" if distinct == len(records) else "not unique"
        logger.info(f"{column}: {distinct} distinct of {len(records)} record(s), {verdict}")
    return candidates


def run_example_queries(store: RelationalStore) -> Dict[str, Any]:
    """Run the walkthrough queries and log what they return"""
    in_event = query(store, queries.OCCURRENCES_IN_EVENT, {'event_id': 'BVF11'})
    logger.info(f"Occurrences in BVF11: {len(in_event)}")

    species = query(store, queries.SPECIES_IN_EVENTS, {'first_event': 'BVF11', 'second_event': 'BVF12'})
    logger.info(f"Species in BVF11/BVF12: {', '.join(species['scientificName'].astype(str))}")

    counts = query(store, queries.SPECIES_COUNTS)
    for row in counts.itertuples(index=False):
        logger.info(f"  {row.scientificName}: {row.observations}")

    at_location = query(store, queries.SPECIES_AT_LOCATION, {
        'scientific_name': 'Dasiphora fruticosa (L.) Rydb.',
        'location_id': 'LAL',
    })
    logger.info(f"Dasiphora fruticosa observations at LAL: {int(at_location['observations'].iloc[0])}")

    columns = store.list_columns('location')
    logger.info("location columns: " + ", ".join(f"{c['name']} {c['type']}" for c in columns))

    return {
        'occurrences_in_event': len(in_event),
        'species_counts': counts,
        'total_observations': int(counts['observations'].sum()),
    }


def apply_corrections(tables: NormalizedTables, rules: List[CorrectionRule]) -> Dict[str, int]:
    """Apply value substitutions in place on tables; returns rows changed per table"""
    changed: Dict[str, int] = {}
    for rule in rules:
        frame = getattr(tables, rule.table)
        corrected, count = apply_correction(frame, rule.match, rule.updates)
        if count == 0:
            logger.warning(f"Correction on {rule.table} matched no rows: {rule.match}")
        setattr(tables, rule.table, corrected)
        changed[rule.table] = changed.get(rule.table, 0) + count
    return changed


def apply_additions(tables: NormalizedTables, rules: List[AdditionRule]) -> Dict[str, int]:
    """Append keyed rows in place on tables; returns rows added per table"""
    added: Dict[str, int] = {}
    for rule in rules:
        frame = getattr(tables, rule.table)
        setattr(tables, rule.table, append_rows(frame, rule.rows, key=TABLE_KEYS[rule.table]))
        added[rule.table] = added.get(rule.table, 0) + len(rule.rows)
    return added


def run(
    config: ConfigManager,
    input_path: Union[str, Path] = DEFAULT_INPUT,
    output_path: Optional[Union[str, Path]] = None,
    database_url: Optional[str] = None
) -> Dict[str, Any]:
    """Run the pipeline once and return a summary"""
    norm = config.normalization
    output_path = Path(output_path) if output_path else Path(config.export.output_directory) / POINTS_FILE_NAME

    configure_monitoring(
        slow_query_threshold_ms=config.monitoring.slow_query_threshold_ms,
        warning_threshold_ms=config.monitoring.warning_threshold_ms
    )

    logger.info("[1/7] Reading flat file...")
    records = read_flat_file(input_path, encoding=norm.encoding)
    report_candidate_keys(records)

    logger.info("[2/7] Normalizing...")
    tables = normalize_occurrences(records, norm.date_format, norm.duplicate_policy)
    flat_bytes = memory_footprint(records)
    normalized_bytes = sum(memory_footprint(frame) for frame in tables.as_dict().values())
    logger.info(f"Flat records use {flat_bytes} bytes, normalized tables {normalized_bytes} bytes")

    if database_url:
        settings = StoreSettings(url=database_url, echo=config.database.echo)
    else:
        settings = StoreSettings.from_config(config)
    sync_options = {
        'short_text_max_length': config.sync.short_text_max_length,
        'transactional': config.sync.transactional,
    }

    with open_store(settings) as store:
        logger.info("[3/7] Replacing tables...")
        replace_tables(store, tables.as_dict(), **sync_options)

        logger.info("[4/7] Fetching tables back...")
        fetched = NormalizedTables(**{name: fetch_table(store, name) for name in tables.as_dict()})
        check_referential_integrity(fetched)

        logger.info("[5/7] Running example queries...")
        query_summary = run_example_queries(store)

        logger.info("[6/7] Applying corrections and additions...")
        row_counts = tables.row_counts
        corrections = apply_corrections(tables, config.corrections)
        additions = apply_additions(tables, config.additions)
        check_referential_integrity(tables)
        for name in tables.as_dict():
            if corrections.get(name) or additions.get(name):
                replace_table(store, name, getattr(tables, name), **sync_options)

        logger.info("[7/7] Exporting species points...")
        points = query(store, queries.SPECIES_POINTS, {'scientific_name': POINTS_SPECIES})
        export_delimited(points, output_path, sep=config.export.delimiter, encoding=config.export.encoding)

    for operation, stats in get_store_metrics().items():
        logger.debug(f"{operation}: {stats['count']} call(s), avg {stats['avg_time_ms']}ms")

    return {
        'row_counts': row_counts,
        'final_row_counts': tables.row_counts,
        'flat_bytes': flat_bytes,
        'normalized_bytes': normalized_bytes,
        'corrections': corrections,
        'additions': additions,
        'points': len(points),
        'output_path': output_path,
        **query_summary,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Normalize a flat occurrence file into a relational store")
    parser.add_argument("--input", default=str(DEFAULT_INPUT), help="Flat occurrence CSV file")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL overriding the configured store")
    parser.add_argument("--output", default=None, help="Destination of the species points file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    config = ConfigManager(args.config)
    setup_logging(config.logging, args.verbose)

    logger.info("=" * 50)
    logger.info("Occurrence Database Pipeline")
    logger.info("=" * 50)

    try:
        summary = run(config, args.input, args.output, args.database_url)
    except Exception as e:
        logger.error(f"Pipeline failed: {e}")
        raise

    logger.info(f"Pipeline complete: {summary['row_counts']}, points written to {summary['output_path']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
