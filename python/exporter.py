"""
Flat File Export
Writes query results to delimited text files for use in other tools (GIS, spreadsheets).
"""

import csv
import logging
from pathlib import Path
from typing import Union

import pandas as pd

logger = logging.getLogger(__name__)


def export_delimited(
    frame: pd.DataFrame,
    path: Union[str, Path],
    sep: str = "\t",
    encoding: str = "utf-8"
) -> Path:
    """Write frame with a header row, no row index and no quoting

    Parent directories are created as needed and an existing file is
    overwritten. A delimiter inside a value is backslash-escaped.

    Args:
        frame: Rows to write
        path: Destination file
        sep: Field delimiter (tab by default)
        encoding: Output encoding

    Returns:
        Path of the written file
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    frame.to_csv(
        output_path,
        sep=sep,
        header=True,
        index=False,
        quoting=csv.QUOTE_NONE,
        escapechar="\\",
        encoding=encoding,
        lineterminator="\n"
    )

    logger.info(f"Exported {len(frame)} row(s) to {output_path}")
    return output_path
