from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, Sequence, Tuple

from .models import LineageReports

logger = logging.getLogger(__name__)

TABLE_SOURCES_FILE = "table_sources.csv"
PORTFOLIO_CODES_FILE = "portfolio_codes.csv"
PARSING_ERRORS_FILE = "parsing_errors.csv"


def write_csv(path: Path, header: Sequence[str], rows: Iterable[Tuple[str, ...]]) -> int:
    """Write header + rows with CRLF line endings; returns the number of data rows."""
    count = 0
    with open(path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh, lineterminator="\r\n")
        writer.writerow(header)
        for row in rows:
            writer.writerow(row)
            count += 1
    return count


def write_reports(reports: LineageReports, out_dir: Path) -> Dict[str, Path]:
    """Write the three report files into ``out_dir`` and return them by file name."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}
    for file_name, report in (
        (TABLE_SOURCES_FILE, reports.tables_used),
        (PORTFOLIO_CODES_FILE, reports.portfolio_codes),
        (PARSING_ERRORS_FILE, reports.error_counts),
    ):
        target = out / file_name
        n = write_csv(target, report.HEADER, report.rows)
        logger.info("Wrote %d rows to %s", n, target)
        written[file_name] = target
    return written
