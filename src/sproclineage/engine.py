from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .catalog import load_catalog
from .config import RuntimeConfig
from .extractor import Extractor
from .feed import plan_routines, read_routines, read_text_safely
from .models import Catalog, Fact, ParseError, PortfolioReferenced, TableUsed
from .parser import SqlEventParser
from .pipeline import Pipeline
from .writers import write_reports

logger = logging.getLogger(__name__)


@dataclass
class ExtractRequest:
    sql_dir: Path
    out_dir: Path
    catalog: Optional[Path] = None
    workers: Optional[int] = None
    home_database: Optional[str] = None
    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    encoding: Optional[str] = None


class Engine:
    def __init__(self, config: RuntimeConfig, parser: Optional[SqlEventParser] = None):
        self.config = config
        self.parser = parser or SqlEventParser()

    def load_catalog(self, path: Optional[Path]) -> Catalog:
        path = path or (Path(self.config.catalog) if self.config.catalog else None)
        if path is None:
            logger.warning("No catalog given; only cross-database tables will be reported")
            return Catalog()
        return load_catalog(path)

    def routine_files(self, req: ExtractRequest) -> List[Path]:
        return plan_routines(
            req.sql_dir,
            req.include or self.config.include,
            req.exclude or self.config.exclude,
            self.config.ignore,
        )

    def run_extract(
        self,
        req: ExtractRequest,
        on_routine_done: Optional[Callable[[str], None]] = None,
        files: Optional[List[Path]] = None,
    ) -> Dict[str, Any]:
        """
        1) Load the catalog (known tables + portfolio codes).
        2) Feed every planned routine file through the pipeline (``files`` when the
           caller already planned them, e.g. to size a progress bar).
        3) Write the three CSV reports and return a payload for the CLI.
        """
        catalog = self.load_catalog(req.catalog)
        warnings = 0 if (req.catalog or self.config.catalog) else 1

        if files is None:
            files = self.routine_files(req)
        tasks = read_routines(files, req.encoding or self.config.encoding)
        pipeline = Pipeline(
            catalog,
            self.parser,
            workers=req.workers or self.config.workers,
            queue_size=self.config.queue_size,
            home_database=req.home_database or self.config.home_database,
            temp_table_prefix=self.config.temp_table_prefix,
            wildcard=self.config.wildcard,
            on_routine_done=on_routine_done,
        )
        reports = pipeline.run(tasks)
        written = write_reports(reports, req.out_dir)

        # routines with syntax errors are still reported, but worth a warning
        warnings += len(reports.error_counts.counts)
        row_counts = {
            "table_sources.csv": len(reports.tables_used.rows),
            "portfolio_codes.csv": len(reports.portfolio_codes.rows),
            "parsing_errors.csv": len(reports.error_counts.rows),
        }
        return {
            "columns": ["report", "rows", "path"],
            "rows": [
                {"report": name, "rows": row_counts[name], "path": str(path)}
                for name, path in written.items()
            ],
            "routines": pipeline.stats.routines,
            "skipped": pipeline.stats.skipped,
            "warnings": warnings,
        }

    def inspect_routine(self, path: Path, catalog: Optional[Path] = None) -> Dict[str, Any]:
        """Parse one routine file and list the facts it produces, without writing reports."""
        facts: List[Fact] = []
        routine = Path(path).stem
        text = read_text_safely(path, self.config.encoding)
        if text.strip():
            extractor = Extractor(
                routine,
                self.load_catalog(catalog),
                facts.append,
                home_database=self.config.home_database,
                temp_table_prefix=self.config.temp_table_prefix,
                wildcard=self.config.wildcard,
            )
            extractor.run(self.parser.parse(text))
        else:
            logger.info("No definition found for %s", routine)

        rows = []
        for fact in facts:
            if isinstance(fact, TableUsed):
                rows.append({"fact": "table", "value": fact.table})
            elif isinstance(fact, PortfolioReferenced):
                rows.append({"fact": "portfolio_code", "value": fact.code})
            elif isinstance(fact, ParseError):
                rows.append({"fact": "parse_error", "value": fact.message})
        return {
            "columns": ["fact", "value"],
            "rows": rows,
            "routine": routine,
            "warnings": sum(1 for f in facts if isinstance(f, ParseError)),
        }
