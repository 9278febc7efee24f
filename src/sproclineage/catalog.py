from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, List

import yaml

from .errors import CatalogLoadError
from .models import Catalog

logger = logging.getLogger(__name__)


def _code_text(value: Any) -> str:
    # numeric ids render in decimal
    return str(value).strip()


def portfolio_codes_from_rows(rows: Iterable[Any]) -> List[str]:
    """Every non-null column of a portfolio master row counts as a code."""
    codes: List[str] = []
    for row in rows or []:
        values = row.values() if isinstance(row, dict) else (row if isinstance(row, list) else [row])
        for value in values:
            if value is None:
                continue
            text = _code_text(value)
            if text:
                codes.append(text)
    return codes


def load_catalog(path: Path) -> Catalog:
    """
    Load known tables and portfolio codes from a YAML document::

        tables: [Trades, Positions]
        portfolio_codes: [ABC, XYZ]
        portfolios:
          - {code: P01, short_name: ALPHA, legacy_id: 42}
    """
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise CatalogLoadError(f"catalog path not found: {catalog_path}")
    try:
        data = yaml.safe_load(catalog_path.read_text(encoding="utf-8")) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise CatalogLoadError(f"failed to load catalog from {catalog_path}: {e}") from e
    if not isinstance(data, dict):
        raise CatalogLoadError(f"catalog {catalog_path} must be a mapping, got {type(data).__name__}")

    tables = data.get("tables") or []
    codes = data.get("portfolio_codes") or []
    if not isinstance(tables, list) or not isinstance(codes, list):
        raise CatalogLoadError(f"catalog {catalog_path}: 'tables' and 'portfolio_codes' must be lists")

    all_codes = [_code_text(c) for c in codes if c is not None]
    all_codes.extend(portfolio_codes_from_rows(data.get("portfolios") or []))

    catalog = Catalog.build(tables=[str(t) for t in tables if t is not None], portfolio_codes=all_codes)
    logger.info("Loaded %d tables from catalog", len(catalog.known_tables))
    logger.info("Loaded %d portfolio codes from catalog", len(catalog.known_portfolio_codes))
    return catalog
