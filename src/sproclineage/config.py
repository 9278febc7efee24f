from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "sproclineage.yml"
IGNORE_FILE = ".sproclineageignore"


@dataclass
class RuntimeConfig:
    home_database: str = "BRS"
    workers: int = 6
    queue_size: int = 256
    sql_dir: str = "sql"
    out_dir: str = "build/lineage"
    catalog: Optional[str] = None
    include: List[str] = field(default_factory=lambda: ["*.sql"])
    exclude: List[str] = field(default_factory=list)
    ignore: List[str] = field(default_factory=list)
    encoding: str = "auto"
    temp_table_prefix: str = "#"
    wildcard: str = "%"
    log_level: str = "info"
    output_format: str = "text"


def load_ignore_file(path: Path) -> List[str]:
    patterns = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def load_config(path: Optional[Path]) -> RuntimeConfig:
    cfg = RuntimeConfig()
    if path is None:
        default = Path(DEFAULT_CONFIG_FILE)
        if default.exists():
            path = default
    if path and path.exists():
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        for k, v in data.items():
            if hasattr(cfg, k):
                setattr(cfg, k, v)
            else:
                logger.debug("Unknown config key %s ignored", k)

    ignore_file = Path(IGNORE_FILE)
    if ignore_file.exists():
        try:
            cfg.ignore.extend(load_ignore_file(ignore_file))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("failed to load %s: %s", IGNORE_FILE, e)

    return cfg
