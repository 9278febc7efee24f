"""
Routine sources on disk: one ``.sql`` file per stored procedure, named after the file.
"""
from __future__ import annotations

import codecs
import fnmatch
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

from .models import RoutineTask

logger = logging.getLogger(__name__)

_BOMS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


def read_text_safely(path: Path, encoding: str = "auto") -> str:
    """Read a routine file exported by SSMS or friends.

    ``auto`` honours UTF-8/UTF-16 byte order marks and falls back to cp1252 when
    the bytes are not valid UTF-8. Line endings come back as ``\\n``.
    """
    raw = Path(path).read_bytes()
    if encoding and encoding.lower() != "auto":
        text = raw.decode(encoding)
    else:
        text = None
        for bom, codec in _BOMS:
            if raw.startswith(bom):
                text = raw.decode(codec)
                break
        if text is None:
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("%s is not valid UTF-8, reading as cp1252", path)
                text = raw.decode("cp1252", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _match_any(p: Path, patterns: Optional[Sequence[str]]) -> bool:
    if not patterns:
        return True
    return any(p.match(g) for g in patterns)


def find_routine_files(
    sql_dir: Path,
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
) -> List[Path]:
    root = Path(sql_dir)
    return [
        p for p in sorted(root.rglob("*.sql"))
        if _match_any(p, include) and not (exclude and _match_any(p, exclude))
    ]


def plan_routines(
    sql_dir: Path,
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    ignore: Optional[Sequence[str]] = None,
) -> List[Path]:
    """The files a run will actually parse: ignored names and duplicate names are dropped."""
    planned = []
    seen = set()
    for path in find_routine_files(sql_dir, include, exclude):
        name = path.stem
        if ignore and any(fnmatch.fnmatch(name, pat) for pat in ignore):
            logger.debug("Ignoring %s", name)
            continue
        if name.upper() in seen:
            logger.warning("Duplicate routine %s in %s, skipping", name, path)
            continue
        seen.add(name.upper())
        planned.append(path)
    return planned


def read_routines(paths: Iterable[Path], encoding: str = "auto") -> Iterator[RoutineTask]:
    """Yield one task per file; files are read lazily as the pipeline pulls."""
    for path in paths:
        yield RoutineTask(name=path.stem, source_text=read_text_safely(path, encoding))


def iter_routines(
    sql_dir: Path,
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    ignore: Optional[Sequence[str]] = None,
    encoding: str = "auto",
) -> Iterator[RoutineTask]:
    return read_routines(plan_routines(sql_dir, include, exclude, ignore), encoding)
