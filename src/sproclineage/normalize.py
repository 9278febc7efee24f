"""
Pure helpers turning raw parser text into canonical table keys and portfolio codes.
"""
from __future__ import annotations

from typing import List, Set

from .errors import QualifiedNameError
from .models import Catalog

DEFAULT_HOME_DATABASE = "BRS"
WILDCARD = "%"


def split_qualified_name(raw: str) -> List[str]:
    """Split on dots that sit outside ``[...]`` quoting. Empty segments are kept (``db..tbl``)."""
    parts: List[str] = []
    buf: List[str] = []
    in_bracket = False
    for ch in raw:
        if ch == "[" and not in_bracket:
            in_bracket = True
        elif ch == "]" and in_bracket:
            in_bracket = False
        elif ch == "." and not in_bracket:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    parts.append("".join(buf))
    return parts


def strip_brackets(segment: str) -> str:
    s = segment.strip()
    if s.startswith("["):
        s = s[1:]
    if s.endswith("]"):
        s = s[:-1]
    return s


def normalize_table_name(raw: str, home_database: str = DEFAULT_HOME_DATABASE) -> str:
    """Map ``[db].[schema].[table]`` style text to its canonical, upper-cased key.

    One or two segments collapse to the table name. Three segments collapse to the
    table name when the database is the home database, otherwise all three are kept.
    Anything else means the parser handed over a shape this module does not know,
    and the run must stop.
    """
    text = (raw or "").strip()
    if not text:
        raise QualifiedNameError("missing table name", raw)

    segments = [strip_brackets(s) for s in split_qualified_name(text.upper())]
    if len(segments) <= 2:
        return segments[-1]
    if len(segments) == 3:
        if segments[0] == (home_database or "").strip().upper():
            return segments[2]
        return ".".join(segments)
    raise QualifiedNameError(f"unhandled table name format: {raw}", raw)


def is_cross_database(raw: str, home_database: str = DEFAULT_HOME_DATABASE) -> bool:
    """True when a raw three part name points outside the home database.

    Decided on the raw text, not the key: ``[dbo].[Trades.Archive]`` normalizes to
    ``TRADES.ARCHIVE`` but is still a local table.
    """
    segments = split_qualified_name((raw or "").strip().upper())
    if len(segments) != 3:
        return False
    return strip_brackets(segments[0]) != (home_database or "").strip().upper()


def strip_quotes(text: str) -> str:
    """Remove one layer of single quotes (and a leading N of a unicode literal)."""
    t = (text or "").strip()
    if len(t) >= 2 and t[0] in "Nn" and t[1] == "'":
        t = t[1:]
    if t.startswith("'"):
        t = t[1:]
    if t.endswith("'"):
        t = t[:-1]
    return t


def match_portfolio_code(token: str, catalog: Catalog, wildcard: str = WILDCARD) -> Set[str]:
    """Return every catalog code the token refers to.

    ``ABC`` matches exactly, ``AB%`` matches codes starting with ``AB`` and ``%BC``
    matches codes ending with ``BC``. The trailing wildcard is trimmed first and the
    leading rule sees what is left, so ``%B%`` also matches every code ending in ``B``.
    A bare wildcard has no stem and matches nothing.
    """
    codes = catalog.known_portfolio_codes
    matches: Set[str] = set()
    if token in codes:
        matches.add(token)
    if not wildcard:
        return matches
    stem = token
    if stem.endswith(wildcard):
        stem = stem[: -len(wildcard)]
        if stem:
            matches.update(c for c in codes if c.startswith(stem))
    if stem.startswith(wildcard):
        stem = stem[len(wildcard):]
        if stem:
            matches.update(c for c in codes if c.endswith(stem))
    return matches
