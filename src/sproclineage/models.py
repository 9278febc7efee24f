"""
Core data models for sproclineage.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Set, Tuple, Union


@dataclass(frozen=True)
class RoutineTask:
    """One stored procedure definition waiting to be parsed."""
    name: str
    source_text: str


@dataclass(frozen=True)
class Catalog:
    """Reference data loaded once before extraction starts."""
    known_tables: FrozenSet[str] = frozenset()
    known_portfolio_codes: FrozenSet[str] = frozenset()

    @classmethod
    def build(cls, tables: Iterable[str] = (), portfolio_codes: Iterable[str] = ()) -> "Catalog":
        """Table names are compared upper-cased; portfolio codes are kept verbatim."""
        return cls(
            known_tables=frozenset(t.strip().upper() for t in tables if t and t.strip()),
            known_portfolio_codes=frozenset(c for c in portfolio_codes if c),
        )

    def is_known_table(self, key: str) -> bool:
        return key.upper() in self.known_tables

    def is_portfolio_code(self, token: str) -> bool:
        return token in self.known_portfolio_codes


@dataclass
class ExtractionState:
    """Per-routine accumulator, owned by a single worker."""
    tables_seen: Set[str] = field(default_factory=set)
    cross_database: Set[str] = field(default_factory=set)
    aliases_seen: Set[str] = field(default_factory=set)
    portfolio_codes_seen: Set[str] = field(default_factory=set)


# ---- Facts ----

@dataclass(frozen=True)
class TableUsed:
    routine: str
    table: str


@dataclass(frozen=True)
class PortfolioReferenced:
    routine: str
    code: str


@dataclass(frozen=True)
class ParseError:
    routine: str
    message: str


Fact = Union[TableUsed, PortfolioReferenced, ParseError]


# ---- Tree events emitted by the parser ----

@dataclass(frozen=True)
class EnterTableName:
    text: str


@dataclass(frozen=True)
class EnterTableAlias:
    text: str


@dataclass(frozen=True)
class EnterIdentifier:
    text: str


@dataclass(frozen=True)
class EnterLiteral:
    text: str


@dataclass(frozen=True)
class EndOfInput:
    pass


@dataclass(frozen=True)
class SyntaxErrorEvent:
    line: int
    column: int
    message: str

    def __str__(self) -> str:
        return f"Line: {self.line}, Column: {self.column}, Error: {self.message}"


TreeEvent = Union[EnterTableName, EnterTableAlias, EnterIdentifier, EnterLiteral, EndOfInput]
ParserEvent = Union[TreeEvent, SyntaxErrorEvent]


# ---- Reports ----

@dataclass
class TablesUsedReport:
    HEADER = ("Stored Procedure", "Table Used")
    rows: List[Tuple[str, str]] = field(default_factory=list)

    def for_routine(self, routine: str) -> Set[str]:
        return {table for name, table in self.rows if name == routine}


@dataclass
class PortfolioCodesReport:
    HEADER = ("Stored Procedure", "Portfolio Code Mentioned")
    rows: List[Tuple[str, str]] = field(default_factory=list)

    def for_routine(self, routine: str) -> Set[str]:
        return {code for name, code in self.rows if name == routine}


@dataclass
class ErrorCountsReport:
    HEADER = ("Stored Procedure", "Error Count")
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def rows(self) -> List[Tuple[str, str]]:
        return [(routine, str(count)) for routine, count in self.counts.items()]


@dataclass
class LineageReports:
    """The three finalized reports of one run."""
    tables_used: TablesUsedReport
    portfolio_codes: PortfolioCodesReport
    error_counts: ErrorCountsReport
