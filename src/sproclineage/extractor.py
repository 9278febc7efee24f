"""
Turns one routine's parser event stream into lineage facts.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .models import (
    Catalog,
    EndOfInput,
    EnterIdentifier,
    EnterLiteral,
    EnterTableAlias,
    EnterTableName,
    ExtractionState,
    Fact,
    ParseError,
    ParserEvent,
    PortfolioReferenced,
    SyntaxErrorEvent,
    TableUsed,
)
from .normalize import (
    DEFAULT_HOME_DATABASE,
    WILDCARD,
    is_cross_database,
    match_portfolio_code,
    normalize_table_name,
    strip_quotes,
)

logger = logging.getLogger(__name__)

Emit = Callable[[Fact], None]


class Extractor:
    """Accumulates what a routine mentions and emits its facts at end of input.

    Syntax errors are forwarded as ``ParseError`` facts as soon as they arrive;
    table and portfolio facts wait for ``EndOfInput`` because aliases declared
    late in the text still have to exclude tables seen earlier.
    """

    def __init__(
        self,
        routine: str,
        catalog: Catalog,
        emit: Emit,
        home_database: str = DEFAULT_HOME_DATABASE,
        temp_table_prefix: str = "#",
        wildcard: str = WILDCARD,
    ):
        self.routine = routine
        self.catalog = catalog
        self.emit = emit
        self.home_database = home_database
        self.temp_table_prefix = temp_table_prefix
        self.wildcard = wildcard
        self.state: Optional[ExtractionState] = ExtractionState()

    @property
    def finished(self) -> bool:
        return self.state is None

    def run(self, events: Iterable[ParserEvent]) -> None:
        for event in events:
            self.handle(event)
        if not self.finished:
            raise RuntimeError(f"event stream for {self.routine} ended without EndOfInput")

    def handle(self, event: ParserEvent) -> None:
        state = self.state
        if state is None:
            raise RuntimeError(f"{self.routine}: {type(event).__name__} received after EndOfInput")

        if isinstance(event, EnterTableName):
            key = normalize_table_name(event.text, self.home_database)
            if key:
                state.tables_seen.add(key)
                if is_cross_database(event.text, self.home_database):
                    state.cross_database.add(key)
        elif isinstance(event, EnterTableAlias):
            alias = normalize_table_name(event.text, self.home_database)
            if alias:
                state.aliases_seen.add(alias.upper())
        elif isinstance(event, EnterIdentifier):
            ident = event.text.strip()
            if self.catalog.is_portfolio_code(ident):
                state.portfolio_codes_seen.add(ident)
        elif isinstance(event, EnterLiteral):
            token = strip_quotes(event.text)
            state.portfolio_codes_seen.update(match_portfolio_code(token, self.catalog, self.wildcard))
        elif isinstance(event, SyntaxErrorEvent):
            self.emit(ParseError(self.routine, str(event)))
        elif isinstance(event, EndOfInput):
            self._finish(state)
        else:
            raise TypeError(f"unexpected parser event: {event!r}")

    def _finish(self, state: ExtractionState) -> None:
        self.state = None
        emitted = set()
        for table in sorted(state.tables_seen):
            key = table.upper()
            if self.temp_table_prefix and table.startswith(self.temp_table_prefix):
                continue
            if key in state.aliases_seen:
                continue
            if key in emitted:
                continue
            emitted.add(key)
            # other databases bypass the whitelist
            if key not in state.cross_database and not self.catalog.is_known_table(key):
                continue
            self.emit(TableUsed(self.routine, table))

        for code in sorted(state.portfolio_codes_seen):
            self.emit(PortfolioReferenced(self.routine, code))

        logger.debug(
            "%s: %d tables seen, %d aliases, %d portfolio codes, %d distinct tables",
            self.routine, len(state.tables_seen), len(state.aliases_seen),
            len(state.portfolio_codes_seen), len(emitted),
        )
