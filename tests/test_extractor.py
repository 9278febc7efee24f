"""
Tests for turning parser events into facts.
"""
import pytest

from sproclineage.errors import QualifiedNameError
from sproclineage.extractor import Extractor
from sproclineage.models import (
    Catalog,
    EndOfInput,
    EnterIdentifier,
    EnterLiteral,
    EnterTableAlias,
    EnterTableName,
    ParseError,
    PortfolioReferenced,
    SyntaxErrorEvent,
    TableUsed,
)


@pytest.fixture
def catalog():
    return Catalog.build(
        tables=["Trades", "Positions", "Portfolio"],
        portfolio_codes=["ABC", "ABD", "XYZ"],
    )


def run(catalog, events, routine="usp_Test"):
    facts = []
    Extractor(routine, catalog, facts.append, home_database="BRS").run(events)
    return facts


def test_known_tables_are_reported_once(catalog):
    """Repeated mentions in different spellings collapse to one fact."""
    facts = run(catalog, [
        EnterTableName("dbo.Trades"),
        EnterTableName("[BRS].[dbo].[TRADES]"),
        EnterTableName("trades"),
        EndOfInput(),
    ])
    assert facts == [TableUsed("usp_Test", "TRADES")]


def test_unknown_tables_are_dropped(catalog):
    facts = run(catalog, [EnterTableName("dbo.Staging"), EndOfInput()])
    assert facts == []


def test_cross_database_bypasses_whitelist(catalog):
    facts = run(catalog, [EnterTableName("OTHER.dbo.Anything"), EndOfInput()])
    assert facts == [TableUsed("usp_Test", "OTHER.DBO.ANYTHING")]


def test_alias_excludes_table_even_when_declared_later(catalog):
    """A name that is also an alias in the same routine is never a table."""
    facts = run(catalog, [
        EnterTableName("Positions"),
        EnterTableName("Trades"),
        EnterTableAlias("positions"),
        EndOfInput(),
    ])
    assert facts == [TableUsed("usp_Test", "TRADES")]


def test_temp_tables_are_never_reported(catalog):
    facts = run(catalog, [EnterTableName("#Trades"), EnterTableName("##Trades"), EndOfInput()])
    assert facts == []


def test_portfolio_codes_from_identifiers_and_literals(catalog):
    facts = run(catalog, [
        EnterIdentifier("XYZ"),
        EnterIdentifier("xyz"),
        EnterLiteral("'AB%'"),
        EnterLiteral("42"),
        EndOfInput(),
    ])
    assert facts == [
        PortfolioReferenced("usp_Test", "ABC"),
        PortfolioReferenced("usp_Test", "ABD"),
        PortfolioReferenced("usp_Test", "XYZ"),
    ]


def test_portfolio_codes_are_deduplicated(catalog):
    facts = run(catalog, [EnterLiteral("'ABC'"), EnterLiteral("N'ABC'"), EnterIdentifier("ABC"), EndOfInput()])
    assert facts == [PortfolioReferenced("usp_Test", "ABC")]


def test_syntax_errors_are_forwarded_immediately(catalog):
    """Errors are emitted when they arrive, before any end-of-input facts."""
    facts = []
    extractor = Extractor("usp_Test", catalog, facts.append)
    extractor.handle(EnterTableName("Trades"))
    extractor.handle(SyntaxErrorEvent(3, 7, "Invalid expression"))
    assert facts == [ParseError("usp_Test", "Line: 3, Column: 7, Error: Invalid expression")]
    extractor.handle(EndOfInput())
    assert facts[-1] == TableUsed("usp_Test", "TRADES")


def test_output_is_sorted(catalog):
    facts = run(catalog, [
        EnterTableName("Trades"),
        EnterTableName("Portfolio"),
        EnterTableName("Positions"),
        EndOfInput(),
    ])
    assert [f.table for f in facts] == ["PORTFOLIO", "POSITIONS", "TRADES"]


def test_events_after_end_of_input_are_rejected(catalog):
    extractor = Extractor("usp_Test", catalog, lambda fact: None)
    extractor.handle(EndOfInput())
    assert extractor.finished
    with pytest.raises(RuntimeError):
        extractor.handle(EnterTableName("Trades"))


def test_stream_without_end_of_input_is_rejected(catalog):
    with pytest.raises(RuntimeError):
        run(catalog, [EnterTableName("Trades")])


def test_four_part_name_propagates(catalog):
    with pytest.raises(QualifiedNameError):
        run(catalog, [EnterTableName("srv.db.dbo.Trades"), EndOfInput()])


def test_nothing_seen_emits_nothing(catalog):
    assert run(catalog, [EndOfInput()]) == []


def test_dotted_bracketed_table_goes_through_the_catalog(catalog):
    """[dbo].[Trades.Archive] is a local table, so an unknown one is dropped."""
    facts = run(catalog, [
        EnterTableName("[dbo].[Trades.Archive]"),
        EnterTableName("[OTHER].[dbo].[Trades.Archive]"),
        EndOfInput(),
    ])
    assert facts == [TableUsed("usp_Test", "OTHER.DBO.TRADES.ARCHIVE")]

    known = Catalog.build(tables=["Trades.Archive"])
    assert run(known, [EnterTableName("[dbo].[Trades.Archive]"), EndOfInput()]) == [
        TableUsed("usp_Test", "TRADES.ARCHIVE"),
    ]
