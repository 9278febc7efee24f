"""
Tests for table name normalization and portfolio code matching.
"""
import pytest

from sproclineage.errors import QualifiedNameError
from sproclineage.models import Catalog
from sproclineage.normalize import (
    is_cross_database,
    match_portfolio_code,
    normalize_table_name,
    split_qualified_name,
    strip_quotes,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Foo", "FOO"),
        ("[Foo]", "FOO"),
        ("dbo.Foo", "FOO"),
        ("[dbo].[Foo]", "FOO"),
        ("BRS.dbo.Foo", "FOO"),
        ("brs.dbo.Foo", "FOO"),
        ("[BRS].[dbo].[Foo]", "FOO"),
        ("OTHER.dbo.Foo", "OTHER.DBO.FOO"),
        ("[OTHER].[dbo].[Foo]", "OTHER.DBO.FOO"),
        ("OTHER..Foo", "OTHER..FOO"),
    ],
)
def test_normalize_table_name(raw, expected):
    """One to three segments collapse as described for home database BRS."""
    assert normalize_table_name(raw, "BRS") == expected


def test_normalize_is_idempotent():
    """Normalizing an already normalized key gives the same key."""
    for raw in ("Foo", "dbo.Foo", "BRS.dbo.Foo", "OTHER.dbo.Foo", "[x].[y]"):
        key = normalize_table_name(raw, "BRS")
        assert normalize_table_name(key, "BRS") == key


def test_home_database_is_configurable():
    """A different home database changes which three-part names collapse."""
    assert normalize_table_name("Sales.dbo.Orders", "SALES") == "ORDERS"
    assert normalize_table_name("BRS.dbo.Orders", "SALES") == "BRS.DBO.ORDERS"


def test_dots_inside_brackets_do_not_split():
    """Bracket-quoted segments may contain dots."""
    assert split_qualified_name("[a.b].[c]") == ["[a.b]", "[c]"]
    assert normalize_table_name("[my.table]", "BRS") == "MY.TABLE"


def test_empty_name_is_fatal():
    """Zero segments is a contract violation."""
    with pytest.raises(QualifiedNameError):
        normalize_table_name("", "BRS")
    with pytest.raises(QualifiedNameError):
        normalize_table_name("   ", "BRS")


def test_four_segments_is_fatal():
    """Linked-server style four part names abort the run."""
    with pytest.raises(QualifiedNameError) as excinfo:
        normalize_table_name("srv.db.dbo.Foo", "BRS")
    assert excinfo.value.raw == "srv.db.dbo.Foo"


def test_is_cross_database():
    assert is_cross_database("OTHER.dbo.Foo", "BRS")
    assert is_cross_database("[OTHER].[dbo].[Foo]", "BRS")
    assert not is_cross_database("BRS.dbo.Foo", "BRS")
    assert not is_cross_database("Foo", "BRS")


def test_dotted_bracketed_table_is_local():
    """A dot inside brackets belongs to the table name, not to a database qualifier."""
    assert normalize_table_name("[dbo].[Trades.Archive]", "BRS") == "TRADES.ARCHIVE"
    assert not is_cross_database("[dbo].[Trades.Archive]", "BRS")
    assert not is_cross_database("[Trades.Archive]", "BRS")
    assert is_cross_database("[OTHER].[dbo].[Trades.Archive]", "BRS")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("'ABC'", "ABC"),
        ("N'ABC'", "ABC"),
        ("ABC", "ABC"),
        ("'AB%'", "AB%"),
        ("''", ""),
    ],
)
def test_strip_quotes(text, expected):
    assert strip_quotes(text) == expected


def test_prefix_wildcard():
    """AA% matches every code starting with AA."""
    catalog = Catalog.build(portfolio_codes=["AAA", "AAB", "ZZZ"])
    assert match_portfolio_code("AA%", catalog) == {"AAA", "AAB"}


def test_suffix_wildcard():
    """%ZZ matches every code ending with ZZ, ZZZ included."""
    catalog = Catalog.build(portfolio_codes=["AAZZ", "BZZ", "ZZZ"])
    assert match_portfolio_code("%ZZ", catalog) == {"AAZZ", "BZZ", "ZZZ"}


def test_exact_match_is_case_sensitive():
    catalog = Catalog.build(portfolio_codes=["ZZZ", "abc"])
    assert match_portfolio_code("ZZZ", catalog) == {"ZZZ"}
    assert match_portfolio_code("zzz", catalog) == set()
    assert match_portfolio_code("ABC", catalog) == set()


def test_bare_wildcard_matches_nothing():
    catalog = Catalog.build(portfolio_codes=["AAA", "BBB"])
    assert match_portfolio_code("%", catalog) == set()


def test_wildcard_on_both_ends_trims_trailing_then_leading():
    """%B% drops the trailing % first, then the leading one, and matches codes ending in B."""
    catalog = Catalog.build(portfolio_codes=["ABC", "XBB", "BBB"])
    assert match_portfolio_code("%B%", catalog) == {"XBB", "BBB"}


def test_double_wildcard_matches_nothing():
    catalog = Catalog.build(portfolio_codes=["ABC"])
    assert match_portfolio_code("%%", catalog) == set()


def test_unknown_token_matches_nothing():
    catalog = Catalog.build(portfolio_codes=["AAA"])
    assert match_portfolio_code("hello world", catalog) == set()
