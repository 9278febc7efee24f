"""
Tests for the report accumulating sinks.
"""
import queue

import pytest

from sproclineage.models import ParseError, PortfolioReferenced, TableUsed
from sproclineage.sinks import ABORT, CLOSE, ErrorSink, PortfolioSink, TablesUsedSink


def test_tables_sink_keeps_arrival_order_without_cross_routine_dedup():
    sink = TablesUsedSink()
    sink.consume(TableUsed("p1", "TRADES"))
    sink.consume(TableUsed("p2", "TRADES"))
    sink.consume(TableUsed("p1", "POSITIONS"))
    report = sink.finalize()
    assert report.rows == [("p1", "TRADES"), ("p2", "TRADES"), ("p1", "POSITIONS")]
    assert report.HEADER == ("Stored Procedure", "Table Used")
    assert report.for_routine("p1") == {"TRADES", "POSITIONS"}


def test_portfolio_sink_header():
    sink = PortfolioSink()
    sink.consume(PortfolioReferenced("p1", "ABC"))
    report = sink.finalize()
    assert report.rows == [("p1", "ABC")]
    assert report.HEADER == ("Stored Procedure", "Portfolio Code Mentioned")


def test_error_sink_counts_per_routine():
    """Only the number of errors per routine survives."""
    sink = ErrorSink()
    sink.consume(ParseError("p1", "Line: 1, Column: 1, Error: a"))
    sink.consume(ParseError("p2", "Line: 1, Column: 1, Error: b"))
    sink.consume(ParseError("p1", "Line: 2, Column: 1, Error: c"))
    report = sink.finalize()
    assert report.counts == {"p1": 2, "p2": 1}
    assert report.rows == [("p1", "2"), ("p2", "1")]
    assert report.HEADER == ("Stored Procedure", "Error Count")


def test_empty_sink_finalizes_to_empty_report():
    assert TablesUsedSink().finalize().rows == []
    assert ErrorSink().finalize().counts == {}


def test_finalize_only_once():
    sink = TablesUsedSink()
    sink.finalize()
    with pytest.raises(RuntimeError):
        sink.finalize()
    with pytest.raises(RuntimeError):
        sink.consume(TableUsed("p1", "TRADES"))


def test_report_before_finalize_raises():
    with pytest.raises(RuntimeError):
        PortfolioSink().report


def test_wrong_fact_type_is_rejected():
    with pytest.raises(TypeError):
        TablesUsedSink().consume(PortfolioReferenced("p1", "ABC"))


def test_drain_until_close():
    inbox = queue.Queue()
    inbox.put(TableUsed("p1", "TRADES"))
    inbox.put(CLOSE)
    sink = TablesUsedSink()
    sink.drain(inbox)
    assert sink.finalized
    assert sink.report.rows == [("p1", "TRADES")]


def test_drain_abort_produces_no_report():
    inbox = queue.Queue()
    inbox.put(TableUsed("p1", "TRADES"))
    inbox.put(ABORT)
    sink = TablesUsedSink()
    sink.drain(inbox)
    assert not sink.finalized
