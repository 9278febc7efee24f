"""
Single-consumer accumulators turning fact streams into reports.
"""
from __future__ import annotations

import logging
import queue
from typing import Any, Generic, Optional, TypeVar

from .models import (
    ErrorCountsReport,
    Fact,
    ParseError,
    PortfolioCodesReport,
    PortfolioReferenced,
    TableUsed,
    TablesUsedReport,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Control markers placed on a sink's inbox after the last fact.
CLOSE = object()
ABORT = object()


class Sink(Generic[R]):
    """Owns one report; finalizes it exactly once, when its input closes."""

    name = "sink"

    def __init__(self) -> None:
        self._report: Optional[R] = None
        self._consumed = 0

    @property
    def finalized(self) -> bool:
        return self._report is not None

    @property
    def report(self) -> R:
        if self._report is None:
            raise RuntimeError(f"{self.name} has not been finalized")
        return self._report

    def consume(self, fact: Fact) -> None:
        if self.finalized:
            raise RuntimeError(f"{self.name} received a fact after finalization")
        self._accept(fact)
        self._consumed += 1

    def finalize(self) -> R:
        if self.finalized:
            raise RuntimeError(f"{self.name} finalized twice")
        self._report = self._build()
        logger.debug("%s finalized after %d facts", self.name, self._consumed)
        return self._report

    def drain(self, inbox: "queue.Queue[Any]") -> None:
        """Consume facts until ``CLOSE`` (finalize) or ``ABORT`` (drop everything)."""
        while True:
            item = inbox.get()
            if item is CLOSE:
                self.finalize()
                return
            if item is ABORT:
                logger.debug("%s aborted after %d facts, no report", self.name, self._consumed)
                return
            self.consume(item)

    def _accept(self, fact: Fact) -> None:
        raise NotImplementedError

    def _build(self) -> R:
        raise NotImplementedError


class TablesUsedSink(Sink[TablesUsedReport]):
    name = "tables-used"

    def __init__(self) -> None:
        super().__init__()
        self._rows = []

    def _accept(self, fact: Fact) -> None:
        if not isinstance(fact, TableUsed):
            raise TypeError(f"{self.name} cannot consume {fact!r}")
        self._rows.append((fact.routine, fact.table))

    def _build(self) -> TablesUsedReport:
        return TablesUsedReport(rows=list(self._rows))


class PortfolioSink(Sink[PortfolioCodesReport]):
    name = "portfolio-codes"

    def __init__(self) -> None:
        super().__init__()
        self._rows = []

    def _accept(self, fact: Fact) -> None:
        if not isinstance(fact, PortfolioReferenced):
            raise TypeError(f"{self.name} cannot consume {fact!r}")
        self._rows.append((fact.routine, fact.code))

    def _build(self) -> PortfolioCodesReport:
        return PortfolioCodesReport(rows=list(self._rows))


class ErrorSink(Sink[ErrorCountsReport]):
    """Keeps only how many syntax errors each routine produced."""

    name = "parse-errors"

    def __init__(self) -> None:
        super().__init__()
        self._counts = {}

    def _accept(self, fact: Fact) -> None:
        if not isinstance(fact, ParseError):
            raise TypeError(f"{self.name} cannot consume {fact!r}")
        self._counts[fact.routine] = self._counts.get(fact.routine, 0) + 1

    def _build(self) -> ErrorCountsReport:
        return ErrorCountsReport(counts=dict(self._counts))
