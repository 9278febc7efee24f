"""
Worker pool that runs parser + extractor per routine and fans facts out to the sinks.

Layout of one run::

    feed --> task queue (bounded) --> N workers --> fact queues (bounded) --> 3 sink threads

The feed is consumed on the calling thread. Workers always drain the task queue and
sinks always drain their inbox, so bounded ``put`` calls can stall (backpressure) but
never deadlock. Sink inboxes are closed only after every worker has been joined.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple, Type

from .errors import PipelineAborted
from .extractor import Extractor
from .models import (
    Catalog,
    Fact,
    LineageReports,
    ParseError,
    ParserEvent,
    PortfolioReferenced,
    RoutineTask,
    TableUsed,
)
from .normalize import DEFAULT_HOME_DATABASE, WILDCARD
from .sinks import ABORT, CLOSE, ErrorSink, PortfolioSink, TablesUsedSink

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 6
DEFAULT_QUEUE_SIZE = 256

_STOP = object()


class RoutineParser(Protocol):
    def parse(self, source_text: str) -> Iterable[ParserEvent]: ...


@dataclass
class PipelineStats:
    routines: int = 0
    skipped: int = 0


class Pipeline:
    def __init__(
        self,
        catalog: Catalog,
        parser: RoutineParser,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        home_database: str = DEFAULT_HOME_DATABASE,
        temp_table_prefix: str = "#",
        wildcard: str = WILDCARD,
        on_routine_done: Optional[Callable[[str], None]] = None,
    ):
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {queue_size}")
        self.catalog = catalog
        self.parser = parser
        self.workers = workers
        self.queue_size = queue_size
        self.home_database = home_database
        self.temp_table_prefix = temp_table_prefix
        self.wildcard = wildcard
        self.on_routine_done = on_routine_done
        self.stats = PipelineStats()

        self._abort = threading.Event()
        self._lock = threading.Lock()
        self._failure: Optional[Tuple[str, BaseException]] = None
        self._inboxes: Dict[Type, "queue.Queue"] = {}

    # ---- public API ----
    def run(self, tasks: Iterable[RoutineTask]) -> LineageReports:
        """Process every task exactly once and return the three finalized reports.

        Raises ``PipelineAborted`` when any worker hit a fatal condition; sinks are
        then stopped without producing reports.
        """
        self.stats = PipelineStats()
        self._abort.clear()
        self._failure = None

        tables_sink, portfolio_sink, error_sink = TablesUsedSink(), PortfolioSink(), ErrorSink()
        self._inboxes = {
            TableUsed: queue.Queue(maxsize=self.queue_size),
            PortfolioReferenced: queue.Queue(maxsize=self.queue_size),
            ParseError: queue.Queue(maxsize=self.queue_size),
        }
        sink_threads = [
            self._start(f"sink-{sink.name}", sink.drain, self._inboxes[fact_type])
            for sink, fact_type in (
                (tables_sink, TableUsed),
                (portfolio_sink, PortfolioReferenced),
                (error_sink, ParseError),
            )
        ]

        task_queue: "queue.Queue" = queue.Queue(maxsize=self.workers * 2)
        worker_threads = [
            self._start(f"worker-{i}", self._work, task_queue) for i in range(self.workers)
        ]

        try:
            for task in tasks:
                if self._abort.is_set():
                    break
                task_queue.put(task)
        except Exception as exc:
            self._fail("<feed>", exc)
        finally:
            for _ in worker_threads:
                task_queue.put(_STOP)
            for t in worker_threads:
                t.join()

        marker = ABORT if self._failure else CLOSE
        for inbox in self._inboxes.values():
            inbox.put(marker)
        for t in sink_threads:
            t.join()

        if self._failure:
            routine, exc = self._failure
            raise PipelineAborted(f"run aborted while processing {routine}: {exc}", routine) from exc

        logger.info(
            "Parsed %d routines (%d without definition) with %d workers",
            self.stats.routines, self.stats.skipped, self.workers,
        )
        return LineageReports(
            tables_used=tables_sink.report,
            portfolio_codes=portfolio_sink.report,
            error_counts=error_sink.report,
        )

    # ---- internals ----
    def _start(self, name: str, target: Callable, *args) -> threading.Thread:
        t = threading.Thread(target=target, args=args, name=f"sproclineage-{name}", daemon=True)
        t.start()
        return t

    def _work(self, task_queue: "queue.Queue") -> None:
        while True:
            task = task_queue.get()
            if task is _STOP:
                return
            if self._abort.is_set():
                continue
            try:
                self._process(task)
            except Exception as exc:
                self._fail(task.name, exc)

    def _process(self, task: RoutineTask) -> None:
        if task.source_text and task.source_text.strip():
            extractor = Extractor(
                task.name,
                self.catalog,
                self._publish,
                home_database=self.home_database,
                temp_table_prefix=self.temp_table_prefix,
                wildcard=self.wildcard,
            )
            extractor.run(self.parser.parse(task.source_text))
            with self._lock:
                self.stats.routines += 1
        else:
            logger.info("No definition found for %s", task.name)
            with self._lock:
                self.stats.skipped += 1
        if self.on_routine_done is not None:
            self.on_routine_done(task.name)

    def _publish(self, fact: Fact) -> None:
        self._inboxes[type(fact)].put(fact)

    def _fail(self, routine: str, exc: BaseException) -> None:
        with self._lock:
            if self._failure is None:
                self._failure = (routine, exc)
                logger.error("Fatal error in %s: %s", routine, exc)
        self._abort.set()


def run_pipeline(
    tasks: Iterable[RoutineTask],
    catalog: Catalog,
    parser: RoutineParser,
    workers: int = DEFAULT_WORKERS,
    **kwargs,
) -> LineageReports:
    return Pipeline(catalog, parser, workers=workers, **kwargs).run(tasks)
