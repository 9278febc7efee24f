"""
Fatal error hierarchy.

Syntax errors inside a routine are not exceptions, they travel as ``ParseError``
facts. Everything raised from here aborts the whole run.
"""
from __future__ import annotations

from typing import Optional


class LineageError(Exception):
    pass


class QualifiedNameError(LineageError):
    """A table reference with an unsupported number of dot-separated segments."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class UntokenizableSourceError(LineageError):
    pass


class CatalogLoadError(LineageError):
    pass


class PipelineAborted(LineageError):
    """Raised by the orchestrator when a worker hit a fatal condition."""

    def __init__(self, message: str, routine: Optional[str] = None):
        super().__init__(message)
        self.routine = routine
