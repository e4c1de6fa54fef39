"""
Separation Errors - Exception types raised by the separation engine

Numeric degeneracies (zero-norm rows, zero magnitudes) never raise; they
default to 0 where they occur.
"""

from typing import List, Optional


class SeparationError(Exception):
    """Base class for all separation engine errors."""


class UnsupportedFormatError(SeparationError, ValueError):
    """Input audio cannot be normalized to the canonical PCM layout."""


class DimensionMismatchError(SeparationError, ValueError):
    """Two matrices that must be combined element-wise differ in shape."""

    def __init__(self, expected: tuple, actual: tuple, message: Optional[str] = None):
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(message or f"Matrices must have same dimensions: {self.expected} != {self.actual}")


class OperationCancelled(SeparationError):
    """Raised inside a pipeline once cancellation has been requested."""


class SeparationPipelineError(SeparationError):
    """
    Aggregated failure of one or more concurrent separation pipelines.

    The first failure is chained as ``__cause__``; all of them are kept
    in ``errors``.
    """

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} pipeline(s) failed: {summary}")
