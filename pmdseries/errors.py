"""Custom exceptions for the :mod:`pmdseries` package."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence


class PMDSeriesError(Exception):
    """Base exception for series writing errors."""


class ConfigurationError(PMDSeriesError, ValueError):
    """Invalid benchmark configuration or series setup."""


class DatasetError(PMDSeriesError, ValueError):
    """A record component was used inconsistently with its dataset."""


class ShapeMismatchError(DatasetError):
    """A chunk does not fit the declared dataset shape."""


class ShapeRedefinitionError(DatasetError):
    """A different shape was declared after the dataset had been flushed."""


class IterationClosedError(PMDSeriesError, RuntimeError):
    """Mutation attempted on an iteration that no longer accepts writes."""


class AlreadyClosedError(PMDSeriesError, RuntimeError):
    """``close()`` was called on an iteration that is already closed."""


class SeriesClosedError(PMDSeriesError, RuntimeError):
    """The series has been closed and no longer accepts operations."""


class BackendError(PMDSeriesError, RuntimeError):
    """A single backend engine call failed."""


@dataclass
class TaskFailure:
    """One failed backend task collected during a flush."""

    path: str
    task: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.task} {self.path}: {self.error}"


class BackendTaskError(PMDSeriesError, RuntimeError):
    """Aggregate of the backend task failures seen during one flush."""

    def __init__(self, failures: Sequence[TaskFailure]) -> None:
        self.failures: List[TaskFailure] = list(failures)
        summary = "; ".join(str(item) for item in self.failures[:5])
        if len(self.failures) > 5:
            summary += f"; ... ({len(self.failures) - 5} more)"
        super().__init__(f"{len(self.failures)} backend task(s) failed: {summary}")


__all__ = [
    "PMDSeriesError",
    "ConfigurationError",
    "DatasetError",
    "ShapeMismatchError",
    "ShapeRedefinitionError",
    "IterationClosedError",
    "AlreadyClosedError",
    "SeriesClosedError",
    "BackendError",
    "TaskFailure",
    "BackendTaskError",
]
