"""Runtime helpers used by the benchmark driver."""

from .history import TimingRecords
from .timer import Timer, format_exception_short, log_stage

__all__ = [
    "TimingRecords",
    "Timer",
    "format_exception_short",
    "log_stage",
]
