"""Wall-clock timers for benchmark stages."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from .history import TimingRecords

logger = logging.getLogger(__name__)

# reference point for the "since start" column of every timer
PROGRAM_START = time.perf_counter()


def format_exception_short(exc: BaseException) -> str:
    """Return a concise exception string."""

    name = exc.__class__.__name__
    return f"{name}: {exc}"


def log_stage(logger_obj, label: str, *, extra: dict | None = None) -> None:
    """Lightweight stage logger wrapper."""

    if logger_obj is None:
        return
    if extra:
        logger_obj.info("stage=%s %s", label, extra)
    else:
        logger_obj.info("stage=%s", label)


class Timer:
    """Context manager timing one labelled stage on one rank.

    On exit the elapsed time is logged and, when ``sink`` is given, appended
    to it as a row with the columns ``tag``, ``rank``, ``elapsed_s``,
    ``since_start_s`` and ``status``.
    """

    def __init__(
        self,
        tag: str,
        rank: int = 0,
        *,
        sink: Optional[TimingRecords] = None,
        extra: Optional[Dict[str, Any]] = None,
        program_start: float = PROGRAM_START,
    ) -> None:
        self.tag = tag
        self.rank = int(rank)
        self.sink = sink
        self.extra = dict(extra or {})
        self.program_start = program_start
        self.start: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        end = time.perf_counter()
        self.elapsed = end - (self.start if self.start is not None else end)
        status = "ok" if exc is None else format_exception_short(exc)
        logger.info(
            "%s  elapsed=%.6fs  since_start=%.6fs  rank=%d",
            self.tag,
            self.elapsed,
            end - self.program_start,
            self.rank,
        )
        if self.sink is not None:
            row: Dict[str, Any] = {
                "tag": self.tag,
                "rank": self.rank,
                "elapsed_s": self.elapsed,
                "since_start_s": end - self.program_start,
                "status": status,
            }
            row.update(self.extra)
            self.sink.append(row)


__all__ = ["PROGRAM_START", "Timer", "format_exception_short", "log_stage"]
