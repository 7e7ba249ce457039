"""Rank and communicator bookkeeping for SPMD runs.

A :class:`ProcessGroup` wraps an optional :mod:`mpi4py` communicator.
Without one the group describes a single serial process.  ``mpi4py`` is only
imported when the world communicator is requested explicitly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessGroup:
    rank: int = 0
    size: int = 1
    comm: Optional[Any] = None

    @classmethod
    def from_comm(cls, comm: Any = None) -> "ProcessGroup":
        if comm is None:
            return cls()
        return cls(rank=int(comm.Get_rank()), size=int(comm.Get_size()), comm=comm)

    @classmethod
    def world(cls) -> "ProcessGroup":
        """Return the group of ``MPI.COMM_WORLD``; requires :mod:`mpi4py`."""

        try:
            from mpi4py import MPI
        except ImportError as exc:
            raise ConfigurationError("MPI runs require the mpi4py package") from exc
        group = cls.from_comm(MPI.COMM_WORLD)
        if group.size > 1:
            logger.debug("Starting MPI rank=%d [size=%d]", group.rank, group.size)
        return group

    @property
    def is_parallel(self) -> bool:
        return self.size > 1

    @property
    def is_root(self) -> bool:
        return self.rank == 0

    def barrier(self) -> None:
        if self.comm is not None:
            self.comm.Barrier()

    def gather(self, value: Any, root: int = 0) -> Any:
        """Gather ``value`` from every rank onto ``root`` (list there, None elsewhere)."""

        if self.comm is None:
            return [value]
        return self.comm.gather(value, root=root)


__all__ = ["ProcessGroup"]
