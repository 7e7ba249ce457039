"""Iterations and their close state machine.

An iteration starts ``OPEN``.  :meth:`Iteration.close` moves it to
``CLOSED_IN_FRONTEND`` immediately, which forbids further mutation, and to
``CLOSED_IN_BACKEND`` once the subtree has been flushed and the backend has
confirmed the close.  ``CLOSED_TEMPORARILY`` releases backend resources
without finalising anything; local writes reopen an iteration that was open
before.  There is no way back from ``CLOSED_IN_BACKEND``.

With an MPI-parallel series, closing with ``flush=True`` (and any flush that
finalises an iteration) is collective: all ranks must close the same
iterations in the same order.  This cannot be checked from a single rank.
"""
from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Optional

from .errors import AlreadyClosedError, IterationClosedError
from .hierarchy import Container, Mesh, ParticleSpecies, Writable

if TYPE_CHECKING:
    from .series import Series

logger = logging.getLogger(__name__)


class CloseStatus(enum.Enum):
    OPEN = "Open"
    CLOSED_IN_FRONTEND = "ClosedInFrontend"
    CLOSED_IN_BACKEND = "ClosedInBackend"
    CLOSED_TEMPORARILY = "ClosedTemporarily"


_CLOSED = (CloseStatus.CLOSED_IN_FRONTEND, CloseStatus.CLOSED_IN_BACKEND)


class CloseState:
    """Close status cell shared by every handle of one logical iteration."""

    __slots__ = ("status", "resume")

    def __init__(self) -> None:
        self.status = CloseStatus.OPEN
        # status restored when a temporarily closed iteration is written to again
        self.resume = CloseStatus.OPEN


class Iteration(Writable):
    """One time step holding meshes and particle species."""

    def __init__(self, name: str, parent: Optional[Writable] = None) -> None:
        super().__init__(name, parent)
        self._close_state = CloseState()
        root = self.root()
        meshes_path = getattr(root, "meshes_path", "meshes")
        particles_path = getattr(root, "particles_path", "particles")
        self.meshes: Container = self._adopt(Container(meshes_path, self, Mesh))
        self.particles: Container = self._adopt(Container(particles_path, self, ParticleSpecies))
        self._set_attribute("time", 0.0)
        self._set_attribute("dt", 1.0)
        self._set_attribute("timeUnitSI", 1.0)

    @property
    def index(self) -> int:
        return int(self.name)

    @property
    def series(self) -> "Series":
        return self.root()  # type: ignore[return-value]

    # -- standard attributes ---------------------------------------------

    def time(self) -> float:
        return float(self.get_attribute("time"))

    def set_time(self, value: float) -> "Iteration":
        return self.set_attribute("time", float(value))

    def dt(self) -> float:
        return float(self.get_attribute("dt"))

    def set_dt(self, value: float) -> "Iteration":
        return self.set_attribute("dt", float(value))

    def time_unit_si(self) -> float:
        return float(self.get_attribute("timeUnitSI"))

    def set_time_unit_si(self, value: float) -> "Iteration":
        return self.set_attribute("timeUnitSI", float(value))

    # -- close state -------------------------------------------------------

    @property
    def close_status(self) -> CloseStatus:
        return self._close_state.status

    def closed(self) -> bool:
        """Whether the iteration has been closed (in frontend or backend)."""

        return self._close_state.status in _CLOSED

    def closed_by_writer(self) -> bool:
        """Whether this writer has marked the iteration as complete."""

        return self.attributes.get("closed") == 1

    def awaits_backend_close(self) -> bool:
        state = self._close_state
        if state.status is CloseStatus.CLOSED_IN_FRONTEND:
            return True
        return state.status is CloseStatus.CLOSED_TEMPORARILY and state.resume is CloseStatus.CLOSED_IN_FRONTEND

    def _guard_mutation(self) -> None:
        state = self._close_state
        if state.status in _CLOSED:
            raise IterationClosedError(f"iteration {self.name} is closed ({state.status.value})")
        if state.status is CloseStatus.CLOSED_TEMPORARILY and state.resume is not CloseStatus.OPEN:
            raise IterationClosedError(f"iteration {self.name} is closed ({state.resume.value})")

    def _resume_writes(self) -> None:
        # a temporarily closed iteration reopens on its first accepted write
        if self._close_state.status is CloseStatus.CLOSED_TEMPORARILY:
            self._close_state.status = CloseStatus.OPEN

    def close(self, flush: bool = True) -> "Iteration":
        """Close the iteration; it cannot be reopened.

        With ``flush=True`` the subtree is written and the backend close is
        issued right away.  If that fails the iteration stays
        ``CLOSED_IN_FRONTEND`` and the next :meth:`Series.flush` retries.
        With ``flush=False`` the backend close is deferred to the next flush.
        """

        state = self._close_state
        if state.status in _CLOSED:
            raise AlreadyClosedError(f"iteration {self.name} is already closed ({state.status.value})")
        if state.status is CloseStatus.CLOSED_TEMPORARILY and state.resume is not CloseStatus.OPEN:
            raise AlreadyClosedError(f"iteration {self.name} is already closed ({state.resume.value})")
        state.status = CloseStatus.CLOSED_IN_FRONTEND
        state.resume = CloseStatus.CLOSED_IN_FRONTEND
        self._set_attribute("closed", 1)
        logger.debug("iteration %s closed in frontend", self.name)
        if flush:
            self.series.flush_iteration(self, finalize=True)
        return self

    def close_temporarily(self) -> "Iteration":
        """Flush and release backend resources without finalising the iteration."""

        state = self._close_state
        if state.status is CloseStatus.CLOSED_IN_BACKEND:
            raise AlreadyClosedError(f"iteration {self.name} is already closed in the backend")
        if state.status is CloseStatus.CLOSED_TEMPORARILY:
            return self
        previous = state.status
        self.series.release_iteration(self)
        state.resume = previous
        state.status = CloseStatus.CLOSED_TEMPORARILY
        return self

    def flush(self) -> "Iteration":
        """Write the pending changes of this iteration, finalising it if closed."""

        self.series.flush_iteration(self, finalize=self.awaits_backend_close())
        return self

    def mark_closed_in_backend(self) -> None:
        self._close_state.status = CloseStatus.CLOSED_IN_BACKEND
        self._close_state.resume = CloseStatus.CLOSED_IN_BACKEND
        logger.debug("iteration %s closed in backend", self.name)


__all__ = ["CloseStatus", "CloseState", "Iteration"]
