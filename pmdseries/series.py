"""Series root: owns the iterations and routes their flushes to a backend.

A :class:`Series` is created from a file name.  A name carrying an
iteration placeholder (``%T``/``%0<N>T``) selects the file based layout with
one backend file per iteration; any other name selects the group based
layout writing every iteration into a single file.  The backend engine is
picked from the file suffix unless one is passed explicitly.

Typical use::

    with Series("out/diag_%06T.h5") as series:
        it = series.iterations[100]
        rho = it.meshes["rho"][RecordComponent.SCALAR]
        rho.declare_shape(np.float64, (64,))
        rho.store_chunk(np.zeros(64), (0,), (64,))
        it.close()
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .backends import backend_for_filename, get_backend
from .backends.base import BackendEngine, ContainerHandle
from .constants import (
    DEFAULT_MESHES_PATH,
    DEFAULT_PARTICLES_PATH,
    OPENPMD_EXTENSION,
    OPENPMD_VERSION,
    SOFTWARE_NAME,
    SOFTWARE_VERSION,
)
from .errors import (
    BackendError,
    BackendTaskError,
    ConfigurationError,
    SeriesClosedError,
    TaskFailure,
)
from .flush import FlushScheduler
from .hierarchy import Container, Writable
from .iteration import CloseStatus, Iteration
from .naming import BASE_PATH, FILE_BASED, GROUP_BASED, StorageTarget, select_naming
from .parallel import ProcessGroup

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _normalise_group_name(path: str) -> str:
    name = str(path).strip("/")
    if not name or "/" in name:
        raise ConfigurationError(f"invalid group name {path!r}; expected a single path segment")
    return name


class Series(Writable):
    """Root of one output series.

    Parameters
    ----------
    filename:
        Target file name; ``%T`` selects the file based layout.
    backend:
        ``None`` to pick the engine from the suffix, an engine name such as
        ``"memory"`` or an engine instance.
    comm:
        Optional :mod:`mpi4py` communicator.  All ranks of ``comm`` must
        create the series and close iterations collectively.
    """

    def __init__(
        self,
        filename: PathLike,
        *,
        backend: Union[None, str, BackendEngine] = None,
        comm: Any = None,
        meshes_path: str = DEFAULT_MESHES_PATH,
        particles_path: str = DEFAULT_PARTICLES_PATH,
        hdf5_independent: bool = True,
    ) -> None:
        super().__init__("", None)
        self.filename = str(filename)
        self.naming = select_naming(self.filename)
        self.group = ProcessGroup.from_comm(comm)
        self._owns_backend = not hasattr(backend, "create_container")
        if backend is None:
            backend = backend_for_filename(self.filename, comm, hdf5_independent=hdf5_independent)
        elif isinstance(backend, str):
            backend = get_backend(backend, comm, hdf5_independent=hdf5_independent)
        self.backend: BackendEngine = backend
        self.scheduler = FlushScheduler(self.backend)
        self.meshes_path = _normalise_group_name(meshes_path)
        self.particles_path = _normalise_group_name(particles_path)
        self._closed = False
        # file based layout: key of the file the root node is currently attached to
        self._active_key: Optional[str] = None
        self._root_handles: Dict[str, ContainerHandle] = {}

        self._set_attribute("openPMD", OPENPMD_VERSION)
        self._set_attribute("openPMDextension", OPENPMD_EXTENSION)
        self._set_attribute("basePath", BASE_PATH)
        self._set_attribute("meshesPath", f"{self.meshes_path}/")
        self._set_attribute("particlesPath", f"{self.particles_path}/")
        self._set_attribute("iterationEncoding", self.naming.encoding)
        if self.naming.encoding == FILE_BASED:
            self._set_attribute("iterationFormat", Path(self.filename).name)
        else:
            self._set_attribute("iterationFormat", BASE_PATH)
        self._set_attribute("software", SOFTWARE_NAME)
        self._set_attribute("softwareVersion", SOFTWARE_VERSION)

        self.iterations: Container = self._adopt(Container("data", self, Iteration, key_type=int))
        logger.info(
            "Opened series %s (%s, backend=%s, ranks=%d)",
            self.filename,
            self.naming.encoding,
            type(self.backend).__name__,
            self.group.size,
        )

    def __repr__(self) -> str:
        return f"<Series {self.filename!r} {self.naming.encoding} iterations={len(self.iterations)}>"

    def __enter__(self) -> "Series":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._closed:
            self.close()

    # -- configuration ----------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def iteration_encoding(self) -> str:
        return self.naming.encoding

    def _guard_mutation(self) -> None:
        if self._closed:
            raise SeriesClosedError(f"series {self.filename} is closed")

    def set_meshes_path(self, path: str) -> "Series":
        """Rename the mesh group of every iteration; only before the first iteration."""

        self._require_no_iterations("meshesPath")
        self.meshes_path = _normalise_group_name(path)
        return self.set_attribute("meshesPath", f"{self.meshes_path}/")

    def set_particles_path(self, path: str) -> "Series":
        self._require_no_iterations("particlesPath")
        self.particles_path = _normalise_group_name(path)
        return self.set_attribute("particlesPath", f"{self.particles_path}/")

    def set_software(self, name: str, version: Optional[str] = None) -> "Series":
        self.set_attribute("software", str(name))
        if version is not None:
            self.set_attribute("softwareVersion", str(version))
        return self

    def _require_no_iterations(self, attribute: str) -> None:
        self.check_mutable()
        if len(self.iterations):
            raise ConfigurationError(f"{attribute} cannot change once iterations exist")

    # -- targets ----------------------------------------------------------

    def target_for(self, index: int) -> StorageTarget:
        return self.naming.resolve(index)

    def _series_target(self) -> StorageTarget:
        return StorageTarget(path=Path(self.filename), base_path=BASE_PATH, encoding=GROUP_BASED)

    def _attach(self, target: StorageTarget) -> None:
        """Point the root nodes at ``target`` (file based layout only)."""

        if self.naming.keeps_target_open or self._active_key == target.key:
            return
        self.detach()
        self.iterations.detach()
        self._active_key = target.key

    def _remember_root(self, target: StorageTarget) -> None:
        if not self.naming.keeps_target_open and self.handle is not None:
            self._root_handles[target.key] = self.handle

    def _release_target(self, target: StorageTarget) -> None:
        handle = self._root_handles.get(target.key)
        if handle is not None:
            self.backend.close_container(handle, collective=self.group.is_parallel)
            del self._root_handles[target.key]
        if self._active_key == target.key:
            self._active_key = None

    # -- flushing ---------------------------------------------------------

    def _write_iteration(self, iteration: Iteration, target: StorageTarget) -> None:
        if not iteration.is_dirty_recursive():
            return
        self._attach(target)
        try:
            self.scheduler.flush(iteration, target)
        finally:
            self._remember_root(target)

    def flush_iteration(self, iteration: Iteration, finalize: bool = False) -> None:
        """Flush one iteration; with ``finalize`` also issue its backend close."""

        if self._closed:
            raise SeriesClosedError(f"series {self.filename} is closed")
        target = self.target_for(iteration.index)
        self._write_iteration(iteration, target)
        if finalize:
            self._finalize(iteration, target)

    def _finalize(self, iteration: Iteration, target: StorageTarget) -> None:
        collective = self.group.is_parallel
        try:
            if iteration.handle is not None:
                self.backend.close_container(iteration.handle, collective=collective)
            if not self.naming.keeps_target_open:
                self._release_target(target)
        except BackendError as exc:
            raise BackendTaskError([TaskFailure(iteration.path, "close_container", exc)]) from exc
        iteration.mark_closed_in_backend()
        logger.info("Closed iteration %d in %s", iteration.index, target.path)

    def release_iteration(self, iteration: Iteration) -> None:
        """Flush an iteration and give its file back without finalising it."""

        if self._closed:
            raise SeriesClosedError(f"series {self.filename} is closed")
        target = self.target_for(iteration.index)
        self._write_iteration(iteration, target)
        if self.naming.keeps_target_open:
            return
        try:
            self._release_target(target)
        except BackendError as exc:
            raise BackendTaskError([TaskFailure(iteration.path, "close_container", exc)]) from exc
        logger.debug("Released %s for iteration %d", target.path, iteration.index)

    def flush(self) -> "Series":
        """Write every pending change; finalise iterations closed without flushing.

        Failures of independent iterations are collected and raised together.
        """

        if self._closed:
            raise SeriesClosedError(f"series {self.filename} is closed")
        failures: List[TaskFailure] = []
        if self.naming.keeps_target_open:
            target = self._series_target()
            try:
                self.scheduler.flush(self, target)
            except BackendTaskError as exc:
                failures.extend(exc.failures)
            for iteration in self.iterations.values():
                if not iteration.awaits_backend_close() or iteration.is_dirty_recursive():
                    continue
                try:
                    self._finalize(iteration, target)
                except BackendTaskError as exc:
                    failures.extend(exc.failures)
        else:
            for iteration in self.iterations.values():
                awaiting = iteration.awaits_backend_close()
                if not awaiting and not iteration.is_dirty_recursive():
                    continue
                try:
                    self.flush_iteration(iteration, finalize=awaiting)
                except BackendTaskError as exc:
                    failures.extend(exc.failures)
        if failures:
            raise BackendTaskError(failures)
        return self

    def close(self) -> None:
        """Close all iterations, flush what is left and release the backend.

        If any backend task fails the series stays open, so ``close`` can be
        called again to retry the outstanding work.
        """

        if self._closed:
            return
        failures: List[TaskFailure] = []
        for iteration in self.iterations.values():
            if iteration.close_status is CloseStatus.CLOSED_IN_BACKEND:
                continue
            try:
                if iteration.awaits_backend_close() or iteration.close_status is CloseStatus.CLOSED_IN_FRONTEND:
                    self.flush_iteration(iteration, finalize=True)
                else:
                    iteration.close(flush=True)
            except BackendTaskError as exc:
                failures.extend(exc.failures)

        if self.naming.keeps_target_open and not failures:
            target = self._series_target()
            try:
                self.scheduler.flush(self, target)
                if self.handle is not None:
                    self.backend.close_container(self.handle, collective=self.group.is_parallel)
                    self.handle = None
            except BackendTaskError as exc:
                failures.extend(exc.failures)
            except BackendError as exc:
                failures.append(TaskFailure(self.path, "close_container", exc))
        if failures:
            raise BackendTaskError(failures)

        self._closed = True
        if self._owns_backend:
            self.backend.close()
        logger.info("Closed series %s (%d iterations)", self.filename, len(self.iterations))


__all__ = ["Series"]
