"""In-process backend engine.

Keeps every target as a mapping of paths to attributes and numpy arrays.
Useful for dry runs of the benchmark and for exercising the flush logic:
every call is logged in :attr:`MemoryBackend.calls` and failures can be
injected with :meth:`MemoryBackend.fail_on`.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..errors import BackendError
from ..naming import StorageTarget
from .base import ContainerHandle, chunk_selection


@dataclass
class MemoryContainer:
    attributes: Dict[str, Any] = field(default_factory=dict)
    data: Optional[np.ndarray] = None


@dataclass
class _Fault:
    op: str
    path: Optional[str]
    remaining: int


class MemoryBackend:
    suffix = ".mem"

    def __init__(self) -> None:
        self.targets: Dict[str, Dict[str, MemoryContainer]] = {}
        self.open_targets: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []
        self._faults: List[_Fault] = []

    # -- fault injection ---------------------------------------------------

    def fail_on(self, op: str, path: Optional[str] = None, times: int = 1) -> None:
        """Make the next ``times`` calls of ``op`` (optionally on ``path``) fail."""

        self._faults.append(_Fault(op, path, int(times)))

    def _record(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        for fault in self._faults:
            if fault.remaining > 0 and fault.op == op and fault.path in (None, path):
                fault.remaining -= 1
                raise BackendError(f"injected failure: {op} {path}")

    def _container(self, handle: ContainerHandle) -> MemoryContainer:
        key = handle.target.key
        if key not in self.open_targets:
            raise BackendError(f"target {key} is not open")
        containers = self.targets[key]
        if handle.path not in containers:
            raise BackendError(f"no container at {handle.path} in {key}")
        return containers[handle.path]

    # -- engine interface --------------------------------------------------

    def create_container(self, target: StorageTarget, path: str) -> ContainerHandle:
        self._record("create_container", path)
        containers = self.targets.setdefault(target.key, {})
        self.open_targets.add(target.key)
        containers.setdefault(path, MemoryContainer())
        return ContainerHandle(target, path)

    def declare_dataset(self, handle: ContainerHandle, dtype: np.dtype, extent: Sequence[int]) -> None:
        self._record("declare_dataset", handle.path)
        container = self._container(handle)
        shape = tuple(int(n) for n in extent)
        if container.data is not None:
            if container.data.shape == shape and container.data.dtype == np.dtype(dtype):
                return
            raise BackendError(f"{handle.path} already holds a dataset of shape {container.data.shape}")
        container.data = np.zeros(shape, dtype=dtype)

    def write_attribute(self, handle: ContainerHandle, name: str, value: Any) -> None:
        self._record("write_attribute", handle.path)
        self._container(handle).attributes[name] = copy.deepcopy(value)

    def write_chunk(
        self,
        handle: ContainerHandle,
        data: np.ndarray,
        offset: Sequence[int],
        extent: Sequence[int],
    ) -> None:
        self._record("write_chunk", handle.path)
        container = self._container(handle)
        if container.data is None:
            raise BackendError(f"{handle.path} has no dataset")
        try:
            container.data[chunk_selection(offset, extent)] = np.reshape(data, tuple(extent))
        except ValueError as exc:
            raise BackendError(f"{handle.path}: {exc}") from exc

    def close_container(self, handle: ContainerHandle, collective: bool = False) -> None:
        self._record("close_container", handle.path)
        if handle.is_root:
            self.open_targets.discard(handle.target.key)

    def close(self) -> None:
        self.open_targets.clear()

    # -- inspection --------------------------------------------------------

    def container(self, target_path: Any, path: str) -> MemoryContainer:
        return self.targets[str(target_path)][path]

    def dataset(self, target_path: Any, path: str) -> np.ndarray:
        data = self.container(target_path, path).data
        if data is None:
            raise KeyError(f"{path} holds no dataset")
        return data

    def attributes(self, target_path: Any, path: str) -> Dict[str, Any]:
        return self.container(target_path, path).attributes

    def count_calls(self, op: Optional[str] = None) -> int:
        if op is None:
            return len(self.calls)
        return sum(1 for name, _ in self.calls if name == op)


__all__ = ["MemoryBackend", "MemoryContainer"]
