"""Capability interface every backend engine provides.

Handles are plain ``(target, path)`` pairs; engines resolve them against
their open files on every call, so a handle stays valid when a target is
closed and reopened.  Closing the root handle (path ``"/"``) releases the
whole target.  Engines report failures as :class:`~pmdseries.errors.BackendError`.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any, Protocol, Sequence, Tuple

import numpy as np

from ..naming import StorageTarget

ROOT_PATH = "/"


@dataclass(frozen=True)
class ContainerHandle:
    target: StorageTarget
    path: str

    @property
    def is_root(self) -> bool:
        return self.path == ROOT_PATH

    @property
    def parent_path(self) -> str:
        return posixpath.dirname(self.path.rstrip("/")) or ROOT_PATH


class BackendEngine(Protocol):
    suffix: str

    def create_container(self, target: StorageTarget, path: str) -> ContainerHandle:
        ...

    def declare_dataset(self, handle: ContainerHandle, dtype: np.dtype, extent: Sequence[int]) -> None:
        ...

    def write_attribute(self, handle: ContainerHandle, name: str, value: Any) -> None:
        ...

    def write_chunk(
        self,
        handle: ContainerHandle,
        data: np.ndarray,
        offset: Sequence[int],
        extent: Sequence[int],
    ) -> None:
        ...

    def close_container(self, handle: ContainerHandle, collective: bool = False) -> None:
        ...

    def close(self) -> None:
        ...


def chunk_selection(offset: Sequence[int], extent: Sequence[int]) -> Tuple[slice, ...]:
    return tuple(slice(int(start), int(start) + int(count)) for start, count in zip(offset, extent))


__all__ = ["ROOT_PATH", "BackendEngine", "ContainerHandle", "chunk_selection"]
