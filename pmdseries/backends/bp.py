"""ADIOS2 BP backend engine using the :class:`adios2.Stream` API.

ADIOS2 has no groups: containers exist only as prefixes of variable and
attribute names.  Every opened target starts one output step which is ended
when the target's root container is closed.  Attributes of groups are
written under their full path, e.g. ``/data/1/time``.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Sequence, Set, Tuple

import adios2
import numpy as np

from ..errors import BackendError
from ..naming import StorageTarget
from .base import ContainerHandle

logger = logging.getLogger(__name__)


def encode_attribute(value: Any) -> Any:
    """Strings pass through; numbers become numpy arrays, which every adios2 release accepts."""

    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return np.array([int(value)], dtype=np.int8)
    if isinstance(value, (list, tuple)):
        if value and all(isinstance(item, str) for item in value):
            return list(value)
        return np.asarray(value)
    return np.atleast_1d(np.asarray(value))


def attribute_name(path: str, name: str) -> str:
    if path == "/":
        return name
    return f"{path}/{name}"


class BPBackend:
    suffix = ".bp"

    def __init__(self, comm: Any = None) -> None:
        self.comm = comm
        self._streams: Dict[str, Any] = {}
        self._created: Set[str] = set()
        self._datasets: Dict[Tuple[str, str], Tuple[np.dtype, Tuple[int, ...]]] = {}

    def _open(self, target: StorageTarget) -> Any:
        key = target.key
        stream = self._streams.get(key)
        if stream is not None:
            return stream
        mode = "a" if key in self._created else "w"
        try:
            Path(target.path).parent.mkdir(parents=True, exist_ok=True)
            if self.comm is not None:
                stream = adios2.Stream(str(target.path), mode, self.comm)
            else:
                stream = adios2.Stream(str(target.path), mode)
            stream.begin_step()
        except Exception as exc:
            raise BackendError(f"cannot open {target.path} (mode {mode}): {exc}") from exc
        logger.debug("opened %s (mode=%s)", target.path, mode)
        self._streams[key] = stream
        self._created.add(key)
        return stream

    def _stream(self, handle: ContainerHandle) -> Any:
        stream = self._streams.get(handle.target.key)
        if stream is None:
            raise BackendError(f"target {handle.target.path} is not open")
        return stream

    def create_container(self, target: StorageTarget, path: str) -> ContainerHandle:
        self._open(target)
        return ContainerHandle(target, path)

    def declare_dataset(self, handle: ContainerHandle, dtype: np.dtype, extent: Sequence[int]) -> None:
        self._stream(handle)
        layout = (np.dtype(dtype), tuple(int(n) for n in extent))
        key = (handle.target.key, handle.path)
        known = self._datasets.get(key)
        if known is not None and known != layout:
            raise BackendError(f"{handle.path} already declared as {known[1]} ({known[0]})")
        self._datasets[key] = layout

    def write_attribute(self, handle: ContainerHandle, name: str, value: Any) -> None:
        stream = self._stream(handle)
        try:
            stream.write_attribute(attribute_name(handle.path, name), encode_attribute(value))
        except Exception as exc:
            raise BackendError(f"cannot write attribute {name} on {handle.path}: {exc}") from exc

    def write_chunk(
        self,
        handle: ContainerHandle,
        data: np.ndarray,
        offset: Sequence[int],
        extent: Sequence[int],
    ) -> None:
        stream = self._stream(handle)
        layout = self._datasets.get((handle.target.key, handle.path))
        if layout is None:
            raise BackendError(f"{handle.path} has no declared dataset")
        dtype, shape = layout
        content = np.ascontiguousarray(data, dtype=dtype)
        try:
            stream.write(handle.path, content, list(shape), [int(n) for n in offset], [int(n) for n in extent])
        except Exception as exc:
            raise BackendError(f"cannot write chunk {tuple(offset)} of {handle.path}: {exc}") from exc

    def close_container(self, handle: ContainerHandle, collective: bool = False) -> None:
        if not handle.is_root:
            return
        stream = self._streams.pop(handle.target.key, None)
        if stream is None:
            return
        try:
            stream.end_step()
            stream.close()
        except Exception as exc:
            raise BackendError(f"cannot close {handle.target.path}: {exc}") from exc
        logger.debug("closed %s", handle.target.path)

    def close(self) -> None:
        for key in list(self._streams):
            stream = self._streams.pop(key)
            try:
                stream.end_step()
                stream.close()
            except Exception as exc:
                raise BackendError(f"cannot close {key}: {exc}") from exc


__all__ = ["BPBackend"]
