"""HDF5 backend engine built on :mod:`h5py`.

Groups are materialised lazily: creating a container only makes sure its
parent group exists, the group itself appears with its first attribute or
child, and datasets are created at their own path by ``declare_dataset``.
With an MPI communicator of more than one rank files are opened through the
``mpio`` driver; writes are independent unless collective mode is requested.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Sequence, Set

import h5py
import numpy as np

from ..errors import BackendError
from ..naming import StorageTarget
from .base import ROOT_PATH, ContainerHandle, chunk_selection

logger = logging.getLogger(__name__)

_H5_ERRORS = (OSError, KeyError, ValueError, TypeError, RuntimeError)


def encode_attribute(value: Any) -> Any:
    """Convert Python attribute values into something h5py can store."""

    if isinstance(value, (list, tuple)):
        if value and all(isinstance(item, str) for item in value):
            return np.array(value, dtype=h5py.string_dtype(encoding="utf-8"))
        return np.asarray(value)
    if isinstance(value, bool):
        return np.bool_(value)
    return value


class HDF5Backend:
    suffix = ".h5"

    def __init__(self, comm: Any = None, *, independent: bool = True) -> None:
        self.comm = comm
        self.independent = bool(independent)
        self._files: Dict[str, h5py.File] = {}
        self._created: Set[str] = set()

    @property
    def parallel(self) -> bool:
        return self.comm is not None and self.comm.Get_size() > 1

    def _open(self, target: StorageTarget) -> h5py.File:
        key = target.key
        h5file = self._files.get(key)
        if h5file is not None:
            return h5file
        # reopening a file written earlier in this session must not truncate it
        mode = "a" if key in self._created else "w"
        kwargs: Dict[str, Any] = {}
        if self.parallel:
            kwargs = {"driver": "mpio", "comm": self.comm}
        try:
            Path(target.path).parent.mkdir(parents=True, exist_ok=True)
            h5file = h5py.File(target.path, mode, **kwargs)
        except _H5_ERRORS as exc:
            raise BackendError(f"cannot open {target.path} (mode {mode}): {exc}") from exc
        logger.debug("opened %s (mode=%s, parallel=%s)", target.path, mode, self.parallel)
        self._files[key] = h5file
        self._created.add(key)
        return h5file

    def _file(self, handle: ContainerHandle) -> h5py.File:
        h5file = self._files.get(handle.target.key)
        if h5file is None:
            raise BackendError(f"target {handle.target.path} is not open")
        return h5file

    def _node(self, handle: ContainerHandle) -> Any:
        h5file = self._file(handle)
        if handle.is_root:
            return h5file
        node = h5file.get(handle.path)
        if node is None:
            node = h5file.require_group(handle.path)
        return node

    def create_container(self, target: StorageTarget, path: str) -> ContainerHandle:
        h5file = self._open(target)
        handle = ContainerHandle(target, path)
        if not handle.is_root and handle.parent_path != ROOT_PATH:
            try:
                h5file.require_group(handle.parent_path)
            except _H5_ERRORS as exc:
                raise BackendError(f"cannot create {handle.parent_path}: {exc}") from exc
        return handle

    def declare_dataset(self, handle: ContainerHandle, dtype: np.dtype, extent: Sequence[int]) -> None:
        h5file = self._file(handle)
        shape = tuple(int(n) for n in extent)
        try:
            existing = h5file.get(handle.path)
            if existing is None:
                h5file.create_dataset(handle.path, shape=shape, dtype=dtype)
                return
        except _H5_ERRORS as exc:
            raise BackendError(f"cannot declare {handle.path}: {exc}") from exc
        if not (isinstance(existing, h5py.Dataset) and existing.shape == shape and existing.dtype == dtype):
            raise BackendError(f"{handle.path} already exists with a different layout")

    def write_attribute(self, handle: ContainerHandle, name: str, value: Any) -> None:
        try:
            self._node(handle).attrs[name] = encode_attribute(value)
        except _H5_ERRORS as exc:
            raise BackendError(f"cannot write attribute {name} on {handle.path}: {exc}") from exc

    def write_chunk(
        self,
        handle: ContainerHandle,
        data: np.ndarray,
        offset: Sequence[int],
        extent: Sequence[int],
    ) -> None:
        h5file = self._file(handle)
        selection = chunk_selection(offset, extent)
        try:
            dataset = h5file[handle.path]
            if self.parallel and not self.independent:
                with dataset.collective:
                    dataset[selection] = data
            else:
                dataset[selection] = data
        except _H5_ERRORS as exc:
            raise BackendError(f"cannot write chunk {tuple(offset)} of {handle.path}: {exc}") from exc

    def close_container(self, handle: ContainerHandle, collective: bool = False) -> None:
        h5file = self._files.get(handle.target.key)
        if h5file is None:
            return
        try:
            if handle.is_root:
                del self._files[handle.target.key]
                h5file.close()
                logger.debug("closed %s", handle.target.path)
            else:
                h5file.flush()
        except _H5_ERRORS as exc:
            raise BackendError(f"cannot close {handle.path} in {handle.target.path}: {exc}") from exc

    def close(self) -> None:
        for key in list(self._files):
            h5file = self._files.pop(key)
            try:
                h5file.close()
            except _H5_ERRORS as exc:
                raise BackendError(f"cannot close {key}: {exc}") from exc


__all__ = ["HDF5Backend", "encode_attribute"]
