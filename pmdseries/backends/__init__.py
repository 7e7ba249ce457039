"""Backend engines and their selection by file suffix."""
from __future__ import annotations

import importlib.util
from pathlib import Path
from typing import Any, List

from ..errors import ConfigurationError
from .base import BackendEngine, ContainerHandle
from .memory import MemoryBackend

SUFFIX_MODULES = {
    ".h5": "h5py",
    ".bp": "adios2",
}


def backend_available(suffix: str) -> bool:
    if suffix == MemoryBackend.suffix:
        return True
    module = SUFFIX_MODULES.get(suffix)
    return module is not None and importlib.util.find_spec(module) is not None


def get_backend(name: str, comm: Any = None, *, hdf5_independent: bool = True) -> BackendEngine:
    """Instantiate the engine for a file suffix (``.h5``, ``.bp``) or ``memory``."""

    suffix = name if name.startswith(".") else f".{name}"
    if suffix in (".mem", ".memory"):
        return MemoryBackend()
    if suffix == ".h5":
        from .hdf5 import HDF5Backend

        return HDF5Backend(comm, independent=hdf5_independent)
    if suffix == ".bp":
        if not backend_available(".bp"):
            raise ConfigurationError("the .bp backend requires the adios2 Python package")
        from .bp import BPBackend

        return BPBackend(comm)
    raise ConfigurationError(f"no backend engine for {name!r}; expected one of .h5, .bp, memory")


def backend_for_filename(filename: Any, comm: Any = None, *, hdf5_independent: bool = True) -> BackendEngine:
    suffix = Path(str(filename)).suffix
    if not suffix:
        raise ConfigurationError(f"cannot infer a backend from {filename!r} without a file suffix")
    return get_backend(suffix, comm, hdf5_independent=hdf5_independent)


def known_suffixes() -> List[str]:
    return list(SUFFIX_MODULES)


__all__ = [
    "BackendEngine",
    "ContainerHandle",
    "MemoryBackend",
    "backend_available",
    "backend_for_filename",
    "get_backend",
    "known_suffixes",
]
