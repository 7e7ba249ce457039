"""Chunked, backend-agnostic writer for openPMD-style mesh and particle series.

Data is staged in a record hierarchy (series, iterations, meshes, particle
species, records and record components) and written to HDF5 or ADIOS2 BP
files when the series is flushed or an iteration is closed.  The
:mod:`pmdseries.planner` module decomposes a global mesh across MPI ranks and
:mod:`pmdseries.benchmark` drives a parallel write benchmark on top of it.
"""
from __future__ import annotations

from .constants import SOFTWARE_VERSION as __version__
from .errors import (
    AlreadyClosedError,
    BackendError,
    BackendTaskError,
    ConfigurationError,
    DatasetError,
    IterationClosedError,
    PMDSeriesError,
    SeriesClosedError,
    ShapeMismatchError,
    ShapeRedefinitionError,
    TaskFailure,
)
from .hierarchy import Dataset, Mesh, MeshRecordComponent, ParticleSpecies, Record, RecordComponent
from .iteration import CloseStatus, Iteration
from .parallel import ProcessGroup
from .planner import Block, BlockPlanner, StepPlan
from .series import Series

__all__ = [
    "__version__",
    "AlreadyClosedError",
    "BackendError",
    "BackendTaskError",
    "Block",
    "BlockPlanner",
    "CloseStatus",
    "ConfigurationError",
    "Dataset",
    "DatasetError",
    "Iteration",
    "IterationClosedError",
    "Mesh",
    "MeshRecordComponent",
    "ParticleSpecies",
    "PMDSeriesError",
    "ProcessGroup",
    "Record",
    "RecordComponent",
    "Series",
    "SeriesClosedError",
    "ShapeMismatchError",
    "ShapeRedefinitionError",
    "StepPlan",
    "TaskFailure",
]
