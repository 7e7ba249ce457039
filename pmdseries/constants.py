"""Format constants and default names shared across the package.

The values describe the openPMD standard revision written by the series
root and the default locations of meshes and particles below an iteration.
"""
from __future__ import annotations

from typing import Tuple

# openPMD standard revision written into every series root
OPENPMD_VERSION: str = "1.1.0"
OPENPMD_EXTENSION: int = 0

SOFTWARE_NAME: str = "pmdseries"
SOFTWARE_VERSION: str = "0.1.0"

DEFAULT_MESHES_PATH: str = "meshes"
DEFAULT_PARTICLES_PATH: str = "particles"

# Mesh fields written by the benchmark driver as (record, component) pairs
BENCHMARK_MESHES: Tuple[Tuple[str, str], ...] = (("E", "alpha"), ("B", "alpha"), ("rho", "\vScalar"))
BENCHMARK_MESHES_PATH: str = "fields"
BENCHMARK_PARTICLE_SPECIES: str = "ion"


__all__ = [
    "OPENPMD_VERSION",
    "OPENPMD_EXTENSION",
    "SOFTWARE_NAME",
    "SOFTWARE_VERSION",
    "DEFAULT_MESHES_PATH",
    "DEFAULT_PARTICLES_PATH",
    "BENCHMARK_MESHES",
    "BENCHMARK_PARTICLE_SPECIES",
    "BENCHMARK_MESHES_PATH",
]
