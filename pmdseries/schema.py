"""Configuration schema for the parallel write benchmark.

The pydantic models mirror the YAML files accepted by
:func:`pmdseries.config_utils.load_config`.  Every section has defaults, so
an empty mapping yields the serial 1-D/2-D run of the original command line
tool (bulk 1000, one segment, one step).
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from .constants import BENCHMARK_MESHES_PATH
from .errors import ConfigurationError

KNOWN_SUFFIXES = (".h5", ".bp", ".mem")


class Workload(BaseModel):
    """Mesh size, decomposition and particle load of one run."""

    ratio: int = Field(1, description="Particles per mesh element (1-10)")
    bulk: int = Field(1000, description="Elements per rank along the long dimension")
    segments: int = Field(1, description="Blocks per rank along the long dimension")
    steps: int = Field(1, description="Number of iterations written per layout")
    unbalance: bool = Field(False, description="Move the load of every 10th rank on imbalanced steps")
    dims: List[int] = Field(default_factory=lambda: [1, 2], description="Mesh dimensionalities to run")

    @field_validator("ratio")
    def _check_ratio(cls, value: int) -> int:
        if not 1 <= value <= 10:
            raise ConfigurationError("workload.ratio must lie within [1, 10]")
        return value

    @field_validator("bulk", "segments", "steps")
    def _check_positive(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ConfigurationError(f"workload.{info.field_name} must be at least 1")
        return value

    @field_validator("dims")
    def _check_dims(cls, value: List[int]) -> List[int]:
        if not value:
            raise ConfigurationError("workload.dims must name at least one dimensionality")
        bad = [n for n in value if n not in (1, 2)]
        if bad:
            raise ConfigurationError(f"workload.dims only supports 1 and 2, got {bad}")
        return value


class Output(BaseModel):
    """Where and how the benchmark writes its series and timing report."""

    outdir: Path = Field(Path("samples"), description="Directory receiving series and reports")
    backends: Optional[List[str]] = Field(
        None, description="File suffixes to run; None selects every available engine"
    )
    layouts: List[Literal["file", "group"]] = Field(default_factory=lambda: ["file", "group"])
    meshes_path: str = Field(BENCHMARK_MESHES_PATH, description="Mesh group name inside iterations")
    report: Literal["parquet", "csv", "none"] = Field("parquet", description="Timing report format")

    @field_validator("backends")
    def _check_backends(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        normalised = [item if item.startswith(".") else f".{item}" for item in value]
        unknown = [item for item in normalised if item not in KNOWN_SUFFIXES]
        if unknown:
            raise ConfigurationError(f"output.backends has unknown suffixes {unknown}; expected {KNOWN_SUFFIXES}")
        return normalised

    @field_validator("meshes_path")
    def _check_meshes_path(cls, value: str) -> str:
        name = value.strip("/")
        if not name or "/" in name:
            raise ConfigurationError("output.meshes_path must be a single group name")
        return name

    @model_validator(mode="after")
    def _check_layouts(self) -> "Output":
        if not self.layouts:
            raise ConfigurationError("output.layouts must contain 'file' and/or 'group'")
        self.layouts = list(dict.fromkeys(self.layouts))
        return self


class Parallel(BaseModel):
    """MPI settings; ``hdf5_independent`` falls back to the environment when unset."""

    use_mpi: bool = False
    hdf5_independent: Optional[bool] = None


class BenchmarkConfig(BaseModel):
    """Top-level benchmark configuration."""

    workload: Workload = Field(default_factory=Workload)
    output: Output = Field(default_factory=Output)
    parallel: Parallel = Field(default_factory=Parallel)


__all__ = ["BenchmarkConfig", "Workload", "Output", "Parallel", "KNOWN_SUFFIXES"]
