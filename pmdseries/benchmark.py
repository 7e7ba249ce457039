"""Parallel 1-D/2-D write benchmark.

Every rank owns ``bulk`` elements along the long mesh dimension, split into
``segments`` blocks.  Each step writes three mesh fields and one particle
species, first with one file per step (file based layout) and then with all
steps in a single file (group based layout), for every available backend and
for 1-D and 2-D meshes.  Each layout run is timed; the timings of all ranks
are gathered on rank 0 and written as a Parquet (or CSV) report plus a JSON
summary.

Positional arguments follow the original command line tool::

    pmdseries-benchmark NUM BULK SEG STEPS

``NUM`` selects the particle ratio ``(NUM-1) % 10 + 1`` and, above 10, the
imbalanced load.
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .backends.base import BackendEngine
from .config_utils import (
    available_backends,
    configure_logging,
    decode_workload_selector,
    load_config,
    resolve_hdf5_independent,
)
from .constants import BENCHMARK_MESHES, BENCHMARK_MESHES_PATH, BENCHMARK_PARTICLE_SPECIES
from .errors import ConfigurationError, PMDSeriesError
from .hierarchy import ParticleSpecies, RecordComponent
from .io import writer
from .parallel import ProcessGroup
from .planner import BlockPlanner, StepPlan, effective_segments
from .runtime import TimingRecords, Timer, log_stage
from .schema import BenchmarkConfig, Workload
from .series import Series

logger = logging.getLogger(__name__)

BackendFactory = Callable[[str], BackendEngine]


def create_data(size: int, value: Any, increment: bool = False, dtype: Any = None) -> np.ndarray:
    """Return ``size`` copies of ``value``, or ``value, value+1, ...`` with ``increment``."""

    dtype = np.dtype(dtype) if dtype is not None else np.asarray(value).dtype
    if increment:
        return np.arange(size, dtype=dtype) + np.asarray(value, dtype=dtype)
    return np.full(int(size), value, dtype=dtype)


def series_filename(outdir: Path, n_dims: int, unbalance: bool, suffix: str, file_based: bool) -> Path:
    balance = "u" if unbalance else "b"
    stem = f"8a_parallel_{n_dims}D{balance}"
    if file_based:
        stem += "_%07T"
    return Path(outdir) / f"{stem}{suffix}"


class BenchmarkRunner:
    """Write the benchmark workload for one backend on one rank."""

    def __init__(
        self,
        workload: Workload,
        backend: str,
        *,
        group: Optional[ProcessGroup] = None,
        outdir: Path = Path("samples"),
        meshes_path: str = BENCHMARK_MESHES_PATH,
        layouts: Sequence[str] = ("file", "group"),
        hdf5_independent: bool = True,
        timings: Optional[TimingRecords] = None,
        backend_factory: Optional[BackendFactory] = None,
    ) -> None:
        self.workload = workload
        self.backend = backend
        self.group = group or ProcessGroup()
        self.outdir = Path(outdir)
        self.meshes_path = meshes_path
        self.layouts = tuple(layouts)
        self.hdf5_independent = hdf5_independent
        self.timings = timings if timings is not None else TimingRecords()
        self.backend_factory = backend_factory
        self.planner = BlockPlanner(
            bulk=workload.bulk,
            world_size=self.group.size,
            rank=self.group.rank,
            segments=effective_segments(workload.segments, backend, hdf5_independent),
            imbalance=workload.unbalance,
            ratio=workload.ratio,
        )
        self.plan: Optional[StepPlan] = None

    def set_mesh(self, step: int, n_dims: int = 1) -> StepPlan:
        """Plan the global mesh and this rank's blocks for ``step``."""

        self.plan = self.planner.plan(step, n_dims)
        return self.plan

    def _require_plan(self) -> StepPlan:
        if self.plan is None:
            raise ConfigurationError("set_mesh() must be called before storing data")
        return self.plan

    def open_series(self, filename: Path) -> Series:
        backend = self.backend_factory(self.backend) if self.backend_factory is not None else None
        return Series(
            filename,
            backend=backend,
            comm=self.group.comm,
            meshes_path=self.meshes_path,
            hdf5_independent=self.hdf5_independent,
        )

    def store_mesh(self, series: Series, step: int, field_name: str, component: str) -> RecordComponent:
        plan = self._require_plan()
        node = series.iterations[step].meshes[field_name][component]
        node.declare_shape(np.float64, plan.global_extent)
        for n, block in enumerate(plan.mesh_blocks):
            if block.size > 0:
                node.store_chunk(create_data(block.size, 1.0 * n + 0.0001 * step), block.offset, block.extent)
        return node

    def store_particles(self, species: ParticleSpecies, step: int) -> None:
        """Write the ``id``, ``charge``, ``position`` and ``positionOffset`` records."""

        plan = self._require_plan()
        species.set_attribute("particleSmoothing", "none")
        species.set_attribute("openPMD_STEP", int(step))
        species.set_attribute("multiplier", int(plan.ratio))

        n_particles = plan.total_particles
        ids = species["id"][RecordComponent.SCALAR]
        charge = species["charge"][RecordComponent.SCALAR]
        position = species["position"]["x"]
        ids.declare_shape(np.uint64, (n_particles,))
        charge.declare_shape(np.float64, (n_particles,))
        position.declare_shape(np.float64, (n_particles,))
        offset_x = species["positionOffset"]["x"]
        offset_x.declare_shape(np.float64, (n_particles,))
        offset_x.make_constant(0.0)

        for n in range(plan.num_blocks):
            offset, count = plan.particle_range(n)
            if count <= 0:
                continue
            ids.store_chunk(create_data(count, offset, increment=True, dtype=np.uint64), (offset,), (count,))
            charge.store_chunk(create_data(count, 0.001 * step), (offset,), (count,))
            position.store_chunk(create_data(count, 0.0003 * step), (offset,), (count,))

    def store(self, series: Series, step: int) -> None:
        """Write all meshes and particles of ``step`` and close the iteration."""

        for field_name, component in BENCHMARK_MESHES:
            self.store_mesh(series, step, field_name, component)
        species = series.iterations[step].particles[BENCHMARK_PARTICLE_SPECIES]
        self.store_particles(species, step)
        series.iterations[step].close()

    def _timer(self, filename: Path, layout: str, n_dims: int) -> Timer:
        extra = {
            "backend": self.backend,
            "layout": layout,
            "dims": n_dims,
            "bulk": self.workload.bulk,
            "segments": self.planner.segments,
            "steps": self.workload.steps,
            "ratio": self.workload.ratio,
            "unbalance": self.workload.unbalance,
            "ranks": self.group.size,
        }
        return Timer(f"Writing: {filename}", self.group.rank, sink=self.timings, extra=extra)

    def run_file_based(self, n_dims: int) -> Path:
        filename = series_filename(self.outdir, n_dims, self.workload.unbalance, self.backend, True)
        with self._timer(filename, "file", n_dims):
            for step in range(1, self.workload.steps + 1):
                self.set_mesh(step, n_dims)
                series = self.open_series(filename)
                self.store(series, step)
                series.close()
        return filename

    def run_group_based(self, n_dims: int) -> Path:
        filename = series_filename(self.outdir, n_dims, self.workload.unbalance, self.backend, False)
        with self._timer(filename, "group", n_dims):
            series = self.open_series(filename)
            for step in range(1, self.workload.steps + 1):
                self.set_mesh(step, n_dims)
                self.store(series, step)
            series.close()
        return filename

    def run(self, n_dims: int) -> List[Path]:
        """Run the configured layouts for ``n_dims``-dimensional meshes."""

        written: List[Path] = []
        if "file" in self.layouts:
            written.append(self.run_file_based(n_dims))
        if "group" in self.layouts:
            written.append(self.run_group_based(n_dims))
        return written


def run_benchmark(
    cfg: BenchmarkConfig,
    group: Optional[ProcessGroup] = None,
    *,
    backend_factory: Optional[BackendFactory] = None,
) -> TimingRecords:
    """Run every backend and dimensionality of ``cfg``; return this rank's timings."""

    group = group or ProcessGroup()
    timings = TimingRecords()
    backends = available_backends(cfg.output.backends)
    if not backends:
        raise ConfigurationError("no usable backend engine is available")
    hdf5_independent = resolve_hdf5_independent(cfg)
    log_stage(
        logger,
        "benchmark_start",
        extra={"backends": backends, "ranks": group.size, "hdf5_independent": hdf5_independent},
    )
    with Timer("  Main  ", group.rank, sink=timings, extra={"backend": ",".join(backends), "layout": "all"}):
        for suffix in backends:
            runner = BenchmarkRunner(
                cfg.workload,
                suffix,
                group=group,
                outdir=cfg.output.outdir,
                meshes_path=cfg.output.meshes_path,
                layouts=cfg.output.layouts,
                hdf5_independent=hdf5_independent,
                timings=timings,
                backend_factory=backend_factory,
            )
            for n_dims in cfg.workload.dims:
                runner.run(n_dims)
        group.barrier()
    log_stage(logger, "benchmark_end")
    return timings


def gather_timings(timings: TimingRecords, group: ProcessGroup) -> Optional[pd.DataFrame]:
    """Collect the timing rows of all ranks on rank 0 (None elsewhere)."""

    gathered = group.gather(timings.to_records())
    if gathered is None:
        return None
    rows = [row for rank_rows in gathered for row in rank_rows]
    return pd.DataFrame(rows)


def summarise_timings(df: pd.DataFrame) -> Dict[str, Any]:
    """Slowest rank per timer tag; the run is as fast as its slowest rank."""

    if df.empty:
        return {}
    slowest = df.groupby("tag", sort=False)["elapsed_s"].max()
    return {str(tag): float(value) for tag, value in slowest.items()}


def write_report(cfg: BenchmarkConfig, df: pd.DataFrame, group: ProcessGroup) -> Optional[Path]:
    """Write the gathered timings and a JSON summary into the output directory."""

    outdir = Path(cfg.output.outdir)
    report_path: Optional[Path] = None
    if cfg.output.report == "parquet":
        report_path = outdir / "timings.parquet"
        writer.write_parquet(df, report_path)
    elif cfg.output.report == "csv":
        report_path = outdir / "timings.csv"
        writer.append_csv(df.to_dict(orient="records"), report_path)
    summary = {
        "config": cfg.model_dump(mode="json"),
        "ranks": group.size,
        "slowest_elapsed_s": summarise_timings(df),
        "report": str(report_path) if report_path is not None else None,
    }
    writer.write_summary(summary, outdir / "summary.json")
    logger.info("Timing report written to %s", outdir)
    return report_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parallel 1D/2D series write benchmark")
    parser.add_argument("num", type=int, nargs="?", help="Load selector: ratio=(num-1)%%10+1, num>10 unbalanced")
    parser.add_argument("bulk", type=int, nargs="?", help="Elements per rank along the long dimension")
    parser.add_argument("seg", type=int, nargs="?", help="Blocks per rank")
    parser.add_argument("steps", type=int, nargs="?", help="Number of iterations")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument(
        "--override",
        action="append",
        default=[],
        metavar="PATH=VALUE",
        help="Override configuration entries using dotted paths (e.g. workload.bulk=2000)",
    )
    parser.add_argument("--outdir", type=Path, help="Output directory for series and reports")
    parser.add_argument(
        "--backend",
        action="append",
        default=None,
        help="Backend suffix to run (.h5, .bp, .mem); may be given more than once",
    )
    parser.add_argument("--dims", type=int, action="append", choices=(1, 2), help="Mesh dimensionality to run")
    parser.add_argument("--mpi", action="store_true", help="Run on MPI.COMM_WORLD (requires mpi4py)")
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    return parser


def overrides_from_args(args: argparse.Namespace) -> List[str]:
    overrides = list(args.override or [])
    if args.num is not None:
        ratio, unbalance = decode_workload_selector(args.num)
        overrides += [f"workload.ratio={ratio}", f"workload.unbalance={unbalance}"]
    if args.bulk is not None:
        overrides.append(f"workload.bulk={args.bulk}")
    if args.seg is not None:
        overrides.append(f"workload.segments={args.seg}")
    if args.steps is not None:
        overrides.append(f"workload.steps={args.steps}")
    if args.outdir is not None:
        overrides.append(f"output.outdir={args.outdir}")
    if args.backend:
        overrides.append(f"output.backends=[{','.join(args.backend)}]")
    if args.dims:
        overrides.append(f"workload.dims=[{','.join(str(n) for n in args.dims)}]")
    if args.mpi:
        overrides.append("parallel.use_mpi=true")
    return overrides


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.WARNING if args.quiet else logging.INFO)
    try:
        cfg = load_config(args.config, overrides_from_args(args))
        group = ProcessGroup.world() if cfg.parallel.use_mpi else ProcessGroup()
        timings = run_benchmark(cfg, group)
        df = gather_timings(timings, group)
        if df is not None:
            write_report(cfg, df, group)
    except PMDSeriesError as exc:
        logger.error("Benchmark failed: %s", exc)
        return 1
    return 0


__all__ = [
    "BenchmarkRunner",
    "create_data",
    "series_filename",
    "run_benchmark",
    "gather_timings",
    "summarise_timings",
    "write_report",
    "build_parser",
    "main",
]


if __name__ == "__main__":
    raise SystemExit(main())
