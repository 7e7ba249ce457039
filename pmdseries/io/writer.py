"""Timing report and run summary files.

Timing tables go to Parquet with a ``units`` entry in the schema metadata,
or are appended to a CSV file; the run summary is JSON.  Missing output
directories are created on the fly.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

TIMING_UNITS = {
    "elapsed_s": "s",
    "since_start_s": "s",
    "rank": "index",
    "step": "index",
    "dims": "count",
    "bulk": "count",
    "segments": "count",
    "ratio": "dimensionless",
}

UNITS_KEY = b"units"


def _prepare(path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_parquet(df: pd.DataFrame, path: Path, *, compression: str = "snappy") -> None:
    """Store a timing table; ``compression="none"`` writes it uncompressed."""

    path = _prepare(path)
    units: Dict[str, str] = {name: TIMING_UNITS[name] for name in df.columns if name in TIMING_UNITS}
    table = pa.Table.from_pandas(df, preserve_index=False)
    metadata = {**(table.schema.metadata or {}), UNITS_KEY: json.dumps(units, sort_keys=True).encode()}
    pq.write_table(
        table.replace_schema_metadata(metadata),
        path,
        compression=None if compression == "none" else compression,
    )


def read_units(path: Path) -> Mapping[str, str]:
    """Return the column units stored by :func:`write_parquet`."""

    raw = (pq.read_schema(path).metadata or {}).get(UNITS_KEY)
    return json.loads(raw.decode()) if raw is not None else {}


def write_summary(summary: Mapping[str, Any], path: Path) -> None:
    path = _prepare(path)
    path.write_text(json.dumps(summary, indent=2, sort_keys=True, default=str), encoding="utf-8")


def append_csv(records: Iterable[Mapping[str, Any]], path: Path, *, header: bool = True) -> bool:
    """Append ``records`` to ``path``; the header is written only for a new file.

    Returns False when there was nothing to write.
    """

    frame = pd.DataFrame(list(records))
    if frame.empty:
        return False
    path = _prepare(path)
    frame.to_csv(path, mode="a", header=header and not path.exists(), index=False)
    return True


__all__ = ["TIMING_UNITS", "append_csv", "read_units", "write_parquet", "write_summary"]
