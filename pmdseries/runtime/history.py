"""Timing rows collected during a benchmark run.

Rows are plain mappings; a row may carry keys that earlier rows did not
have, in which case those earlier rows read as ``None`` for the new column.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
import pyarrow as pa


class TimingRecords:
    """Ordered collection of timing rows with a growing set of columns."""

    def __init__(self, columns: Optional[Iterable[str]] = None) -> None:
        self._rows: List[Dict[str, Any]] = []
        self._names: Dict[str, None] = dict.fromkeys(columns or ())

    def __len__(self) -> int:
        return len(self._rows)

    def __bool__(self) -> bool:
        return bool(self._rows)

    @property
    def columns(self) -> List[str]:
        return list(self._names)

    def append(self, row: Mapping[str, Any]) -> None:
        self._names.update(dict.fromkeys(row))
        self._rows.append(dict(row))

    def extend(self, rows: Iterable[Mapping[str, Any]]) -> None:
        for row in rows:
            self.append(row)

    def clear(self) -> None:
        self._rows.clear()

    def column(self, name: str) -> List[Any]:
        return [row.get(name) for row in self._rows]

    def to_records(self) -> List[Dict[str, Any]]:
        """Rows with every known column filled in, in insertion order."""

        return [{name: row.get(name) for name in self._names} for row in self._rows]

    def to_table(self) -> pa.Table:
        return pa.table({name: self.column(name) for name in self._names})

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.to_records(), columns=self.columns)


__all__ = ["TimingRecords"]
