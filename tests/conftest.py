from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pmdseries.backends.memory import MemoryBackend  # noqa: E402
from pmdseries.series import Series  # noqa: E402


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def group_series(memory_backend: MemoryBackend) -> Series:
    """Group based series writing into the in-memory target ``run.mem``."""

    return Series("run.mem", backend=memory_backend)


@pytest.fixture
def file_series(memory_backend: MemoryBackend) -> Series:
    """File based series writing ``run_<n>.mem`` targets in memory."""

    return Series("run_%T.mem", backend=memory_backend)


@pytest.fixture(autouse=True)
def _clear_backend_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PMDSERIES_BP_BACKEND", raising=False)
    monkeypatch.delenv("PMDSERIES_HDF5_INDEPENDENT", raising=False)
