"""Series root: attributes, layouts and whole-series flush/close."""

from __future__ import annotations

import numpy as np
import pytest

from pmdseries.backends.memory import MemoryBackend
from pmdseries.errors import BackendTaskError, ConfigurationError, SeriesClosedError
from pmdseries.iteration import CloseStatus
from pmdseries.series import Series


def _write_step(series, index, value):
    comp = series.iterations[index].meshes["E"]["x"]
    comp.declare_shape(np.float64, (3,))
    comp.store_chunk(np.full(3, float(value)), (0,), (3,))
    return comp


def test_root_attributes_group_based(group_series, memory_backend):
    group_series.flush()
    attrs = memory_backend.attributes("run.mem", "/")
    assert attrs["openPMD"] == "1.1.0"
    assert attrs["openPMDextension"] == 0
    assert attrs["basePath"] == "/data/%T/"
    assert attrs["meshesPath"] == "meshes/"
    assert attrs["particlesPath"] == "particles/"
    assert attrs["iterationEncoding"] == "groupBased"
    assert attrs["iterationFormat"] == "/data/%T/"
    assert attrs["software"] == "pmdseries"


def test_file_based_writes_one_target_per_iteration(file_series, memory_backend):
    for index in (1, 2):
        _write_step(file_series, index, index)
        file_series.iterations[index].close()

    assert set(memory_backend.targets) == {"run_1.mem", "run_2.mem"}
    assert memory_backend.open_targets == set()
    for index in (1, 2):
        target = f"run_{index}.mem"
        assert memory_backend.attributes(target, "/")["iterationEncoding"] == "fileBased"
        assert memory_backend.attributes(target, "/")["iterationFormat"] == "run_%T.mem"
        np.testing.assert_array_equal(
            memory_backend.dataset(target, f"/data/{index}/meshes/E/x"), [float(index)] * 3
        )
    assert "/data/2" not in memory_backend.targets["run_1.mem"]
    assert "/data/1" not in memory_backend.targets["run_2.mem"]


def test_file_based_flush_spans_several_targets(file_series, memory_backend):
    _write_step(file_series, 1, 1)
    _write_step(file_series, 2, 2)
    file_series.flush()
    assert set(memory_backend.targets) == {"run_1.mem", "run_2.mem"}
    assert memory_backend.attributes("run_2.mem", "/")["openPMD"] == "1.1.0"
    assert file_series.iterations[1].close_status is CloseStatus.OPEN


def test_group_based_keeps_the_file_open_until_close(group_series, memory_backend):
    for index in (1, 2):
        _write_step(group_series, index, index)
        group_series.iterations[index].close()
    assert memory_backend.open_targets == {"run.mem"}
    group_series.close()
    assert memory_backend.open_targets == set()
    assert ("close_container", "/") in memory_backend.calls


def test_custom_meshes_path(memory_backend):
    series = Series("run.mem", backend=memory_backend, meshes_path="fields")
    assert series.iterations[1].meshes.path == "/data/1/fields"
    series.close()
    assert memory_backend.attributes("run.mem", "/")["meshesPath"] == "fields/"


def test_paths_fixed_once_iterations_exist(group_series):
    group_series.set_particles_path("species")
    assert group_series.iterations[1].particles.path == "/data/1/species"
    with pytest.raises(ConfigurationError):
        group_series.set_meshes_path("fields")
    with pytest.raises(ConfigurationError):
        Series("run.mem", backend=MemoryBackend(), meshes_path="a/b")


def test_close_finalises_every_iteration(group_series):
    _write_step(group_series, 1, 1)
    _write_step(group_series, 2, 2)
    group_series.iterations[2].close(flush=False)
    group_series.close()
    assert group_series.closed
    assert all(it.close_status is CloseStatus.CLOSED_IN_BACKEND for it in group_series.iterations.values())


def test_closed_series_rejects_new_work(group_series):
    group_series.close()
    with pytest.raises(SeriesClosedError):
        group_series.iterations[1]
    with pytest.raises(SeriesClosedError):
        group_series.flush()
    with pytest.raises(SeriesClosedError):
        group_series.set_attribute("author", "me")
    group_series.close()


def test_failed_close_can_be_retried(group_series, memory_backend):
    comp = _write_step(group_series, 1, 1)
    memory_backend.fail_on("write_chunk", path=comp.path)
    with pytest.raises(BackendTaskError):
        group_series.close()
    assert not group_series.closed
    assert group_series.iterations[1].close_status is CloseStatus.CLOSED_IN_FRONTEND

    group_series.close()
    assert group_series.closed
    np.testing.assert_array_equal(memory_backend.dataset("run.mem", comp.path), [1.0] * 3)


def test_context_manager_closes(memory_backend):
    with Series("ctx_%04T.mem", backend=memory_backend) as series:
        _write_step(series, 7, 7)
    assert series.closed
    assert "ctx_0007.mem" in memory_backend.targets
    assert series.iterations[7].close_status is CloseStatus.CLOSED_IN_BACKEND


def test_backend_by_name():
    series = Series("run_%T.h5", backend="memory")
    assert isinstance(series.backend, MemoryBackend)
    assert series.iteration_encoding == "fileBased"
    series.close()


def test_unknown_suffix_is_rejected():
    with pytest.raises(ConfigurationError):
        Series("run.nc")
    with pytest.raises(ConfigurationError):
        Series("run")


def test_series_attributes_are_mutable_until_close(group_series, memory_backend):
    group_series.set_software("benchmark", "2.0")
    group_series.set_attribute("author", "test")
    group_series.close()
    attrs = memory_backend.attributes("run.mem", "/")
    assert attrs["software"] == "benchmark"
    assert attrs["softwareVersion"] == "2.0"
    assert attrs["author"] == "test"
