"""Flush dispatch, failure isolation and retry of outstanding tasks."""

from __future__ import annotations

import numpy as np
import pytest

from pmdseries.errors import BackendTaskError, DatasetError
from pmdseries.flush import FlushScheduler
from pmdseries.hierarchy import RecordComponent

TARGET = "run.mem"


def _two_components(series, size=4):
    mesh = series.iterations[1].meshes["E"]
    x, y = mesh["x"], mesh["y"]
    for comp in (x, y):
        comp.declare_shape(np.float64, (size,))
    return x, y


def test_flush_writes_chunks_and_attributes(group_series, memory_backend):
    x, y = _two_components(group_series)
    x.store_chunk(np.arange(4.0), (0,), (4,))
    y.store_chunk(np.full(2, 7.0), (2,), (2,))
    group_series.flush()

    np.testing.assert_array_equal(memory_backend.dataset(TARGET, x.path), [0.0, 1.0, 2.0, 3.0])
    np.testing.assert_array_equal(memory_backend.dataset(TARGET, y.path), [0.0, 0.0, 7.0, 7.0])
    assert memory_backend.attributes(TARGET, "/")["openPMD"] == "1.1.0"
    assert memory_backend.attributes(TARGET, "/data/1/meshes/E")["geometry"] == "cartesian"
    assert memory_backend.attributes(TARGET, x.path)["unitSI"] == 1.0


def test_parents_are_created_before_children(group_series, memory_backend):
    x, _ = _two_components(group_series)
    x.store_chunk(np.ones(4), (0,), (4,))
    group_series.flush()
    created = [path for op, path in memory_backend.calls if op == "create_container"]
    assert created.index("/") < created.index("/data") < created.index("/data/1")
    assert created.index("/data/1/meshes") < created.index("/data/1/meshes/E") < created.index(x.path)


def test_clean_flush_issues_no_backend_calls(group_series, memory_backend):
    x, _ = _two_components(group_series)
    x.store_chunk(np.ones(4), (0,), (4,))
    group_series.flush()
    before = memory_backend.count_calls()
    group_series.flush()
    group_series.iterations[1].flush()
    assert memory_backend.count_calls() == before


def test_flush_of_subtree_only_touches_its_branch(group_series, memory_backend):
    x, _ = _two_components(group_series)
    group_series.flush()
    other = group_series.iterations[2].meshes["B"]["z"]
    other.declare_shape(np.float64, (4,))
    x.store_chunk(np.ones(4), (0,), (4,))
    memory_backend.calls.clear()

    FlushScheduler(memory_backend).flush(x, group_series.target_for(1))
    assert {path for _, path in memory_backend.calls} == {x.path}
    assert other.dirty
    assert group_series.iterations[2].is_dirty_recursive()


def test_chunks_are_written_in_store_order(group_series, memory_backend):
    x, _ = _two_components(group_series)
    x.store_chunk(np.ones(4), (0,), (4,))
    x.store_chunk(np.full(2, 2.0), (2,), (2,))
    x.store_chunk(np.full(1, 3.0), (3,), (1,))
    group_series.flush()
    np.testing.assert_array_equal(memory_backend.dataset(TARGET, x.path), [1.0, 1.0, 2.0, 3.0])


def test_failed_chunk_keeps_outstanding_work_and_siblings_proceed(group_series, memory_backend):
    x, y = _two_components(group_series)
    x.store_chunk(np.ones(2), (0,), (2,))
    x.store_chunk(np.full(2, 2.0), (2,), (2,))
    y.store_chunk(np.full(4, 5.0), (0,), (4,))
    memory_backend.fail_on("write_chunk", path=x.path)

    with pytest.raises(BackendTaskError) as excinfo:
        group_series.flush()
    failures = excinfo.value.failures
    assert len(failures) == 1
    assert failures[0].path == x.path
    assert failures[0].task.startswith("write_chunk")
    assert len(x.pending_chunks) == 2
    assert x.dirty and group_series.dirty
    assert not y.is_dirty_recursive()
    np.testing.assert_array_equal(memory_backend.dataset(TARGET, y.path), [5.0] * 4)

    memory_backend.calls.clear()
    group_series.flush()
    assert memory_backend.calls == [("write_chunk", x.path), ("write_chunk", x.path)]
    np.testing.assert_array_equal(memory_backend.dataset(TARGET, x.path), [1.0, 1.0, 2.0, 2.0])
    assert not group_series.is_dirty_recursive()


def test_failed_declaration_is_retried(group_series, memory_backend):
    x, _ = _two_components(group_series)
    x.store_chunk(np.ones(4), (0,), (4,))
    memory_backend.fail_on("declare_dataset", path=x.path)
    with pytest.raises(BackendTaskError) as excinfo:
        group_series.flush()
    assert excinfo.value.failures[0].task == "declare_dataset"
    assert x.dataset_pending and x.pending_chunks

    memory_backend.calls.clear()
    group_series.flush()
    ops = [op for op, _ in memory_backend.calls]
    assert ops == ["declare_dataset", "write_attribute", "write_attribute", "write_chunk"]
    assert not x.dataset_pending


def test_failed_container_skips_the_subtree(group_series, memory_backend):
    x, _ = _two_components(group_series)
    x.store_chunk(np.ones(4), (0,), (4,))
    group_series.iterations[2].set_time(1.0)
    memory_backend.fail_on("create_container", path="/data/1")

    with pytest.raises(BackendTaskError) as excinfo:
        group_series.flush()
    assert [f.path for f in excinfo.value.failures] == ["/data/1"]
    assert not any(path.startswith("/data/1/") for _, path in memory_backend.calls)
    assert memory_backend.attributes(TARGET, "/data/2")["time"] == 1.0

    group_series.flush()
    np.testing.assert_array_equal(memory_backend.dataset(TARGET, x.path), np.ones(4))


def test_failures_are_aggregated(group_series, memory_backend):
    x, y = _two_components(group_series)
    x.store_chunk(np.ones(4), (0,), (4,))
    y.store_chunk(np.ones(4), (0,), (4,))
    memory_backend.fail_on("write_chunk", times=2)
    with pytest.raises(BackendTaskError) as excinfo:
        group_series.flush()
    assert sorted(f.path for f in excinfo.value.failures) == sorted([x.path, y.path])
    assert str(excinfo.value).startswith("2 backend task(s) failed")


def test_component_without_dataset_fails_flush(group_series, memory_backend):
    comp = group_series.iterations[1].meshes["E"]["x"]
    with pytest.raises(BackendTaskError) as excinfo:
        group_series.flush()
    failure = excinfo.value.failures[0]
    assert failure.path == comp.path
    assert failure.task == "declare_dataset"
    assert isinstance(failure.error, DatasetError)


def test_scalar_component_is_written_at_record_path(group_series, memory_backend):
    rho = group_series.iterations[1].meshes["rho"][RecordComponent.SCALAR]
    rho.declare_shape(np.float64, (3,))
    rho.store_chunk(np.arange(3.0), (0,), (3,))
    group_series.flush()
    assert "/data/1/meshes/rho" in memory_backend.targets[TARGET]
    assert memory_backend.attributes(TARGET, "/data/1/meshes/rho")["geometry"] == "cartesian"
    np.testing.assert_array_equal(memory_backend.dataset(TARGET, "/data/1/meshes/rho"), [0.0, 1.0, 2.0])


def test_constant_component_stores_value_attribute(group_series, memory_backend):
    comp = group_series.iterations[1].particles["ion"]["positionOffset"]["x"]
    comp.declare_shape(np.float64, (10,))
    comp.make_constant(0.0)
    group_series.flush()
    attrs = memory_backend.attributes(TARGET, comp.path)
    assert attrs["value"] == 0.0
    assert attrs["shape"] == [10]
    assert memory_backend.count_calls("declare_dataset") == 0
