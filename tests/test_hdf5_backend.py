"""HDF5 engine, exercised through serial series writes."""

from __future__ import annotations

import numpy as np
import pytest

from pmdseries.backends.hdf5 import HDF5Backend
from pmdseries.errors import BackendError
from pmdseries.hierarchy import RecordComponent
from pmdseries.naming import group_based_target
from pmdseries.series import Series

h5py = pytest.importorskip("h5py")


def _store_step(series, index):
    it = series.iterations[index]
    it.set_time(0.5 * index)
    mesh = it.meshes["E"]
    mesh.set_axis_labels(["x"])
    for name, value in (("x", 1.0), ("y", 2.0)):
        comp = mesh[name]
        comp.declare_shape(np.float64, (6,))
        comp.store_chunk(np.full(3, value), (0,), (3,))
        comp.store_chunk(np.full(3, value + index), (3,), (3,))
    rho = it.meshes["rho"][RecordComponent.SCALAR]
    rho.declare_shape(np.float32, (2, 3))
    rho.store_chunk(np.arange(6, dtype=np.float32), (0, 0), (2, 3))
    offset = it.particles["ion"]["positionOffset"]["x"]
    offset.declare_shape(np.float64, (5,))
    offset.make_constant(0.0)
    return it


def test_group_based_layout(tmp_path):
    path = tmp_path / "series.h5"
    with Series(path) as series:
        for index in (1, 2):
            _store_step(series, index).close()

    with h5py.File(path, "r") as fh:
        assert fh.attrs["openPMD"] == "1.1.0"
        assert fh.attrs["iterationEncoding"] == "groupBased"
        assert set(fh["data"].keys()) == {"1", "2"}
        np.testing.assert_array_equal(fh["data/2/meshes/E/x"][:], [1.0, 1.0, 1.0, 3.0, 3.0, 3.0])
        np.testing.assert_array_equal(fh["data/1/meshes/E/y"][:], [2.0, 2.0, 2.0, 3.0, 3.0, 3.0])
        rho = fh["data/1/meshes/rho"]
        assert isinstance(rho, h5py.Dataset)
        assert rho.dtype == np.float32
        assert rho.attrs["geometry"] == "cartesian"
        assert fh["data/1"].attrs["closed"] == 1
        assert fh["data/2"].attrs["time"] == 1.0
        labels = [label.decode() if isinstance(label, bytes) else label for label in fh["data/1/meshes/E"].attrs["axisLabels"]]
        assert labels == ["x"]
        offset = fh["data/1/particles/ion/positionOffset/x"]
        assert isinstance(offset, h5py.Group)
        assert offset.attrs["value"] == 0.0
        np.testing.assert_array_equal(offset.attrs["shape"], [5])


def test_file_based_layout(tmp_path):
    template = tmp_path / "out" / "step_%03T.h5"
    with Series(template) as series:
        for index in (1, 2, 3):
            _store_step(series, index).close()

    files = sorted(p.name for p in (tmp_path / "out").iterdir())
    assert files == ["step_001.h5", "step_002.h5", "step_003.h5"]
    with h5py.File(tmp_path / "out" / "step_003.h5", "r") as fh:
        assert fh.attrs["iterationEncoding"] == "fileBased"
        assert list(fh["data"].keys()) == ["3"]
        np.testing.assert_array_equal(fh["data/3/meshes/E/x"][3:], [4.0, 4.0, 4.0])


def test_reopen_after_temporary_close_appends(tmp_path):
    template = tmp_path / "step_%T.h5"
    series = Series(template)
    it = series.iterations[1]
    comp = it.meshes["E"]["x"]
    comp.declare_shape(np.int64, (8,))
    comp.store_chunk(np.arange(4), (0,), (4,))
    it.close_temporarily()

    comp.store_chunk(np.arange(4, 8), (4,), (4,))
    it.close()
    series.close()

    with h5py.File(tmp_path / "step_1.h5", "r") as fh:
        np.testing.assert_array_equal(fh["data/1/meshes/E/x"][:], np.arange(8))
        assert fh["data/1"].attrs["closed"] == 1


def test_declare_dataset_conflicts(tmp_path):
    backend = HDF5Backend()
    target = group_based_target(tmp_path / "direct.h5", 1)
    handle = backend.create_container(target, "/data/1/meshes/E/x")
    backend.declare_dataset(handle, np.dtype("f8"), (4,))
    backend.declare_dataset(handle, np.dtype("f8"), (4,))
    with pytest.raises(BackendError):
        backend.declare_dataset(handle, np.dtype("f8"), (5,))
    backend.close()


def test_write_chunk_without_dataset_raises(tmp_path):
    backend = HDF5Backend()
    target = group_based_target(tmp_path / "direct.h5", 1)
    handle = backend.create_container(target, "/data/1/meshes/E/x")
    with pytest.raises(BackendError):
        backend.write_chunk(handle, np.ones(2), (0,), (2,))
    backend.close()


def test_closed_target_raises_backend_error(tmp_path):
    backend = HDF5Backend()
    target = group_based_target(tmp_path / "direct.h5", 1)
    root = backend.create_container(target, "/")
    backend.close_container(root)
    with pytest.raises(BackendError):
        backend.write_attribute(root, "name", "value")
