from __future__ import annotations

from pathlib import Path

import pytest

from pmdseries import config_utils
from pmdseries.errors import ConfigurationError
from pmdseries.schema import BenchmarkConfig


@pytest.mark.parametrize(
    "num, expected",
    [(-3, (1, False)), (0, (1, False)), (1, (1, False)), (7, (7, False)), (10, (10, False)), (11, (1, True)), (15, (5, True)), (20, (10, True))],
)
def test_decode_workload_selector(num, expected):
    assert config_utils.decode_workload_selector(num) == expected


def test_parse_override_value():
    parse = config_utils.parse_override_value
    assert parse("true") is True
    assert parse("None") is None
    assert parse("12") == 12
    assert parse("0.5") == 0.5
    assert parse("[1, 2]") == [1, 2]
    assert parse("[.h5,.bp]") == [".h5", ".bp"]
    assert parse("'quoted'") == "quoted"
    assert parse("samples/out") == "samples/out"


def test_apply_overrides_creates_nested_sections():
    payload = config_utils.apply_overrides_dict({}, ["workload.bulk=64", "output.layouts=[group]"])
    assert payload == {"workload": {"bulk": 64}, "output": {"layouts": ["group"]}}
    with pytest.raises(ConfigurationError):
        config_utils.apply_overrides_dict({}, ["workload.bulk"])
    with pytest.raises(ConfigurationError):
        config_utils.apply_overrides_dict({"workload": 3}, ["workload.bulk=1"])


def test_defaults():
    cfg = config_utils.load_config()
    assert isinstance(cfg, BenchmarkConfig)
    assert cfg.workload.bulk == 1000
    assert cfg.workload.dims == [1, 2]
    assert cfg.output.meshes_path == "fields"
    assert cfg.output.layouts == ["file", "group"]
    assert cfg.output.backends is None


def test_load_yaml_with_overrides(tmp_path):
    path = tmp_path / "bench.yml"
    path.write_text(
        "workload:\n  bulk: 128\n  segments: 4\n  ratio: 2\noutput:\n  backends: [h5]\n  report: csv\n",
        encoding="utf-8",
    )
    cfg = config_utils.load_config(path, ["workload.steps=3", "parallel.hdf5_independent=false"])
    assert cfg.workload.bulk == 128
    assert cfg.workload.steps == 3
    assert cfg.workload.ratio == 2
    assert cfg.output.backends == [".h5"]
    assert cfg.output.report == "csv"
    assert cfg.parallel.hdf5_independent is False


@pytest.mark.parametrize(
    "overrides",
    [
        ["workload.ratio=11"],
        ["workload.ratio=0"],
        ["workload.bulk=0"],
        ["workload.dims=[3]"],
        ["output.backends=[.nc]"],
        ["output.layouts=[]"],
        ["output.meshes_path=a/b"],
        ["output.report=xml"],
    ],
)
def test_invalid_values_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError):
        config_utils.load_config(None, overrides)


def test_missing_file_and_bad_root(tmp_path):
    with pytest.raises(ConfigurationError):
        config_utils.load_config(tmp_path / "missing.yml")
    path = tmp_path / "list.yml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        config_utils.load_config(path)


def test_hdf5_independent_environment(monkeypatch):
    assert config_utils.hdf5_independent_from_env() is True
    monkeypatch.setenv("PMDSERIES_HDF5_INDEPENDENT", "OFF")
    assert config_utils.hdf5_independent_from_env() is False
    monkeypatch.setenv("PMDSERIES_HDF5_INDEPENDENT", "on")
    assert config_utils.hdf5_independent_from_env() is True


def test_config_value_wins_over_environment(monkeypatch):
    monkeypatch.setenv("PMDSERIES_HDF5_INDEPENDENT", "OFF")
    cfg = config_utils.build_config({"parallel": {"hdf5_independent": True}})
    assert config_utils.resolve_hdf5_independent(cfg) is True
    assert config_utils.resolve_hdf5_independent(config_utils.build_config()) is False


def test_available_backends_honours_environment(monkeypatch):
    assert config_utils.available_backends([".mem"]) == [".mem"]
    monkeypatch.setenv("PMDSERIES_BP_BACKEND", "off")
    assert ".bp" not in config_utils.available_backends([".bp", ".mem"])


def test_available_backends_skips_missing_modules(monkeypatch):
    monkeypatch.setattr(config_utils, "backend_available", lambda suffix: suffix != ".h5")
    assert config_utils.available_backends([".h5", ".mem"]) == [".mem"]


def test_outdir_is_a_path():
    cfg = config_utils.load_config(None, ["output.outdir=results/run1"])
    assert cfg.output.outdir == Path("results/run1")
