"""Helper utilities for loading and normalising benchmark configuration."""
from __future__ import annotations

import logging
import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from .backends import backend_available, known_suffixes
from .errors import ConfigurationError
from .schema import BenchmarkConfig

logger = logging.getLogger(__name__)

ENV_BP_BACKEND = "PMDSERIES_BP_BACKEND"
ENV_HDF5_INDEPENDENT = "PMDSERIES_HDF5_INDEPENDENT"

_DISABLED_VALUES = {"off", "none", "0", "false", "no"}
_LITERALS = {"true": True, "false": False, "none": None, "null": None}


def parse_override_value(raw: str) -> Any:
    """Turn the right-hand side of ``path=value`` into a Python value.

    Booleans, ``none``/``null``, integers, floats and bracketed lists such as
    ``[.h5,.bp]`` are recognised; quotes around a string are stripped.
    """

    text = raw.strip()
    if text.lower() in _LITERALS:
        return _LITERALS[text.lower()]
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            continue
    if text[:1] == "[" and text[-1:] == "]":
        inner = text[1:-1].strip()
        return [parse_override_value(item) for item in inner.split(",")] if inner else []
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text


def apply_overrides_dict(payload: Dict[str, Any], overrides: Sequence[str]) -> Dict[str, Any]:
    """Apply dotted-path overrides (``workload.bulk=2000``) to a configuration dictionary."""

    for item in overrides or ():
        key, sep, value = item.partition("=")
        if not sep:
            raise ConfigurationError(f"override {item!r} is not of the form path=value")
        *sections, leaf = [segment for segment in key.strip().split(".") if segment] or [""]
        if not leaf:
            raise ConfigurationError(f"override {item!r} has an empty path")
        node: Any = payload
        for section in sections:
            if not isinstance(node, dict):
                raise ConfigurationError(f"override {item!r}: {section!r} is below a non-mapping value")
            if node.get(section) is None:
                node[section] = {}
            node = node[section]
        if not isinstance(node, dict):
            raise ConfigurationError(f"override {item!r}: {leaf!r} is below a non-mapping value")
        node[leaf] = parse_override_value(value)
    return payload


def build_config(payload: Optional[Mapping[str, Any]] = None) -> BenchmarkConfig:
    """Validate a configuration mapping, raising :class:`ConfigurationError` on bad input."""

    data = dict(payload or {})
    try:
        return BenchmarkConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid benchmark configuration: {exc}") from exc


def load_config(path: Optional[Path] = None, overrides: Optional[Sequence[str]] = None) -> BenchmarkConfig:
    """Load a YAML configuration file (or defaults) into a :class:`BenchmarkConfig`."""

    from ruamel.yaml import YAML

    data: Any = {}
    if path is not None:
        yaml = YAML(typ="safe")
        source_path = Path(path).resolve()
        if not source_path.exists():
            raise ConfigurationError(f"configuration file {source_path} does not exist")
        with source_path.open("r", encoding="utf-8") as fh:
            data = yaml.load(fh) or {}
        logger.debug("load_config: read %s", source_path)
    if not isinstance(data, dict):
        raise ConfigurationError("the configuration root must be a mapping")
    if overrides:
        data = apply_overrides_dict(data, overrides)
    return build_config(data)


def decode_workload_selector(num: int) -> Tuple[int, bool]:
    """Decode the first positional CLI argument into ``(ratio, unbalance)``.

    Values above 10 select the imbalanced load; the particle ratio cycles
    through 1..10 (``num <= 0`` counts as 1).
    """

    num = int(num)
    unbalance = num > 10
    if num <= 0:
        num = 1
    return (num - 1) % 10 + 1, unbalance


def env_flag(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def hdf5_independent_from_env() -> bool:
    """Independent HDF5 writes unless the environment says otherwise (default ``ON``)."""

    return env_flag(ENV_HDF5_INDEPENDENT, "ON").upper() == "ON"


def bp_enabled_from_env() -> bool:
    return env_flag(ENV_BP_BACKEND, "ON").lower() not in _DISABLED_VALUES


def available_backends(requested: Optional[Sequence[str]] = None) -> List[str]:
    """Return the engine suffixes usable in this environment, ``.bp`` first."""

    candidates = list(requested) if requested else known_suffixes()
    ordered = sorted(candidates, key=lambda suffix: 0 if suffix == ".bp" else 1)
    result: List[str] = []
    for suffix in ordered:
        if suffix == ".bp" and not bp_enabled_from_env():
            logger.debug("%s disables the .bp backend", ENV_BP_BACKEND)
            continue
        if not backend_available(suffix):
            logger.warning("Backend %s is not available; skipping", suffix)
            continue
        result.append(suffix)
    return result


def resolve_hdf5_independent(cfg: BenchmarkConfig) -> bool:
    if cfg.parallel.hdf5_independent is not None:
        return bool(cfg.parallel.hdf5_independent)
    return hdf5_independent_from_env()


def configure_logging(level: int, suppress_warnings: bool = False) -> None:
    """Configure root logging and optionally silence Python warnings."""

    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    root = logging.getLogger()
    root.setLevel(level)
    if suppress_warnings:
        warnings.filterwarnings("ignore")
    logging.captureWarnings(True)


__all__ = [
    "ENV_BP_BACKEND",
    "ENV_HDF5_INDEPENDENT",
    "parse_override_value",
    "apply_overrides_dict",
    "build_config",
    "load_config",
    "decode_workload_selector",
    "hdf5_independent_from_env",
    "bp_enabled_from_env",
    "available_backends",
    "resolve_hdf5_independent",
    "configure_logging",
]
