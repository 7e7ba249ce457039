"""Mapping of iterations onto backend files.

Two layouts are supported.  *File based* series carry an iteration
placeholder (``%T`` or zero padded ``%0<N>T``) in their file name and write
every iteration to its own file.  *Group based* series write all iterations
into one file, each below its own ``/data/<index>`` group.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .errors import ConfigurationError

BASE_PATH = "/data/%T/"
FILE_BASED = "fileBased"
GROUP_BASED = "groupBased"

_PLACEHOLDER = re.compile(r"%(?:0(\d+))?T")

PathLike = Union[str, Path]


@dataclass(frozen=True)
class StorageTarget:
    """Backend file plus the group holding one iteration inside it."""

    path: Path
    base_path: str
    encoding: str

    @property
    def key(self) -> str:
        return str(self.path)


def has_iteration_placeholder(name: PathLike) -> bool:
    return _PLACEHOLDER.search(str(name)) is not None


def expand_iteration_placeholder(template: PathLike, index: int) -> str:
    """Substitute ``index`` into the single iteration placeholder of ``template``."""

    text = str(template)
    matches = list(_PLACEHOLDER.finditer(text))
    if len(matches) != 1:
        raise ConfigurationError(
            f"expected exactly one iteration placeholder in {text!r}, found {len(matches)}"
        )
    match = matches[0]
    width = int(match.group(1) or 0)
    return text[: match.start()] + str(int(index)).zfill(width) + text[match.end() :]


def iteration_base_path(index: int) -> str:
    return BASE_PATH.replace("%T", str(int(index))).rstrip("/")


def file_based_target(template: PathLike, index: int) -> StorageTarget:
    """One file per iteration, resolved from the file name template."""

    return StorageTarget(
        path=Path(expand_iteration_placeholder(template, index)),
        base_path=iteration_base_path(index),
        encoding=FILE_BASED,
    )


def group_based_target(path: PathLike, index: int) -> StorageTarget:
    """One file for the whole run; iterations are groups inside it."""

    if has_iteration_placeholder(path):
        raise ConfigurationError(f"group based series path {str(path)!r} must not contain %T")
    return StorageTarget(path=Path(path), base_path=iteration_base_path(index), encoding=GROUP_BASED)


class IterationNaming:
    """Resolve the storage target of an iteration for one series file name."""

    encoding = ""
    keeps_target_open = False

    def __init__(self, name: PathLike) -> None:
        self.name = str(name)

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix

    def resolve(self, index: int) -> StorageTarget:  # pragma: no cover - interface
        raise NotImplementedError


class FileBasedNaming(IterationNaming):
    encoding = FILE_BASED
    keeps_target_open = False

    def resolve(self, index: int) -> StorageTarget:
        return file_based_target(self.name, index)


class GroupBasedNaming(IterationNaming):
    encoding = GROUP_BASED
    keeps_target_open = True

    def resolve(self, index: int) -> StorageTarget:
        return group_based_target(self.name, index)


def select_naming(name: PathLike) -> IterationNaming:
    """Pick the file based layout when ``name`` carries an iteration placeholder."""

    if has_iteration_placeholder(name):
        return FileBasedNaming(name)
    return GroupBasedNaming(name)


__all__ = [
    "BASE_PATH",
    "FILE_BASED",
    "GROUP_BASED",
    "StorageTarget",
    "IterationNaming",
    "FileBasedNaming",
    "GroupBasedNaming",
    "has_iteration_placeholder",
    "expand_iteration_placeholder",
    "file_based_target",
    "group_based_target",
    "select_naming",
]
