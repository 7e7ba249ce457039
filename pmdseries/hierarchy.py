"""Record hierarchy with deferred attribute and chunk writes.

Nodes own their children and keep only a weak reference to their parent, so
the tree has no strong reference cycles.  Every mutation (attribute set,
dataset declaration, chunk store) is buffered on the node that receives it
and marks the node and all of its ancestors dirty; nothing reaches a backend
until :class:`pmdseries.flush.FlushScheduler` walks the dirty subtree.
"""
from __future__ import annotations

import math
import weakref
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from .errors import DatasetError, ShapeMismatchError, ShapeRedefinitionError

UNIT_DIMENSION_KEYS = ("L", "M", "T", "I", "theta", "N", "J")


def join_path(parent: str, name: str) -> str:
    if parent.endswith("/"):
        return parent + name
    return f"{parent}/{name}"


def unit_dimension_vector(powers: Mapping[str, float] | None = None) -> List[float]:
    """Return the seven SI base-unit exponents (L, M, T, I, theta, N, J)."""

    vector = [0.0] * len(UNIT_DIMENSION_KEYS)
    for key, value in (powers or {}).items():
        if key not in UNIT_DIMENSION_KEYS:
            raise ValueError(f"unknown unit dimension {key!r}; expected one of {UNIT_DIMENSION_KEYS}")
        vector[UNIT_DIMENSION_KEYS.index(key)] = float(value)
    return vector


def determine_datatype(obj: Any) -> np.dtype:
    """Return the numpy dtype describing a Python type, dtype name or value."""

    if isinstance(obj, np.ndarray):
        return obj.dtype
    if isinstance(obj, (type, np.dtype, str)):
        return np.dtype(obj)
    return np.asarray(obj).dtype


@dataclass(frozen=True)
class Dataset:
    """Datatype and global extent of a record component."""

    dtype: np.dtype
    extent: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "dtype", np.dtype(self.dtype))
        extent = tuple(int(n) for n in self.extent)
        if not extent:
            raise DatasetError("dataset extent must have at least one dimension")
        if any(n < 1 for n in extent):
            raise DatasetError(f"dataset extent must be positive, got {extent}")
        object.__setattr__(self, "extent", extent)

    @property
    def ndim(self) -> int:
        return len(self.extent)

    def fits(self, offset: Tuple[int, ...], extent: Tuple[int, ...]) -> bool:
        if len(offset) != self.ndim or len(extent) != self.ndim:
            return False
        for start, count, size in zip(offset, extent, self.extent):
            if start < 0 or count < 0 or start + count > size:
                return False
        return True


@dataclass
class ChunkRequest:
    """One buffered ``store_chunk`` call."""

    data: np.ndarray
    offset: Tuple[int, ...]
    extent: Tuple[int, ...]


class Writable:
    """A node of the record hierarchy that can be dirtied and flushed."""

    has_container = True

    def __init__(self, name: str, parent: Optional["Writable"] = None) -> None:
        self.name = name
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._children: Dict[str, Writable] = {}
        self.attributes: Dict[str, Any] = {}
        self.pending_attributes: Dict[str, Any] = {}
        self.dirty = False
        self.handle: Any = None
        self._dirty_cache: Optional[bool] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.path!r}>"

    @property
    def parent(self) -> Optional["Writable"]:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @property
    def path(self) -> str:
        parent = self.parent
        if parent is None:
            return "/"
        return join_path(parent.path, self.name)

    def ancestors(self) -> List["Writable"]:
        """Return the ancestors of this node, outermost first."""

        chain: List[Writable] = []
        node = self.parent
        while node is not None:
            chain.append(node)
            node = node.parent
        chain.reverse()
        return chain

    def root(self) -> "Writable":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def children(self) -> List["Writable"]:
        return list(self._children.values())

    def _adopt(self, child: "Writable") -> "Writable":
        self._children[child.name] = child
        if child.is_dirty_recursive():
            self.mark_dirty()
        return child

    # -- attributes -------------------------------------------------------

    def set_attribute(self, name: str, value: Any) -> "Writable":
        """Buffer an attribute write; raises if the enclosing iteration is closed."""

        self.check_mutable()
        self.begin_mutation()
        self._set_attribute(name, value)
        return self

    def _set_attribute(self, name: str, value: Any) -> None:
        self.attributes[name] = value
        self.pending_attributes[name] = value
        self.mark_dirty()

    def get_attribute(self, name: str) -> Any:
        return self.attributes[name]

    def contains_attribute(self, name: str) -> bool:
        return name in self.attributes

    # -- dirty tracking ---------------------------------------------------

    def mark_dirty(self) -> None:
        node: Optional[Writable] = self
        while node is not None:
            node.dirty = True
            node._dirty_cache = None
            node = node.parent

    def invalidate_dirty_cache(self) -> None:
        node: Optional[Writable] = self
        while node is not None:
            node._dirty_cache = None
            node = node.parent

    def has_pending_work(self) -> bool:
        return bool(self.pending_attributes)

    def is_dirty_recursive(self) -> bool:
        """True iff this node or any descendant holds unflushed changes."""

        if self._dirty_cache is None:
            dirty = self.has_pending_work()
            if not dirty:
                dirty = any(child.is_dirty_recursive() for child in self._children.values())
            self._dirty_cache = dirty
        return self._dirty_cache

    def settle_dirty(self) -> None:
        self.dirty = self.is_dirty_recursive()

    def detach(self) -> None:
        """Forget the backend handle and queue every attribute for rewriting."""

        self.handle = None
        self.pending_attributes = dict(self.attributes)
        if self.pending_attributes:
            self.mark_dirty()

    # -- mutation guard ---------------------------------------------------

    def _guard_mutation(self) -> None:
        """Hook for nodes that can refuse mutations of their subtree; must not change state."""

    def _resume_writes(self) -> None:
        """Hook run once a mutation of the subtree has passed every check."""

    def check_mutable(self) -> None:
        for node in self.ancestors():
            node._guard_mutation()
        self._guard_mutation()

    def begin_mutation(self) -> None:
        for node in self.ancestors():
            node._resume_writes()
        self._resume_writes()


class Container(Writable):
    """Mapping of lazily created child nodes."""

    def __init__(
        self,
        name: str,
        parent: Optional[Writable],
        factory: Callable[[str, Writable], Writable],
        key_type: Callable[[str], Any] = str,
    ) -> None:
        super().__init__(name, parent)
        self._factory = factory
        self._key_type = key_type
        self._entries: Dict[Any, Writable] = {}

    def __getitem__(self, key: Any) -> Any:
        key = self._key_type(key)
        child = self._entries.get(key)
        if child is None:
            self.check_mutable()
            self.begin_mutation()
            child = self._factory(str(key), self)
            self._entries[key] = child
            self._adopt(child)
        return child

    def __contains__(self, key: object) -> bool:
        try:
            return self._key_type(key) in self._entries
        except (TypeError, ValueError):
            return False

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[Any]:
        return list(self._entries)

    def values(self) -> List[Any]:
        return list(self._entries.values())

    def items(self) -> List[Tuple[Any, Any]]:
        return list(self._entries.items())


class RecordComponent(Writable):
    """Leaf node holding one dataset and its queue of pending chunks."""

    SCALAR = "\vScalar"

    def __init__(self, name: str, parent: Optional[Writable] = None) -> None:
        super().__init__(name, parent)
        self.dataset: Optional[Dataset] = None
        self.flushed_dataset: Optional[Dataset] = None
        self.dataset_pending = False
        self.constant = False
        self.pending_chunks: Deque[ChunkRequest] = deque()
        self._set_attribute("unitSI", 1.0)

    @property
    def path(self) -> str:
        parent = self.parent
        if self.name == self.SCALAR and parent is not None:
            return parent.path
        return super().path

    def has_pending_work(self) -> bool:
        return bool(self.pending_attributes) or self.dataset_pending or bool(self.pending_chunks)

    def declare_shape(self, dtype: Any, extent: Tuple[int, ...]) -> "RecordComponent":
        """Declare datatype and global extent of this component's dataset.

        Declaring the same dataset again is a no-op.  Before the first flush
        the declaration may still change; afterwards a different declaration
        raises :class:`ShapeRedefinitionError`.
        """

        self.check_mutable()
        dataset = Dataset(determine_datatype(dtype), tuple(extent))
        if self.flushed_dataset is not None:
            if dataset != self.flushed_dataset:
                raise ShapeRedefinitionError(
                    f"{self.path}: dataset already written as {self.flushed_dataset.extent} "
                    f"({self.flushed_dataset.dtype}), cannot redeclare as {dataset.extent} ({dataset.dtype})"
                )
            self.dataset = dataset
            return self
        if dataset == self.dataset:
            return self
        for chunk in self.pending_chunks:
            if not dataset.fits(chunk.offset, chunk.extent):
                raise ShapeMismatchError(
                    f"{self.path}: queued chunk at {chunk.offset} with extent {chunk.extent} "
                    f"does not fit {dataset.extent}"
                )
        self.begin_mutation()
        self.dataset = dataset
        if self.constant:
            self._set_attribute("shape", list(dataset.extent))
        else:
            self.dataset_pending = True
            self.mark_dirty()
        return self

    def reset_dataset(self, dataset: Dataset) -> "RecordComponent":
        return self.declare_shape(dataset.dtype, dataset.extent)

    def mark_dataset_flushed(self) -> None:
        """Record the dataset as written; for constants once the ``shape`` attribute is out."""

        self.flushed_dataset = self.dataset
        self.dataset_pending = False
        self.invalidate_dirty_cache()

    def store_chunk(
        self,
        data: Any,
        offset: Tuple[int, ...],
        extent: Tuple[int, ...],
    ) -> "RecordComponent":
        """Queue ``data`` for the region ``offset``/``extent`` of the dataset.

        The array is kept by reference until the next flush and must not be
        modified before then.  Chunks with a zero extent are skipped.
        """

        self.check_mutable()
        if self.constant:
            raise DatasetError(f"{self.path}: constant record components do not store chunks")
        if self.dataset is None:
            raise DatasetError(f"{self.path}: declare_shape() must be called before store_chunk()")
        offset = tuple(int(n) for n in offset)
        extent = tuple(int(n) for n in extent)
        if not self.dataset.fits(offset, extent):
            raise ShapeMismatchError(
                f"{self.path}: chunk at {offset} with extent {extent} does not fit {self.dataset.extent}"
            )
        size = math.prod(extent)
        if size == 0:
            return self
        array = np.asarray(data)
        if array.size != size:
            raise ShapeMismatchError(
                f"{self.path}: chunk holds {array.size} elements but extent {extent} needs {size}"
            )
        if array.dtype != self.dataset.dtype:
            array = array.astype(self.dataset.dtype)
        self.begin_mutation()
        self.pending_chunks.append(ChunkRequest(array.reshape(extent), offset, extent))
        self.mark_dirty()
        return self

    def make_constant(self, value: Any) -> "RecordComponent":
        """Store a single value for the whole declared extent instead of chunks."""

        self.check_mutable()
        if self.dataset is None:
            raise DatasetError(f"{self.path}: declare_shape() must be called before make_constant()")
        if self.pending_chunks or (self.flushed_dataset is not None and not self.constant):
            raise DatasetError(f"{self.path}: component already holds array data")
        self.begin_mutation()
        self.constant = True
        self.dataset_pending = False
        self._set_attribute("value", value)
        self._set_attribute("shape", list(self.dataset.extent))
        return self


class MeshRecordComponent(RecordComponent):
    def __init__(self, name: str, parent: Optional[Writable] = None) -> None:
        super().__init__(name, parent)
        self._set_attribute("position", [0.0])

    def set_position(self, position: List[float]) -> "MeshRecordComponent":
        self.set_attribute("position", [float(x) for x in position])
        return self


class Record(Container):
    """Named group of record components, or a single scalar component."""

    component_type = RecordComponent

    def __init__(self, name: str, parent: Optional[Writable] = None) -> None:
        super().__init__(name, parent, self.component_type)
        self._set_attribute("unitDimension", unit_dimension_vector())
        self._set_attribute("timeOffset", 0.0)

    @property
    def scalar(self) -> bool:
        return RecordComponent.SCALAR in self._entries

    @property
    def has_container(self) -> bool:  # type: ignore[override]
        return not self.scalar

    def __getitem__(self, key: Any) -> Any:
        key = str(key)
        if key in self._entries:
            return self._entries[key]
        if key == RecordComponent.SCALAR:
            if self._entries:
                raise DatasetError(f"{self.path}: a scalar component cannot join named components")
            if self.handle is not None:
                raise DatasetError(f"{self.path}: record already written as a group")
        elif self.scalar:
            raise DatasetError(f"{self.path}: scalar record cannot hold component {key!r}")
        component = super().__getitem__(key)
        if key == RecordComponent.SCALAR:
            # the scalar component is the record's dataset; carry the record metadata over
            for name, value in self.attributes.items():
                component._set_attribute(name, value)
            self.attributes.clear()
            self.pending_attributes.clear()
            self.invalidate_dirty_cache()
        return component

    def set_attribute(self, name: str, value: Any) -> "Record":
        if self.scalar:
            self[RecordComponent.SCALAR].set_attribute(name, value)
            return self
        super().set_attribute(name, value)
        return self

    def get_attribute(self, name: str) -> Any:
        if self.scalar:
            return self[RecordComponent.SCALAR].get_attribute(name)
        return super().get_attribute(name)

    def set_unit_dimension(self, powers: Mapping[str, float]) -> "Record":
        return self.set_attribute("unitDimension", unit_dimension_vector(powers))

    def set_time_offset(self, value: float) -> "Record":
        return self.set_attribute("timeOffset", float(value))


class Mesh(Record):
    """Mesh record with the standard grid attributes."""

    component_type = MeshRecordComponent

    def __init__(self, name: str, parent: Optional[Writable] = None) -> None:
        super().__init__(name, parent)
        self._set_attribute("geometry", "cartesian")
        self._set_attribute("dataOrder", "C")
        self._set_attribute("axisLabels", ["x"])
        self._set_attribute("gridSpacing", [1.0])
        self._set_attribute("gridGlobalOffset", [0.0])
        self._set_attribute("gridUnitSI", 1.0)

    def set_geometry(self, geometry: str) -> "Mesh":
        return self.set_attribute("geometry", geometry)

    def set_data_order(self, order: str) -> "Mesh":
        if order not in ("C", "F"):
            raise ValueError(f"data order must be 'C' or 'F', got {order!r}")
        return self.set_attribute("dataOrder", order)

    def set_axis_labels(self, labels: List[str]) -> "Mesh":
        return self.set_attribute("axisLabels", list(labels))

    def set_grid_spacing(self, spacing: List[float]) -> "Mesh":
        return self.set_attribute("gridSpacing", [float(x) for x in spacing])

    def set_grid_global_offset(self, offset: List[float]) -> "Mesh":
        return self.set_attribute("gridGlobalOffset", [float(x) for x in offset])

    def set_grid_unit_si(self, value: float) -> "Mesh":
        return self.set_attribute("gridUnitSI", float(value))


class ParticleSpecies(Container):
    """Collection of particle records indexed by particle id."""

    def __init__(self, name: str, parent: Optional[Writable] = None) -> None:
        super().__init__(name, parent, Record)


__all__ = [
    "UNIT_DIMENSION_KEYS",
    "ChunkRequest",
    "Container",
    "Dataset",
    "Mesh",
    "MeshRecordComponent",
    "ParticleSpecies",
    "Record",
    "RecordComponent",
    "Writable",
    "determine_datatype",
    "join_path",
    "unit_dimension_vector",
]
