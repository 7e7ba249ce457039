"""Flush scheduler turning buffered node state into backend tasks.

A flush walks the dirty part of a subtree in pre-order.  For every dirty
node it creates the backend container if needed (datasets are declared right
after their container), writes the pending attributes and then the queued
chunks in the order they were stored.  Each task is dropped from the node's
buffer as soon as it succeeds, so a failed flush can simply be repeated: only
the outstanding tasks are sent again.

A failing task aborts the remaining tasks of its node, leaves that node (and
its ancestors) dirty, and the walk continues with independent siblings.  All
failures are reported together at the end as :class:`BackendTaskError`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from .backends.base import BackendEngine
from .errors import BackendError, BackendTaskError, DatasetError, TaskFailure
from .hierarchy import RecordComponent, Writable
from .naming import StorageTarget

logger = logging.getLogger(__name__)


@dataclass
class FlushStats:
    """Number of backend tasks dispatched by one flush."""

    containers: int = 0
    datasets: int = 0
    attributes: int = 0
    chunks: int = 0
    failures: List[TaskFailure] = field(default_factory=list)

    @property
    def tasks(self) -> int:
        return self.containers + self.datasets + self.attributes + self.chunks


class FlushScheduler:
    """Dispatch the buffered work of a node subtree to a backend engine."""

    def __init__(self, backend: BackendEngine) -> None:
        self.backend = backend

    def flush(self, root: Writable, target: StorageTarget) -> FlushStats:
        """Flush ``root`` and its dirty descendants into ``target``.

        Ancestors of ``root`` are created first (and their own pending
        attributes written) so that parents always exist before children.
        Flushing a clean subtree performs no backend call at all.
        """

        stats = FlushStats()
        if not root.is_dirty_recursive():
            return stats

        chain = root.ancestors()
        ready = True
        for node in chain:
            if not self._flush_node(node, target, stats):
                ready = False
                break
        if ready:
            self._visit(root, target, stats)
        for node in reversed(chain):
            node.settle_dirty()

        logger.debug(
            "flush %s -> %s: %d containers, %d datasets, %d attributes, %d chunks",
            root.path,
            target.path,
            stats.containers,
            stats.datasets,
            stats.attributes,
            stats.chunks,
        )
        if stats.failures:
            for failure in stats.failures:
                logger.warning("Backend task failed: %s", failure)
            raise BackendTaskError(stats.failures)
        return stats

    def _visit(self, node: Writable, target: StorageTarget, stats: FlushStats) -> None:
        if not node.is_dirty_recursive():
            return
        if self._flush_node(node, target, stats):
            for child in node.children():
                self._visit(child, target, stats)
        node.settle_dirty()

    def _flush_node(self, node: Writable, target: StorageTarget, stats: FlushStats) -> bool:
        """Run the node's own tasks; return whether its children may be flushed."""

        try:
            return self._run_node_tasks(node, target, stats)
        finally:
            node.invalidate_dirty_cache()

    def _run_node_tasks(self, node: Writable, target: StorageTarget, stats: FlushStats) -> bool:
        path = node.path
        is_component = isinstance(node, RecordComponent)
        if is_component and node.dataset is None and not node.constant and node.has_pending_work():
            stats.failures.append(
                TaskFailure(path, "declare_dataset", DatasetError("no dataset declared"))
            )
            return False

        if node.has_container and node.handle is None:
            try:
                node.handle = self.backend.create_container(target, path)
            except BackendError as exc:
                stats.failures.append(TaskFailure(path, "create_container", exc))
                return False
            stats.containers += 1

        if is_component and node.dataset_pending:
            dataset = node.dataset
            try:
                self.backend.declare_dataset(node.handle, dataset.dtype, dataset.extent)
            except BackendError as exc:
                stats.failures.append(TaskFailure(path, "declare_dataset", exc))
                return True
            node.mark_dataset_flushed()
            stats.datasets += 1

        if node.has_container:
            for name in list(node.pending_attributes):
                value = node.pending_attributes[name]
                try:
                    self.backend.write_attribute(node.handle, name, value)
                except BackendError as exc:
                    stats.failures.append(TaskFailure(path, f"write_attribute[{name}]", exc))
                    return True
                del node.pending_attributes[name]
                stats.attributes += 1
            if is_component and node.constant and "shape" not in node.pending_attributes:
                node.mark_dataset_flushed()

        if is_component:
            queue = node.pending_chunks
            while queue:
                chunk = queue[0]
                try:
                    self.backend.write_chunk(node.handle, chunk.data, chunk.offset, chunk.extent)
                except BackendError as exc:
                    stats.failures.append(TaskFailure(path, f"write_chunk{chunk.offset}", exc))
                    return True
                queue.popleft()
                stats.chunks += 1
        return True


__all__ = ["FlushScheduler", "FlushStats"]
