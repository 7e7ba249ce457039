"""Block decomposition of a global extent across ranks and sub-blocks.

Every rank owns one contiguous range along the first (partitioned) dimension
of the global mesh.  That range is cut into a handful of blocks, and for two
dimensional meshes every block is split once more along the second dimension
into a lower and an upper half.  Particle data is derived from the mesh
decomposition: each mesh element carries ``ratio`` particles, and particle
ranges are laid out contiguously by rank, then by half, then by block.

The functions here are pure; :class:`BlockPlanner` merely binds the per-run
parameters (bulk size, rank, world size, ...) so that a driver can ask for the
plan of one step at a time.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

# Imbalance is injected on every third step, pairwise on (10k, 10k+1) ranks.
IMBALANCE_PERIOD = 3
IMBALANCE_PHASE = 1
IMBALANCE_GROUP = 10

SECOND_DIM_SIZE = 128


@dataclass(frozen=True)
class Block:
    """Sub-range of a dataset as one ``(offset, extent)`` pair per dimension."""

    offset: Tuple[int, ...]
    extent: Tuple[int, ...]

    @property
    def ndim(self) -> int:
        return len(self.extent)

    @property
    def size(self) -> int:
        return math.prod(self.extent)


def compute_rank_partition(
    global_first_dim: int,
    world_size: int,
    rank: int,
    step: int,
    bulk: int,
    imbalance: bool,
) -> Tuple[int, int]:
    """Return ``(offset, count)`` of ``rank`` along the partitioned dimension.

    Without imbalance every rank owns ``bulk`` elements starting at
    ``bulk * rank``.  With imbalance enabled, on steps where
    ``step % 3 == 1`` and with at least two ranks, rank ``10k`` hands its
    elements over to rank ``10k + 1``, which then covers both ranges.  A rank
    ``10k`` without a partner (the last rank of the world) keeps its range.
    This deliberately departs from zeroing every ``rank % 10 == 0`` rank, which
    would drop that rank's elements and change the total written per step.
    """

    if world_size < 1:
        raise ValueError(f"world_size must be positive, got {world_size}")
    if not 0 <= rank < world_size:
        raise ValueError(f"rank {rank} outside of world of size {world_size}")
    if bulk < 0:
        raise ValueError(f"bulk must be non-negative, got {bulk}")

    offset = bulk * rank
    count = bulk
    if offset + count > global_first_dim:
        raise ValueError(
            f"rank range [{offset}, {offset + count}) exceeds global extent {global_first_dim}"
        )

    if not imbalance or world_size < 2 or step % IMBALANCE_PERIOD != IMBALANCE_PHASE:
        return offset, count

    if rank % IMBALANCE_GROUP == 0 and rank + 1 < world_size:
        count = 0
    if rank % IMBALANCE_GROUP == 1:
        offset -= bulk
        count += bulk
    return offset, count


def subdivide(rank_offset: int, rank_count: int, requested_blocks: int) -> List[Block]:
    """Cut a rank range into at most ``requested_blocks`` one dimensional blocks.

    All blocks but the last have size ``rank_count // n``; the last one takes
    the remainder.  When a block would hold one element or less the range is
    kept as a single block.
    """

    if requested_blocks < 1:
        raise ValueError(f"requested_blocks must be >= 1, got {requested_blocks}")
    if rank_count < 0:
        raise ValueError(f"rank_count must be non-negative, got {rank_count}")
    if rank_count == 0:
        return []

    n_blocks = requested_blocks
    if rank_count // n_blocks <= 1:
        n_blocks = 1

    block_size = rank_count // n_blocks
    blocks: List[Block] = []
    cursor = rank_offset
    for index in range(n_blocks):
        count = block_size
        if index == n_blocks - 1:
            count = rank_count - block_size * (n_blocks - 1)
        blocks.append(Block((cursor,), (count,)))
        cursor += count
    return blocks


def expand_to_second_dimension(blocks: Sequence[Block], second_dim_size: int) -> List[Block]:
    """Split every block into a lower and an upper half along dimension two.

    The result lists all lower halves first (second-dimension offset 0,
    extent ``second_dim_size // 2``) followed by all upper halves (offset and
    extent chosen so that both halves cover the full second dimension).
    """

    if second_dim_size < 1:
        raise ValueError(f"second_dim_size must be positive, got {second_dim_size}")
    mid = second_dim_size // 2
    rest = second_dim_size - mid
    lower = [Block((blk.offset[0], 0), (blk.extent[0], mid)) for blk in blocks]
    upper = [Block((blk.offset[0], mid), (blk.extent[0], rest)) for blk in blocks]
    return lower + upper


def map_block_to_particle_range(
    block_index: int,
    rank_blocks: Sequence[Block],
    global_extent: Sequence[int],
    ratio: int,
) -> Tuple[int, int]:
    """Return the ``(offset, count)`` particle range belonging to a mesh block.

    Parameters
    ----------
    block_index:
        Index into the mesh blocks of this rank (``2 * len(rank_blocks)``
        entries for two dimensional meshes).
    rank_blocks:
        The one dimensional blocks produced by :func:`subdivide` for this rank.
    global_extent:
        Global mesh extent, one or two entries.
    ratio:
        Particles per mesh element.
    """

    n_blocks = len(rank_blocks)
    ndim = len(global_extent)
    if ndim not in (1, 2):
        raise ValueError(f"only 1D and 2D meshes are supported, got {ndim}D")
    n_mesh_blocks = n_blocks * ndim
    if not 0 <= block_index < n_mesh_blocks:
        raise IndexError(f"block index {block_index} out of range for {n_mesh_blocks} blocks")

    if ndim == 1:
        block = rank_blocks[block_index]
        return block.offset[0] * ratio, block.extent[0] * ratio

    second = int(global_extent[1])
    mid = second // 2
    rest = second - mid
    rank_offset = rank_blocks[0].offset[0]
    rank_count = sum(blk.extent[0] for blk in rank_blocks)
    # every element preceding this rank along dimension one contributes a full row
    rank_base = rank_offset * second * ratio

    if block_index < n_blocks:
        block = rank_blocks[block_index]
        offset = rank_base + (block.offset[0] - rank_offset) * mid * ratio
        return offset, block.extent[0] * mid * ratio

    block = rank_blocks[block_index - n_blocks]
    lower_half = rank_count * mid * ratio
    offset = rank_base + lower_half + (block.offset[0] - rank_offset) * rest * ratio
    return offset, block.extent[0] * rest * ratio


def total_num_particles(global_extent: Sequence[int], ratio: int) -> int:
    """Total particle count: ``ratio`` particles per global mesh element."""

    return int(ratio) * math.prod(int(n) for n in global_extent)


def effective_segments(segments: int, backend_suffix: str, hdf5_independent: bool = True) -> int:
    """Return the number of blocks per rank usable with the given backend.

    Collective HDF5 writes require every rank to issue the same number of
    write calls, so the decomposition collapses to one block per rank there.
    """

    if backend_suffix == ".h5" and not hdf5_independent:
        return 1
    return max(int(segments), 1)


@dataclass
class StepPlan:
    """Decomposition of one step for one rank."""

    step: int
    global_extent: Tuple[int, ...]
    rank_offset: int
    rank_count: int
    ratio: int
    rank_blocks: List[Block] = field(default_factory=list)
    mesh_blocks: List[Block] = field(default_factory=list)

    @property
    def num_blocks(self) -> int:
        return len(self.mesh_blocks)

    @property
    def total_particles(self) -> int:
        return total_num_particles(self.global_extent, self.ratio)

    def particle_range(self, block_index: int) -> Tuple[int, int]:
        return map_block_to_particle_range(
            block_index, self.rank_blocks, self.global_extent, self.ratio
        )

    def particle_ranges(self) -> List[Tuple[int, int]]:
        return [self.particle_range(index) for index in range(self.num_blocks)]


@dataclass
class BlockPlanner:
    """Per-run decomposition parameters for one rank."""

    bulk: int
    world_size: int = 1
    rank: int = 0
    segments: int = 1
    imbalance: bool = False
    ratio: int = 1
    second_dim_size: int = SECOND_DIM_SIZE

    def global_extent(self, n_dims: int) -> Tuple[int, ...]:
        if n_dims == 1:
            return (self.bulk * self.world_size,)
        if n_dims == 2:
            return (self.bulk * self.world_size, self.second_dim_size)
        raise ValueError(f"only 1D and 2D meshes are supported, got {n_dims}D")

    def plan(self, step: int, n_dims: int = 1) -> StepPlan:
        extent = self.global_extent(n_dims)
        rank_offset, rank_count = compute_rank_partition(
            extent[0], self.world_size, self.rank, step, self.bulk, self.imbalance
        )
        rank_blocks = subdivide(rank_offset, rank_count, self.segments)
        if n_dims == 1:
            mesh_blocks = list(rank_blocks)
        else:
            mesh_blocks = expand_to_second_dimension(rank_blocks, extent[1])
        return StepPlan(
            step=step,
            global_extent=extent,
            rank_offset=rank_offset,
            rank_count=rank_count,
            ratio=self.ratio,
            rank_blocks=rank_blocks,
            mesh_blocks=mesh_blocks,
        )


__all__ = [
    "Block",
    "BlockPlanner",
    "StepPlan",
    "compute_rank_partition",
    "subdivide",
    "expand_to_second_dimension",
    "map_block_to_particle_range",
    "total_num_particles",
    "effective_segments",
    "SECOND_DIM_SIZE",
]
