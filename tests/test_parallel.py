"""Process group bookkeeping with a stand-in communicator."""

from __future__ import annotations

from pmdseries import benchmark
from pmdseries.config_utils import build_config
from pmdseries.parallel import ProcessGroup


class RecordingComm:
    def __init__(self, rank=0, size=1):
        self._rank = rank
        self._size = size
        self.barriers = 0

    def Get_rank(self):
        return self._rank

    def Get_size(self):
        return self._size

    def Barrier(self):
        self.barriers += 1

    def gather(self, value, root=0):
        return [value] if self._rank == root else None


def test_serial_group():
    group = ProcessGroup()
    assert group.is_root and not group.is_parallel
    group.barrier()
    assert group.gather("x") == ["x"]


def test_group_from_communicator():
    comm = RecordingComm(rank=2, size=4)
    group = ProcessGroup.from_comm(comm)
    assert (group.rank, group.size) == (2, 4)
    assert group.is_parallel and not group.is_root
    group.barrier()
    assert comm.barriers == 1
    assert group.gather("x") is None


def test_benchmark_waits_for_all_ranks(tmp_path):
    comm = RecordingComm()
    cfg = build_config(
        {
            "workload": {"bulk": 8, "segments": 2, "steps": 1, "dims": [1]},
            "output": {"outdir": str(tmp_path), "backends": [".mem"], "layouts": ["group"]},
        }
    )
    timings = benchmark.run_benchmark(cfg, ProcessGroup.from_comm(comm))
    assert comm.barriers == 1
    assert len(timings) == 2
