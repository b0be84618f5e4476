import numpy as np
import pytest

from cubedgrid import InProcessWorld, ProtocolError


def test_run_returns_rank_results():
    assert InProcessWorld(3).run(lambda comm: comm.rank * 10) == [0, 10, 20]


def test_collectives():
    def rank_main(comm):
        gathered = comm.allgather(comm.rank)
        total = comm.reduce(np.array([comm.rank, 1.0]), "sum")
        largest = comm.reduce(np.array([comm.rank, -comm.rank]), "max")
        return gathered, total, largest

    results = InProcessWorld(4).run(rank_main, timeout=10)

    for rank, (gathered, total, largest) in enumerate(results):
        assert gathered == [0, 1, 2, 3]
        if rank == 0:
            np.testing.assert_array_equal(total, [6.0, 4.0])
            np.testing.assert_array_equal(largest, [3.0, 0.0])
        else:
            assert total is None and largest is None


def test_point_to_point_matches_source_and_tag():
    def rank_main(comm):
        if comm.rank == 0:
            comm.Isend(np.array([1.0, 2.0]), 1, tag=5)
            comm.Isend(np.array([3.0]), 1, tag=4)
            return None

        first, second = np.zeros(4), np.zeros(4)
        requests = [comm.Irecv(first, 0, 4), comm.Irecv(second, 0, 5)]
        completed = sorted(comm.waitany([requests[i]]) + (i,) for i in range(2))
        return completed, first[:1].tolist(), second[:2].tolist()

    _, (completed, first, second) = InProcessWorld(2).run(rank_main, timeout=10)

    assert completed == [(0, 1, 0), (0, 2, 1)]
    assert first == [3.0]
    assert second == [1.0, 2.0]


def test_object_messages_from_any_source():
    def rank_main(comm):
        if comm.rank != 0:
            comm.isend({"rank": comm.rank}, 0, tag=comm.rank + 100)
            return None
        received = sorted(
            (source, tag, obj["rank"]) for obj, source, tag in (comm.recv_any() for _ in range(2))
        )
        return received

    results = InProcessWorld(3).run(rank_main, timeout=10)

    assert results[0] == [(1, 101, 1), (2, 102, 2)]


def test_truncated_receive():
    comm = InProcessWorld(1).communicators[0]
    comm.Isend(np.zeros(5), 0, tag=1)
    request = comm.Irecv(np.zeros(2), 0, tag=1)

    with pytest.raises(ProtocolError, match="truncated"):
        comm.waitany([request])


def test_invalid_tag_and_rank():
    comm = InProcessWorld(2, max_tag=10).communicators[0]

    with pytest.raises(ProtocolError):
        comm.Isend(np.zeros(1), 1, tag=11)
    with pytest.raises(ProtocolError):
        comm.isend(None, 2, tag=0)


def test_rank_error_is_reported():
    def rank_main(comm):
        if comm.rank == 1:
            raise ValueError("rank 1 failed")
        comm.barrier()

    with pytest.raises(ValueError, match="rank 1 failed"):
        InProcessWorld(2).run(rank_main, timeout=10)
