"""Communicators.

This module contains the communication context used by the grid. The
`Communicator` interface exposes the handful of operations the grid
needs: a barrier, non-blocking buffer sends and receives matched by
(source, tag), pickled object messages received from any source, a
reduction to rank 0 and an all-gather.

Two transports implement it. `MPICommunicator` wraps an mpi4py
communicator. `InProcessWorld` runs several ranks as threads of one
process and delivers messages through in-memory mailboxes, which lets
the multi-rank protocols be tested without an MPI launcher.
"""

import pickle
import threading
import time

import numpy as np

from cubedgrid.exceptions import ProtocolError

ANY_SOURCE = -1
ANY_TAG = -1

# Smallest upper bound on tags guaranteed by the MPI standard.
MPI_MIN_TAG_UB = 32767


class Communicator:
    """Interface of a communication context.

    Attributes
    ----------
    rank : int
        Rank of this process.
    size : int
        Number of ranks.
    max_tag : int
        Largest valid message tag.
    """

    rank = 0
    size = 1
    max_tag = MPI_MIN_TAG_UB

    def barrier(self):
        """Block until every rank has reached the barrier."""
        raise NotImplementedError

    def Isend(self, buffer, dest, tag):
        """Start a non-blocking send of a float64 buffer."""
        raise NotImplementedError

    def Irecv(self, buffer, source, tag):
        """Start a non-blocking receive into a float64 buffer."""
        raise NotImplementedError

    def waitany(self, requests):
        """Wait for any receive request to complete.

        Parameters
        ----------
        requests : list
            Pending receive requests.

        Returns
        -------
        index : int
            Position of the completed request in `requests`.
        count : int
            Number of elements received.
        """
        raise NotImplementedError

    def waitall(self, requests):
        """Wait for every request to complete."""
        for request in requests:
            request.wait()

    def isend(self, obj, dest, tag):
        """Start a non-blocking send of a picklable object."""
        raise NotImplementedError

    def recv_any(self):
        """Receive the next object message from any source with any tag.

        Returns
        -------
        obj : object
            The received object.
        source : int
            Rank that sent the message.
        tag : int
            Tag of the message.
        """
        raise NotImplementedError

    def reduce(self, array, op="sum"):
        """Reduce an array element-wise to rank 0.

        Parameters
        ----------
        array : ndarray
            Local contribution.
        op : {'sum', 'max'}, optional
            Reduction operation.

        Returns
        -------
        ndarray or None
            The reduced array on rank 0, None elsewhere.
        """
        raise NotImplementedError

    def allgather(self, obj):
        """Gather one picklable object from every rank on every rank."""
        raise NotImplementedError


class MPIRequest:
    """Wrapper around an mpi4py request."""

    def __init__(self, request):
        self.request = request

    def wait(self):
        self.request.Wait()


class MPICommunicator(Communicator):
    """Communicator backed by mpi4py.

    Parameters
    ----------
    comm : mpi4py.MPI.Comm, optional
        Communicator to wrap. Defaults to ``MPI.COMM_WORLD``.
    """

    def __init__(self, comm=None):
        from mpi4py import MPI

        self._MPI = MPI
        self.comm = MPI.COMM_WORLD if comm is None else comm
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()

        tag_ub = self.comm.Get_attr(MPI.TAG_UB)
        self.max_tag = MPI_MIN_TAG_UB if tag_ub is None else int(tag_ub)

        self._ops = {"sum": MPI.SUM, "max": MPI.MAX}

    def barrier(self):
        self.comm.Barrier()

    def Isend(self, buffer, dest, tag):
        return MPIRequest(self.comm.Isend([buffer, self._MPI.DOUBLE], dest=dest, tag=tag))

    def Irecv(self, buffer, source, tag):
        return MPIRequest(self.comm.Irecv([buffer, self._MPI.DOUBLE], source=source, tag=tag))

    def waitany(self, requests):
        status = self._MPI.Status()
        index = self._MPI.Request.Waitany([r.request for r in requests], status)
        return index, status.Get_count(self._MPI.DOUBLE)

    def waitall(self, requests):
        self._MPI.Request.Waitall([r.request for r in requests])

    def isend(self, obj, dest, tag):
        return MPIRequest(self.comm.isend(obj, dest=dest, tag=tag))

    def recv_any(self):
        status = self._MPI.Status()
        obj = self.comm.recv(source=self._MPI.ANY_SOURCE, tag=self._MPI.ANY_TAG, status=status)
        return obj, status.Get_source(), status.Get_tag()

    def reduce(self, array, op="sum"):
        sendbuf = np.ascontiguousarray(array, dtype=np.float64)
        recvbuf = np.empty_like(sendbuf) if self.rank == 0 else None
        self.comm.Reduce(sendbuf, recvbuf, op=self._ops[op], root=0)
        return recvbuf

    def allgather(self, obj):
        return self.comm.allgather(obj)


class WorldAborted(RuntimeError):
    """Raised in a rank thread when its in-process world is aborted."""


class _Message:
    __slots__ = ("source", "tag", "payload")

    def __init__(self, source, tag, payload):
        self.source = source
        self.tag = tag
        self.payload = payload


class _CompletedRequest:
    def wait(self):
        pass


class _InProcessRecvRequest:
    def __init__(self, comm, buffer, source, tag):
        self.comm = comm
        self.buffer = buffer
        self.source = source
        self.tag = tag
        self.count = None

    def try_complete(self):
        # Must be called with the world condition held.
        if self.count is not None:
            return True

        message = self.comm.world._match(self.comm.rank, self.source, self.tag)
        if message is None:
            return False

        payload = message.payload
        if payload.size > self.buffer.size:
            raise ProtocolError(
                "Message of {} elements truncated by receive buffer of {} elements "
                "(source {}, tag {})".format(
                    payload.size, self.buffer.size, message.source, message.tag
                )
            )
        self.buffer[: payload.size] = payload
        self.count = payload.size
        return True

    def wait(self):
        world = self.comm.world
        with world._condition:
            while not self.try_complete():
                world._wait()
        return self.count


class InProcessCommunicator(Communicator):
    """One rank of an `InProcessWorld`."""

    def __init__(self, world, rank):
        self.world = world
        self.rank = rank
        self.size = world.size
        self.max_tag = world.max_tag
        self._collective_round = 0

    def _check_tag(self, tag):
        if not 0 <= tag <= self.max_tag:
            raise ProtocolError("Tag {} outside [0, {}]".format(tag, self.max_tag))

    def _check_rank(self, rank):
        if not 0 <= rank < self.size:
            raise ProtocolError("Rank {} outside [0, {})".format(rank, self.size))

    def barrier(self):
        try:
            self.world._barrier.wait()
        except threading.BrokenBarrierError:
            raise WorldAborted("In-process world aborted during barrier")

    def Isend(self, buffer, dest, tag):
        self._check_rank(dest)
        self._check_tag(tag)
        payload = np.array(buffer, dtype=np.float64, copy=True).ravel()
        self.world._deliver(dest, _Message(self.rank, tag, payload))
        return _CompletedRequest()

    def Irecv(self, buffer, source, tag):
        self._check_rank(source)
        self._check_tag(tag)
        return _InProcessRecvRequest(self, buffer, source, tag)

    def waitany(self, requests):
        world = self.world
        with world._condition:
            while True:
                for index, request in enumerate(requests):
                    if request.try_complete():
                        return index, request.count
                world._wait()

    def isend(self, obj, dest, tag):
        self._check_rank(dest)
        self._check_tag(tag)
        # Pickling gives the receiver its own copy, as with MPI.
        payload = pickle.loads(pickle.dumps(obj))
        self.world._deliver(dest, _Message(self.rank, tag, payload))
        return _CompletedRequest()

    def recv_any(self):
        world = self.world
        with world._condition:
            while True:
                message = world._match(self.rank, ANY_SOURCE, ANY_TAG)
                if message is not None:
                    return message.payload, message.source, message.tag
                world._wait()

    def _next_round(self, kind):
        self._collective_round += 1
        return (kind, self._collective_round)

    def reduce(self, array, op="sum"):
        if op not in ("sum", "max"):
            raise ValueError("Unsupported reduction '{}'".format(op))

        key = self._next_round("reduce")
        values = self.world._collect(key, self.rank, np.array(array, dtype=np.float64))
        if values is None:
            return None

        stacked = np.stack(values)
        return stacked.sum(axis=0) if op == "sum" else stacked.max(axis=0)

    def allgather(self, obj):
        key = self._next_round("allgather")
        return self.world._collect(key, self.rank, pickle.loads(pickle.dumps(obj)), everyone=True)


class InProcessWorld:
    """A set of ranks running as threads of the current process.

    Parameters
    ----------
    size : int
        Number of ranks.
    max_tag : int, optional
        Largest valid tag, defaults to the MPI minimum upper bound.

    Examples
    --------
    >>> world = InProcessWorld(4)
    >>> world.run(lambda comm: comm.rank)
    [0, 1, 2, 3]
    """

    def __init__(self, size, max_tag=MPI_MIN_TAG_UB):
        if size < 1:
            raise ValueError("size must be at least 1, got {}".format(size))

        self.size = size
        self.max_tag = max_tag
        self._condition = threading.Condition()
        self._mailboxes = [[] for _ in range(size)]
        self._barrier = threading.Barrier(size)
        self._collectives = {}
        self._aborted = False
        self.communicators = [InProcessCommunicator(self, rank) for rank in range(size)]

    def _wait(self):
        if self._aborted:
            raise WorldAborted("In-process world aborted")
        self._condition.wait()
        if self._aborted:
            raise WorldAborted("In-process world aborted")

    def _deliver(self, dest, message):
        with self._condition:
            self._mailboxes[dest].append(message)
            self._condition.notify_all()

    def _match(self, rank, source, tag):
        # Must be called with the condition held.
        mailbox = self._mailboxes[rank]
        for position, message in enumerate(mailbox):
            if (source == ANY_SOURCE or message.source == source) and (
                tag == ANY_TAG or message.tag == tag
            ):
                return mailbox.pop(position)
        return None

    def _collect(self, key, rank, value, everyone=False):
        with self._condition:
            entry = self._collectives.setdefault(key, {"values": {}, "reads": 0})
            entry["values"][rank] = value
            self._condition.notify_all()

            if not everyone and rank != 0:
                return None

            while len(entry["values"]) < self.size:
                self._wait()

            values = [entry["values"][r] for r in range(self.size)]
            entry["reads"] += 1
            if entry["reads"] == (self.size if everyone else 1):
                del self._collectives[key]
            return values

    def abort(self):
        """Release every rank blocked in this world with `WorldAborted`."""
        with self._condition:
            self._aborted = True
            self._condition.notify_all()
        self._barrier.abort()

    def run(self, func, *args, timeout=None, **kwargs):
        """Run `func(comm, *args, **kwargs)` on every rank.

        Parameters
        ----------
        func : callable
            Function executed by every rank with its communicator as
            first argument.
        timeout : float, optional
            Seconds to wait for all ranks. If exceeded, the world is
            aborted and TimeoutError is raised.

        Returns
        -------
        list
            Return value of `func` on every rank, in rank order.

        Raises
        ------
        TimeoutError
            If the ranks did not finish within `timeout`.
        Exception
            The first exception raised by a rank, other ranks having
            been released by aborting the world.
        """
        results = [None] * self.size
        errors = [None] * self.size

        def target(rank):
            try:
                results[rank] = func(self.communicators[rank], *args, **kwargs)
            except Exception as e:
                errors[rank] = e
                self.abort()

        threads = [
            threading.Thread(target=target, args=(rank,), name="rank-{}".format(rank), daemon=True)
            for rank in range(self.size)
        ]
        for thread in threads:
            thread.start()

        if timeout is not None:
            deadline = time.monotonic() + timeout
            for thread in threads:
                thread.join(max(0.0, deadline - time.monotonic()))
            if any(thread.is_alive() for thread in threads):
                self.abort()
                for thread in threads:
                    thread.join(1.0)
                raise TimeoutError("In-process world did not finish within {} s".format(timeout))
        else:
            for thread in threads:
                thread.join()

        # Report the root cause rather than the aborts it triggered.
        for error in errors:
            if error is not None and not isinstance(error, WorldAborted):
                raise error
        for error in errors:
            if error is not None:
                raise error

        return results
