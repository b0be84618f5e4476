"""Connectivity module.

This module contains the ExteriorNeighbor and Connectivity classes that
describe how the halo of a grid patch is filled from its neighbours.

Each ExteriorNeighbor is one directed halo relation: a segment of a
patch edge, or a halo-by-halo block at a patch corner, that receives
data from one neighbouring patch. Data is packed by the sender directly
in the receiver's layout, so unpacking is a plain copy:

* edge relations use an ``(along, depth)`` layout, where depth 0 is the
  row adjacent to the shared edge and the sender reverses the along
  axis when the seam reverses it;
* corner relations use a ``(p, q)`` layout of offsets away from the
  corner along the receiver's alpha and beta axes, which the sender
  transposes when the seam swaps the axes.
"""

import numpy as np

from cubedgrid.cubed_sphere.topology import DIRECTION_VECTORS
from cubedgrid.exceptions import ConfigurationError, ProtocolError
from cubedgrid.primitives.data_types import Direction

N_DIRECTIONS = len(Direction)


def exchange_tag(receiver_patch, receiver_direction, ordinal, relations_per_direction):
    """Encode the tag of a halo message.

    Parameters
    ----------
    receiver_patch : int
        Index of the patch receiving the message.
    receiver_direction : Direction
        Direction of the relation on the receiving patch.
    ordinal : int
        Position of the relation among the relations of the receiving
        patch in `receiver_direction`.
    relations_per_direction : int
        Largest number of relations any patch holds in one direction.

    Returns
    -------
    int
        Non-negative message tag, below
        ``patch_count * 8 * relations_per_direction``.
    """
    if not 0 <= ordinal < relations_per_direction:
        raise ProtocolError(
            "Relation ordinal {} outside [0, {})".format(ordinal, relations_per_direction)
        )
    return (
        receiver_patch * N_DIRECTIONS + int(receiver_direction)
    ) * relations_per_direction + ordinal


def parse_exchange_tag(tag, relations_per_direction):
    """Decode a tag produced by `exchange_tag`.

    Returns
    -------
    receiver_patch : int
    receiver_direction : Direction
    ordinal : int
    """
    rest, ordinal = divmod(tag, relations_per_direction)
    receiver_patch, direction = divmod(rest, N_DIRECTIONS)
    return receiver_patch, Direction(direction), ordinal


class ExteriorNeighbor:
    """One halo relation of a grid patch.

    Attributes
    ----------
    direction : Direction
        Side or corner of the owning patch.
    direction_opposing : Direction
        Direction of the reciprocal relation on the neighbour.
    neighbor_index : int
        Global index of the neighbouring patch.
    reverse_direction : bool
        Whether the along-edge index is reversed across the boundary.
    flip_coordinate : bool
        Whether alpha and beta are swapped across the boundary.
    boundary_size : int
        Number of halo columns along the relation.
    ix_first, ix_second : int
        Local index range along the edge, or the local interior corner
        node for corner relations.
    send_key, recv_key : tuple
        Global ``(panel, a, b)`` of the first exchanged node, as sent
        and as received. A relation's `recv_key` equals the `send_key`
        of its reciprocal.
    send_tag, recv_tag : int
        Message tags, assigned once every relation of the grid is known.
    """

    def __init__(
        self,
        direction,
        direction_opposing,
        neighbor_index,
        reverse_direction,
        flip_coordinate,
        boundary_size,
        ix_first,
        ix_second,
    ):
        self.direction = Direction(direction)
        self.direction_opposing = Direction(direction_opposing)
        self.neighbor_index = neighbor_index
        self.reverse_direction = bool(reverse_direction)
        self.flip_coordinate = bool(flip_coordinate)
        self.boundary_size = boundary_size
        self.ix_first = ix_first
        self.ix_second = ix_second

        self.send_key = None
        self.recv_key = None
        self.send_tag = None
        self.recv_tag = None

        self.send_buffer = None
        self.recv_buffer = None
        self.send_offset = 0
        self.recv_offset = 0
        self.recv_count = None

        self.send_index = None
        self.recv_index = None

    def build_indices(self, box):
        """Compute the local nodes read by `pack` and written by `unpack`.

        Parameters
        ----------
        box : PatchBox
            Extent of the owning patch.
        """
        halo = box.halo_elements

        if self.direction.is_edge:
            along = np.arange(self.ix_first, self.ix_second)
            along_send = along[::-1] if self.reverse_direction else along
            depth = np.arange(halo)

            if self.direction == Direction.RIGHT:
                recv = ((box.a_interior_end + depth)[None, :], along[:, None])
                send = ((box.a_interior_end - 1 - depth)[None, :], along_send[:, None])
            elif self.direction == Direction.LEFT:
                recv = ((box.a_interior_begin - 1 - depth)[None, :], along[:, None])
                send = ((box.a_interior_begin + depth)[None, :], along_send[:, None])
            elif self.direction == Direction.TOP:
                recv = (along[:, None], (box.b_interior_end + depth)[None, :])
                send = (along_send[:, None], (box.b_interior_end - 1 - depth)[None, :])
            else:
                recv = (along[:, None], (box.b_interior_begin - 1 - depth)[None, :])
                send = (along_send[:, None], (box.b_interior_begin + depth)[None, :])

        else:
            p, q = np.meshgrid(np.arange(halo), np.arange(halo), indexing="ij")
            sa, sb = DIRECTION_VECTORS[self.direction]

            recv = (self.ix_first + sa * (1 + p), self.ix_second + sb * (1 + q))
            if self.flip_coordinate:
                p, q = q, p
            send = (self.ix_first - sa * p, self.ix_second - sb * q)

        self.recv_index = tuple(np.broadcast_arrays(*recv))
        self.send_index = tuple(np.broadcast_arrays(*send))

    @property
    def halo_nodes(self):
        """Number of (alpha, beta) nodes exchanged per variable level."""
        return self.recv_index[0].size

    def initialize_buffers(self, column_size):
        """Allocate send and receive buffers.

        Parameters
        ----------
        column_size : int
            Largest number of values exchanged per node.
        """
        capacity = self.halo_nodes * column_size
        self.send_buffer = np.zeros(capacity)
        self.recv_buffer = np.zeros(capacity)

    def exchange_size(self, arrays):
        """Number of buffer entries needed to exchange `arrays`."""
        return sum(int(np.prod(array.shape[:-2])) * self.halo_nodes for array in arrays)

    def reset(self):
        self.send_offset = 0
        self.recv_offset = 0
        self.recv_count = None

    def pack(self, data):
        """Append the boundary values of `data` to the send buffer.

        Parameters
        ----------
        data : ndarray
            Array whose last two axes are the patch's alpha and beta
            axes.

        Raises
        ------
        ProtocolError
            If the send buffer is too small.
        """
        values = data[(Ellipsis,) + self.send_index].ravel()
        end = self.send_offset + values.size
        if end > self.send_buffer.size:
            raise ProtocolError(
                "Send buffer overflow for relation {} to patch {}: {} > {}".format(
                    self.direction.name, self.neighbor_index, end, self.send_buffer.size
                )
            )
        self.send_buffer[self.send_offset : end] = values
        self.send_offset = end

    def unpack(self, data):
        """Copy the next block of the receive buffer into the halo of `data`.

        Raises
        ------
        ProtocolError
            If fewer values were received than are being unpacked.
        """
        shape = data.shape[:-2] + self.recv_index[0].shape
        size = int(np.prod(shape))
        end = self.recv_offset + size
        if self.recv_count is None or end > self.recv_count:
            raise ProtocolError(
                "Relation {} from patch {} received {} values, {} required".format(
                    self.direction.name, self.neighbor_index, self.recv_count, end
                )
            )
        data[(Ellipsis,) + self.recv_index] = self.recv_buffer[self.recv_offset : end].reshape(
            shape
        )
        self.recv_offset = end

    def descriptor(self, patch_index):
        """Tuple describing this relation for the connectivity cross-check."""
        return (
            patch_index,
            int(self.direction),
            self.neighbor_index,
            int(self.direction_opposing),
            self.boundary_size,
            0 if self.send_buffer is None else self.send_buffer.size,
            self.send_key,
            self.recv_key,
        )

    def __repr__(self):
        return "ExteriorNeighbor({}, neighbor={}, size={}, ix=({}, {}))".format(
            self.direction.name,
            self.neighbor_index,
            self.boundary_size,
            self.ix_first,
            self.ix_second,
        )


class Connectivity:
    """Halo relations of one grid patch.

    Parameters
    ----------
    grid : Grid
        Owning grid; only a weak proxy is kept.
    patch_index : int
        Index of the owning patch in the grid.
    """

    def __init__(self, grid, patch_index):
        self._grid = grid
        self.patch_index = patch_index
        self.exterior_neighbors = []

        self._recv_pending = []
        self._send_requests = []

    @property
    def patch(self):
        return self._grid.get_patch(self.patch_index)

    def __len__(self):
        return len(self.exterior_neighbors)

    def __iter__(self):
        return iter(self.exterior_neighbors)

    def exterior_connect(self, direction, neighbor, ix_first=None, ix_second=None):
        """Add a halo relation to a neighbouring patch.

        Parameters
        ----------
        direction : Direction
            Side or corner of this patch.
        neighbor : GridPatch
            Neighbouring patch.
        ix_first, ix_second : int, optional
            Local range along an edge, or local interior corner node.
            Default to the full edge or the patch's own corner.

        Returns
        -------
        ExteriorNeighbor
            The new relation.

        Raises
        ------
        ConfigurationError
            If a corner relation does not have at least one halo width
            of interior nodes on both sides of its corner node.
        """
        direction = Direction(direction)
        box = self.patch.box
        halo = box.halo_elements

        ab, ae = box.a_interior_begin, box.a_interior_end
        bb, be = box.b_interior_begin, box.b_interior_end

        if ix_first is None or ix_second is None:
            default = {
                Direction.RIGHT: (bb, be),
                Direction.LEFT: (bb, be),
                Direction.TOP: (ab, ae),
                Direction.BOTTOM: (ab, ae),
                Direction.TOP_RIGHT: (ae - 1, be - 1),
                Direction.TOP_LEFT: (ab, be - 1),
                Direction.BOTTOM_LEFT: (ab, bb),
                Direction.BOTTOM_RIGHT: (ae - 1, bb),
            }[direction]
            ix_first, ix_second = default

        if direction.is_edge:
            boundary_size = ix_second - ix_first
        else:
            boundary_size = halo
            sa, sb = DIRECTION_VECTORS[direction]
            a_short = ix_first < ab + halo - 1 if sa > 0 else ix_first > ae - halo
            b_short = ix_second < bb + halo - 1 if sb > 0 else ix_second > be - halo
            if a_short or b_short:
                raise ConfigurationError(
                    "Insufficient interior elements to build diagonal connection "
                    "({} of patch {} at ({}, {}))".format(
                        direction.name, self.patch_index, ix_first, ix_second
                    )
                )

        direction_opposing, reverse, flip = self._grid.get_opposing_direction(
            box.panel, neighbor.box.panel, direction
        )

        exterior_neighbor = ExteriorNeighbor(
            direction,
            direction_opposing,
            neighbor.patch_index,
            reverse,
            flip,
            boundary_size,
            ix_first,
            ix_second,
        )
        exterior_neighbor.build_indices(box)
        exterior_neighbor.send_key = self._global_key(exterior_neighbor.send_index)
        exterior_neighbor.recv_key = self._global_key(exterior_neighbor.recv_index)

        self.exterior_neighbors.append(exterior_neighbor)
        return exterior_neighbor

    def _global_key(self, index):
        box = self.patch.box
        ix_a, ix_b = box.local_to_global(int(index[0].flat[0]), int(index[1].flat[0]))
        return self._grid.get_relative_coordinate(box.refinement_level, box.panel, ix_a, ix_b)

    def initialize_buffers(self, column_size):
        """Allocate exchange buffers of every relation."""
        for exterior_neighbor in self.exterior_neighbors:
            exterior_neighbor.initialize_buffers(column_size)

    def assign_tags(self, ordinals, relations_per_direction):
        """Set the send and receive tag of every relation.

        Parameters
        ----------
        ordinals : dict
            Maps ``(patch, direction, recv_key)`` of every relation in
            the grid to its position among the relations of that patch
            and direction.
        relations_per_direction : int
            Largest number of relations any patch holds in one
            direction.
        """
        for exterior_neighbor in self.exterior_neighbors:
            direction = int(exterior_neighbor.direction)
            exterior_neighbor.recv_tag = exchange_tag(
                self.patch_index,
                direction,
                ordinals[self.patch_index, direction, exterior_neighbor.recv_key],
                relations_per_direction,
            )

            # The reciprocal receives at our send_key.
            opposing = int(exterior_neighbor.direction_opposing)
            neighbor = exterior_neighbor.neighbor_index
            exterior_neighbor.send_tag = exchange_tag(
                neighbor,
                opposing,
                ordinals[neighbor, opposing, exterior_neighbor.send_key],
                relations_per_direction,
            )

    def prepare_exchange(self):
        """Post one non-blocking receive per relation."""
        grid = self._grid
        comm = grid.comm

        self._recv_pending = []
        for exterior_neighbor in self.exterior_neighbors:
            exterior_neighbor.reset()
            source = grid.get_patch(exterior_neighbor.neighbor_index).processor
            request = comm.Irecv(exterior_neighbor.recv_buffer, source, exterior_neighbor.recv_tag)
            self._recv_pending.append((request, exterior_neighbor))

    def pack(self, data):
        """Pack the boundary values of `data` for every relation."""
        for exterior_neighbor in self.exterior_neighbors:
            exterior_neighbor.pack(data)

    def send(self):
        """Send the packed buffers to every neighbour."""
        grid = self._grid
        comm = grid.comm

        for exterior_neighbor in self.exterior_neighbors:
            dest = grid.get_patch(exterior_neighbor.neighbor_index).processor
            request = comm.Isend(
                exterior_neighbor.send_buffer[: exterior_neighbor.send_offset],
                dest,
                exterior_neighbor.send_tag,
            )
            self._send_requests.append(request)

    def wait_receive(self):
        """Wait for the next receive to complete.

        Returns
        -------
        ExteriorNeighbor or None
            The relation whose data arrived, or None once every posted
            receive has completed.
        """
        if not self._recv_pending:
            return None

        index, count = self._grid.comm.waitany([request for request, _ in self._recv_pending])
        _, exterior_neighbor = self._recv_pending.pop(index)
        exterior_neighbor.recv_count = count
        return exterior_neighbor

    def wait_send(self):
        """Complete every outstanding send."""
        self._grid.comm.waitall(self._send_requests)
        self._send_requests = []
