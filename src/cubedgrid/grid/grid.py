"""Grid module.

This module contains the Grid class, which owns the patches of a domain
decomposed mesh, distributes them across ranks, builds their halo
relations and drives the collective operations on patch data: halo
exchange, consolidation at the root rank and checksums.

Grid itself knows nothing about the shape of the domain. Subclasses
provide the coordinate lookup hooks `get_patch_from_coordinate_index`,
`get_relative_coordinate` and `get_opposing_direction`.
"""

from collections import Counter, defaultdict

import numpy as np
import xarray as xr

from cubedgrid.exceptions import ConfigurationError, ContractError, ProtocolError
from cubedgrid.grid.connectivity import N_DIRECTIONS
from cubedgrid.grid.consolidation import ConsolidationMessage, ConsolidationStatus
from cubedgrid.grid.grid_patch import GridPatch
from cubedgrid.primitives.data_types import (
    EXCHANGE_DATA_TYPES,
    ChecksumType,
    DataLocation,
    DataType,
    Direction,
)
from cubedgrid.primitives.io import IO
from cubedgrid.primitives.patch_box import PatchBox

GRID_FILE_VARIABLES = (
    "grid_info",
    "patch_info",
    "alpha_node_coord",
    "beta_node_coord",
    "alpha_edge_coord",
    "beta_edge_coord",
)


class Grid:
    """Domain decomposed grid.

    Attributes
    ----------
    model : Model
        Equation set carried by the grid.
    comm : Communicator
        Communication context.
    patches : list of GridPatch
        All patches, indexed by patch index.
    active_patches : list of GridPatch
        Patches whose data lives on this rank.
    settings : xarray.Dataset
        Grid and model settings, stored as attributes.
    var_location : list of DataLocation
        Location of each state component.
    var_index : list of int
        Index of each state component among the components sharing its
        location.
    """

    def __init__(
        self,
        model,
        comm,
        a_base_resolution,
        b_base_resolution,
        refinement_ratio=2,
        r_elements=1,
        grid_stamp=0,
    ):
        """Initialize an empty grid.

        Parameters
        ----------
        model : Model
            Equation set.
        comm : Communicator
            Communication context.
        a_base_resolution, b_base_resolution : int
            Number of elements per panel at refinement level 0.
        refinement_ratio : int, optional
            Resolution ratio between consecutive refinement levels.
        r_elements : int, optional
            Number of vertical levels.
        grid_stamp : int, optional
            Version stamp of the patch layout.

        Raises
        ------
        ConfigurationError
            If a resolution or ratio is not positive, or a 2D model is
            given more than one vertical level.
        """
        if a_base_resolution < 1 or b_base_resolution < 1:
            raise ConfigurationError(
                "Invalid base resolution ({}, {})".format(a_base_resolution, b_base_resolution)
            )
        if refinement_ratio < 1:
            raise ConfigurationError("Invalid refinement ratio {}".format(refinement_ratio))
        if r_elements < 1:
            raise ConfigurationError("Invalid number of vertical levels {}".format(r_elements))
        if model.dimensionality == 2 and r_elements != 1:
            raise ConfigurationError(
                "A 2D model requires one vertical level, got {}".format(r_elements)
            )

        self.model = model
        self.comm = comm

        self.grid_stamp = int(grid_stamp)
        self.a_base_resolution = int(a_base_resolution)
        self.b_base_resolution = int(b_base_resolution)
        self.refinement_ratio = int(refinement_ratio)
        self.r_elements = int(r_elements)

        self.patches = []
        self.active_patches = []
        self._cumulative_patch_2d_node_index = [0]

        self.var_location = None
        self.var_index = None
        self.r_eta_interfaces = None
        self.r_eta_levels = None
        self.r_eta_thickness = None
        self.r_eta_thickness_redge = None

        self.z_top = 1.0
        self.has_reference_state = False

        self.is_distributed = False
        self.connectivity_initialized = False

        self._update_settings()

    def _update_settings(self):
        attrs = {
            "grid_stamp": self.grid_stamp,
            "a_base_resolution": self.a_base_resolution,
            "b_base_resolution": self.b_base_resolution,
            "refinement_ratio": self.refinement_ratio,
            "r_elements": self.r_elements,
        }
        attrs.update(self.model.settings)
        self.settings = xr.Dataset(attrs=attrs)

    def _print(self, print_info, message):
        if print_info and self.comm.rank == 0:
            print(message)

    # ------------------------------------------------------------------
    # Coordinate lookup hooks
    # ------------------------------------------------------------------

    def get_patch_from_coordinate_index(self, level, ix_a, ix_b, panel):
        """Find the patch whose interior contains a global index.

        Parameters
        ----------
        level : int
            Refinement level of the index.
        ix_a, ix_b : int
            Global indices, possibly outside `panel`.
        panel : int
            Panel in whose frame the index is given.

        Returns
        -------
        int or None
            Patch index, or None if no patch contains the index.
        """
        raise NotImplementedError

    def get_relative_coordinate(self, level, panel, ix_a, ix_b):
        """Return the ``(panel, ix_a, ix_b)`` that owns a global index."""
        raise NotImplementedError

    def get_opposing_direction(self, panel_first, panel_second, direction):
        """Return ``(opposing direction, reverse, flip)`` of a relation."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Patches
    # ------------------------------------------------------------------

    @property
    def patch_count(self):
        return len(self.patches)

    def get_patch(self, patch_index):
        """Return the patch with index `patch_index`.

        Raises
        ------
        ContractError
            If the index is out of range.
        """
        if not 0 <= patch_index < len(self.patches):
            raise ContractError(
                "Patch index {} out of range [0, {})".format(patch_index, len(self.patches))
            )
        return self.patches[patch_index]

    def add_patch(self, box):
        """Register a new patch.

        Parameters
        ----------
        box : PatchBox
            Extent of the patch.

        Returns
        -------
        GridPatch
            The new patch, whose index is its position in `patches`.

        Raises
        ------
        ConfigurationError
            If the grid is already distributed, or the patch halo does
            not match the model halo.
        """
        if self.is_distributed:
            raise ConfigurationError("Cannot add patches after distribution")
        if box.halo_elements != self.model.halo_elements:
            raise ConfigurationError(
                "Patch halo {} does not match model halo {}".format(
                    box.halo_elements, self.model.halo_elements
                )
            )

        patch = GridPatch(self, box, len(self.patches))
        self.patches.append(patch)
        self._cumulative_patch_2d_node_index.append(
            self._cumulative_patch_2d_node_index[-1] + box.total_nodes
        )
        return patch

    @property
    def cumulative_patch_2d_node_index(self):
        """Offset of each patch's 2D nodes in a concatenation of all patches."""
        return list(self._cumulative_patch_2d_node_index)

    def largest_grid_patch_nodes(self):
        return max((patch.box.total_nodes for patch in self.patches), default=0)

    def longest_active_patch_perimeter(self):
        return max((patch.box.interior_perimeter for patch in self.active_patches), default=0)

    def total_node_count(self, location=DataLocation.NODE):
        """Number of nodes, halo included, over all patches."""
        factor = self.r_elements + 1 if location == DataLocation.R_EDGE else self.r_elements
        return factor * self._cumulative_patch_2d_node_index[-1]

    def maximum_degrees_of_freedom(self):
        """Largest number of state or tracer values held by one patch."""
        if self.var_location is None:
            raise ContractError("Vertical coordinate not initialized")

        nodes = self.largest_grid_patch_nodes()
        state = sum(
            (self.r_elements + 1 if location == DataLocation.R_EDGE else self.r_elements)
            for location in self.var_location
        )
        return nodes * max(state, self.model.tracers * self.r_elements)

    # ------------------------------------------------------------------
    # Vertical coordinate and distribution
    # ------------------------------------------------------------------

    def initialize_vertical_coordinate(self, interfaces=None):
        """Set up the vertical coordinate and variable locations.

        Parameters
        ----------
        interfaces : array-like, optional
            Normalized coordinates of the ``r_elements + 1`` level
            interfaces of a 3D model. Defaults to uniform spacing on
            [0, 1]. Ignored by 2D models, which use a single dummy
            level.

        Raises
        ------
        ConfigurationError
            If the number of interfaces does not match the number of
            levels, the interfaces are not increasing, or a variable
            location is not supported.
        """
        if self.model.dimensionality == 2:
            interfaces = np.array([0.0, 1.0])
            var_location = [DataLocation.NODE] * self.model.components

        elif self.model.dimensionality == 3:
            if interfaces is None:
                interfaces = np.linspace(0.0, 1.0, self.r_elements + 1)
            interfaces = np.asarray(interfaces, dtype=np.float64)
            if interfaces.size != self.r_elements + 1:
                raise ConfigurationError(
                    "Vertical node count mismatch: {} interfaces for {} levels".format(
                        interfaces.size, self.r_elements
                    )
                )
            if np.any(np.diff(interfaces) <= 0):
                raise ConfigurationError("Vertical interfaces must be increasing")
            var_location = list(self.model.var_locations)

        else:
            raise ConfigurationError("Invalid dimensionality {}".format(self.model.dimensionality))

        for location in var_location:
            if location not in (DataLocation.NODE, DataLocation.R_EDGE):
                raise ConfigurationError(
                    "Unsupported variable location {}".format(DataLocation(location).name)
                )

        counts = Counter()
        var_index = []
        for location in var_location:
            var_index.append(counts[location])
            counts[location] += 1

        self.var_location = var_location
        self.var_index = var_index

        self.r_eta_interfaces = interfaces
        self.r_eta_levels = 0.5 * (interfaces[1:] + interfaces[:-1])
        self.r_eta_thickness = np.diff(interfaces)
        self.r_eta_thickness_redge = np.diff(
            np.concatenate(([interfaces[0]], self.r_eta_levels, [interfaces[-1]]))
        )

    def distribute_patches(self, print_info=False):
        """Assign patches to ranks round-robin and allocate their data.

        Patch ``n`` is owned by rank ``n % size``. Owned patches get
        their data and geometric terms; the others become stubs.
        """
        if self.var_location is None:
            self.initialize_vertical_coordinate()

        rank, size = self.comm.rank, self.comm.size

        self.active_patches = []
        for n, patch in enumerate(self.patches):
            owner = n % size
            if owner == rank:
                patch.initialize_data_local(rank)
                self.active_patches.append(patch)
            else:
                patch.initialize_data_remote(owner)

        self.is_distributed = True
        self.evaluate_geometric_terms()

        self._print(
            print_info,
            "Distributed {} patches over {} ranks".format(self.patch_count, size),
        )

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    @staticmethod
    def boundary_samples(box):
        """Global indices just outside a patch, in traversal order.

        The order is: bottom-left corner, bottom edge left to right,
        bottom-right corner, right edge bottom to top, top-right corner,
        top edge right to left, top-left corner, left edge top to
        bottom.
        """
        a0, a1 = box.a_global_interior_begin, box.a_global_interior_end
        b0, b1 = box.b_global_interior_begin, box.b_global_interior_end

        samples = [(a0 - 1, b0 - 1)]
        samples += [(i, b0 - 1) for i in range(a0, a1)]
        samples.append((a1, b0 - 1))
        samples += [(a1, j) for j in range(b0, b1)]
        samples.append((a1, b1))
        samples += [(i, b1) for i in range(a1 - 1, a0 - 1, -1)]
        samples.append((a0 - 1, b1))
        samples += [(a0 - 1, j) for j in range(b1 - 1, b0 - 1, -1)]
        return samples

    def initialize_connectivity(self, print_info=False):
        """Build the halo relations of every active patch.

        Raises
        ------
        ConfigurationError
            If a boundary node along an edge is not covered by any
            patch, or a patch is too small for a diagonal relation.
        ProtocolError
            If the exchange tags do not fit the communicator, or the
            resulting relations are not symmetric across ranks.
        """
        if not self.is_distributed:
            raise ContractError("Patches must be distributed before building connectivity")

        for patch in self.active_patches:
            self._connect_patch(patch)
            patch.initialize_connectivity_buffers()

        descriptors = self.verify_connectivity()
        self._assign_exchange_tags(descriptors)
        self.connectivity_initialized = True

        n_relations = self.comm.allgather(
            sum(len(patch.connectivity) for patch in self.active_patches)
        )
        self._print(
            print_info,
            "Built {} halo relations for {} patches".format(sum(n_relations), self.patch_count),
        )

    def _connect_patch(self, patch):
        box = patch.box
        samples = self.boundary_samples(box)
        neighbors = [
            self.get_patch_from_coordinate_index(box.refinement_level, ix_a, ix_b, box.panel)
            for ix_a, ix_b in samples
        ]

        wa, wb = box.a_interior_width, box.b_interior_width
        ab, ae = box.a_interior_begin, box.a_interior_end
        bb, be = box.b_interior_begin, box.b_interior_end

        segments = [
            (Direction.BOTTOM_LEFT, neighbors[0:1], None),
            (Direction.BOTTOM, neighbors[1 : 1 + wa], ab),
            (Direction.BOTTOM_RIGHT, neighbors[1 + wa : 2 + wa], None),
            (Direction.RIGHT, neighbors[2 + wa : 2 + wa + wb], bb),
            (Direction.TOP_RIGHT, neighbors[2 + wa + wb : 3 + wa + wb], None),
            (Direction.TOP, neighbors[3 + wa + wb : 3 + 2 * wa + wb][::-1], ab),
            (Direction.TOP_LEFT, neighbors[3 + 2 * wa + wb : 4 + 2 * wa + wb], None),
            (Direction.LEFT, neighbors[4 + 2 * wa + wb : 4 + 2 * wa + 2 * wb][::-1], bb),
        ]

        consumed = sum(len(segment) for _, segment, _ in segments)
        if consumed != len(samples) or consumed != box.interior_perimeter + 4:
            raise ProtocolError(
                "Patch {} consumed {} of {} boundary samples".format(
                    patch.patch_index, consumed, len(samples)
                )
            )

        for direction, segment, begin in segments:
            if direction.is_corner:
                if segment[0] is not None:
                    patch.connectivity.exterior_connect(direction, self.patches[segment[0]])
            else:
                self._connect_edge(patch, direction, segment, begin)

    def _connect_edge(self, patch, direction, segment, begin):
        # Run-length encode the neighbours along the edge, in increasing
        # local index order.
        runs = []
        for offset, ix_patch in enumerate(segment):
            if ix_patch is None:
                raise ConfigurationError(
                    "Boundary of patch {} not covered along {} edge at local index {}".format(
                        patch.patch_index, direction.name, begin + offset
                    )
                )
            if runs and runs[-1][2] == ix_patch:
                runs[-1][1] += 1
            else:
                runs.append([begin + offset, begin + offset + 1, ix_patch])

        for start, stop, ix_patch in runs:
            patch.connectivity.exterior_connect(direction, self.patches[ix_patch], start, stop)

        box = patch.box
        ab, ae = box.a_interior_begin, box.a_interior_end
        bb, be = box.b_interior_begin, box.b_interior_end

        # Where the neighbour changes, add diagonal relations to the
        # neighbours below and above the change position.
        for lower, upper in zip(runs, runs[1:]):
            x = upper[0]
            if direction == Direction.BOTTOM:
                diagonals = [
                    (Direction.BOTTOM_LEFT, lower[2], x, bb),
                    (Direction.BOTTOM_RIGHT, upper[2], x - 1, bb),
                ]
            elif direction == Direction.TOP:
                diagonals = [
                    (Direction.TOP_LEFT, lower[2], x, be - 1),
                    (Direction.TOP_RIGHT, upper[2], x - 1, be - 1),
                ]
            elif direction == Direction.RIGHT:
                diagonals = [
                    (Direction.BOTTOM_RIGHT, lower[2], ae - 1, x),
                    (Direction.TOP_RIGHT, upper[2], ae - 1, x - 1),
                ]
            else:
                diagonals = [
                    (Direction.BOTTOM_LEFT, lower[2], ab, x),
                    (Direction.TOP_LEFT, upper[2], ab, x - 1),
                ]

            for diagonal, ix_patch, ix_first, ix_second in diagonals:
                patch.connectivity.exterior_connect(
                    diagonal, self.patches[ix_patch], ix_first, ix_second
                )

    def verify_connectivity(self):
        """Check that every halo relation has a matching reciprocal.

        The relation descriptors of all ranks are gathered on every rank
        so that all ranks reach the same verdict.

        Returns
        -------
        list of tuple
            Descriptors of every relation in the grid.

        Raises
        ------
        ProtocolError
            If a relation is duplicated, has no reciprocal, or its
            reciprocal differs in length, buffer size or position.
        """
        local = [
            exterior_neighbor.descriptor(patch.patch_index)
            for patch in self.active_patches
            for exterior_neighbor in patch.connectivity
        ]
        descriptors = [d for rank_descriptors in self.comm.allgather(local) for d in rank_descriptors]
        counts = Counter(descriptors)

        for descriptor, count in counts.items():
            patch, direction, neighbor, opposing, size, capacity, send_key, recv_key = descriptor
            if count > 1:
                raise ProtocolError(
                    "Duplicate halo relation {} of patch {} to patch {}".format(
                        Direction(direction).name, patch, neighbor
                    )
                )

            reciprocal = (neighbor, opposing, patch, direction, size, capacity, recv_key, send_key)
            if reciprocal not in counts:
                raise ProtocolError(
                    "Halo relation {} of patch {} to patch {} (size {}, buffer {}) "
                    "has no matching reciprocal".format(
                        Direction(direction).name, patch, neighbor, size, capacity
                    )
                )

        return descriptors

    def _assign_exchange_tags(self, descriptors):
        # Relations of one patch in one direction are numbered by the
        # position of their first received node, which the sender knows
        # as its send_key.
        recv_keys = defaultdict(list)
        for patch, direction, _, _, _, _, _, recv_key in descriptors:
            recv_keys[patch, direction].append(recv_key)

        ordinals = {}
        for (patch, direction), keys in recv_keys.items():
            if None in keys or len(set(keys)) != len(keys):
                raise ProtocolError(
                    "Halo relations {} of patch {} have no distinct first node".format(
                        Direction(direction).name, patch
                    )
                )
            for ordinal, key in enumerate(sorted(keys)):
                ordinals[patch, direction, key] = ordinal

        relations_per_direction = max((len(keys) for keys in recv_keys.values()), default=1)
        max_tag = self.patch_count * N_DIRECTIONS * relations_per_direction - 1
        if max_tag > self.comm.max_tag:
            raise ProtocolError(
                "{} patches with up to {} relations per direction need tags up to {}, "
                "communicator allows {}".format(
                    self.patch_count, relations_per_direction, max_tag, self.comm.max_tag
                )
            )

        for patch in self.active_patches:
            patch.connectivity.assign_tags(ordinals, relations_per_direction)

    # ------------------------------------------------------------------
    # Exchange and consolidation
    # ------------------------------------------------------------------

    def exchange(self, data_type, data_index=0):
        """Fill the halos of every active patch from their neighbours.

        Parameters
        ----------
        data_type : DataType
            One of STATE, TRACERS, VORTICITY, DIVERGENCE, TEMPERATURE or
            TOPOGRAPHY_DERIV.
        data_index : int, optional
            Data slot for STATE and TRACERS.

        Raises
        ------
        ProtocolError
            If the data type cannot be exchanged or a message carries an
            unexpected number of values.
        """
        if not self.connectivity_initialized:
            raise ContractError("Connectivity must be initialized before exchange")
        if DataType(data_type) not in EXCHANGE_DATA_TYPES:
            raise ProtocolError("Invalid DataType {} for exchange".format(DataType(data_type).name))

        self.comm.barrier()

        for patch in self.active_patches:
            patch.prepare_exchange()
        for patch in self.active_patches:
            patch.send(data_type, data_index)
        for patch in self.active_patches:
            patch.receive(data_type, data_index)
        for patch in self.active_patches:
            patch.complete_exchange()

    def consolidate_data_to_root(self, status, data_index=0):
        """Send the requested data of every active patch to rank 0.

        Parameters
        ----------
        status : ConsolidationStatus
            Status of the consolidation round; collects the send
            requests.
        data_index : int, optional
            Data slot for STATE and TRACERS.
        """
        for patch in self.active_patches:
            for data_type in status.data_types:
                message = ConsolidationMessage(
                    patch.patch_index, data_type, patch.consolidation_data(data_type, data_index)
                )
                tag = status.generate_tag(patch.patch_index, data_type)
                status.add_send_request(self.comm.isend(message, 0, tag))

    def consolidate_data_at_root(self, status):
        """Receive and validate one consolidation message on rank 0.

        Parameters
        ----------
        status : ConsolidationStatus
            Status of the consolidation round.

        Returns
        -------
        ConsolidationMessage
            The received envelope.

        Raises
        ------
        ProtocolError
            If called off the root rank or after the round is complete,
            or if the message is inconsistent with its tag, sender or
            expected size.
        """
        if self.comm.rank != 0:
            raise ProtocolError("consolidate_data_at_root called on rank {}".format(self.comm.rank))
        if status.done():
            raise ProtocolError("Consolidation already complete")

        message, source, tag = self.comm.recv_any()
        patch_index, data_type = status.parse_tag(tag)

        if not isinstance(message, ConsolidationMessage):
            raise ProtocolError("Unexpected message of type {}".format(type(message).__name__))
        if message.patch_index != patch_index or message.data_type != data_type:
            raise ProtocolError(
                "Envelope (patch {}, {}) does not match tag (patch {}, {})".format(
                    message.patch_index,
                    DataType(message.data_type).name,
                    patch_index,
                    data_type.name,
                )
            )
        if not 0 <= patch_index < self.patch_count:
            raise ProtocolError("Patch index {} out of range".format(patch_index))
        if not status.contains(data_type):
            raise ProtocolError("Data type {} not requested".format(data_type.name))

        patch = self.patches[patch_index]
        if source != patch.processor:
            raise ProtocolError(
                "Patch {} data received from rank {}, owner is rank {}".format(
                    patch_index, source, patch.processor
                )
            )

        expected = patch.total_degrees_of_freedom(data_type)
        if message.data.size != expected:
            raise ProtocolError(
                "Patch {} {} carries {} values, expected {}".format(
                    patch_index, data_type.name, message.data.size, expected
                )
            )

        status.set_receive_status(patch_index, data_type)
        return message

    def consolidate(self, data_types, data_index=0):
        """Run a full consolidation round.

        Parameters
        ----------
        data_types : sequence of DataType
            Data types to gather.
        data_index : int, optional
            Data slot for STATE and TRACERS.

        Returns
        -------
        dict or None
            On rank 0, a dict mapping ``(patch_index, data_type)`` to the
            flat patch data. None on other ranks.
        """
        status = ConsolidationStatus(self, data_types)
        self.consolidate_data_to_root(status, data_index)

        result = None
        if self.comm.rank == 0:
            result = {}
            while not status.done():
                message = self.consolidate_data_at_root(status)
                result[(message.patch_index, DataType(message.data_type))] = message.data

        status.wait_send(self.comm)
        return result

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    def checksum(self, data_type, data_index=0, checksum_type=ChecksumType.L2):
        """Compute per-component area-weighted norms over all patches.

        Parameters
        ----------
        data_type : DataType
            STATE or TRACERS.
        data_index : int, optional
            Data slot.
        checksum_type : ChecksumType, optional
            Norm to compute.

        Returns
        -------
        ndarray or None
            One value per component on rank 0, None on other ranks.
            None on every rank for TRACERS when the model has none.

        Raises
        ------
        ProtocolError
            If `data_type` is not STATE or TRACERS.
        """
        if data_type == DataType.STATE:
            n_components = self.model.components
        elif data_type == DataType.TRACERS:
            n_components = self.model.tracers
            if n_components == 0:
                return None
        else:
            raise ProtocolError("Invalid DataType {} for checksum".format(DataType(data_type).name))

        local = np.zeros(n_components)
        for patch in self.active_patches:
            patch.checksum(data_type, local, data_index, checksum_type)

        result = self.comm.reduce(local, "max" if checksum_type == ChecksumType.LINF else "sum")

        if result is not None and checksum_type == ChecksumType.L2:
            result = np.sqrt(result)
        return result

    def copy_data(self, ix_source, ix_dest, data_type):
        for patch in self.active_patches:
            patch.copy_data(ix_source, ix_dest, data_type)

    def linear_combine_data(self, coeff, ix_dest, data_type):
        for patch in self.active_patches:
            patch.linear_combine_data(coeff, ix_dest, data_type)

    def zero_data(self, ix_data, data_type):
        for patch in self.active_patches:
            patch.zero_data(ix_data, data_type)

    def add_reference_state(self, ix_data):
        for patch in self.active_patches:
            patch.add_reference_state(ix_data)

    def evaluate_geometric_terms(self):
        for patch in self.active_patches:
            patch.evaluate_geometric_terms()

    def evaluate_test_case(self, test_case, data_index=0):
        """Initialize a state slot of every active patch from a test case.

        Parameters
        ----------
        test_case : callable
            See `GridPatch.evaluate_test_case`. Its optional attributes
            ``z_top`` and ``has_reference_state`` are stored on the grid.
        data_index : int, optional
            State slot to fill.
        """
        self.z_top = float(getattr(test_case, "z_top", 1.0))
        self.has_reference_state = bool(getattr(test_case, "has_reference_state", False))

        self.evaluate_geometric_terms()
        for patch in self.active_patches:
            patch.evaluate_test_case(test_case, data_index)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_file(self, filename_prefix, print_info=False):
        """Write the patch layout to ``<filename_prefix>_grid.ncdf``.

        Only rank 0 writes.
        """
        if self.comm.rank != 0:
            return

        boxes = [patch.box for patch in self.patches]

        def concatenate(name):
            return np.concatenate([np.empty(0)] + [getattr(box, name) for box in boxes])

        dataset = xr.Dataset(
            data_vars={
                "grid_info": (
                    ["grid_info_index"],
                    np.array(
                        [
                            self.grid_stamp,
                            self.a_base_resolution,
                            self.b_base_resolution,
                            self.refinement_ratio,
                        ],
                        dtype=np.int32,
                    ),
                ),
                "patch_info": (
                    ["patch_index", "patch_info_index"],
                    np.array([box.bounds for box in boxes], dtype=np.int32).reshape(-1, 7),
                ),
                "alpha_node_coord": (["alpha_node_index"], concatenate("a_nodes")),
                "beta_node_coord": (["beta_node_index"], concatenate("b_nodes")),
                "alpha_edge_coord": (["alpha_edge_index"], concatenate("a_edges")),
                "beta_edge_coord": (["beta_edge_index"], concatenate("b_edges")),
            },
            attrs=self.settings.attrs,
        )

        IO(filename_prefix).save_dataset(dataset, "grid", print_info=print_info)

    def from_file(self, filename_prefix, print_info=False):
        """Load the patch layout from ``<filename_prefix>_grid.ncdf``.

        The grid stamp, base resolutions and refinement ratio are taken
        from the file; the remaining settings must match this grid.

        Raises
        ------
        ConfigurationError
            If the grid already has patches, the file is missing or
            malformed, or its settings do not match.
        """
        if self.patches:
            raise ConfigurationError("Grid already contains patches")

        dataset = IO(filename_prefix).load_dataset(
            "grid", print_info=print_info and self.comm.rank == 0
        )
        if dataset is None:
            raise ConfigurationError("Grid file for prefix '{}' not found".format(filename_prefix))

        for name in GRID_FILE_VARIABLES:
            if name not in dataset:
                raise ConfigurationError("Grid file is missing variable '{}'".format(name))

        for key, value in self.settings.attrs.items():
            if key in ("grid_stamp", "a_base_resolution", "b_base_resolution", "refinement_ratio"):
                continue
            if key in dataset.attrs and dataset.attrs[key] != value:
                raise ConfigurationError(
                    "Mismatch between grid settings and settings on file ({}: {} != {})".format(
                        key, value, dataset.attrs[key]
                    )
                )

        grid_info = dataset["grid_info"].values
        if grid_info.size != 4:
            raise ConfigurationError("grid_info has {} entries, expected 4".format(grid_info.size))
        self.grid_stamp, self.a_base_resolution, self.b_base_resolution, self.refinement_ratio = (
            int(value) for value in grid_info
        )
        self._update_settings()

        patch_info = dataset["patch_info"].values.astype(int)
        if patch_info.ndim != 2 or patch_info.shape[1] != 7:
            raise ConfigurationError("patch_info has shape {}".format(patch_info.shape))

        coords = {name: dataset[name].values for name in GRID_FILE_VARIABLES[2:]}
        offsets = {"a_node": 0, "b_node": 0, "a_edge": 0, "b_edge": 0}

        def take(name, key, count):
            start = offsets[key]
            offsets[key] = start + count
            if offsets[key] > coords[name].size:
                raise ConfigurationError("{} is too short".format(name))
            return coords[name][start : offsets[key]]

        for panel, level, halo, a0, a1, b0, b1 in patch_info:
            n_a = a1 - a0 + 2 * halo
            n_b = b1 - b0 + 2 * halo
            box = PatchBox(
                panel,
                level,
                halo,
                a0,
                a1,
                b0,
                b1,
                take("alpha_node_coord", "a_node", n_a),
                take("beta_node_coord", "b_node", n_b),
                take("alpha_edge_coord", "a_edge", n_a + 1),
                take("beta_edge_coord", "b_edge", n_b + 1),
            )
            self.add_patch(box)

        for name, key in (
            ("alpha_node_coord", "a_node"),
            ("beta_node_coord", "b_node"),
            ("alpha_edge_coord", "a_edge"),
            ("beta_edge_coord", "b_edge"),
        ):
            if offsets[key] != coords[name].size:
                raise ConfigurationError(
                    "{} has {} entries, patches use {}".format(name, coords[name].size, offsets[key])
                )

        self._print(print_info, "Loaded {} patches".format(self.patch_count))
