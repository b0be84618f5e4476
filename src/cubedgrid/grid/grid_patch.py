"""GridPatch module.

This module contains the GridPatch class, a rectangular piece of one
cubed sphere panel together with its field storage and halo relations.
"""

import weakref

import numpy as np

from cubedgrid.cubed_sphere.cs_basis import CSBasis
from cubedgrid.exceptions import ContractError, ProtocolError
from cubedgrid.grid.connectivity import Connectivity
from cubedgrid.primitives.data_types import ChecksumType, DataLocation, DataType


class GridPatch:
    """A patch of the grid.

    Every rank holds a GridPatch for every patch of the grid, but only
    the owning rank allocates its data; on other ranks the patch is a
    stub that only records its extent and owner.

    Attributes
    ----------
    box : PatchBox
        Extent of the patch.
    processor : int
        Rank owning the patch data.
    contains_data : bool
        Whether this rank holds the patch data.
    connectivity : Connectivity
        Halo relations of the patch.
    """

    INVALID_INDEX = -1

    def __init__(self, grid, box, patch_index=INVALID_INDEX):
        self._grid = weakref.proxy(grid)
        self.box = box
        self.processor = 0
        self.contains_data = False

        # Assigning the index builds the connectivity.
        self.connectivity = None
        self._patch_index = GridPatch.INVALID_INDEX
        if patch_index != GridPatch.INVALID_INDEX:
            self.patch_index = patch_index

        self._clear_data()

    def _clear_data(self):
        self.state_node = []
        self.state_redge = []
        self.tracers = []
        self.reference_state_node = None
        self.reference_state_redge = None
        self.vorticity = None
        self.divergence = None
        self.temperature = None
        self.topography = None
        self.topography_deriv = None
        self.longitude = None
        self.latitude = None
        self.jacobian_2d = None
        self.element_area = None
        self.element_area_redge = None
        self.z_levels = None

    @property
    def patch_index(self):
        """Global index of the patch, assigned once by the grid."""
        return self._patch_index

    @patch_index.setter
    def patch_index(self, value):
        if self._patch_index != GridPatch.INVALID_INDEX:
            raise ContractError("Patch index already assigned ({})".format(self._patch_index))
        self._patch_index = int(value)
        self.connectivity = Connectivity(self._grid, self._patch_index)

    @property
    def grid(self):
        return self._grid

    def _check_active(self):
        if not self.contains_data:
            raise ContractError(
                "Patch {} holds no data on this rank (owner {})".format(
                    self._patch_index, self.processor
                )
            )

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------

    def total_node_count(self, location=DataLocation.NODE):
        """Number of nodes of one variable at `location`, halo included."""
        r_elements = self._grid.r_elements
        if location == DataLocation.NODE:
            return r_elements * self.box.total_nodes
        if location == DataLocation.R_EDGE:
            return (r_elements + 1) * self.box.total_nodes
        raise ContractError("Invalid data location {}".format(DataLocation(location).name))

    def total_degrees_of_freedom(self, data_type, location=DataLocation.NONE):
        """Number of values of `data_type` held by the patch.

        Parameters
        ----------
        data_type : DataType
            Data type to count.
        location : DataLocation, optional
            For STATE, restricts the count to variables at `location`.
            NONE counts every variable at its own location.

        Returns
        -------
        int
            Number of values, halo included.

        Raises
        ------
        ProtocolError
            If the data type has no per-patch size.
        """
        grid = self._grid
        model = grid.model
        r_elements = grid.r_elements
        nodes_2d = self.box.total_nodes

        if data_type == DataType.STATE:
            if location == DataLocation.NONE:
                return sum(self.total_node_count(loc) for loc in grid.var_location)
            return model.components * self.total_node_count(location)
        if data_type == DataType.TRACERS:
            return model.tracers * r_elements * nodes_2d
        if data_type in (DataType.JACOBIAN, DataType.Z):
            return r_elements * nodes_2d
        if data_type in (DataType.TOPOGRAPHY, DataType.LONGITUDE, DataType.LATITUDE):
            return nodes_2d
        raise ProtocolError("Invalid DataType {}".format(DataType(data_type).name))

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize_data_local(self, processor):
        """Allocate the patch data on this rank.

        Parameters
        ----------
        processor : int
            Rank of this process.

        Raises
        ------
        ContractError
            If the patch already holds data.
        """
        if self.contains_data:
            raise ContractError("Patch {} already initialized".format(self._patch_index))

        grid = self._grid
        model = grid.model
        r_elements = grid.r_elements
        shape_2d = (self.box.a_total_width, self.box.b_total_width)

        self.processor = processor
        self.contains_data = True

        node_shape = (model.components, r_elements) + shape_2d
        redge_shape = (model.components, r_elements + 1) + shape_2d

        self.state_node = [np.zeros(node_shape) for _ in range(model.component_data_instances)]
        self.state_redge = [np.zeros(redge_shape) for _ in range(model.component_data_instances)]

        if model.tracers > 0:
            self.tracers = [
                np.zeros((model.tracers, r_elements) + shape_2d)
                for _ in range(model.tracer_data_instances)
            ]
        else:
            self.tracers = None

        self.reference_state_node = np.zeros(node_shape)
        self.reference_state_redge = np.zeros(redge_shape)

        self.vorticity = np.zeros((1, r_elements) + shape_2d)
        self.divergence = np.zeros((1, r_elements) + shape_2d)
        self.temperature = np.zeros((1, r_elements) + shape_2d)
        self.topography_deriv = np.zeros((2, 1) + shape_2d)

        self.topography = np.zeros(shape_2d)
        self.longitude = np.zeros(shape_2d)
        self.latitude = np.zeros(shape_2d)
        self.jacobian_2d = np.zeros(shape_2d)
        self.element_area = np.zeros((r_elements,) + shape_2d)
        self.element_area_redge = np.zeros((r_elements + 1,) + shape_2d)
        self.z_levels = np.zeros((r_elements,) + shape_2d)

    def initialize_data_remote(self, processor):
        """Record that the patch data lives on `processor`."""
        self.processor = processor
        self.contains_data = False
        self._clear_data()

    def initialize_connectivity_buffers(self):
        """Allocate the exchange buffers of every halo relation."""
        grid = self._grid
        model = grid.model
        column_size = (2 * grid.r_elements + 1) * max(model.components, model.tracers, 2)
        self.connectivity.initialize_buffers(column_size)

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def _check_slot(self, data_index, count, name):
        if not 0 <= data_index < count:
            raise ContractError(
                "{} data index {} out of range [0, {})".format(name, data_index, count)
            )

    def get_data_state(self, data_index=0, location=DataLocation.NODE):
        """Return a state slot at nodes or r-edges."""
        self._check_active()
        self._check_slot(data_index, len(self.state_node), "State")
        if location == DataLocation.NODE:
            return self.state_node[data_index]
        if location == DataLocation.R_EDGE:
            return self.state_redge[data_index]
        raise ContractError("Invalid data location {}".format(DataLocation(location).name))

    def get_data_tracers(self, data_index=0):
        """Return a tracer slot, or None if the model has no tracers."""
        self._check_active()
        if self.tracers is None:
            return None
        self._check_slot(data_index, len(self.tracers), "Tracer")
        return self.tracers[data_index]

    def get_reference_state(self, location=DataLocation.NODE):
        self._check_active()
        if location == DataLocation.NODE:
            return self.reference_state_node
        if location == DataLocation.R_EDGE:
            return self.reference_state_redge
        raise ContractError("Invalid data location {}".format(DataLocation(location).name))

    def exchange_arrays(self, data_type, data_index=0):
        """Arrays exchanged for `data_type`, in packing order.

        Raises
        ------
        ProtocolError
            If `data_type` cannot be exchanged, or tracers are requested
            from a model without tracers.
        """
        self._check_active()

        if data_type == DataType.STATE:
            return [
                self.get_data_state(data_index, DataLocation.NODE),
                self.get_data_state(data_index, DataLocation.R_EDGE),
            ]
        if data_type == DataType.TRACERS:
            if self.tracers is None:
                raise ProtocolError("Tracer exchange requested with zero tracers")
            return [self.get_data_tracers(data_index)]
        if data_type == DataType.VORTICITY:
            return [self.vorticity]
        if data_type == DataType.DIVERGENCE:
            return [self.divergence]
        if data_type == DataType.TEMPERATURE:
            return [self.temperature]
        if data_type == DataType.TOPOGRAPHY_DERIV:
            return [self.topography_deriv]
        raise ProtocolError("Invalid DataType {} for exchange".format(DataType(data_type).name))

    def consolidation_data(self, data_type, data_index=0):
        """Flat array sent to the root for `data_type`.

        State variables are taken from the node or r-edge array
        according to their location, in component order.

        Raises
        ------
        ProtocolError
            If `data_type` cannot be consolidated, or tracers are
            requested from a model without tracers.
        """
        self._check_active()
        grid = self._grid

        if data_type == DataType.STATE:
            node = self.get_data_state(data_index, DataLocation.NODE)
            redge = self.get_data_state(data_index, DataLocation.R_EDGE)
            parts = [
                (redge if location == DataLocation.R_EDGE else node)[c].ravel()
                for c, location in enumerate(grid.var_location)
            ]
            return np.concatenate(parts)
        if data_type == DataType.TRACERS:
            if self.tracers is None:
                raise ProtocolError("Tracer consolidation requested with zero tracers")
            return self.get_data_tracers(data_index).ravel().copy()
        if data_type == DataType.JACOBIAN:
            return np.broadcast_to(self.jacobian_2d, self.z_levels.shape).ravel().copy()
        if data_type == DataType.TOPOGRAPHY:
            return self.topography.ravel().copy()
        if data_type == DataType.LONGITUDE:
            return self.longitude.ravel().copy()
        if data_type == DataType.LATITUDE:
            return self.latitude.ravel().copy()
        if data_type == DataType.Z:
            return self.z_levels.ravel().copy()
        raise ProtocolError(
            "Invalid DataType {} for consolidation".format(DataType(data_type).name)
        )

    # ------------------------------------------------------------------
    # Geometry and initial conditions
    # ------------------------------------------------------------------

    def evaluate_geometric_terms(self):
        """Compute longitude, latitude, area elements and z levels.

        Longitude and latitude are in degrees. Halo nodes are placed by
        extending the patch's own panel coordinates.
        """
        self._check_active()
        grid = self._grid
        box = self.box
        cs_basis = CSBasis()

        xi, eta = np.meshgrid(box.a_nodes, box.b_nodes, indexing="ij")
        _, theta, phi = cs_basis.cube2spherical(xi, eta, box.panel, deg=True)
        self.longitude[:] = phi
        self.latitude[:] = 90 - theta

        self.jacobian_2d[:] = cs_basis.get_jacobian(xi, eta)

        area_2d = self.jacobian_2d * np.outer(np.diff(box.a_edges), np.diff(box.b_edges))
        self.element_area[:] = grid.r_eta_thickness[:, None, None] * area_2d
        self.element_area_redge[:] = grid.r_eta_thickness_redge[:, None, None] * area_2d

        self.z_levels[:] = grid.z_top * grid.r_eta_levels[:, None, None]

    def evaluate_test_case(self, test_case, data_index=0):
        """Fill a state slot, and optionally tracers, from a test case.

        Parameters
        ----------
        test_case : callable
            Called as ``test_case(lon, lat, z)`` with arrays of shape
            (R, A, B); must return an array of shape (components, R, A,
            B). Optional methods ``tracers(lon, lat, z)``,
            ``reference_state(lon, lat, z)`` and ``topography(lon, lat)``
            are used when present.
        data_index : int, optional
            State slot to fill.
        """
        self._check_active()
        grid = self._grid

        if hasattr(test_case, "topography"):
            self.topography[:] = test_case.topography(self.longitude, self.latitude)

        for location, array in (
            (DataLocation.NODE, self.get_data_state(data_index, DataLocation.NODE)),
            (DataLocation.R_EDGE, self.get_data_state(data_index, DataLocation.R_EDGE)),
        ):
            levels = grid.r_eta_levels if location == DataLocation.NODE else grid.r_eta_interfaces
            z = grid.z_top * np.broadcast_to(
                levels[:, None, None], (levels.size,) + self.longitude.shape
            )
            lon = np.broadcast_to(self.longitude, z.shape)
            lat = np.broadcast_to(self.latitude, z.shape)

            array[:] = test_case(lon, lat, z)

            if grid.has_reference_state and hasattr(test_case, "reference_state"):
                self.get_reference_state(location)[:] = test_case.reference_state(lon, lat, z)

            if location == DataLocation.NODE and self.tracers is not None:
                if hasattr(test_case, "tracers"):
                    self.get_data_tracers(data_index)[:] = test_case.tracers(lon, lat, z)

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    def prepare_exchange(self):
        """Post non-blocking receives for every halo relation."""
        self._check_active()
        self.connectivity.prepare_exchange()

    def send(self, data_type, data_index=0):
        """Pack and send the boundary data of `data_type`."""
        arrays = self.exchange_arrays(data_type, data_index)
        for array in arrays:
            self.connectivity.pack(array)
        self.connectivity.send()

    def receive(self, data_type, data_index=0):
        """Wait for and unpack the halo data of `data_type`.

        Raises
        ------
        ProtocolError
            If a message does not carry exactly the expected number of
            values.
        """
        arrays = self.exchange_arrays(data_type, data_index)

        while True:
            exterior_neighbor = self.connectivity.wait_receive()
            if exterior_neighbor is None:
                break

            expected = exterior_neighbor.exchange_size(arrays)
            if exterior_neighbor.recv_count != expected:
                raise ProtocolError(
                    "Patch {} received {} values from patch {} ({}), expected {}".format(
                        self._patch_index,
                        exterior_neighbor.recv_count,
                        exterior_neighbor.neighbor_index,
                        exterior_neighbor.direction.name,
                        expected,
                    )
                )

            for array in arrays:
                exterior_neighbor.unpack(array)

    def complete_exchange(self):
        """Complete outstanding sends."""
        self.connectivity.wait_send()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def checksum(self, data_type, checksums, data_index=0, checksum_type=ChecksumType.L2):
        """Accumulate per-component area-weighted norms over the interior.

        Parameters
        ----------
        data_type : DataType
            STATE or TRACERS.
        checksums : ndarray
            Per-component accumulator, updated in place.
        data_index : int, optional
            Data slot.
        checksum_type : ChecksumType, optional
            SUM and L1 accumulate weighted sums, L2 accumulates weighted
            squares and LINF the maximum absolute value.

        Raises
        ------
        ProtocolError
            If `data_type` is not STATE or TRACERS.
        """
        self._check_active()
        grid = self._grid
        interior = (Ellipsis,) + self.box.interior

        if data_type == DataType.STATE:
            node = self.get_data_state(data_index, DataLocation.NODE)
            redge = self.get_data_state(data_index, DataLocation.R_EDGE)
            fields = [
                (redge[c], self.element_area_redge)
                if location == DataLocation.R_EDGE
                else (node[c], self.element_area)
                for c, location in enumerate(grid.var_location)
            ]
        elif data_type == DataType.TRACERS:
            tracers = self.get_data_tracers(data_index)
            if tracers is None:
                return
            fields = [(tracers[c], self.element_area) for c in range(tracers.shape[0])]
        else:
            raise ProtocolError("Invalid DataType {} for checksum".format(DataType(data_type).name))

        for c, (values, area) in enumerate(fields):
            values, area = values[interior], area[interior]
            if checksum_type == ChecksumType.SUM:
                checksums[c] += np.sum(values * area)
            elif checksum_type == ChecksumType.L1:
                checksums[c] += np.sum(np.abs(values) * area)
            elif checksum_type == ChecksumType.L2:
                checksums[c] += np.sum(values * values * area)
            else:
                checksums[c] = max(checksums[c], np.max(np.abs(values)))

    # ------------------------------------------------------------------
    # Data slot operations
    # ------------------------------------------------------------------

    def _slots(self, data_type):
        self._check_active()
        if data_type == DataType.STATE:
            return [self.state_node, self.state_redge]
        if data_type == DataType.TRACERS:
            return [] if self.tracers is None else [self.tracers]
        raise ContractError("Invalid DataType {} for data slots".format(DataType(data_type).name))

    def copy_data(self, ix_source, ix_dest, data_type):
        """Copy data slot `ix_source` into slot `ix_dest`."""
        for slots in self._slots(data_type):
            self._check_slot(ix_source, len(slots), DataType(data_type).name)
            self._check_slot(ix_dest, len(slots), DataType(data_type).name)
            slots[ix_dest][:] = slots[ix_source]

    def linear_combine_data(self, coeff, ix_dest, data_type):
        """Set slot `ix_dest` to ``sum(coeff[m] * slot[m])``.

        The destination's own coefficient scales it in place, so
        `ix_dest` may appear on both sides of the combination.

        Raises
        ------
        ContractError
            If `ix_dest` is not covered by `coeff`, or `coeff` has more
            entries than there are slots.
        """
        if not 0 <= ix_dest < len(coeff):
            raise ContractError(
                "Destination index {} not covered by {} coefficients".format(ix_dest, len(coeff))
            )

        for slots in self._slots(data_type):
            if len(coeff) > len(slots):
                raise ContractError(
                    "{} coefficients given for {} data instances".format(len(coeff), len(slots))
                )

            dest = slots[ix_dest]
            if coeff[ix_dest] == 0.0:
                dest[:] = 0.0
            elif coeff[ix_dest] != 1.0:
                dest *= coeff[ix_dest]

            for m, c in enumerate(coeff):
                if m == ix_dest or c == 0.0:
                    continue
                dest += c * slots[m]

    def zero_data(self, ix_data, data_type):
        """Set data slot `ix_data` to zero."""
        for slots in self._slots(data_type):
            self._check_slot(ix_data, len(slots), DataType(data_type).name)
            slots[ix_data][:] = 0.0

    def add_reference_state(self, ix_data):
        """Add the node reference state to state slot `ix_data`.

        Variables at r-edges are left unchanged.
        """
        self.get_data_state(ix_data, DataLocation.NODE)[:] += self.reference_state_node
