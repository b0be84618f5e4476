"""PatchBox module.

This module contains the PatchBox class, the immutable extent of a
rectangular patch on one cubed sphere panel.
"""

import numpy as np

from cubedgrid.exceptions import ConfigurationError


class PatchBox:
    """Immutable extent of a rectangular patch.

    A patch covers the global interior index range
    ``[a_global_interior_begin, a_global_interior_end)`` by
    ``[b_global_interior_begin, b_global_interior_end)`` on one panel at
    one refinement level, padded on every side by `halo_elements` halo
    nodes. Local indices run from 0 to the total width, with the
    interior starting at ``halo_elements``.

    Attributes
    ----------
    panel : int
        Panel index (0-5).
    refinement_level : int
        Refinement level of the patch.
    halo_elements : int
        Width of the halo on every side.
    a_global_interior_begin, a_global_interior_end : int
        Global interior index range in the alpha direction.
    b_global_interior_begin, b_global_interior_end : int
        Global interior index range in the beta direction.
    a_nodes, b_nodes : ndarray
        Node coordinates, including halo, in radians.
    a_edges, b_edges : ndarray
        Edge coordinates, including halo, in radians.
    """

    def __init__(
        self,
        panel,
        refinement_level,
        halo_elements,
        a_global_interior_begin,
        a_global_interior_end,
        b_global_interior_begin,
        b_global_interior_end,
        a_nodes,
        b_nodes,
        a_edges=None,
        b_edges=None,
    ):
        """Initialize the patch extent.

        Parameters
        ----------
        panel : int
            Panel index.
        refinement_level : int
            Refinement level, 0 being the base resolution.
        halo_elements : int
            Width of the halo on every side.
        a_global_interior_begin, a_global_interior_end : int
            Global interior bounds in the alpha direction.
        b_global_interior_begin, b_global_interior_end : int
            Global interior bounds in the beta direction.
        a_nodes, b_nodes : array-like
            Node coordinates; length must equal the total width.
        a_edges, b_edges : array-like, optional
            Edge coordinates; length must equal the total width plus
            one. If None, edges are placed halfway between nodes and
            extrapolated at the ends.

        Raises
        ------
        ConfigurationError
            If the bounds are empty or negative, or if a coordinate
            array has the wrong length.
        """
        if halo_elements < 0:
            raise ConfigurationError(
                "halo_elements must be non-negative, got {}".format(halo_elements)
            )
        if refinement_level < 0:
            raise ConfigurationError(
                "refinement_level must be non-negative, got {}".format(refinement_level)
            )
        if a_global_interior_end <= a_global_interior_begin:
            raise ConfigurationError(
                "Empty alpha interior [{}, {})".format(
                    a_global_interior_begin, a_global_interior_end
                )
            )
        if b_global_interior_end <= b_global_interior_begin:
            raise ConfigurationError(
                "Empty beta interior [{}, {})".format(
                    b_global_interior_begin, b_global_interior_end
                )
            )

        self._panel = int(panel)
        self._refinement_level = int(refinement_level)
        self._halo_elements = int(halo_elements)
        self._a_global_interior_begin = int(a_global_interior_begin)
        self._a_global_interior_end = int(a_global_interior_end)
        self._b_global_interior_begin = int(b_global_interior_begin)
        self._b_global_interior_end = int(b_global_interior_end)

        self._a_nodes = self._check_coordinates(a_nodes, self.a_total_width, "a_nodes")
        self._b_nodes = self._check_coordinates(b_nodes, self.b_total_width, "b_nodes")

        if a_edges is None:
            a_edges = self._edges_from_nodes(self._a_nodes)
        if b_edges is None:
            b_edges = self._edges_from_nodes(self._b_nodes)

        self._a_edges = self._check_coordinates(a_edges, self.a_total_width + 1, "a_edges")
        self._b_edges = self._check_coordinates(b_edges, self.b_total_width + 1, "b_edges")

    @staticmethod
    def _check_coordinates(values, expected_length, name):
        values = np.array(values, dtype=np.float64).ravel()
        if values.size != expected_length:
            raise ConfigurationError(
                "{} has {} entries, expected {}".format(name, values.size, expected_length)
            )
        values.setflags(write=False)
        return values

    @staticmethod
    def _edges_from_nodes(nodes):
        if nodes.size == 1:
            return np.array([nodes[0] - 0.5, nodes[0] + 0.5])
        midpoints = 0.5 * (nodes[1:] + nodes[:-1])
        return np.concatenate(
            ([2 * nodes[0] - midpoints[0]], midpoints, [2 * nodes[-1] - midpoints[-1]])
        )

    @property
    def panel(self):
        return self._panel

    @property
    def refinement_level(self):
        return self._refinement_level

    @property
    def halo_elements(self):
        return self._halo_elements

    @property
    def a_global_interior_begin(self):
        return self._a_global_interior_begin

    @property
    def a_global_interior_end(self):
        return self._a_global_interior_end

    @property
    def b_global_interior_begin(self):
        return self._b_global_interior_begin

    @property
    def b_global_interior_end(self):
        return self._b_global_interior_end

    @property
    def a_nodes(self):
        return self._a_nodes

    @property
    def b_nodes(self):
        return self._b_nodes

    @property
    def a_edges(self):
        return self._a_edges

    @property
    def b_edges(self):
        return self._b_edges

    @property
    def a_interior_width(self):
        return self._a_global_interior_end - self._a_global_interior_begin

    @property
    def b_interior_width(self):
        return self._b_global_interior_end - self._b_global_interior_begin

    @property
    def a_total_width(self):
        return self.a_interior_width + 2 * self._halo_elements

    @property
    def b_total_width(self):
        return self.b_interior_width + 2 * self._halo_elements

    @property
    def total_nodes(self):
        return self.a_total_width * self.b_total_width

    @property
    def interior_perimeter(self):
        return 2 * (self.a_interior_width + self.b_interior_width)

    @property
    def a_interior_begin(self):
        return self._halo_elements

    @property
    def a_interior_end(self):
        return self._halo_elements + self.a_interior_width

    @property
    def b_interior_begin(self):
        return self._halo_elements

    @property
    def b_interior_end(self):
        return self._halo_elements + self.b_interior_width

    @property
    def a_global_begin(self):
        """Global alpha index of local index 0."""
        return self._a_global_interior_begin - self._halo_elements

    @property
    def b_global_begin(self):
        """Global beta index of local index 0."""
        return self._b_global_interior_begin - self._halo_elements

    @property
    def interior(self):
        """Tuple of slices selecting the interior of an (A, B) array."""
        return (
            slice(self.a_interior_begin, self.a_interior_end),
            slice(self.b_interior_begin, self.b_interior_end),
        )

    def contains_global(self, ix_a, ix_b):
        """Check whether a global index lies in the patch interior.

        Parameters
        ----------
        ix_a, ix_b : int
            Global alpha and beta indices at this patch's level.

        Returns
        -------
        bool
            True if the index is an interior node of this patch.
        """
        return (
            self._a_global_interior_begin <= ix_a < self._a_global_interior_end
            and self._b_global_interior_begin <= ix_b < self._b_global_interior_end
        )

    def local_to_global(self, ix_a, ix_b):
        """Convert local indices to global indices."""
        return ix_a + self.a_global_begin, ix_b + self.b_global_begin

    def global_to_local(self, ix_a, ix_b):
        """Convert global indices to local indices."""
        return ix_a - self.a_global_begin, ix_b - self.b_global_begin

    def __eq__(self, other):
        if not isinstance(other, PatchBox):
            return NotImplemented
        return (
            self.bounds == other.bounds
            and np.array_equal(self._a_nodes, other.a_nodes)
            and np.array_equal(self._b_nodes, other.b_nodes)
            and np.array_equal(self._a_edges, other.a_edges)
            and np.array_equal(self._b_edges, other.b_edges)
        )

    __hash__ = None

    @property
    def bounds(self):
        """Integer description ``(panel, level, halo, a0, a1, b0, b1)``."""
        return (
            self._panel,
            self._refinement_level,
            self._halo_elements,
            self._a_global_interior_begin,
            self._a_global_interior_end,
            self._b_global_interior_begin,
            self._b_global_interior_end,
        )

    def __repr__(self):
        return (
            "PatchBox(panel={}, level={}, halo={}, a=[{}, {}), b=[{}, {}))".format(*self.bounds)
        )
