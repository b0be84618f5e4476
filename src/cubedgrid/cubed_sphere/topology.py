"""Cubed sphere panel topology.

This module describes how the six panels of the cubed sphere are
stitched together. Each of the twelve cube edges is a seam between two
panel edges; crossing a seam may reverse the along-edge index and may
swap the alpha and beta axes. The functions here fold a global index
that lies outside its panel onto the neighbouring panel, and map a
relation direction from one panel's frame into its neighbour's.

Panel numbering and local frames follow
`cubedgrid.cubed_sphere.cs_basis.CSBasis`.
"""

import numpy as np

from cubedgrid.exceptions import ConfigurationError
from cubedgrid.primitives.data_types import Direction

N_PANELS = 6

DIRECTION_VECTORS = {
    Direction.RIGHT: (1, 0),
    Direction.TOP: (0, 1),
    Direction.LEFT: (-1, 0),
    Direction.BOTTOM: (0, -1),
    Direction.TOP_RIGHT: (1, 1),
    Direction.TOP_LEFT: (-1, 1),
    Direction.BOTTOM_LEFT: (-1, -1),
    Direction.BOTTOM_RIGHT: (1, -1),
}

_VECTOR_DIRECTIONS = {vector: direction for direction, vector in DIRECTION_VECTORS.items()}

# Seams as (panel, edge, neighbour panel, neighbour edge, operation).
# Operations: "N" keeps the along-edge index, "R" reverses it, "T"
# swaps the axes and "TR" swaps the axes and reverses the index.
SEAMS = (
    (0, Direction.RIGHT, 1, Direction.LEFT, "N"),
    (1, Direction.RIGHT, 2, Direction.LEFT, "N"),
    (2, Direction.RIGHT, 3, Direction.LEFT, "N"),
    (3, Direction.RIGHT, 0, Direction.LEFT, "N"),
    (0, Direction.TOP, 4, Direction.BOTTOM, "N"),
    (1, Direction.TOP, 4, Direction.RIGHT, "T"),
    (2, Direction.TOP, 4, Direction.TOP, "R"),
    (3, Direction.TOP, 4, Direction.LEFT, "TR"),
    (0, Direction.BOTTOM, 5, Direction.TOP, "N"),
    (1, Direction.BOTTOM, 5, Direction.RIGHT, "TR"),
    (2, Direction.BOTTOM, 5, Direction.BOTTOM, "R"),
    (3, Direction.BOTTOM, 5, Direction.LEFT, "T"),
)


def _build_seam_lookup():
    lookup = {}
    for panel, edge, neighbor, neighbor_edge, operation in SEAMS:
        reverse = "R" in operation
        lookup[(panel, edge)] = (neighbor, neighbor_edge, reverse)
        lookup[(neighbor, neighbor_edge)] = (panel, edge, reverse)
    return lookup


_SEAM_LOOKUP = _build_seam_lookup()


def seam(panel, edge):
    """Find the panel edge on the other side of a seam.

    Parameters
    ----------
    panel : int
        Panel index.
    edge : Direction
        Edge direction (RIGHT, TOP, LEFT or BOTTOM).

    Returns
    -------
    neighbor : int
        Panel on the other side of the seam.
    neighbor_edge : Direction
        Edge of `neighbor` along the seam.
    reverse : bool
        Whether the along-edge index runs in opposite directions.
    flip : bool
        Whether the seam joins an alpha edge to a beta edge.
    """
    neighbor, neighbor_edge, reverse = _SEAM_LOOKUP[(panel, Direction(edge))]
    flip = _edge_axis(edge) != _edge_axis(neighbor_edge)
    return neighbor, neighbor_edge, reverse, flip


def _edge_axis(edge):
    # 0 for edges normal to alpha, 1 for edges normal to beta.
    return 0 if edge in (Direction.RIGHT, Direction.LEFT) else 1


def _edge_normal(edge):
    return np.array(DIRECTION_VECTORS[edge])


def _edge_tangent(edge):
    return np.array((0, 1) if _edge_axis(edge) == 0 else (1, 0))


def opposite_direction(direction):
    """Return the direction pointing the other way."""
    dx, dy = DIRECTION_VECTORS[Direction(direction)]
    return _VECTOR_DIRECTIONS[(-dx, -dy)]


def shared_edge(panel_first, panel_second):
    """Return the edge of `panel_first` that borders `panel_second`.

    Raises
    ------
    ConfigurationError
        If the panels do not share a seam.
    """
    for edge in (Direction.RIGHT, Direction.TOP, Direction.LEFT, Direction.BOTTOM):
        if _SEAM_LOOKUP[(panel_first, edge)][0] == panel_second:
            return edge
    raise ConfigurationError(
        "Panels {} and {} are not adjacent".format(panel_first, panel_second)
    )


def opposing_direction(panel_first, panel_second, direction):
    """Map a relation direction into the neighbouring panel's frame.

    A relation from a patch on `panel_first` pointing in `direction`
    has a reciprocal relation on `panel_second`. The reciprocal's
    direction is the image of `direction` in the second panel's frame,
    negated.

    Parameters
    ----------
    panel_first : int
        Panel of the patch that owns the relation.
    panel_second : int
        Panel of the neighbouring patch.
    direction : Direction
        Direction of the relation on `panel_first`.

    Returns
    -------
    opposing : Direction
        Direction of the reciprocal relation.
    reverse : bool
        Whether the along-edge index is reversed across the seam.
    flip : bool
        Whether alpha and beta are swapped across the seam.

    Raises
    ------
    ConfigurationError
        If the panels are distinct and not adjacent.
    """
    direction = Direction(direction)
    if panel_first == panel_second:
        return opposite_direction(direction), False, False

    edge = shared_edge(panel_first, panel_second)
    _, neighbor_edge, reverse, flip = seam(panel_first, edge)

    # Rotation taking vectors of the first frame to the second: the
    # outward normal maps to the neighbour's inward normal and the
    # tangent maps to the neighbour's tangent, reversed if required.
    sign = -1 if reverse else 1
    rotation = -np.outer(_edge_normal(neighbor_edge), _edge_normal(edge)) + sign * np.outer(
        _edge_tangent(neighbor_edge), _edge_tangent(edge)
    )
    mapped = rotation @ np.array(DIRECTION_VECTORS[direction])
    opposing = _VECTOR_DIRECTIONS[(-int(mapped[0]), -int(mapped[1]))]
    return opposing, reverse, flip


def relative_coord(resolution, panel, ix_a, ix_b):
    """Fold a global index onto the panel that contains it.

    Parameters
    ----------
    resolution : int
        Number of cells along a panel edge.
    panel : int
        Panel in whose (possibly extended) frame the index is given.
    ix_a, ix_b : int
        Global cell indices, possibly outside ``[0, resolution)``.

    Returns
    -------
    tuple of int or None
        ``(panel, ix_a, ix_b)`` on the panel that owns the cell, or None
        if the cell lies diagonally beyond a cube corner.
    """
    n = resolution
    a_inside = 0 <= ix_a < n
    b_inside = 0 <= ix_b < n

    if a_inside and b_inside:
        return panel, ix_a, ix_b
    if not a_inside and not b_inside:
        return None

    if ix_a >= n:
        edge, depth, along = Direction.RIGHT, ix_a - n, ix_b
    elif ix_a < 0:
        edge, depth, along = Direction.LEFT, -1 - ix_a, ix_b
    elif ix_b >= n:
        edge, depth, along = Direction.TOP, ix_b - n, ix_a
    else:
        edge, depth, along = Direction.BOTTOM, -1 - ix_b, ix_a

    if depth >= n:
        return None

    neighbor, neighbor_edge, reverse, _ = seam(panel, edge)
    if reverse:
        along = n - 1 - along

    if neighbor_edge == Direction.LEFT:
        return neighbor, depth, along
    if neighbor_edge == Direction.RIGHT:
        return neighbor, n - 1 - depth, along
    if neighbor_edge == Direction.BOTTOM:
        return neighbor, along, depth
    return neighbor, along, n - 1 - depth
