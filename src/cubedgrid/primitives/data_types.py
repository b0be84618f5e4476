"""Data type enumerations.

This module defines the enumerations used to address grid data: which
field is meant (`DataType`), where on the mesh it lives
(`DataLocation`), which side of a patch a relation refers to
(`Direction`) and which norm a checksum computes (`ChecksumType`).
"""

from enum import IntEnum


class DataType(IntEnum):
    """Kinds of data held by a grid patch."""

    STATE = 0
    TRACERS = 1
    REFERENCE_STATE = 2
    JACOBIAN = 3
    TOPOGRAPHY = 4
    TOPOGRAPHY_DERIV = 5
    LONGITUDE = 6
    LATITUDE = 7
    Z = 8
    VORTICITY = 9
    DIVERGENCE = 10
    TEMPERATURE = 11


class DataLocation(IntEnum):
    """Staggering location of a variable."""

    NONE = 0
    NODE = 1
    A_EDGE = 2
    B_EDGE = 3
    R_EDGE = 4


class Direction(IntEnum):
    """Compass direction of a patch side or corner.

    The four edge directions come first so that ``direction < 4``
    identifies an edge relation.
    """

    RIGHT = 0
    TOP = 1
    LEFT = 2
    BOTTOM = 3
    TOP_RIGHT = 4
    TOP_LEFT = 5
    BOTTOM_LEFT = 6
    BOTTOM_RIGHT = 7

    @property
    def is_edge(self):
        return self < 4

    @property
    def is_corner(self):
        return self >= 4


class ChecksumType(IntEnum):
    """Norms computed by `Grid.checksum`."""

    SUM = 0
    L1 = 1
    L2 = 2
    LINF = 3


# Data types that can be exchanged between neighbouring patches.
EXCHANGE_DATA_TYPES = (
    DataType.STATE,
    DataType.TRACERS,
    DataType.VORTICITY,
    DataType.DIVERGENCE,
    DataType.TEMPERATURE,
    DataType.TOPOGRAPHY_DERIV,
)

# Data types that can be consolidated at the root rank.
CONSOLIDATION_DATA_TYPES = (
    DataType.STATE,
    DataType.TRACERS,
    DataType.JACOBIAN,
    DataType.TOPOGRAPHY,
    DataType.LONGITUDE,
    DataType.LATITUDE,
    DataType.Z,
)
