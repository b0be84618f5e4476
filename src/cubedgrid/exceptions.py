"""Exceptions.

This module defines the exception hierarchy raised by the cubedgrid
package. All exceptions derive from `CubedGridError` and additionally
from the built-in exception that best describes them, so callers that
only know about ``ValueError`` or ``IndexError`` still catch them.
"""


class CubedGridError(Exception):
    """Base class for all cubedgrid errors."""


class ConfigurationError(CubedGridError, ValueError):
    """Raised for invalid grid, model or decomposition settings.

    Examples are node count mismatches in the vertical coordinate,
    unsupported dimensionality, patches too small to carry a diagonal
    halo relation, and malformed grid files.
    """


class ProtocolError(CubedGridError, RuntimeError):
    """Raised when a communication protocol is violated.

    Covers tags or patch indices outside their valid range, messages
    with an unexpected element count, duplicate or late consolidation
    messages, and connectivity that is not symmetric across ranks.
    """


class ContractError(CubedGridError, IndexError):
    """Raised when a caller breaks an API contract.

    Covers out-of-range data slot indices, data operations on patches
    that hold no data on this rank, and repeated initialization.
    """
