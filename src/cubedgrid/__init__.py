"""
cubedgrid: Domain decomposed cubed sphere grids for atmospheric models.

This package provides patch connectivity across cubed sphere panel
seams, a halo exchange protocol over non-blocking messages and the
consolidation of distributed fields on the root rank.

Attributes
----------
CubedSphereGrid : class
    Grid whose patches tile the six cubed sphere panels.
Grid : class
    Domain-independent grid base class.
GridPatch : class
    A patch with its field storage and halo relations.
PatchBox : class
    Immutable extent of a patch.
Connectivity : class
    Halo relations of one patch.
ExteriorNeighbor : class
    One halo relation.
ConsolidationStatus : class
    Bookkeeping of one root consolidation round.
Model : class
    Description of the equation set carried by a grid.
CSBasis : class
    Cubed sphere geometry.
MPICommunicator : class
    Communicator backed by mpi4py.
InProcessWorld : class
    Threaded in-process transport for tests.
run_cubedgrid : function
    Default demonstration run.
"""

from .cubed_sphere.cs_basis import CSBasis
from .default_run import run_cubedgrid
from .exceptions import ConfigurationError, ContractError, CubedGridError, ProtocolError
from .grid.connectivity import Connectivity, ExteriorNeighbor
from .grid.consolidation import ConsolidationMessage, ConsolidationStatus
from .grid.cs_grid import CubedSphereGrid
from .grid.grid import Grid
from .grid.grid_patch import GridPatch
from .model import Model
from .parallel.communicator import InProcessWorld, MPICommunicator
from .primitives.data_types import ChecksumType, DataLocation, DataType, Direction
from .primitives.patch_box import PatchBox

__all__ = [
    "CSBasis",
    "ChecksumType",
    "ConfigurationError",
    "Connectivity",
    "ConsolidationMessage",
    "ConsolidationStatus",
    "ContractError",
    "CubedGridError",
    "CubedSphereGrid",
    "DataLocation",
    "DataType",
    "Direction",
    "ExteriorNeighbor",
    "Grid",
    "GridPatch",
    "InProcessWorld",
    "MPICommunicator",
    "Model",
    "PatchBox",
    "ProtocolError",
    "run_cubedgrid",
]
