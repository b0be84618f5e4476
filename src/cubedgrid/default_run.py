"""Default run script for cubedgrid.

This module contains the function run_cubedgrid() which builds a cubed
sphere grid, distributes it over the available ranks, fills it with an
analytic test case and exercises the halo exchange, checksums and root
consolidation. It is primarily used for testing purposes and as a
starting point for model drivers.
"""


def run_cubedgrid(
    base_resolution=10,
    patches_per_panel=1,
    halo_elements=2,
    components=3,
    tracers=1,
    dimensionality=2,
    r_elements=1,
    filename_prefix=None,
    comm=None,
    print_info=True,
):
    """Run a default cubedgrid demonstration with the given parameters.

    Parameters
    ----------
    base_resolution : int, optional
        Number of cells along each panel edge.
    patches_per_panel : int or tuple of int, optional
        Number of patches along each panel axis.
    halo_elements : int, optional
        Halo width of every patch.
    components : int, optional
        Number of state components.
    tracers : int, optional
        Number of tracers.
    dimensionality : {2, 3}, optional
        Model dimensionality.
    r_elements : int, optional
        Number of vertical levels (must be 1 for 2D models).
    filename_prefix : str, optional
        If given, the grid layout is written to
        ``<filename_prefix>_grid.ncdf``.
    comm : Communicator, optional
        Communication context. Defaults to an `MPICommunicator` on
        ``MPI.COMM_WORLD``.
    print_info : bool, optional
        Whether rank 0 prints progress and checksums.

    Returns
    -------
    grid : CubedSphereGrid
        The distributed grid after one halo exchange.
    consolidated : dict or None
        On rank 0, the consolidated state and jacobian keyed by
        ``(patch_index, data_type)``. None on other ranks.
    """
    from cubedgrid.grid.cs_grid import CubedSphereGrid
    from cubedgrid.model import Model
    from cubedgrid.primitives.data_types import ChecksumType, DataType
    from cubedgrid.test_cases import CosineBell

    if comm is None:
        from cubedgrid.parallel.communicator import MPICommunicator

        comm = MPICommunicator()

    model = Model(
        components=components,
        tracers=tracers,
        dimensionality=dimensionality,
        halo_elements=halo_elements,
        component_data_instances=2,
    )

    grid = CubedSphereGrid(model, comm, base_resolution, r_elements=r_elements)
    grid.generate_patches(patches_per_panel)
    grid.distribute_patches(print_info=print_info)
    grid.initialize_connectivity(print_info=print_info)

    if filename_prefix is not None:
        grid.to_file(filename_prefix, print_info=print_info)

    grid.evaluate_test_case(CosineBell(components, tracers=tracers))
    grid.exchange(DataType.STATE)
    if tracers > 0:
        grid.exchange(DataType.TRACERS)

    # Keep a copy of the initial state in the second slot.
    grid.copy_data(0, 1, DataType.STATE)

    for checksum_type in ChecksumType:
        checksums = grid.checksum(DataType.STATE, checksum_type=checksum_type)
        if print_info and checksums is not None:
            print("State {:>4s}: {}".format(checksum_type.name, checksums))

    consolidated = grid.consolidate([DataType.STATE, DataType.JACOBIAN])
    if print_info and consolidated is not None:
        print("Consolidated {} patch arrays at root".format(len(consolidated)))

    return grid, consolidated
