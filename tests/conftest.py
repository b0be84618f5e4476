import pytest

from cubedgrid import CSBasis, CubedSphereGrid, InProcessWorld, Model, PatchBox


def build_grid(
    comm,
    base_resolution=10,
    patches_per_panel=1,
    halo_elements=2,
    components=3,
    tracers=0,
    dimensionality=2,
    r_elements=1,
    var_locations=None,
    component_data_instances=1,
    connect=True,
):
    model = Model(
        components=components,
        tracers=tracers,
        dimensionality=dimensionality,
        var_locations=var_locations,
        halo_elements=halo_elements,
        component_data_instances=component_data_instances,
    )
    grid = CubedSphereGrid(model, comm, base_resolution, r_elements=r_elements)
    grid.generate_patches(patches_per_panel)
    grid.distribute_patches()
    if connect:
        grid.initialize_connectivity()
    return grid


def make_box(panel, a0, a1, b0, b1, resolution, halo=2, level=0):
    cs_basis = CSBasis()
    a_nodes, a_edges = cs_basis.get_patch_coordinates(a0, a1, halo, resolution)
    b_nodes, b_edges = cs_basis.get_patch_coordinates(b0, b1, halo, resolution)
    return PatchBox(panel, level, halo, a0, a1, b0, b1, a_nodes, b_nodes, a_edges, b_edges)


def build_irregular_grid(comm, halo_elements=2, components=3, connect=True, **model_kwargs):
    """Grid whose panels 0 and 3 are split so that patch edges do not line up.

    Panels 0 and 3 each carry four patches::

        +-----+-----------+
        |  C  |     D     |
        +-----+--+--------+
        |   A    |   B    |
        +--------+--------+

    with A = [0, 5) x [0, 5), B = [5, 10) x [0, 5), C = [0, 3) x [5, 10)
    and D = [3, 10) x [5, 10). All other panels are single patches.
    """
    model = Model(components=components, halo_elements=halo_elements, **model_kwargs)
    grid = CubedSphereGrid(model, comm, 10)

    split = [(0, 5, 0, 5), (5, 10, 0, 5), (0, 3, 5, 10), (3, 10, 5, 10)]
    for panel in range(6):
        extents = split if panel in (0, 3) else [(0, 10, 0, 10)]
        for a0, a1, b0, b1 in extents:
            grid.add_patch(make_box(panel, a0, a1, b0, b1, 10, halo=halo_elements))

    grid.distribute_patches()
    if connect:
        grid.initialize_connectivity()
    return grid


@pytest.fixture
def comm():
    """Communicator of a single-rank in-process world."""
    return InProcessWorld(1).communicators[0]

