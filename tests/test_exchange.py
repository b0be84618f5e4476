import itertools

import numpy as np
import pytest

from cubedgrid import (
    ContractError,
    DataLocation,
    DataType,
    InProcessWorld,
    ProtocolError,
)
from cubedgrid.cubed_sphere import topology
from conftest import build_grid, build_irregular_grid


def leading_offsets(shape):
    """Distinct offsets for every component and level of an array."""
    count = int(np.prod(shape))
    return 1.0e5 * np.arange(count, dtype=np.float64).reshape(shape)


def fill_codes(array, box):
    """Write the global position of every interior node into `array`.

    Node ``(a, b)`` of panel ``p`` gets ``p * 10000 + a * 100 + b`` plus an
    offset identifying its component and level. Halo nodes are set to -1.
    """
    ia, ib = np.meshgrid(np.arange(box.a_total_width), np.arange(box.b_total_width), indexing="ij")
    ga, gb = box.local_to_global(ia, ib)
    codes = box.panel * 10000.0 + ga * 100.0 + gb

    interior = (Ellipsis,) + box.interior
    array[:] = -1.0
    array[interior] = (codes + leading_offsets(array.shape[:-2])[..., None, None])[interior]


def check_codes(grid, array, box):
    """Check that every halo node holds the code of the node it duplicates."""
    resolution = grid.panel_resolution(box.refinement_level)
    offsets = leading_offsets(array.shape[:-2])

    for ia, ib in itertools.product(range(box.a_total_width), range(box.b_total_width)):
        if box.contains_global(*box.local_to_global(ia, ib)):
            continue

        location = topology.relative_coord(resolution, box.panel, *box.local_to_global(ia, ib))
        if location is None:
            np.testing.assert_array_equal(array[..., ia, ib], -1.0)
        else:
            panel, a, b = location
            expected = panel * 10000.0 + a * 100.0 + b + offsets
            np.testing.assert_array_equal(array[..., ia, ib], expected)


def fill_state(grid, data_index=0):
    for patch in grid.active_patches:
        for location in (DataLocation.NODE, DataLocation.R_EDGE):
            fill_codes(patch.get_data_state(data_index, location), patch.box)


def check_state(grid, data_index=0):
    for patch in grid.active_patches:
        for location in (DataLocation.NODE, DataLocation.R_EDGE):
            check_codes(grid, patch.get_data_state(data_index, location), patch.box)


def exchange_state(comm, irregular=False, **kwargs):
    grid = build_irregular_grid(comm, **kwargs) if irregular else build_grid(comm, **kwargs)
    fill_state(grid)
    grid.exchange(DataType.STATE)
    check_state(grid)
    return [patch.patch_index for patch in grid.active_patches]


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(patches_per_panel=1, halo_elements=1),
        dict(patches_per_panel=1, halo_elements=2),
        dict(patches_per_panel=2, halo_elements=2),
        dict(patches_per_panel=(2, 3), halo_elements=1),
        dict(irregular=True, halo_elements=2),
    ],
)
def test_exchange_single_rank(comm, kwargs):
    patches = exchange_state(comm, **kwargs)

    assert len(patches) > 0


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(patches_per_panel=1, halo_elements=2),
        dict(patches_per_panel=2, halo_elements=2),
        dict(irregular=True, halo_elements=2),
    ],
)
def test_exchange_four_ranks(kwargs):
    # Arrange
    world = InProcessWorld(4)

    # Act
    results = world.run(exchange_state, timeout=60, **kwargs)

    # Assert
    owned = sorted(itertools.chain.from_iterable(results))
    assert owned == list(range(len(owned)))
    for rank, patches in enumerate(results):
        assert all(patch_index % 4 == rank for patch_index in patches)


def test_exchange_many_patches():
    # Arrange: 4 x 4 patches per panel.
    world = InProcessWorld(4)
    assert world.max_tag == 32767

    # Act
    results = world.run(
        exchange_state, timeout=120, base_resolution=16, patches_per_panel=4, halo_elements=2
    )

    # Assert
    owned = sorted(itertools.chain.from_iterable(results))
    assert owned == list(range(96))


def test_exchange_three_dimensional(comm):
    # Arrange
    grid = build_grid(
        comm,
        patches_per_panel=2,
        halo_elements=2,
        dimensionality=3,
        r_elements=3,
        var_locations=[DataLocation.NODE, DataLocation.R_EDGE, DataLocation.NODE],
    )
    fill_state(grid)

    # Act
    grid.exchange(DataType.STATE)

    # Assert
    check_state(grid)
    assert grid.active_patches[0].get_data_state(0, DataLocation.R_EDGE).shape[1] == 4


def test_exchange_second_slot_leaves_first_untouched(comm):
    # Arrange
    grid = build_grid(comm, patches_per_panel=2, component_data_instances=2)
    fill_state(grid, data_index=1)
    for patch in grid.active_patches:
        patch.get_data_state(0)[:] = 7.0

    # Act
    grid.exchange(DataType.STATE, data_index=1)

    # Assert
    check_state(grid, data_index=1)
    for patch in grid.active_patches:
        assert np.all(patch.get_data_state(0) == 7.0)


def test_exchange_tracers_and_diagnostics(comm):
    # Arrange
    grid = build_irregular_grid(comm, tracers=2)
    arrays = {
        DataType.TRACERS: lambda patch: patch.get_data_tracers(0),
        DataType.VORTICITY: lambda patch: patch.vorticity,
        DataType.DIVERGENCE: lambda patch: patch.divergence,
        DataType.TEMPERATURE: lambda patch: patch.temperature,
        DataType.TOPOGRAPHY_DERIV: lambda patch: patch.topography_deriv,
    }

    for data_type, get_array in arrays.items():
        for patch in grid.active_patches:
            fill_codes(get_array(patch), patch.box)

        # Act
        grid.exchange(data_type)

        # Assert
        for patch in grid.active_patches:
            check_codes(grid, get_array(patch), patch.box)


def test_relations_point_at_owning_patch(comm):
    grid = build_irregular_grid(comm)

    for patch in grid.patches:
        box = patch.box
        for exterior_neighbor in patch.connectivity:
            ia = int(exterior_neighbor.recv_index[0].flat[0])
            ib = int(exterior_neighbor.recv_index[1].flat[0])
            ga, gb = box.local_to_global(ia, ib)

            found = grid.get_patch_from_coordinate_index(box.refinement_level, ga, gb, box.panel)

            assert found == exterior_neighbor.neighbor_index


def test_missing_sender_blocks_exchange():
    # Rank 1 skips the exchange, so rank 0 never receives its halo data.
    def rank_main(comm):
        grid = build_grid(comm)
        if comm.rank == 0:
            grid.exchange(DataType.STATE)
        else:
            comm.barrier()

    world = InProcessWorld(2)

    with pytest.raises(TimeoutError):
        world.run(rank_main, timeout=2.0)


def test_exchange_zero_tracers(comm):
    grid = build_grid(comm, tracers=0)

    with pytest.raises(ProtocolError):
        grid.exchange(DataType.TRACERS)


def test_exchange_invalid_data_type(comm):
    grid = build_grid(comm)

    with pytest.raises(ProtocolError):
        grid.exchange(DataType.JACOBIAN)


def test_exchange_requires_connectivity(comm):
    grid = build_grid(comm, connect=False)

    with pytest.raises(ContractError):
        grid.exchange(DataType.STATE)


def test_unpack_short_message(comm):
    grid = build_grid(comm)
    patch = grid.patches[0]
    exterior_neighbor = next(iter(patch.connectivity))

    exterior_neighbor.reset()
    exterior_neighbor.recv_count = 3

    with pytest.raises(ProtocolError):
        exterior_neighbor.unpack(patch.get_data_state(0))


def test_pack_overflow(comm):
    grid = build_grid(comm)
    patch = grid.patches[0]
    exterior_neighbor = next(iter(patch.connectivity))

    exterior_neighbor.initialize_buffers(1)
    exterior_neighbor.reset()

    with pytest.raises(ProtocolError):
        exterior_neighbor.pack(patch.get_data_state(0))


def test_exchange_mpi():
    pytest.importorskip("mpi4py")
    from cubedgrid import MPICommunicator

    comm = MPICommunicator()
    patches = exchange_state(comm, patches_per_panel=2, halo_elements=2)

    assert len(patches) == 24 // comm.size + (comm.rank < 24 % comm.size)
