import numpy as np
import pytest

from cubedgrid import ChecksumType, DataLocation, DataType, InProcessWorld, ProtocolError
from cubedgrid.test_cases import CosineBell
from conftest import build_grid


def bell_checksums(comm):
    grid = build_grid(comm, base_resolution=12, patches_per_panel=2, tracers=1)
    grid.evaluate_test_case(CosineBell(3, tracers=1))
    return {
        (data_type, checksum_type): grid.checksum(data_type, checksum_type=checksum_type)
        for data_type in (DataType.STATE, DataType.TRACERS)
        for checksum_type in ChecksumType
    }


def test_checksum_independent_of_rank_count(comm):
    # Arrange
    expected = bell_checksums(comm)

    # Act
    results = InProcessWorld(4).run(bell_checksums, timeout=60)

    # Assert
    for key, value in results[0].items():
        if key[1] == ChecksumType.LINF:
            np.testing.assert_array_equal(value, expected[key])
        else:
            np.testing.assert_allclose(value, expected[key], rtol=1e-12)

    for other in results[1:]:
        assert all(value is None for value in other.values())


def test_checksum_of_constant_is_sphere_area(comm):
    # Arrange
    grid = build_grid(comm, base_resolution=20, components=2)
    for patch in grid.active_patches:
        patch.get_data_state(0)[:] = 1.0

    # Act
    total = grid.checksum(DataType.STATE, checksum_type=ChecksumType.SUM)
    l2 = grid.checksum(DataType.STATE, checksum_type=ChecksumType.L2)
    linf = grid.checksum(DataType.STATE, checksum_type=ChecksumType.LINF)

    # Assert
    np.testing.assert_allclose(total, 4 * np.pi, rtol=1e-2)
    np.testing.assert_allclose(l2, np.sqrt(total))
    np.testing.assert_array_equal(linf, [1.0, 1.0])


def test_checksum_ignores_halo(comm):
    grid = build_grid(comm)
    for patch in grid.active_patches:
        patch.get_data_state(0)[:] = 1e6
        patch.get_data_state(0)[(Ellipsis,) + patch.box.interior] = -2.0

    linf = grid.checksum(DataType.STATE, checksum_type=ChecksumType.LINF)
    l1 = grid.checksum(DataType.STATE, checksum_type=ChecksumType.L1)
    total = grid.checksum(DataType.STATE, checksum_type=ChecksumType.SUM)

    np.testing.assert_array_equal(linf, [2.0, 2.0, 2.0])
    np.testing.assert_allclose(l1, -total)


def test_checksum_uses_redge_areas(comm):
    grid = build_grid(
        comm,
        dimensionality=3,
        r_elements=2,
        components=2,
        var_locations=[DataLocation.NODE, DataLocation.R_EDGE],
    )
    for patch in grid.active_patches:
        patch.get_data_state(0, DataLocation.NODE)[:] = 1.0
        patch.get_data_state(0, DataLocation.R_EDGE)[:] = 1.0

    total = grid.checksum(DataType.STATE, checksum_type=ChecksumType.SUM)

    # Node and r-edge layer thicknesses both sum to the column height.
    np.testing.assert_allclose(total[0], total[1])


def test_checksum_zero_tracers(comm):
    grid = build_grid(comm, tracers=0)

    assert grid.checksum(DataType.TRACERS) is None


def test_checksum_invalid_data_type(comm):
    grid = build_grid(comm)

    with pytest.raises(ProtocolError):
        grid.checksum(DataType.VORTICITY)
