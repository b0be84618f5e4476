import numpy as np
import pytest

from cubedgrid import ContractError, DataLocation, DataType
from conftest import build_grid


@pytest.fixture
def grid(comm):
    grid = build_grid(comm, tracers=1, component_data_instances=3, connect=False)
    for patch in grid.active_patches:
        for m in range(3):
            for location in (DataLocation.NODE, DataLocation.R_EDGE):
                patch.get_data_state(m, location)[:] = m + 1.0
            patch.get_data_tracers(m)[:] = 10.0 * (m + 1)
    return grid


def test_copy_data(grid):
    grid.copy_data(2, 0, DataType.STATE)

    for patch in grid.active_patches:
        assert np.all(patch.get_data_state(0) == 3.0)
        assert np.all(patch.get_data_state(0, DataLocation.R_EDGE) == 3.0)
        assert np.all(patch.get_data_tracers(0) == 10.0)


def test_copy_tracers(grid):
    grid.copy_data(1, 2, DataType.TRACERS)

    for patch in grid.active_patches:
        assert np.all(patch.get_data_tracers(2) == 20.0)
        assert np.all(patch.get_data_state(2) == 3.0)


def test_linear_combine(grid):
    # slot 2 = 0.5 * slot 0 + 2 * slot 1 + 1 * slot 2 = 0.5 + 4 + 3
    grid.linear_combine_data([0.5, 2.0, 1.0], 2, DataType.STATE)

    for patch in grid.active_patches:
        np.testing.assert_allclose(patch.get_data_state(2), 7.5)
        np.testing.assert_allclose(patch.get_data_state(1), 2.0)


def test_linear_combine_scales_destination(grid):
    grid.linear_combine_data([-1.0, 3.0], 0, DataType.TRACERS)

    for patch in grid.active_patches:
        np.testing.assert_allclose(patch.get_data_tracers(0), -10.0 + 60.0)


def test_linear_combine_zero_destination_coefficient(grid):
    # A zero coefficient discards the destination even if it holds NaN.
    for patch in grid.active_patches:
        patch.get_data_state(1)[:] = np.nan

    grid.linear_combine_data([2.0, 0.0], 1, DataType.STATE)

    for patch in grid.active_patches:
        np.testing.assert_array_equal(patch.get_data_state(1), 2.0)


def test_linear_combine_errors(grid):
    with pytest.raises(ContractError):
        grid.linear_combine_data([1.0, 1.0], 2, DataType.STATE)
    with pytest.raises(ContractError):
        grid.linear_combine_data([1.0, 1.0, 1.0, 1.0], 0, DataType.STATE)


def test_zero_data(grid):
    grid.zero_data(1, DataType.STATE)

    for patch in grid.active_patches:
        assert np.all(patch.get_data_state(1) == 0.0)
        assert np.all(patch.get_data_state(1, DataLocation.R_EDGE) == 0.0)
        assert np.all(patch.get_data_state(0) == 1.0)


def test_slot_out_of_range(grid):
    with pytest.raises(ContractError):
        grid.copy_data(0, 3, DataType.STATE)
    with pytest.raises(ContractError):
        grid.zero_data(-1, DataType.TRACERS)
    with pytest.raises(ContractError):
        grid.zero_data(0, DataType.JACOBIAN)


def test_add_reference_state_to_nodes(grid):
    for patch in grid.active_patches:
        patch.get_reference_state(DataLocation.NODE)[:] = 100.0
        patch.get_reference_state(DataLocation.R_EDGE)[:] = 200.0

    grid.add_reference_state(1)

    for patch in grid.active_patches:
        assert np.all(patch.get_data_state(1, DataLocation.NODE) == 102.0)
        assert np.all(patch.get_data_state(1, DataLocation.R_EDGE) == 2.0)
        assert np.all(patch.get_data_state(0) == 1.0)


def test_slot_operations_without_tracers(comm):
    grid = build_grid(comm, tracers=0, component_data_instances=2, connect=False)

    grid.copy_data(0, 1, DataType.TRACERS)
    grid.zero_data(1, DataType.TRACERS)
    grid.linear_combine_data([1.0, 1.0], 0, DataType.TRACERS)

    assert grid.patches[0].get_data_tracers(0) is None
