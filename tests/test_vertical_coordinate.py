import numpy as np
import pytest

from cubedgrid import ConfigurationError, CubedSphereGrid, DataLocation, Model


def make_grid(comm, dimensionality=3, r_elements=4, var_locations=None):
    model = Model(components=3, dimensionality=dimensionality, var_locations=var_locations)
    return CubedSphereGrid(model, comm, 4, r_elements=r_elements)


def test_two_dimensional_dummy_level(comm):
    grid = make_grid(comm, dimensionality=2, r_elements=1)

    grid.initialize_vertical_coordinate()

    assert grid.var_location == [DataLocation.NODE] * 3
    assert grid.var_index == [0, 1, 2]
    np.testing.assert_allclose(grid.r_eta_levels, [0.5])
    np.testing.assert_allclose(grid.r_eta_thickness, [1.0])


def test_two_dimensional_model_rejects_levels(comm):
    with pytest.raises(ConfigurationError):
        make_grid(comm, dimensionality=2, r_elements=3)


def test_default_interfaces(comm):
    grid = make_grid(comm)

    grid.initialize_vertical_coordinate()

    np.testing.assert_allclose(grid.r_eta_interfaces, [0.0, 0.25, 0.5, 0.75, 1.0])
    np.testing.assert_allclose(grid.r_eta_levels, [0.125, 0.375, 0.625, 0.875])
    np.testing.assert_allclose(grid.r_eta_thickness_redge, [0.125, 0.25, 0.25, 0.25, 0.125])


def test_custom_interfaces(comm):
    grid = make_grid(
        comm,
        r_elements=2,
        var_locations=[DataLocation.R_EDGE, DataLocation.NODE, DataLocation.R_EDGE],
    )

    grid.initialize_vertical_coordinate([0.0, 0.2, 1.0])

    np.testing.assert_allclose(grid.r_eta_levels, [0.1, 0.6])
    assert grid.var_index == [0, 0, 1]


def test_interface_count_mismatch(comm):
    grid = make_grid(comm, r_elements=4)

    with pytest.raises(ConfigurationError, match="mismatch"):
        grid.initialize_vertical_coordinate([0.0, 0.5, 1.0])


def test_interfaces_must_increase(comm):
    grid = make_grid(comm, r_elements=2)

    with pytest.raises(ConfigurationError):
        grid.initialize_vertical_coordinate([0.0, 0.7, 0.3])


def test_unsupported_location(comm):
    grid = make_grid(
        comm, var_locations=[DataLocation.NODE, DataLocation.A_EDGE, DataLocation.NODE]
    )

    with pytest.raises(ConfigurationError, match="Unsupported"):
        grid.initialize_vertical_coordinate()


def test_model_validation():
    with pytest.raises(ConfigurationError):
        Model(dimensionality=1)
    with pytest.raises(ConfigurationError):
        Model(components=2, var_locations=[DataLocation.NODE])
    with pytest.raises(ConfigurationError):
        Model(tracers=-1)
