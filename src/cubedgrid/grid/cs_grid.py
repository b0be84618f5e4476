"""Cubed sphere grid module.

This module contains the CubedSphereGrid class, a Grid whose patches
tile the six panels of an equiangular cubed sphere.
"""

from cubedgrid.cubed_sphere import topology
from cubedgrid.cubed_sphere.cs_basis import CSBasis
from cubedgrid.exceptions import ConfigurationError
from cubedgrid.grid.grid import Grid
from cubedgrid.primitives.patch_box import PatchBox


class CubedSphereGrid(Grid):
    """Grid on the equiangular cubed sphere.

    Global indices of a patch are cell indices on its panel at the
    patch's refinement level, so level ``L`` has
    ``base_resolution * refinement_ratio**L`` cells along each panel
    edge.

    Parameters
    ----------
    model : Model
        Equation set.
    comm : Communicator
        Communication context.
    base_resolution : int
        Cells per panel edge at refinement level 0.
    refinement_ratio : int, optional
        Resolution ratio between consecutive levels.
    r_elements : int, optional
        Number of vertical levels.
    grid_stamp : int, optional
        Version stamp of the patch layout.
    """

    def __init__(self, model, comm, base_resolution, refinement_ratio=2, r_elements=1, grid_stamp=0):
        super().__init__(
            model,
            comm,
            base_resolution,
            base_resolution,
            refinement_ratio=refinement_ratio,
            r_elements=r_elements,
            grid_stamp=grid_stamp,
        )
        self._panel_patches = {panel: [] for panel in range(topology.N_PANELS)}

    def panel_resolution(self, level):
        """Cells per panel edge at refinement level `level`."""
        return self.a_base_resolution * self.refinement_ratio**level

    def add_patch(self, box):
        if not 0 <= box.panel < topology.N_PANELS:
            raise ConfigurationError("Invalid panel {}".format(box.panel))
        resolution = self.panel_resolution(box.refinement_level)
        if box.a_global_interior_begin < 0 or box.a_global_interior_end > resolution or (
            box.b_global_interior_begin < 0 or box.b_global_interior_end > resolution
        ):
            raise ConfigurationError("{} exceeds panel resolution {}".format(box, resolution))

        patch = super().add_patch(box)
        self._panel_patches[box.panel].append(patch.patch_index)
        return patch

    def generate_patches(self, patches_per_panel=1, refinement_level=0):
        """Tile every panel with a regular array of patches.

        Parameters
        ----------
        patches_per_panel : int or tuple of int, optional
            Number of patches along alpha and beta on each panel. An
            integer ``k`` gives ``k`` by ``k`` patches.
        refinement_level : int, optional
            Refinement level of the patches.

        Returns
        -------
        list of GridPatch
            The new patches, panel by panel.

        Raises
        ------
        ConfigurationError
            If a panel cannot be split into the requested number of
            non-empty patches.
        """
        if isinstance(patches_per_panel, int):
            n_a = n_b = patches_per_panel
        else:
            n_a, n_b = patches_per_panel

        resolution = self.panel_resolution(refinement_level)
        if not (1 <= n_a <= resolution and 1 <= n_b <= resolution):
            raise ConfigurationError(
                "Cannot split {} cells into {} x {} patches".format(resolution, n_a, n_b)
            )

        a_bounds = [resolution * k // n_a for k in range(n_a + 1)]
        b_bounds = [resolution * k // n_b for k in range(n_b + 1)]

        halo = self.model.halo_elements
        cs_basis = CSBasis()

        patches = []
        for panel in range(topology.N_PANELS):
            for jb in range(n_b):
                for ia in range(n_a):
                    a0, a1 = a_bounds[ia], a_bounds[ia + 1]
                    b0, b1 = b_bounds[jb], b_bounds[jb + 1]
                    a_nodes, a_edges = cs_basis.get_patch_coordinates(a0, a1, halo, resolution)
                    b_nodes, b_edges = cs_basis.get_patch_coordinates(b0, b1, halo, resolution)
                    box = PatchBox(
                        panel,
                        refinement_level,
                        halo,
                        a0,
                        a1,
                        b0,
                        b1,
                        a_nodes,
                        b_nodes,
                        a_edges,
                        b_edges,
                    )
                    patches.append(self.add_patch(box))

        return patches

    def get_relative_coordinate(self, level, panel, ix_a, ix_b):
        return topology.relative_coord(self.panel_resolution(level), panel, ix_a, ix_b)

    def get_patch_from_coordinate_index(self, level, ix_a, ix_b, panel):
        location = self.get_relative_coordinate(level, panel, ix_a, ix_b)
        if location is None:
            return None
        panel, ix_a, ix_b = location

        for patch_index in self._panel_patches[panel]:
            box = self.patches[patch_index].box
            if box.refinement_level >= level:
                factor = self.refinement_ratio ** (box.refinement_level - level)
                ia, ib = ix_a * factor, ix_b * factor
            else:
                factor = self.refinement_ratio ** (level - box.refinement_level)
                ia, ib = ix_a // factor, ix_b // factor
            if box.contains_global(ia, ib):
                return patch_index

        return None

    def get_opposing_direction(self, panel_first, panel_second, direction):
        return topology.opposing_direction(panel_first, panel_second, direction)
