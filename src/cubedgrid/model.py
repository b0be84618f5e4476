"""Model module.

This module contains the Model class, the narrow description of the
equation set that the grid needs in order to size and address its
storage.
"""

from cubedgrid.exceptions import ConfigurationError
from cubedgrid.primitives.data_types import DataLocation


class Model:
    """Description of the equation set carried by a grid.

    Attributes
    ----------
    components : int
        Number of state components.
    tracers : int
        Number of tracers (may be zero).
    dimensionality : int
        2 for a single layer, 3 for a layered atmosphere.
    var_locations : list of DataLocation
        Staggering location of each state component.
    halo_elements : int
        Width of the halo on every patch side.
    component_data_instances : int
        Number of state data slots per patch.
    tracer_data_instances : int
        Number of tracer data slots per patch.
    formulation : str
        Name of the equation formulation, opaque to the grid.
    phys_constants : dict
        Physical constants, opaque to the grid.
    """

    def __init__(
        self,
        components=3,
        tracers=0,
        dimensionality=2,
        var_locations=None,
        halo_elements=1,
        component_data_instances=1,
        tracer_data_instances=None,
        formulation="shallow_water",
        phys_constants=None,
    ):
        """Initialize the model description.

        Parameters
        ----------
        components : int, optional
            Number of state components.
        tracers : int, optional
            Number of tracers.
        dimensionality : {2, 3}, optional
            Model dimensionality.
        var_locations : sequence of DataLocation, optional
            Location of each component. Defaults to all nodes.
        halo_elements : int, optional
            Halo width.
        component_data_instances : int, optional
            Number of state data slots.
        tracer_data_instances : int, optional
            Number of tracer data slots. Defaults to
            `component_data_instances`.
        formulation : str, optional
            Name of the equation formulation.
        phys_constants : dict, optional
            Physical constants.

        Raises
        ------
        ConfigurationError
            If a count is out of range, the dimensionality is not
            supported or `var_locations` does not match `components`.
        """
        if components < 1:
            raise ConfigurationError("components must be at least 1, got {}".format(components))
        if tracers < 0:
            raise ConfigurationError("tracers must be non-negative, got {}".format(tracers))
        if dimensionality not in (2, 3):
            raise ConfigurationError("Invalid dimensionality {}".format(dimensionality))
        if halo_elements < 1:
            raise ConfigurationError(
                "halo_elements must be at least 1, got {}".format(halo_elements)
            )
        if component_data_instances < 1:
            raise ConfigurationError("component_data_instances must be at least 1")

        if tracer_data_instances is None:
            tracer_data_instances = component_data_instances
        if tracer_data_instances < 0:
            raise ConfigurationError("tracer_data_instances must be non-negative")

        if var_locations is None:
            var_locations = [DataLocation.NODE] * components
        var_locations = [DataLocation(location) for location in var_locations]
        if len(var_locations) != components:
            raise ConfigurationError(
                "{} variable locations given for {} components".format(
                    len(var_locations), components
                )
            )

        self.components = int(components)
        self.tracers = int(tracers)
        self.dimensionality = int(dimensionality)
        self.var_locations = var_locations
        self.halo_elements = int(halo_elements)
        self.component_data_instances = int(component_data_instances)
        self.tracer_data_instances = int(tracer_data_instances)
        self.formulation = formulation
        self.phys_constants = {} if phys_constants is None else dict(phys_constants)

    @property
    def settings(self):
        """Settings as a dict of NetCDF-friendly attributes."""
        return {
            "components": self.components,
            "tracers": self.tracers,
            "dimensionality": self.dimensionality,
            "halo_elements": self.halo_elements,
            "component_data_instances": self.component_data_instances,
            "tracer_data_instances": self.tracer_data_instances,
            "formulation": self.formulation,
        }
