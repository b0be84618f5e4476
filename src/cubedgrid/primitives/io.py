"""IO Class.

This module provides the IO class used to persist grid topology and
settings as NetCDF files through xarray.
"""

import os
import xarray as xr

from cubedgrid.exceptions import ConfigurationError


class IO:
    """Class for reading and writing grid datasets.

    Datasets are stored as ``<prefix>_<name>.ncdf``. Writes go to a
    temporary file which is renamed into place once complete, so an
    interrupted write never leaves a truncated dataset behind.
    """

    def __init__(self, dataset_filename_prefix):
        """Initialize the IO class.

        Parameters
        ----------
        dataset_filename_prefix : str
            Prefix for the dataset filenames, may include a directory.
        """
        self.dataset_filename_prefix = dataset_filename_prefix

    def filename(self, name):
        """Return the filename used for the dataset `name`.

        Raises
        ------
        ConfigurationError
            If no filename prefix is set.
        """
        if self.dataset_filename_prefix is None:
            raise ConfigurationError("dataset_filename_prefix is None. Cannot access dataset.")

        return str(self.dataset_filename_prefix) + "_" + name + ".ncdf"

    def save_dataset(self, dataset, name, print_info=False):
        """Save a dataset to NetCDF file.

        Parameters
        ----------
        dataset : xarray.Dataset
            The dataset to save.
        name : str
            Name to use in the filename.
        print_info : bool, optional
            Whether to print the filename.
        """
        filename = self.filename(name)

        try:
            dataset.to_netcdf(filename + ".tmp")
            os.replace(filename + ".tmp", filename)

        except Exception:
            if os.path.exists(filename + ".tmp"):
                os.remove(filename + ".tmp")
            raise

        if print_info:
            print("Saved {} to {}".format(name, filename))

    def load_dataset(self, name, print_info=False):
        """Load a dataset from NetCDF file.

        Parameters
        ----------
        name : str
            Name of the dataset.
        print_info : bool, optional
            Whether to print the filename.

        Returns
        -------
        xarray.Dataset or None
            Loaded dataset, or None if the file does not exist.
        """
        filename = self.filename(name)

        if not os.path.exists(filename):
            return None

        if print_info:
            print("Loading {} from {}".format(name, filename))

        return xr.load_dataset(filename)
