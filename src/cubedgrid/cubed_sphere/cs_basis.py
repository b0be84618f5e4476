"""Cubed sphere basis module.

This module contains the CSBasis class, which provides the geometry of
the equiangular cubed sphere used to place patch nodes on the sphere.
"""

import numpy as np
from cubedgrid.cubed_sphere import arrayutils


class CSBasis:
    """Geometry of the equiangular cubed sphere.

    The cubed sphere divides a sphere into six faces of a circumscribed
    cube. Each face uses local equiangular coordinates (xi, eta) in
    ``[-π/4, π/4]`` which are mapped to global Cartesian and spherical
    coordinates following Yin et al. (2017).

    Notes
    -----
    The faces are organized into blocks as shown below::

              _______
              |     |
              |  4  |
        ______|_____|____________
        |     |     |     |     |
        |  3  |  0  |  1  |  2  |
        |_____|_____|_____|_____|
              |     |
              |  5  |
              |_____|

    Blocks 0-3 lie on the equator in eastward order, block 4 covers the
    north pole and block 5 the south pole. Xi increases eastward on the
    equatorial blocks and eta increases northward.

    References
    ----------
    [1] Liang Yin, Chao Yang, Shi-Zhuang Ma, Ji-Zu Huang, Ying Cai
        (2017) Parallel numerical simulation of the thermal convection
        in the Earth's outer core on the cubed-sphere. Geophysical
        Journal International, 209(3), 1934–1954.
        DOI: 10.1093/gji/ggx125
    """

    def xi(self, i, N):
        """Calculate xi coordinate for grid index.

        Maps index ``i=0`` to -π/4 and ``i=N`` to π/4. Indices outside
        ``[0, N]`` extend the face coordinates beyond the cube edge,
        which is how halo nodes are placed.

        Parameters
        ----------
        i : array-like
            Index values (can be non-integer).
        N : int
            Grid resolution (number of cells per edge).

        Returns
        -------
        ndarray
            Xi coordinates in radians.

        Raises
        ------
        TypeError
            If `N` is not an integer.
        ValueError
            If `N` is less than 1.
        """
        if not isinstance(N, (int, np.integer)):
            raise TypeError("N must be an integer")
        if N < 1:
            raise ValueError("N must be at least 1")
        return -np.pi / 4 + np.asarray(i) * np.pi / (2 * N)

    def eta(self, j, N):
        """Calculate eta coordinate for grid index.

        Identical to `xi`, provided separately for clarity.
        """
        return self.xi(j, N)

    def get_patch_coordinates(self, begin, end, halo, N):
        """Calculate node and edge coordinates of a patch.

        Parameters
        ----------
        begin, end : int
            Global interior index range along one axis.
        halo : int
            Number of halo nodes on each side.
        N : int
            Panel resolution at the patch's refinement level.

        Returns
        -------
        nodes : ndarray
            Cell centre coordinates, ``end - begin + 2*halo`` entries.
        edges : ndarray
            Cell edge coordinates, one entry more than `nodes`.
        """
        index = np.arange(begin - halo, end + halo + 1)
        edges = self.xi(index, N)
        nodes = self.xi(index[:-1] + 0.5, N)
        return nodes, edges

    def get_delta(self, xi, eta):
        """Calculate delta parameter for metric calculations.

        Computes ``δ = 1 + tan²(ξ) + tan²(η)``.

        Parameters
        ----------
        xi : array-like
            Xi coordinates in radians.
        eta : array-like
            Eta coordinates in radians.

        Returns
        -------
        ndarray
            Delta values with shape determined by broadcasting rules.
        """
        xi, eta = np.broadcast_arrays(xi, eta)

        return 1 + np.tan(xi) ** 2 + np.tan(eta) ** 2

    def get_metric_tensor(self, xi, eta, r=1):
        """Calculate covariant metric tensor components.

        Implementation based on equation (12) from Yin et al. (2017).

        Parameters
        ----------
        xi : array-like
            Xi coordinates in radians.
        eta : array-like
            Eta coordinates in radians.
        r : array-like, optional
            Radial coordinates.

        Returns
        -------
        g : ndarray
            Metric tensor components with shape (N, 3, 3) where N is the
            number of broadcast input points.
        """
        xi, eta, r = map(np.ravel, np.broadcast_arrays(xi, eta, r))
        delta = self.get_delta(xi, eta)

        g = np.zeros((xi.size, 3, 3))
        g[:, 0, 0] = r**2 / (np.cos(xi) ** 4 * np.cos(eta) ** 2 * delta**2)
        g[:, 0, 1] = (
            -(r**2) * np.tan(xi) * np.tan(eta) / (np.cos(xi) ** 2 * np.cos(eta) ** 2 * delta**2)
        )
        g[:, 1, 0] = g[:, 0, 1]
        g[:, 1, 1] = r**2 / (np.cos(xi) ** 2 * np.cos(eta) ** 4 * delta**2)
        g[:, 2, 2] = 1

        return g

    def get_jacobian(self, xi, eta, r=1):
        """Calculate the area element ``sqrt(det g)``.

        Parameters
        ----------
        xi, eta : array-like
            Equiangular coordinates in radians.
        r : float, optional
            Sphere radius.

        Returns
        -------
        ndarray
            Square root of the metric determinant, shaped like the
            broadcast inputs.
        """
        shape = np.broadcast(xi, eta).shape
        g = self.get_metric_tensor(xi, eta, r)
        return np.sqrt(arrayutils.get_3D_determinants(g)).reshape(shape)

    def cube2cartesian(self, xi, eta, r=1, block=0):
        """Calculate Cartesian ECEF coordinates of given points.

        Output will have same unit as `r`. Calculations based on
        equations from Appendix A of Yin et al. (2017).

        Parameters
        ----------
        xi : array-like
            Array of xi coordinates in radians.
        eta : array-like
            Array of eta coordinates in radians.
        r : array-like, optional
            Array of radii.
        block : array-like, optional
            Array of block indices.

        Returns
        -------
        x, y, z : ndarray
            Cartesian coordinates, shape determined by input according
            to broadcasting rules.
        """
        xi, eta, r, block = np.broadcast_arrays(xi, eta, r, block)
        scale = r / np.sqrt(self.get_delta(xi, eta))
        X, Y, one = np.tan(xi), np.tan(eta), np.ones_like(scale)

        # Unscaled face vectors of blocks 0-5 (A2, A6, A10, A14, A18, A22).
        faces = [
            (one, X, Y),
            (-X, one, Y),
            (-one, -X, Y),
            (X, -one, Y),
            (-Y, X, one),
            (Y, X, -one),
        ]

        x, y, z = np.empty_like(scale), np.empty_like(scale), np.empty_like(scale)
        for k, (fx, fy, fz) in enumerate(faces):
            iii = block == k
            x[iii] = scale[iii] * fx[iii]
            y[iii] = scale[iii] * fy[iii]
            z[iii] = scale[iii] * fz[iii]

        return (x, y, z)

    def cube2spherical(self, xi, eta, block, r=1, deg=False):
        """Convert from cubed sphere to spherical coordinates.

        Parameters
        ----------
        xi : array-like
            Xi coordinates in radians.
        eta : array-like
            Eta coordinates in radians.
        block : array-like
            Block indices (0-5)
        r : float or array-like, optional
            Radial coordinates.
        deg : bool, optional
            Return angles in degrees if True, otherwise radians.

        Returns
        -------
        r : ndarray
            Radial coordinates (same units as input r).
        theta : ndarray
            Colatitude in radians or degrees.
        phi : ndarray
            Longitude in radians or degrees.
        """
        xi, eta = np.float64(xi), np.float64(eta)
        xi, eta, r, block = np.broadcast_arrays(xi, eta, r, block)

        x, y, z = self.cube2cartesian(xi, eta, r, block)
        phi = np.arctan2(y, x)
        theta = np.arccos(np.clip(z / r, -1.0, 1.0))

        if deg:
            phi, theta = np.rad2deg(phi), np.rad2deg(theta)

        return (r, theta, phi)
