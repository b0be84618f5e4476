"""Array utilities.

This module provides vectorized linear algebra helpers for stacks of
small matrices.
"""

import numpy as np


def get_3D_determinants(M):
    """Calculate determinants of 3D matrices.

    Parameters
    ----------
    M : array
        Array with shape ``(N, 3, 3)``, corresponding to ``N`` 3D
        matrices.

    Returns
    -------
    det : array
        Array with determinants, shape ``(N)``.

    Raises
    ------
    ValueError
        If the input array is not a stack of 3 x 3 matrices.
    """
    M = np.asarray(M)
    if M.ndim != 3 or M.shape[1:] != (3, 3):
        raise ValueError("Input array must have shape (N, 3, 3).")

    # Expansion along the first row.
    return (
        M[:, 0, 0] * (M[:, 1, 1] * M[:, 2, 2] - M[:, 1, 2] * M[:, 2, 1])
        - M[:, 0, 1] * (M[:, 1, 0] * M[:, 2, 2] - M[:, 1, 2] * M[:, 2, 0])
        + M[:, 0, 2] * (M[:, 1, 0] * M[:, 2, 1] - M[:, 1, 1] * M[:, 2, 0])
    )
