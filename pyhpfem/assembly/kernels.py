import numba
import numpy as np


@numba.njit(cache=True)
def scatter_matrix(data, pos, vals):
    """data[pos[k]] += vals[k]; ``pos`` may contain repeated positions."""
    for k in range(pos.shape[0]):
        data[pos[k]] += vals[k]


@numba.njit(cache=True)
def scatter_vector(res, rows, vals):
    for k in range(rows.shape[0]):
        res[rows[k]] += vals[k]


@numba.njit(cache=True)
def all_finite(a):
    for k in range(a.shape[0]):
        if not np.isfinite(a[k]):
            return False
    return True
