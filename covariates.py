###############################################################################################
# Seasonal covariates: periodic B-spline basis evaluated on a fine grid and interpolated
# linearly at the simulation times
###############################################################################################

import numpy as np
from scipy.interpolate import BSpline


def periodic_bspline_basis(t, nbasis=5, degree=3, period=12.0):
    """
    Evaluate a periodic B-spline basis.

    Parameters:
    - t: Scalar or array of times.
    - nbasis: Number of basis functions.
    - degree: Degree of the splines.
    - period: Period of the basis (12 for monthly data with a yearly cycle).

    Returns:
    - basis: Array of shape (len(t), nbasis). Every row sums to one.
    """
    if nbasis < degree + 1:
        raise ValueError("nbasis must be at least degree + 1")
    if period <= 0:
        raise ValueError("period must be positive")

    t = np.atleast_1d(np.asarray(t, dtype=float))
    x = np.mod(t, period)

    # Equally spaced knots extended by `degree` intervals on both sides
    dx = period / nbasis
    knots = (np.arange(nbasis + 2 * degree + 1) - degree) * dx
    n_splines = nbasis + degree
    splines = BSpline(knots, np.eye(n_splines), degree, extrapolate=False)
    values = np.nan_to_num(splines(x))

    # Wrap the splines that straddle the period boundary
    values[:, :degree] += values[:, nbasis:nbasis + degree]
    values = values[:, :nbasis]

    # Centre the first basis function on t = 0
    shift = (degree - 1) // 2
    order = (shift + np.arange(nbasis)) % nbasis
    return values[:, order]


class CovariateTable:
    """
    Immutable lookup table of (time, basis vector) pairs.

    Queries between grid times are interpolated linearly coordinate by coordinate.
    Queries outside the table are clamped to the nearest end of the grid.
    """

    def __init__(self, times, values, names=None):
        times = np.array(times, dtype=float)
        values = np.array(values, dtype=float)
        if values.ndim == 1:
            values = values[:, None]
        if times.ndim != 1 or len(times) != values.shape[0]:
            raise ValueError("times and values must have matching lengths")
        if len(times) == 0:
            raise ValueError("covariate table is empty")
        if np.any(np.diff(times) <= 0):
            raise ValueError("covariate times must be strictly increasing")

        self._times = times
        self._values = values
        self._times.flags.writeable = False
        self._values.flags.writeable = False
        if names is None:
            names = tuple(f"s{k + 1}" for k in range(values.shape[1]))
        self.names = tuple(names)

    @classmethod
    def from_basis(cls, t0, t1, step=1 / 24, nbasis=5, degree=3, period=12.0):
        """Precompute the periodic basis on [t0, t1] at resolution `step`."""
        if t1 < t0:
            raise ValueError("t1 must not be before t0")
        n = int(np.ceil((t1 - t0) / step)) + 1
        times = t0 + step * np.arange(n)
        return cls(times, periodic_bspline_basis(times, nbasis, degree, period))

    @property
    def times(self):
        return self._times

    @property
    def values(self):
        return self._values

    @property
    def dim(self):
        return self._values.shape[1]

    def value_at(self, t):
        t = min(max(float(t), self._times[0]), self._times[-1])
        if len(self._times) == 1:
            return self._values[0].copy()
        i = min(int(np.searchsorted(self._times, t, side='right')) - 1, len(self._times) - 2)
        w = (t - self._times[i]) / (self._times[i + 1] - self._times[i])
        return (1 - w) * self._values[i] + w * self._values[i + 1]

    def __len__(self):
        return len(self._times)
