import numpy as np
import warnings


def _cumulative(weights):
    cumulative_sum = np.cumsum(weights)
    cumulative_sum[-1] = 1.  # avoid round-off errors: ensures sum is exactly one
    return cumulative_sum


def _search(cumulative_sum, positions):
    indexes = np.searchsorted(cumulative_sum, positions, side='right')
    if np.any(indexes >= len(cumulative_sum)):
        warnings.warn("Resampling failed: Index exceeds N. Adjusting indexes.")
        return np.arange(len(cumulative_sum))
    return indexes


def resampling_style(weights, name_method, rng=None):
    """ Performs resampling algorithms used by particle filters based on the chosen method.

    Parameters
    ----------
    weights : list-like of float
        Normalized weights (summing to one).
    name_method : str
        Name of the resampling method to be used. Should be one of: 'residual', 'stratified', 'systematic', 'multinomial'.
    rng : np.random.Generator, optional
        Source of the uniform draws. A fresh generator is used when omitted.

    Returns
    -------
    indexes : ndarray of ints
        Array of indexes into the weights defining the resample. i.e. the index of the zeroth resample is indexes[0], etc.

    Raises
    ------
    ValueError
        If the specified resampling method is not recognized.

    References
    ----------
        Copyright 2015 Roger R Labbe Jr.
        FilterPy library.
        http://github.com/rlabbe/filterpy

    """
    rng = np.random.default_rng(rng)
    weights = np.asarray(weights, dtype=float)
    N = len(weights)

    if name_method == 'residual':
        # take int(N*w) copies of each weight, which ensures particles with the
        # same weight are drawn uniformly
        num_copies = np.floor(N * weights).astype(int)
        indexes = np.repeat(np.arange(N), num_copies)
        k = len(indexes)
        if k > N:
            warnings.warn("Resampling failed: Index k exceeds N. Adjusting indexes.")
            return np.arange(N)
        if k == N:
            return indexes

        # use multinomial resample on the residual to fill up the rest
        residual = N * weights - num_copies  # get fractional part
        residual /= np.sum(residual)  # normalize
        rest = _search(_cumulative(residual), rng.random(N - k))
        return np.concatenate([indexes, rest])

    elif name_method == 'stratified':
        # make N subdivisions, and chose a random position within each one
        positions = (rng.random(N) + np.arange(N)) / N
        return _search(_cumulative(weights), positions)

    elif name_method == 'systematic':
        # make N subdivisions, and choose positions with a consistent random offset
        positions = (rng.random() + np.arange(N)) / N
        return _search(_cumulative(weights), positions)

    elif name_method == 'multinomial':
        return _search(_cumulative(weights), rng.random(N))

    else:
        raise ValueError("Unknown resampling method. Please choose one of: 'residual', 'stratified', 'systematic', 'multinomial'.")
