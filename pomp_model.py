"""
Immutable definition of a partially observed Markov process (POMP) model.

Everything the simulator, the particle filter and the iterated filter need is
bundled in one value that is passed explicitly to each of them: the one-step
process model, the observation series, the covariate table, the parameter names
and the transformation to the estimation scale.
"""

from dataclasses import dataclass, field
from typing import Callable, Tuple

import numpy as np
import pandas as pd

from covariates import CovariateTable
from epi_model import (STATE_NAMES, MALARIA_THETA_NAMES, MALARIA_IMMIGRATION_THETA_NAMES,
                       MALARIA_TRANSFORMS, malaria_seir_model, malaria_seir_immigration_model)
from observation_dist import OBSERVATION_MODELS
from param_transform import ParameterTransform


@dataclass(frozen=True)
class PompModel:
    step: Callable
    observed_data: pd.DataFrame
    covariates: CovariateTable
    theta_names: Tuple[str, ...]
    t0: float = 0.0
    dt: float = 1 / 24
    observation_distribution: str = 'poisson'
    transforms: dict = field(default_factory=dict)
    state_names: Tuple[str, ...] = STATE_NAMES

    def __post_init__(self):
        if self.observation_distribution not in OBSERVATION_MODELS:
            raise ValueError(f"Unknown observation distribution: {self.observation_distribution}")
        if self.dt <= 0:
            raise ValueError("dt must be positive")
        times = self.observed_data['time'].to_numpy(dtype=float)
        if len(times) and (times[0] < self.t0 or np.any(np.diff(times) <= 0)):
            raise ValueError("observation times must be increasing and not before t0")

    @property
    def times(self):
        return self.observed_data['time'].to_numpy(dtype=float)

    @property
    def observations(self):
        return self.observed_data['obs'].to_numpy()

    @property
    def dmeasure(self):
        return OBSERVATION_MODELS[self.observation_distribution][0]

    @property
    def rmeasure(self):
        return OBSERVATION_MODELS[self.observation_distribution][1]

    @property
    def transform(self):
        return ParameterTransform(self.theta_names, self.transforms)


def observations_frame(observations):
    """
    Normalize observations given as a DataFrame, a Series indexed by time or
    (time, count) pairs into a DataFrame with columns 'time' and 'obs'.
    """
    if isinstance(observations, pd.DataFrame):
        data = observations[['time', 'obs']].copy()
    elif isinstance(observations, pd.Series):
        data = pd.DataFrame({'time': observations.index.to_numpy(dtype=float),
                             'obs': observations.to_numpy()})
    else:
        pairs = np.asarray(list(observations), dtype=float).reshape(-1, 2)
        data = pd.DataFrame({'time': pairs[:, 0], 'obs': pairs[:, 1]})
    if (data['obs'] < 0).any():
        raise ValueError("observed counts must be non-negative")
    data['obs'] = data['obs'].astype(np.int64)
    return data.reset_index(drop=True)


def make_malaria_model(observed_data, covariates=None, immigration=False, t0=0.0, dt=1 / 24,
                       observation_distribution='poisson', transforms=None,
                       covariate_step=1 / 24, nbasis=5, period=12.0):
    """
    Build the malaria SEIR POMP model.

    Parameters:
    - observed_data: Observations (see `observations_frame`).
    - covariates: CovariateTable; built from the periodic B-spline basis when omitted.
    - immigration (bool): Use the model with imported infections.
    - t0: Time of the initial state.
    - dt: Euler step of the process model.
    - observation_distribution (str): 'poisson' or 'negative_binomial'.
    - transforms (dict): Override of `MALARIA_TRANSFORMS`.
    """
    data = observations_frame(observed_data)
    if covariates is None:
        t1 = max(float(data['time'].max()) if len(data) else t0, t0) + 1
        covariates = CovariateTable.from_basis(t0, t1, covariate_step, nbasis=nbasis, period=period)
    if covariates.dim != 5:
        raise ValueError("the malaria model expects 5 seasonal covariates")

    if immigration:
        step, theta_names = malaria_seir_immigration_model, MALARIA_IMMIGRATION_THETA_NAMES
    else:
        step, theta_names = malaria_seir_model, MALARIA_THETA_NAMES

    trans = dict(MALARIA_TRANSFORMS)
    trans.update(transforms or {})
    return PompModel(step=step, observed_data=data, covariates=covariates,
                     theta_names=tuple(theta_names), t0=float(t0), dt=float(dt),
                     observation_distribution=observation_distribution,
                     transforms={name: trans.get(name, 'none') for name in theta_names})
