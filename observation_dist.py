################################################################################################################
# This file contains the observation distributions linking the infectious compartment to the reported
# monthly case counts. Each model has a log-density (one value per particle) and a simulator.
##################################################################################################################


import numpy as np
from scipy.stats import poisson, nbinom

from epi_model import STATE_NAMES, unpack_theta

# Keeps the Poisson rate away from zero
EPSI_OBS = 1e-6

_I_COL = STATE_NAMES.index('I')


def expected_cases(states, theta, theta_names):
    param = unpack_theta(theta, theta_names)
    return param['rho'] * np.asarray(states)[:, _I_COL] + EPSI_OBS


def _clean(log_likelihoods):
    log_likelihoods = np.asarray(log_likelihoods, dtype=float)
    log_likelihoods[np.isnan(log_likelihoods) | np.isinf(log_likelihoods)] = -np.inf
    return log_likelihoods


# Poisson log-likelihood
def obs_dist_poisson(observation, states, theta, theta_names):
    mu = expected_cases(states, theta, theta_names)
    return _clean(poisson.logpmf(observation, mu=mu))


# Negative Binomial log-likelihood with mean rho*I and size 1/tau
def obs_dist_negative_binomial(observation, states, theta, theta_names):
    mu = expected_cases(states, theta, theta_names)
    size = 1 / unpack_theta(theta, theta_names)['tau']
    return _clean(nbinom.logpmf(observation, size, size / (size + mu)))


def rmeasure_poisson(states, theta, theta_names, rng):
    return rng.poisson(expected_cases(states, theta, theta_names))


def rmeasure_negative_binomial(states, theta, theta_names, rng):
    mu = expected_cases(states, theta, theta_names)
    size = 1 / unpack_theta(theta, theta_names)['tau']
    return rng.negative_binomial(size, size / (size + mu))


OBSERVATION_MODELS = {
    'poisson': (obs_dist_poisson, rmeasure_poisson),
    'negative_binomial': (obs_dist_negative_binomial, rmeasure_negative_binomial),
}
