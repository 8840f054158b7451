################################################
# Code for bootstrap Particle filter
#############################################

import logging

import numpy as np
from joblib import Parallel, delayed
from scipy.special import logsumexp

from epi_model import initial_state
from resampling import resampling_style
from state_process import state_transition

logger = logging.getLogger(__name__)

# Log-likelihood given to an observation that no particle can explain
LOG_LIKELIHOOD_FLOOR = np.log(1e-300)


def Particle_Filter(model, theta, num_state_particles, rng=None, resampling_method='systematic',
                    perturb=None, to_natural=None, save_states=False):
    """
    Perform Particle Filter to estimate the state and compute the marginal log-likelihood.

    Parameters:
    - model: PompModel (process model, observations, covariates).
    - theta (ndarray): Model parameters. A 2D array gives one parameter vector per
      particle; those rows are resampled together with the states.
    - num_state_particles (int): Number of particles.
    - rng: Seed or np.random.Generator for every draw of this run.
    - resampling_method (str): Resampling method ('systematic', 'stratified', etc.).
    - perturb (func): Optional perturb(theta, k, rng) -> theta applied to the parameter
      particles before the propagation to the k-th observation.
    - to_natural (func): Map from the scale theta is carried on to the natural scale
      used by the model (identity when omitted).
    - save_states (bool): Keep the resampled particles at every observation time.

    Returns:
    - dict: log-likelihood, incremental log-likelihood over time, effective sample size,
      filtered means, number of degenerate steps, final particles and parameters.
    """
    rng = np.random.default_rng(rng)
    theta = np.asarray(theta, dtype=float)
    if to_natural is None:
        to_natural = lambda x: x
    times = model.times
    observations = model.observations
    num_timesteps = len(times)

    if perturb is not None and theta.ndim == 1:
        theta = np.tile(theta, (num_state_particles, 1))

    current_state_particles = initial_state(to_natural(theta), model.theta_names, num_state_particles)
    inc_log_likelihood = np.zeros(num_timesteps)
    ess = np.zeros(num_timesteps)
    filter_mean = np.zeros((num_timesteps, len(model.state_names)))
    state_hist = [None] * num_timesteps if save_states else None
    n_degenerate = 0

    t_prev = model.t0
    for k in range(num_timesteps):
        if perturb is not None:
            theta = perturb(theta, k, rng)
        natural_theta = to_natural(theta)

        # Propagate every particle to the next observation time
        current_state_particles = state_transition(model, natural_theta, current_state_particles,
                                                   t_prev, times[k], rng)
        t_prev = times[k]

        # Compute log weights
        log_weights = model.dmeasure(observations[k], current_state_particles, natural_theta,
                                     model.theta_names)
        A = np.max(log_weights)

        if not np.isfinite(A):
            # No particle is compatible with the observation: keep them all
            n_degenerate += 1
            inc_log_likelihood[k] = LOG_LIKELIHOOD_FLOOR
            ess[k] = 0.0
            filter_mean[k] = current_state_particles.mean(axis=0)
            logger.debug("All particles have zero likelihood at time %s", times[k])
        else:
            # Likelihood update: log of the mean particle likelihood
            inc_log_likelihood[k] = logsumexp(log_weights) - np.log(num_state_particles)
            normalized_weights = np.exp(log_weights - A)
            normalized_weights /= np.sum(normalized_weights)
            ess[k] = 1 / np.sum(normalized_weights ** 2)
            filter_mean[k] = normalized_weights @ current_state_particles

            # Resample particles (and their parameters)
            resampled_indices = resampling_style(normalized_weights, resampling_method, rng)
            current_state_particles = current_state_particles[resampled_indices]
            if theta.ndim == 2:
                theta = theta[resampled_indices]

        if save_states:
            state_hist[k] = current_state_particles

    return {
        'logLik': float(np.sum(inc_log_likelihood)),
        'incLogLike': inc_log_likelihood,
        'ess': ess,
        'filter_mean': filter_mean,
        'n_degenerate': n_degenerate,
        'particle_state': current_state_particles,
        'theta_particles': theta,
        'state_hist': state_hist,
    }


def logmeanexp(x, se=False):
    """
    Log of the mean of exp(x), computed stably.

    With se=True also return the jackknife standard error of the estimate.
    """
    x = np.asarray(x, dtype=float)
    n = len(x)
    estimate = logsumexp(x) - np.log(n)
    if not se:
        return estimate
    if n < 2:
        return estimate, np.nan
    jackknife = np.array([logsumexp(np.delete(x, i)) - np.log(n - 1) for i in range(n)])
    return estimate, (n - 1) * np.std(jackknife, ddof=1) / np.sqrt(n)


def spawn_seeds(seed, n):
    """Independent child seeds for n units of work."""
    if not isinstance(seed, np.random.SeedSequence):
        seed = np.random.SeedSequence(seed)
    return seed.spawn(n)


def _pfilter_once(model, theta, num_state_particles, seed, resampling_method):
    try:
        result = Particle_Filter(model, theta, num_state_particles, rng=np.random.default_rng(seed),
                                 resampling_method=resampling_method)
    except (ValueError, FloatingPointError, OverflowError) as e:
        logger.warning("Particle filter replicate failed: %s", e)
        return None
    return result['logLik'], result['n_degenerate']


def pfilter_replicates(model, theta, num_state_particles, num_reps=10, seed=None,
                       resampling_method='systematic', n_jobs=1):
    """
    Run independent particle filters at the same parameters and combine them.

    Each replicate gets its own seed spawned from `seed`. Replicates that raise are
    excluded from the estimate and counted in 'n_failed'.

    Returns:
    - dict: 'logLik' (log-mean-exp), 'se' (jackknife standard error), 'logliks',
      'n_failed', 'n_degenerate'.
    """
    seeds = spawn_seeds(seed, num_reps)
    outcomes = Parallel(n_jobs=n_jobs)(
        delayed(_pfilter_once)(model, theta, num_state_particles, s, resampling_method) for s in seeds
    )
    logliks = np.array([o[0] for o in outcomes if o is not None])
    n_failed = sum(o is None for o in outcomes)
    n_degenerate = sum(o[1] for o in outcomes if o is not None)

    if len(logliks) == 0:
        estimate, se = -np.inf, np.nan
    else:
        estimate, se = logmeanexp(logliks, se=True)
    return {
        'logLik': float(estimate),
        'se': float(se),
        'logliks': logliks,
        'n_failed': n_failed,
        'n_degenerate': n_degenerate,
    }
