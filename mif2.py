########################################################################
# This file contains the code for the iterated filtering (IF2) optimizer:
# particle filters with perturbed parameter particles and a cooling
# random walk, followed by a likelihood evaluation at the estimate
############################################################################

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from tqdm import tqdm

from epi_model import INITIAL_VALUE_NAMES
from smc import Particle_Filter, pfilter_replicates, spawn_seeds

logger = logging.getLogger(__name__)

# Number of iterations over which the random walk shrinks by `cooling_fraction`
COOLING_PERIOD = 50


@dataclass(frozen=True)
class FitResult:
    """Outcome of one iterated filtering run."""
    params: dict
    logLik: float
    se: float
    trace: pd.DataFrame
    start: dict
    n_failed_filters: int = 0
    n_degenerate: int = 0
    filter_logliks: np.ndarray = field(default_factory=lambda: np.empty(0))

    def as_series(self):
        return pd.Series({'logLik': self.logLik, 'se': self.se, **self.params})


def cooling_scale(iteration, cooling_fraction=0.5, period=COOLING_PERIOD):
    """Scale of the random walk at `iteration`; after `period` iterations it is `cooling_fraction`."""
    return cooling_fraction ** (iteration / period)


def random_walk_sd(theta_names, rw_sd):
    """Order the {name: sd} mapping as a vector, 0 for parameters held fixed."""
    unknown = sorted(set(rw_sd) - set(theta_names))
    if unknown:
        raise ValueError(f"Random walk sd given for unknown parameter(s): {unknown}")
    sd = np.array([float(rw_sd.get(name, 0.0)) for name in theta_names])
    if np.any(sd < 0) or not np.all(np.isfinite(sd)):
        raise ValueError("Random walk sds must be finite and non-negative")
    return sd


def Iterated_Filtering(model, start, rw_sd, num_state_particles, num_iterations,
                       cooling_fraction=0.5, ivp_names=INITIAL_VALUE_NAMES, num_filter_reps=10,
                       num_filter_particles=None, resampling_method='systematic', seed=None,
                       n_jobs=1, show_progress=False):
    """
    Maximize the likelihood with iterated filtering.

    Every iteration runs a particle filter in which each particle carries its own copy
    of the parameters on the estimation scale. The copies are perturbed with Gaussian
    noise of sd rw_sd * cooling_scale(iteration) before every observation (initial-value
    parameters only at the start of the pass) and resampled together with the states.
    The new estimate is the mean of the parameter particles at the end of the pass.

    Parameters:
    model (PompModel): The model to fit.
    start (dict or ndarray): Starting parameters on the natural scale.
    rw_sd (dict): Random walk sd per parameter on the estimation scale; missing or 0 means fixed.
    num_state_particles (int): Particles of the perturbed filters.
    num_iterations (int): Number of filtering passes.
    cooling_fraction (float): Shrinkage of the random walk after 50 iterations.
    ivp_names (tuple): Parameters perturbed only at the initial time.
    num_filter_reps (int): Particle filter replicates for the final log-likelihood.
    num_filter_particles (int): Particles of those filters (num_state_particles by default).
    resampling_method (str): Method for resampling.
    seed: Seed of the run.
    n_jobs (int): Number of processes for the final particle filters.
    show_progress (bool): Whether to show a progress bar.

    Returns:
    FitResult
    """
    if num_state_particles < 1 or num_iterations < 0:
        raise ValueError("num_state_particles must be positive and num_iterations non-negative")
    if not 0 < cooling_fraction <= 1:
        raise ValueError("cooling_fraction must be in (0, 1]")

    transform = model.transform
    theta_names = model.theta_names
    theta_start = transform.as_array(start) if isinstance(start, dict) else np.asarray(start, dtype=float)
    sd = random_walk_sd(theta_names, rw_sd)
    is_ivp = np.array([name in ivp_names for name in theta_names])
    regular_sd = np.where(is_ivp, 0.0, sd)
    fixed = sd == 0

    current = transform.to_estimation_scale(theta_start)
    if not np.all(np.isfinite(current)):
        raise ValueError("Starting parameters are outside the domain of their transformation")

    seeds = spawn_seeds(seed, num_iterations + 1)
    trace = [[np.nan, *theta_start]]
    n_degenerate = 0

    iterations = range(1, num_iterations + 1)
    if show_progress:
        iterations = tqdm(iterations, desc="IF2 Progress")

    for i in iterations:
        rng = np.random.default_rng(seeds[i - 1])
        scale = cooling_scale(i, cooling_fraction)

        def perturb(theta, k, rng):
            return theta + rng.normal(size=theta.shape) * (regular_sd * scale)

        # Every particle starts from its own perturbed copy of the current estimate
        theta_particles = current + rng.normal(size=(num_state_particles, len(current))) * (sd * scale)

        PF_results = Particle_Filter(model, theta_particles, num_state_particles, rng=rng,
                                     resampling_method=resampling_method, perturb=perturb,
                                     to_natural=transform.from_estimation_scale)
        n_degenerate += PF_results['n_degenerate']

        estimate = PF_results['theta_particles'].mean(axis=0)
        estimate[fixed] = current[fixed]
        if not np.all(np.isfinite(estimate)):
            raise FloatingPointError(f"Parameter estimate is not finite at iteration {i}")
        current = estimate
        trace.append([PF_results['logLik'], *transform.from_estimation_scale(current)])

    theta_hat = transform.from_estimation_scale(current)
    final = pfilter_replicates(model, theta_hat, num_filter_particles or num_state_particles,
                               num_reps=num_filter_reps, seed=seeds[-1],
                               resampling_method=resampling_method, n_jobs=n_jobs)
    if final['n_failed']:
        logger.warning("%d of %d final particle filters failed", final['n_failed'], num_filter_reps)

    trace = pd.DataFrame(trace, columns=['loglik', *theta_names])
    trace.index.name = 'iteration'
    logger.info("IF2 finished: logLik %.2f (se %.2f)", final['logLik'], final['se'])

    return FitResult(
        params=transform.as_dict(theta_hat),
        logLik=final['logLik'],
        se=final['se'],
        trace=trace,
        start=transform.as_dict(theta_start),
        n_failed_filters=final['n_failed'],
        n_degenerate=n_degenerate + final['n_degenerate'],
        filter_logliks=final['logliks'],
    )
