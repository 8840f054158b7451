###################################################################################
# This file contains the entry points of the engine: a single iterated filtering fit
# and the local / global searches running many independent fits in parallel
###################################################################################

import logging
from time import monotonic
from dataclasses import dataclass

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, cpu_count
from tqdm import tqdm

from config import validate_config
from mif2 import Iterated_Filtering
from param_transform import draw_uniform_start
from pomp_model import make_malaria_model
from smc import spawn_seeds
from state_process import simulate as simulate_model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchResult:
    """Fits of a search ranked by log-likelihood, best first."""
    results: tuple
    n_failed: int
    n_skipped: int
    mode: str

    @property
    def best(self):
        return self.results[0] if self.results else None

    def table(self):
        """One row per successful replicate: logLik, se and the fitted parameters."""
        return pd.DataFrame([r.as_series() for r in self.results])


def build_model(config, observations, covariates=None):
    return make_malaria_model(observations, covariates, immigration=config['immigration'],
                              t0=config['t0'], dt=config['dt'],
                              observation_distribution=config['observation_distribution'],
                              transforms=config['transforms'],
                              covariate_step=config['covariate_step'],
                              nbasis=config['nbasis'], period=config['period'])


def _run_mif(model, config, start, seed, n_jobs=1):
    return Iterated_Filtering(
        model, start, config['rw_sd'],
        num_state_particles=config['num_particles'],
        num_iterations=config['num_iterations'],
        cooling_fraction=config['cooling_fraction'],
        ivp_names=config['ivp_names'],
        num_filter_reps=config['num_filter_reps'],
        num_filter_particles=config['num_filter_particles'],
        resampling_method=config['resampling_method'],
        seed=seed,
        n_jobs=n_jobs,
        show_progress=config['show_progress'] and n_jobs == 1,
    )


def fit(model_config, observations, covariates=None):
    """
    Fit the model once with iterated filtering from model_config['params'].

    Parameters:
    - model_config (dict): Configuration (see config.DEFAULT_CONFIG).
    - observations: Observation series (DataFrame with 'time' and 'obs', Series or pairs).
    - covariates (CovariateTable): Seasonal basis; built from the configuration when omitted.

    Returns:
    - FitResult
    """
    config = validate_config(model_config)
    model = build_model(config, observations, covariates)
    return _run_mif(model, config, config['params'], config['seed'], n_jobs=config['n_jobs'])


def simulate(model_config, observations, params=None, n_replicates=1, covariates=None, seed=None):
    """Simulated observation trajectories at `params` (model_config['params'] by default)."""
    config = validate_config(model_config)
    model = build_model(config, observations, covariates)
    return simulate_model(model, config['params'] if params is None else params, n_replicates,
                          seed=config['seed'] if seed is None else seed)


def _fit_replicate(model, config, start, seed):
    try:
        return _run_mif(model, config, start, seed)
    except (ValueError, FloatingPointError, OverflowError, RuntimeError) as e:
        logger.warning("Replicate failed with parameters %s: %s", start, e)
        return None


def _batches(items, size):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def run_search(model, config, starts, mode='local'):
    """
    Run one iterated filtering replicate per starting point and rank the fits.

    Replicates share nothing but the read-only model and configuration, and each
    owns a seed spawned from config['seed']. Failed replicates are logged and
    counted. With config['time_limit'] set, no new batch of replicates is launched
    once the limit (in seconds) is reached.
    """
    n_jobs = config['n_jobs']
    seeds = spawn_seeds(config['seed'], len(starts))
    tasks = list(zip(starts, seeds))

    # One batch per round of workers; the progress bar and the time limit act between batches
    batch_size = max(1, n_jobs if n_jobs > 0 else cpu_count())
    batches = list(_batches(tasks, batch_size))
    if config['show_progress']:
        batches = tqdm(batches, desc=f"{mode.capitalize()} search", unit='batch')

    t_begin = monotonic()
    outcomes = []
    for batch in batches:
        if config['time_limit'] is not None and monotonic() - t_begin > config['time_limit']:
            logger.info("Time limit reached, %d replicates not started", len(tasks) - len(outcomes))
            break
        outcomes += Parallel(n_jobs=n_jobs)(
            delayed(_fit_replicate)(model, config, start, seed) for start, seed in batch
        )

    results = sorted((r for r in outcomes if r is not None), key=lambda r: r.logLik, reverse=True)
    n_failed = sum(r is None for r in outcomes)
    n_skipped = len(tasks) - len(outcomes)
    if not results and outcomes:
        raise RuntimeError(f"All {n_failed} replicates of the {mode} search failed")

    logger.info("%s search: %d fits, %d failed, best logLik %s", mode, len(results), n_failed,
                f"{results[0].logLik:.2f}" if results else "n/a")
    return SearchResult(results=tuple(results), n_failed=n_failed, n_skipped=n_skipped, mode=mode)


def local_search(model_config, observations, covariates=None):
    """All replicates start from model_config['params'] and differ only by their seed."""
    config = validate_config(model_config)
    model = build_model(config, observations, covariates)
    starts = [dict(config['params']) for _ in range(config['num_replicates'])]
    return run_search(model, config, starts, mode='local')


def global_search(model_config, observations, covariates=None):
    """Every replicate starts from a point drawn uniformly in model_config['bounds']."""
    config = validate_config(model_config)
    model = build_model(config, observations, covariates)
    start_seed, search_seed = spawn_seeds(config['seed'], 2)
    rng = np.random.default_rng(start_seed)
    starts = [draw_uniform_start(config['bounds'], config['params'], rng)
              for _ in range(config['num_replicates'])]
    return run_search(model, {**config, 'seed': search_seed}, starts, mode='global')
