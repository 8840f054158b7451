"""
Flat configuration of a model fit.

A configuration is a plain dict merged over DEFAULT_CONFIG. It is checked once by
`validate_config` before any simulation starts; every problem is fatal.
"""

import numpy as np

from epi_model import (MALARIA_THETA_NAMES, MALARIA_IMMIGRATION_THETA_NAMES, MALARIA_DEFAULT_THETA,
                       MALARIA_TRANSFORMS, INITIAL_VALUE_NAMES)
from observation_dist import OBSERVATION_MODELS

RESAMPLING_METHODS = ('systematic', 'stratified', 'residual', 'multinomial')
TRANSFORM_KINDS = ('log', 'logit', 'none')


class ConfigurationError(ValueError):
    """Raised when a fit configuration is incomplete or inconsistent."""


DEFAULT_CONFIG = {
    'immigration': False,
    't0': 0.0,
    'dt': 1 / 24,
    'num_particles': 1000,
    'num_iterations': 50,
    'cooling_fraction': 0.5,
    'num_filter_reps': 10,
    'num_filter_particles': None,
    'num_replicates': 10,
    'resampling_method': 'systematic',
    'observation_distribution': 'poisson',
    'n_jobs': 1,
    'seed': None,
    'show_progress': False,
    'time_limit': None,
    'params': dict(MALARIA_DEFAULT_THETA),
    'rw_sd': {
        'mu_EI': 0.02, 'mu_IR': 0.02, 'rho': 0.02,
        'b1': 0.02, 'b2': 0.02, 'b3': 0.02, 'b4': 0.02, 'b5': 0.02, 'g': 0.02,
        'sigma_P': 0.02, 'epsilon': 0.02,
        'E_0': 0.1, 'I_0': 0.1, 'R_0': 0.1,
    },
    'bounds': {
        'mu_EI': (0.5, 4.0), 'mu_IR': (0.5, 4.0), 'rho': (0.005, 0.1),
        'b1': (-2.0, 2.0), 'b2': (-2.0, 2.0), 'b3': (-2.0, 2.0), 'b4': (-2.0, 2.0), 'b5': (-2.0, 2.0),
        'g': (-3.0, 0.0), 'sigma_P': (0.05, 1.0), 'epsilon': (1.0, 20.0),
        'E_0': (10.0, 500.0), 'I_0': (10.0, 1000.0), 'R_0': (100.0, 5000.0),
    },
    'transforms': {},
    'ivp_names': INITIAL_VALUE_NAMES,
    'covariate_step': 1 / 24,
    'nbasis': 5,
    'period': 12.0,
}

_POSITIVE_INTS = ('num_particles', 'num_filter_reps', 'num_replicates')


def _require(condition, message):
    if not condition:
        raise ConfigurationError(message)


def _is_number(value):
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def _is_finite_number(value):
    return _is_number(value) and np.isfinite(value)


def _is_int(value):
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def validate_config(config=None):
    """
    Merge `config` over DEFAULT_CONFIG and check it.

    Parameters:
    - config (dict): Overrides. 'immigration' switches to the model with `iota`; the
      'params' of that model must then include `iota`.

    Returns:
    - config (dict): The complete, checked configuration.

    Raises:
    - ConfigurationError
    """
    config = dict(config or {})
    unknown = sorted(set(config) - set(DEFAULT_CONFIG))
    _require(not unknown, f"Unknown configuration key(s): {unknown}")
    merged = {**DEFAULT_CONFIG, **config}

    theta_names = MALARIA_IMMIGRATION_THETA_NAMES if merged['immigration'] else MALARIA_THETA_NAMES
    if 'params' in config:
        _require(isinstance(config['params'], dict), "'params' must be a dict of parameter values")
        params = dict(config['params'])
    else:
        params = {name: MALARIA_DEFAULT_THETA[name] for name in theta_names}
    missing = [name for name in theta_names if name not in params]
    _require(not missing, f"Missing required parameter(s): {missing}")
    extra = sorted(set(params) - set(theta_names))
    _require(not extra, f"Unknown parameter(s): {extra}")
    _require(all(_is_finite_number(v) for v in params.values()), "Parameters must be finite numbers")
    merged['params'] = params

    for key in _POSITIVE_INTS:
        _require(_is_int(merged[key]) and merged[key] > 0,
                 f"'{key}' must be a positive integer")
    _require(_is_int(merged['num_iterations']) and merged['num_iterations'] >= 0,
             "'num_iterations' must be a non-negative integer")
    nfp = merged['num_filter_particles']
    _require(nfp is None or (_is_int(nfp) and nfp > 0),
             "'num_filter_particles' must be a positive integer or None")
    _require(_is_number(merged['cooling_fraction']) and 0 < merged['cooling_fraction'] <= 1,
             "'cooling_fraction' must be in (0, 1]")
    for key in ('dt', 'covariate_step', 'period'):
        _require(_is_finite_number(merged[key]) and merged[key] > 0, f"'{key}' must be positive")
    _require(_is_finite_number(merged['t0']), "'t0' must be a finite number")
    _require(merged['time_limit'] is None or (_is_number(merged['time_limit']) and merged['time_limit'] > 0),
             "'time_limit' must be positive")
    _require(_is_int(merged['n_jobs']) and merged['n_jobs'] != 0, "'n_jobs' must be a non-zero integer")
    _require(_is_int(merged['nbasis']) and merged['nbasis'] > 0,
             "'nbasis' must be a positive integer")
    for key in ('rw_sd', 'bounds', 'transforms'):
        _require(isinstance(merged[key], dict), f"'{key}' must be a dict keyed by parameter name")
    _require(merged['resampling_method'] in RESAMPLING_METHODS,
             f"'resampling_method' must be one of {RESAMPLING_METHODS}")
    _require(isinstance(merged['observation_distribution'], str)
             and merged['observation_distribution'] in OBSERVATION_MODELS,
             f"'observation_distribution' must be one of {tuple(OBSERVATION_MODELS)}")

    for name, sd in merged['rw_sd'].items():
        _require(name in theta_names, f"Random walk sd given for unknown parameter '{name}'")
        _require(_is_finite_number(sd) and sd >= 0, f"Random walk sd of '{name}' must be non-negative")

    for name, bound in merged['bounds'].items():
        _require(name in theta_names, f"Bounds given for unknown parameter '{name}'")
        _require(isinstance(bound, (tuple, list, np.ndarray)) and len(bound) == 2,
                 f"Bounds of '{name}' must be a (lower, upper) pair")
        lower, upper = bound
        _require(_is_finite_number(lower) and _is_finite_number(upper) and lower <= upper,
                 f"Malformed bounds for '{name}': {bound}")

    for name, kind in merged['transforms'].items():
        _require(name in theta_names, f"Transformation given for unknown parameter '{name}'")
        _require(kind in TRANSFORM_KINDS, f"Transformation of '{name}' must be one of {TRANSFORM_KINDS}")

    transforms = {**MALARIA_TRANSFORMS, **merged['transforms']}
    for name in theta_names:
        values = [params[name], *merged['bounds'].get(name, ())]
        kind = transforms.get(name, 'none')
        _require(kind != 'log' or all(v > 0 for v in values),
                 f"'{name}' is estimated on the log scale and must be positive")
        _require(kind != 'logit' or all(0 < v < 1 for v in values),
                 f"'{name}' is estimated on the logit scale and must be in (0, 1)")

    return merged
